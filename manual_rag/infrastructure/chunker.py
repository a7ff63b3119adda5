# manual_rag/infrastructure/chunker.py

import re
from typing import List, Tuple

from manual_rag.domain.models import DocumentChunk


DEFAULT_MAX_CHUNK_LENGTH = 500
# Blank and cover pages are dropped below this length.
DEFAULT_MIN_PAGE_LENGTH = 50
SUMMARY_LENGTH = 200

PAGE_MARKER = re.compile(r"---\s*Page\s+(\d+)\s*---")
SENTENCE_SPLIT = re.compile(r"[.!?]+")

MERIDIAN_PREFIXES = "LI|LU|ST|SP|BL|KI|GB|HT|SI|TE|PC|LV|GV|CV|DU|REN"
POINT_CODE = re.compile(rf"\b(?:{MERIDIAN_PREFIXES})\s*\d+\b", re.IGNORECASE)

PROCEDURE_TERMS = ("procedure", "test", "correction", "technique")
THEORY_TERMS = ("theory", "principle", "concept", "meridian")
KEYWORD_VOCABULARY = re.compile(
    r"\b(test|correction|technique|procedure|muscle|stress|pain|energy"
    r"|balance|meridian|point|assessment)\b"
)

# (phrase in lowercased text, tag)
DOCUMENT_TAG_RULES = [
    ("applied kinesiology", "applied-kinesiology"),
    ("acupuncture",         "acupuncture"),
    ("muscle test",         "muscle-testing"),
    ("correction",          "corrections"),
    ("stress",              "stress-relief"),
    ("pain",                "pain-relief"),
    ("energy",              "energy-work"),
]


def normalize_point_code(raw: str) -> str:
    return re.sub(r"\s+", "", raw).upper()


def extract_point_codes(text: str) -> List[str]:
    """All point codes in first-seen order, e.g. 'gv 20' -> 'GV20'."""
    codes: List[str] = []
    for match in POINT_CODE.finditer(text):
        code = normalize_point_code(match.group(0))
        if code not in codes:
            codes.append(code)
    return codes


def split_pages(raw_text: str) -> List[Tuple[int, str]]:
    """
    Split page-marked text into (page_number, text) pairs.

    Text before the first marker belongs to the first marked page.
    Unmarked text is a single page 1.
    """
    parts = PAGE_MARKER.split(raw_text)
    if len(parts) == 1:
        return [(1, raw_text)]

    preamble = parts[0]
    pages: List[Tuple[int, str]] = []
    for i in range(1, len(parts), 2):
        page_number = int(parts[i])
        body = parts[i + 1] if i + 1 < len(parts) else ""
        if not pages and preamble.strip():
            body = f"{preamble.strip()}\n{body}"
        pages.append((page_number, body))
    return pages


class ManualChunker:
    """
    Splits page-marked manual text into sentence-bounded chunks.

    Design principles:
    - Chunks never cut a sentence in half
    - A chunk only exceeds max_chunk_length when one sentence alone does
    - Each chunk carries its content type and keyword set for keyword search
    """

    def __init__(
        self,
        max_chunk_length: int = DEFAULT_MAX_CHUNK_LENGTH,
        min_page_length: int = DEFAULT_MIN_PAGE_LENGTH,
    ):
        if max_chunk_length <= 0:
            raise ValueError("max_chunk_length must be positive.")
        self._max_chunk_length = max_chunk_length
        self._min_page_length = min_page_length

    def chunk_document(
        self,
        document_id: str,
        document_title: str,
        raw_text: str,
    ) -> List[DocumentChunk]:
        chunks: List[DocumentChunk] = []

        for page_number, page_text in split_pages(raw_text):
            if len(page_text.strip()) < self._min_page_length:
                continue

            for chunk_index, content in enumerate(self.split_page(page_text)):
                chunks.append(DocumentChunk(
                    chunk_id=f"{document_id}_p{page_number}_c{chunk_index}",
                    document_id=document_id,
                    document_title=document_title,
                    page_number=page_number,
                    chunk_index=chunk_index,
                    content=content,
                    content_type=self.classify(content),
                    keywords=self.extract_keywords(content),
                ))

        return chunks

    def split_page(self, text: str) -> List[str]:
        """Greedy sentence accumulation up to max_chunk_length."""
        chunks: List[str] = []
        current = ""

        for sentence in SENTENCE_SPLIT.split(text):
            sentence = " ".join(sentence.split())
            if not sentence:
                continue

            if not current:
                current = sentence
            elif len(current) + 2 + len(sentence) > self._max_chunk_length:
                chunks.append(current)
                current = sentence
            else:
                current = f"{current}. {sentence}"

        if current:
            chunks.append(current)

        return chunks

    @staticmethod
    def classify(content: str) -> str:
        lowered = content.lower()

        if any(term in lowered for term in PROCEDURE_TERMS):
            return "procedure"
        if POINT_CODE.search(content):
            return "points"
        if any(term in lowered for term in THEORY_TERMS):
            return "theory"
        return "general"

    @staticmethod
    def extract_keywords(content: str) -> List[str]:
        keywords = extract_point_codes(content)
        for match in KEYWORD_VOCABULARY.finditer(content.lower()):
            term = match.group(1)
            if term not in keywords:
                keywords.append(term)
        return keywords

    @staticmethod
    def extract_tags(raw_text: str) -> List[str]:
        lowered = raw_text.lower()
        return [tag for phrase, tag in DOCUMENT_TAG_RULES if phrase in lowered]

    @staticmethod
    def summarize(raw_text: str) -> str:
        pages = split_pages(raw_text)
        first_page = next((text for _, text in pages if text.strip()), raw_text)
        summary = " ".join(first_page.split())
        if len(summary) > SUMMARY_LENGTH:
            return summary[:SUMMARY_LENGTH].rstrip() + "..."
        return summary

    @staticmethod
    def count_pages(raw_text: str) -> int:
        return len(split_pages(raw_text))
