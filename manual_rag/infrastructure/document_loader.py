# manual_rag/infrastructure/document_loader.py

import logging
import re
from pathlib import Path
from typing import List, Tuple

import pdfplumber

from manual_rag.domain.errors import IngestionValidationError


logger = logging.getLogger(__name__)


SUPPORTED_EXTENSIONS = {".pdf", ".txt", ".md"}


def format_page_marker(page_number: int) -> str:
    return f"--- Page {page_number} ---"


class DocumentLoader:
    """
    Turns files on disk into page-marked raw text for the chunker.

    - .txt / .md are read as-is (one page unless they already carry markers)
    - .pdf is extracted page by page with pdfplumber
    Unsupported or missing files are rejected with IngestionValidationError.
    """

    def list_supported_files(self, directory_path: str) -> List[Path]:
        data_dir = Path(directory_path)
        if not data_dir.exists():
            raise FileNotFoundError(f"Data directory not found: {directory_path}")

        return [
            file_path
            for file_path in sorted(data_dir.rglob("*"))
            if file_path.is_file() and file_path.suffix.lower() in SUPPORTED_EXTENSIONS
        ]

    def load_file(self, file_path: Path) -> str:
        file_path = Path(file_path)
        suffix = file_path.suffix.lower()

        if suffix not in SUPPORTED_EXTENSIONS:
            raise IngestionValidationError(
                f"Unsupported file type '{suffix or file_path.name}'. "
                f"Supported: {', '.join(sorted(SUPPORTED_EXTENSIONS))}"
            )
        if not file_path.is_file():
            raise IngestionValidationError(f"File not found: {file_path}")

        if suffix == ".pdf":
            text = self._load_pdf_file(file_path)
        else:
            text = file_path.read_text(encoding="utf-8", errors="ignore")

        if not text.strip():
            raise IngestionValidationError(f"No extractable text in '{file_path.name}'.")
        return text

    # ─── Private ─────────────────────────────────────────────────────────────

    def _load_pdf_file(self, file_path: Path) -> str:
        pages = self._extract_pdf_pages(file_path)
        logger.info("[DocumentLoader] Extracted %d pages from %s", len(pages), file_path.name)
        return "\n".join(
            f"{format_page_marker(page_number)}\n{self._clean_text(text)}"
            for page_number, text in pages
        )

    def _extract_pdf_pages(self, file_path: Path) -> List[Tuple[int, str]]:
        """
        Extract text page-by-page from PDF.
        Returns a list of (page_number, text) tuples; blank pages are kept so
        page numbers stay aligned with the printed manual.
        """
        try:
            pages = []
            with pdfplumber.open(str(file_path)) as pdf:
                for i, page in enumerate(pdf.pages):
                    text = page.extract_text(x_tolerance=2, y_tolerance=2) or ""
                    pages.append((i + 1, text))
            return pages
        except Exception as error:
            raise IngestionValidationError(
                f"Failed to extract text from '{file_path.name}': {error}"
            ) from error

    @staticmethod
    def _clean_text(text: str) -> str:
        """Normalize whitespace and drop control characters."""
        text = re.sub(r"[ \t]{2,}", " ", text)
        text = re.sub(r"\n{3,}", "\n\n", text)
        text = re.sub(r"[^\x20-\x7EÀ-ÿ\n]", " ", text)
        return text.strip()
