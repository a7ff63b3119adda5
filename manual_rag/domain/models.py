# manual_rag/domain/models.py

from dataclasses import dataclass, field
from typing import List, Optional, Union
import numpy as np


DOCUMENT_TYPES = ("workshop", "manual", "research", "reference")


@dataclass
class DocumentChunk:
    """
    Represents a single searchable unit of text extracted from a manual page.
    """
    chunk_id: str
    document_id: str
    document_title: str
    page_number: int
    chunk_index: int
    content: str
    content_type: str = "general"
    keywords: List[str] = field(default_factory=list)
    embedding: Optional[np.ndarray] = field(default=None, repr=False)

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None and len(self.embedding) > 0

    def to_record(self, include_embedding: bool = True) -> dict:
        record = {
            "chunk_id": self.chunk_id,
            "document_id": self.document_id,
            "document_title": self.document_title,
            "page_number": self.page_number,
            "chunk_index": self.chunk_index,
            "content": self.content,
            "content_type": self.content_type,
            "keywords": list(self.keywords),
            "embedding": None,
        }
        if include_embedding and self.has_embedding:
            record["embedding"] = [float(v) for v in self.embedding]
        return record

    @classmethod
    def from_record(cls, record: dict) -> "DocumentChunk":
        embedding = record.get("embedding")
        return cls(
            chunk_id=record["chunk_id"],
            document_id=record["document_id"],
            document_title=record.get("document_title", ""),
            page_number=int(record.get("page_number", 1)),
            chunk_index=int(record.get("chunk_index", 0)),
            content=record["content"],
            content_type=record.get("content_type", "general"),
            keywords=list(record.get("keywords", [])),
            embedding=np.asarray(embedding, dtype=np.float64) if embedding else None,
        )


@dataclass
class StoredDocument:
    """Ingestion-level metadata for one manual."""
    document_id: str
    file_name: str
    title: str
    upload_date: str
    page_count: int
    chunk_count: int
    document_type: str = "manual"
    tags: List[str] = field(default_factory=list)
    summary: str = ""

    def to_record(self) -> dict:
        return {
            "document_id": self.document_id,
            "file_name": self.file_name,
            "title": self.title,
            "upload_date": self.upload_date,
            "page_count": self.page_count,
            "chunk_count": self.chunk_count,
            "document_type": self.document_type,
            "tags": list(self.tags),
            "summary": self.summary,
        }

    @classmethod
    def from_record(cls, record: dict) -> "StoredDocument":
        return cls(
            document_id=record["document_id"],
            file_name=record["file_name"],
            title=record.get("title", record["file_name"]),
            upload_date=record.get("upload_date", ""),
            page_count=int(record.get("page_count", 0)),
            chunk_count=int(record.get("chunk_count", 0)),
            document_type=record.get("document_type", "manual"),
            tags=list(record.get("tags", [])),
            summary=record.get("summary", ""),
        )


@dataclass
class SearchHit:
    """
    Represents a ranked search result returned to the caller.

    Semantic hits carry a cosine similarity, keyword hits the heuristic score.
    """
    chunk: DocumentChunk
    score: float

    def __repr__(self) -> str:
        preview = self.chunk.content[:80].replace("\n", " ")
        return (
            f"SearchHit(score={self.score:.4f}, "
            f"source='{self.chunk.document_title}', "
            f"page={self.chunk.page_number}, "
            f"preview='{preview}...')"
        )


# ── Embedding results ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class EmbeddingOk:
    vector: np.ndarray = field(repr=False)
    from_cache: bool = False

    @property
    def success(self) -> bool:
        return True


@dataclass(frozen=True)
class EmbeddingErr:
    reason: str

    @property
    def success(self) -> bool:
        return False


EmbeddingResult = Union[EmbeddingOk, EmbeddingErr]


# ── Cache ─────────────────────────────────────────────────────────────────────

@dataclass
class CacheEntry:
    vector: np.ndarray = field(repr=False)
    timestamp: float
    access_count: int
    last_accessed: float
    compressed: bool = False

    @property
    def memory_bytes(self) -> int:
        return int(self.vector.nbytes)


@dataclass
class CacheStats:
    total_entries: int
    memory_bytes: int
    hit_rate: float
    evictions: int


# ── Deduplication ─────────────────────────────────────────────────────────────

@dataclass
class ExtractedProtocol:
    name: str
    points: List[str] = field(default_factory=list)


@dataclass
class ExtractedSummary:
    """Structured content pulled out of a manual by an upstream extractor."""
    protocols: List[ExtractedProtocol] = field(default_factory=list)

    def all_points(self) -> List[str]:
        seen: List[str] = []
        for protocol in self.protocols:
            for point in protocol.points:
                code = point.replace(" ", "").upper()
                if code and code not in seen:
                    seen.append(code)
        return seen


@dataclass
class ContentFingerprint:
    file_hash: str
    content_hash: str
    file_name: str
    upload_date: str
    extracted_point_count: int = 0
    protocol_count: int = 0
    point_codes: List[str] = field(default_factory=list)

    def to_record(self) -> dict:
        return {
            "file_hash": self.file_hash,
            "content_hash": self.content_hash,
            "file_name": self.file_name,
            "upload_date": self.upload_date,
            "extracted_point_count": self.extracted_point_count,
            "protocol_count": self.protocol_count,
            "point_codes": list(self.point_codes),
        }

    @classmethod
    def from_record(cls, record: dict) -> "ContentFingerprint":
        return cls(
            file_hash=record["file_hash"],
            content_hash=record["content_hash"],
            file_name=record["file_name"],
            upload_date=record.get("upload_date", ""),
            extracted_point_count=int(record.get("extracted_point_count", 0)),
            protocol_count=int(record.get("protocol_count", 0)),
            point_codes=list(record.get("point_codes", [])),
        )


@dataclass
class DuplicateCheckResult:
    is_duplicate: bool
    duplicate_type: str
    similarity: float
    recommendations: List[str]
    fingerprint: ContentFingerprint
    existing: Optional[ContentFingerprint] = None


@dataclass
class StoreStats:
    documents: int
    chunks: int
    keywords: int
