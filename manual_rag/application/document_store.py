# manual_rag/application/document_store.py

import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from pathlib import PurePath
from typing import Dict, List, Optional

import numpy as np

from manual_rag.application.embedding_service import EmbeddingService
from manual_rag.application.keyword_search import keyword_search
from manual_rag.domain.errors import IngestionValidationError, StorageCapacityError
from manual_rag.domain.interfaces import KeyValueStorePort
from manual_rag.domain.models import (
    DOCUMENT_TYPES,
    DocumentChunk,
    EmbeddingOk,
    SearchHit,
    StoreStats,
    StoredDocument,
)
from manual_rag.infrastructure.chunker import ManualChunker


logger = logging.getLogger(__name__)


# ── Constants ─────────────────────────────────────────────────────────────────

DOCUMENTS_KEY = "documents"
CHUNKS_KEY = "chunks"
KEYWORD_INDEX_KEY = "keyword_index"

DEFAULT_SEARCH_LIMIT = 5
CONTEXT_LIMIT = 3
DEFAULT_EMBEDDING_BATCH_SIZE = 3
DEFAULT_STORAGE_THRESHOLD_BYTES = 5_000_000

# Precision of vectors attached to chunks at ingestion, and the coarser
# precision used once the chunk collection outgrows the storage threshold.
CHUNK_VECTOR_DECIMALS = 4
OVERSIZE_VECTOR_DECIMALS = 2

NO_CONTEXT_MESSAGE = "No relevant content found in manual library."
CONTEXT_HEADER = "Relevant content from your manual library:"


def compress_vector(vector: np.ndarray, decimals: int) -> np.ndarray:
    return np.round(np.asarray(vector, dtype=np.float64), decimals)


class DocumentStore:
    """
    Core use case: ingest manuals and retrieve the passages relevant to a query.

    Search dispatch is global:
    - any stored chunk has a vector  → semantic ranking over vector-bearing chunks
    - no vectors anywhere            → keyword heuristic over all chunks
    - query embedding fails          → keyword heuristic over all chunks

    Persistence uses three keys of the injected key-value store:
    documents (id → metadata), chunks (flat list), keyword_index (keyword → chunk ids).
    """

    def __init__(
        self,
        storage: KeyValueStorePort,
        embedding_service: EmbeddingService,
        chunker: Optional[ManualChunker] = None,
        embedding_batch_size: int = DEFAULT_EMBEDDING_BATCH_SIZE,
        storage_threshold_bytes: int = DEFAULT_STORAGE_THRESHOLD_BYTES,
    ):
        self._storage = storage
        self._embedding_service = embedding_service
        self._chunker = chunker or ManualChunker()
        self._embedding_batch_size = max(1, embedding_batch_size)
        self._storage_threshold_bytes = storage_threshold_bytes
        self._write_lock = threading.RLock()

    # ─── Ingestion ───────────────────────────────────────────────────────────

    async def ingest(
        self,
        file_name: str,
        raw_text: str,
        document_type: str = "manual",
    ) -> str:
        """Chunk, embed and persist one manual. Returns the new document id."""
        if not file_name or not file_name.strip():
            raise IngestionValidationError("File name cannot be empty.")
        if not raw_text or not raw_text.strip():
            raise IngestionValidationError(f"Document '{file_name}' has no text to ingest.")
        if document_type not in DOCUMENT_TYPES:
            raise IngestionValidationError(
                f"Unknown document type '{document_type}'. Expected one of: {', '.join(DOCUMENT_TYPES)}"
            )

        document_id = f"doc_{uuid.uuid4().hex[:12]}"
        title = self._title_from_file_name(file_name)
        logger.info("[DocumentStore] Storing document '%s' as %s", file_name, document_id)

        chunks = self._chunker.chunk_document(document_id, title, raw_text)
        if not chunks:
            raise IngestionValidationError(
                f"Document '{file_name}' produced no searchable chunks (all pages too short)."
            )

        await self._attach_embeddings(chunks)

        document = StoredDocument(
            document_id=document_id,
            file_name=file_name,
            title=title,
            upload_date=datetime.now(timezone.utc).isoformat(),
            page_count=self._chunker.count_pages(raw_text),
            chunk_count=len(chunks),
            document_type=document_type,
            tags=self._chunker.extract_tags(raw_text),
            summary=self._chunker.summarize(raw_text),
        )

        with self._write_lock:
            snapshot = {key: self._storage.get(key) for key in (CHUNKS_KEY, DOCUMENTS_KEY, KEYWORD_INDEX_KEY)}
            try:
                self._save_chunks(chunks)
                self._save_document(document)
                self._update_keyword_index(chunks)
            except Exception:
                logger.error("[DocumentStore] Failed to store %s, rolling back partial writes.", document_id)
                self._restore(snapshot)
                raise

        embedded = sum(1 for c in chunks if c.has_embedding)
        logger.info(
            "[DocumentStore] ✓ Document stored: %d chunks (%d with embeddings)",
            len(chunks), embedded,
        )
        return document_id

    async def _attach_embeddings(self, chunks: List[DocumentChunk]) -> None:
        """Embed in stable chunk order; failed chunks stay keyword-only."""
        if not await self._embedding_service.is_available():
            logger.warning("[DocumentStore] No embedding model available, using keyword search only.")
            return

        total_batches = (len(chunks) + self._embedding_batch_size - 1) // self._embedding_batch_size
        for batch_number, start in enumerate(range(0, len(chunks), self._embedding_batch_size), start=1):
            batch = chunks[start : start + self._embedding_batch_size]
            logger.debug("[DocumentStore] Processing batch %d/%d...", batch_number, total_batches)

            results = await self._embedding_service.create_batch_embeddings([c.content for c in batch])
            for chunk, result in zip(batch, results):
                if isinstance(result, EmbeddingOk):
                    chunk.embedding = compress_vector(result.vector, CHUNK_VECTOR_DECIMALS)

    # ─── Search ──────────────────────────────────────────────────────────────

    async def search(self, query: str, limit: int = DEFAULT_SEARCH_LIMIT) -> List[SearchHit]:
        query = (query or "").strip()
        if not query or limit <= 0:
            return []

        chunks = self._load_chunks()
        if not chunks:
            return []

        with_vectors = [c for c in chunks if c.has_embedding]
        if with_vectors:
            logger.debug("[DocumentStore] Using semantic search over %d chunks.", len(with_vectors))
            result = await self._embedding_service.create_embedding(query)
            if isinstance(result, EmbeddingOk):
                return self._embedding_service.find_similar_chunks(result.vector, with_vectors, limit)
            logger.warning("[DocumentStore] Query embedding failed (%s), falling back to keyword search.", result.reason)
        else:
            logger.debug("[DocumentStore] No embeddings stored, using keyword search.")

        return keyword_search(query, chunks, limit)

    async def get_context_for_query(self, query: str) -> str:
        """Citation-style context block for a language model prompt."""
        hits = await self.search(query, CONTEXT_LIMIT)
        if not hits:
            return NO_CONTEXT_MESSAGE

        context = "\n\n---\n\n".join(
            f"[{hit.chunk.document_title}, Page {hit.chunk.page_number}]\n{hit.chunk.content}"
            for hit in hits
        )
        return f"{CONTEXT_HEADER}\n\n{context}"

    # ─── Retrieval ───────────────────────────────────────────────────────────

    def list_documents(self) -> List[StoredDocument]:
        return [StoredDocument.from_record(r) for r in self._load_document_records().values()]

    def get_document(self, document_id: str) -> Optional[StoredDocument]:
        record = self._load_document_records().get(document_id)
        return StoredDocument.from_record(record) if record else None

    def get_document_chunks(self, document_id: str) -> List[DocumentChunk]:
        return [c for c in self._load_chunks() if c.document_id == document_id]

    def chunks_for_keyword(self, keyword: str) -> List[DocumentChunk]:
        # Point codes are indexed upper-case, vocabulary terms lower-case.
        index = self._storage.get(KEYWORD_INDEX_KEY) or {}
        for candidate in (keyword, keyword.upper(), keyword.lower()):
            if candidate in index:
                wanted = set(index[candidate])
                break
        else:
            return []
        return [c for c in self._load_chunks() if c.chunk_id in wanted]

    def stats(self) -> StoreStats:
        chunks = self._load_chunks()
        keywords = {keyword for chunk in chunks for keyword in chunk.keywords}
        return StoreStats(
            documents=len(self._load_document_records()),
            chunks=len(chunks),
            keywords=len(keywords),
        )

    # ─── Deletion ────────────────────────────────────────────────────────────

    def delete_document(self, document_id: str) -> bool:
        """Remove a document, its chunks, and rebuild the keyword index."""
        with self._write_lock:
            documents = self._load_document_records()
            if document_id not in documents:
                logger.info("[DocumentStore] Document '%s' not found; nothing deleted.", document_id)
                return False

            del documents[document_id]
            remaining = [r for r in self._load_chunk_records() if r["document_id"] != document_id]

            self._storage.set(CHUNKS_KEY, remaining)
            self._storage.set(DOCUMENTS_KEY, documents)
            self._storage.set(KEYWORD_INDEX_KEY, self._build_keyword_index(remaining))

        logger.info("[DocumentStore] Deleted document '%s' and rebuilt keyword index.", document_id)
        return True

    def clear_all(self) -> None:
        with self._write_lock:
            for key in (DOCUMENTS_KEY, CHUNKS_KEY, KEYWORD_INDEX_KEY):
                self._storage.delete(key)
        logger.info("[DocumentStore] All documents cleared.")

    # ─── Private: Persistence ────────────────────────────────────────────────

    def _save_chunks(self, new_chunks: List[DocumentChunk]) -> None:
        """
        Append chunks with progressive degradation:
            1. as-is
            2. vectors rounded coarser, when the collection outgrows the threshold
            3. new chunks without vectors, when the backend refuses the write
        Only if step 3 also fails is the error surfaced.
        """
        existing = self._load_chunk_records()
        records = existing + [c.to_record() for c in new_chunks]

        data_size = len(json.dumps(records, separators=(",", ":")))
        logger.info(
            "[DocumentStore] Saving %d chunks, total size: %dKB",
            len(new_chunks), round(data_size / 1024),
        )

        if data_size > self._storage_threshold_bytes:
            logger.warning("[DocumentStore] Large dataset detected, compressing embeddings...")
            existing = [self._compress_record(r) for r in existing]
            records = existing + [self._compress_record(c.to_record()) for c in new_chunks]

        try:
            self._storage.set(CHUNKS_KEY, records)
            return
        except StorageCapacityError as error:
            logger.warning("[DocumentStore] Failed to save chunks (%s). Saving without embeddings...", error)

        stripped = [c.to_record(include_embedding=False) for c in new_chunks]
        self._storage.set(CHUNKS_KEY, existing + stripped)
        for chunk in new_chunks:
            chunk.embedding = None
        logger.info("[DocumentStore] Chunks saved without embeddings.")

    def _save_document(self, document: StoredDocument) -> None:
        documents = self._load_document_records()
        documents[document.document_id] = document.to_record()
        self._storage.set(DOCUMENTS_KEY, documents)

    def _update_keyword_index(self, chunks: List[DocumentChunk]) -> None:
        index: Dict[str, List[str]] = self._storage.get(KEYWORD_INDEX_KEY) or {}
        for chunk in chunks:
            for keyword in chunk.keywords:
                ids = index.setdefault(keyword, [])
                if chunk.chunk_id not in ids:
                    ids.append(chunk.chunk_id)
        self._storage.set(KEYWORD_INDEX_KEY, index)

    def _restore(self, snapshot: Dict[str, object]) -> None:
        for key, value in snapshot.items():
            if value is None:
                self._storage.delete(key)
            else:
                self._storage.set(key, value)

    @staticmethod
    def _build_keyword_index(chunk_records: List[dict]) -> Dict[str, List[str]]:
        index: Dict[str, List[str]] = {}
        for record in chunk_records:
            for keyword in record.get("keywords", []):
                index.setdefault(keyword, []).append(record["chunk_id"])
        return index

    @staticmethod
    def _compress_record(record: dict) -> dict:
        if not record.get("embedding"):
            return record
        compressed = dict(record)
        compressed["embedding"] = [round(float(v), OVERSIZE_VECTOR_DECIMALS) for v in record["embedding"]]
        return compressed

    def _load_document_records(self) -> Dict[str, dict]:
        return self._storage.get(DOCUMENTS_KEY) or {}

    def _load_chunk_records(self) -> List[dict]:
        return self._storage.get(CHUNKS_KEY) or []

    def _load_chunks(self) -> List[DocumentChunk]:
        return [DocumentChunk.from_record(r) for r in self._load_chunk_records()]

    @staticmethod
    def _title_from_file_name(file_name: str) -> str:
        path = PurePath(file_name.strip())
        return path.stem if path.suffix else path.name
