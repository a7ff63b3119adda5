# manual_rag/infrastructure/chroma_store.py

import json
import logging
from pathlib import Path
from typing import Iterator, Optional, Tuple

import chromadb
from chromadb.config import Settings

from manual_rag.domain.interfaces import KeyValueStorePort
from manual_rag.infrastructure.kv_store import encode_value


logger = logging.getLogger(__name__)


# ── Constants ─────────────────────────────────────────────────────────────────

COLLECTION_NAME = "manual_rag_records"
# Records are looked up by id only; the collection still needs a vector per row.
PLACEHOLDER_EMBEDDING = [1.0]


class ChromaKeyValueStore(KeyValueStorePort):
    """
    Persistent key-value store on top of a ChromaDB collection.

    One record per key:
        id        → key
        document  → JSON-encoded value
        metadata  → {"key": key}
        embedding → fixed one-dimensional placeholder

    Values larger than `max_value_bytes` are refused with
    StorageCapacityError before anything is written.
    """

    def __init__(
        self,
        persist_directory: str,
        collection_name: str = COLLECTION_NAME,
        max_value_bytes: int = 0,
    ):
        self._persist_directory = persist_directory
        self._collection_name = collection_name
        self._max_value_bytes = max_value_bytes

        path = Path(persist_directory)
        if path.exists() and not path.is_dir():
            raise RuntimeError(f"Failed to initialize ChromaDB: path '{persist_directory}' is a file.")

        try:
            path.mkdir(parents=True, exist_ok=True)
            self._client = chromadb.PersistentClient(
                path=persist_directory,
                settings=Settings(anonymized_telemetry=False),
            )
            self._collection = self._client.get_or_create_collection(
                name=collection_name,
                metadata={"hnsw:space": "l2"},
            )
        except Exception as error:
            raise RuntimeError(
                f"Failed to initialize ChromaDB at '{persist_directory}'.\n"
                f"The database may be locked by another process or corrupted.\n"
                f"Fix: close other running instances, or delete '{persist_directory}'.\n"
                f"Original error: {error}"
            ) from error

        logger.info(
            "[ChromaStore] Connected to '%s'. Collection '%s' has %d records.",
            persist_directory, collection_name, self._collection.count(),
        )

    # ─── KeyValueStorePort ───────────────────────────────────────────────────

    def get(self, key: str) -> Optional[object]:
        result = self._collection.get(ids=[key], include=["documents"])
        if not result["ids"]:
            return None
        return json.loads(result["documents"][0])

    def set(self, key: str, value: object) -> None:
        payload = encode_value(key, value, self._max_value_bytes)
        self._collection.upsert(
            ids=[key],
            embeddings=[PLACEHOLDER_EMBEDDING],
            documents=[payload],
            metadatas=[{"key": key}],
        )

    def delete(self, key: str) -> bool:
        existing = self._collection.get(ids=[key])
        if not existing["ids"]:
            return False
        self._collection.delete(ids=[key])
        return True

    def scan(self, prefix: str = "") -> Iterator[Tuple[str, object]]:
        result = self._collection.get(include=["documents"])
        pairs = sorted(
            (key, document)
            for key, document in zip(result["ids"], result["documents"])
            if key.startswith(prefix)
        )
        for key, document in pairs:
            yield key, json.loads(document)

    # ─── Maintenance ─────────────────────────────────────────────────────────

    def count(self) -> int:
        return self._collection.count()

