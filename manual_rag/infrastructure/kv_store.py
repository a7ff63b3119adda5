# manual_rag/infrastructure/kv_store.py

import json
import threading
from typing import Dict, Iterator, Optional, Tuple

from manual_rag.domain.errors import StorageCapacityError
from manual_rag.domain.interfaces import KeyValueStorePort


def encode_value(key: str, value: object, max_value_bytes: int = 0) -> str:
    """
    Serialize a value to JSON and enforce the backend's per-value quota.
    max_value_bytes <= 0 means unlimited.
    """
    try:
        payload = json.dumps(value, separators=(",", ":"))
    except (TypeError, ValueError) as error:
        raise StorageCapacityError(f"Value for '{key}' is not serialisable: {error}") from error

    size = len(payload.encode("utf-8"))
    if max_value_bytes > 0 and size > max_value_bytes:
        raise StorageCapacityError(
            f"Value for '{key}' is {size} bytes, over the {max_value_bytes}-byte limit."
        )
    return payload


class InMemoryKeyValueStore(KeyValueStorePort):
    """
    Process-local store. Values are kept as JSON text so the size quota and
    serialisation failures behave like a persistent backend.
    """

    def __init__(self, max_value_bytes: int = 0):
        self._data: Dict[str, str] = {}
        self._max_value_bytes = max_value_bytes
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[object]:
        with self._lock:
            raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: object) -> None:
        payload = encode_value(key, value, self._max_value_bytes)
        with self._lock:
            self._data[key] = payload

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def scan(self, prefix: str = "") -> Iterator[Tuple[str, object]]:
        with self._lock:
            items = sorted(
                (key, raw) for key, raw in self._data.items() if key.startswith(prefix)
            )
        for key, raw in items:
            yield key, json.loads(raw)

