# manual_rag/domain/interfaces.py

from abc import ABC, abstractmethod
from typing import Iterator, Optional, Tuple
import numpy as np


class EmbeddingProviderPort(ABC):
    """
    Port for any embedding backend.
    Implementations raise EmbeddingProviderError on failure.
    """

    @property
    @abstractmethod
    def model_name(self) -> str: ...

    @abstractmethod
    async def embed(self, text: str) -> np.ndarray: ...

    async def is_available(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class KeyValueStorePort(ABC):
    """
    Minimal persistence contract: string keys, JSON-serialisable values.

    `set` raises StorageCapacityError when the backend refuses the value.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[object]: ...

    @abstractmethod
    def set(self, key: str, value: object) -> None: ...

    @abstractmethod
    def delete(self, key: str) -> bool: ...

    @abstractmethod
    def scan(self, prefix: str = "") -> Iterator[Tuple[str, object]]:
        """Yield (key, value) pairs whose key starts with `prefix`, sorted by key."""
        ...
