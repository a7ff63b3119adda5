# tests/conftest.py

import asyncio
from typing import List

import numpy as np
import pytest

from manual_rag.application.document_store import DocumentStore
from manual_rag.application.embedding_service import EmbeddingService
from manual_rag.domain.errors import EmbeddingProviderError
from manual_rag.domain.interfaces import EmbeddingProviderPort
from manual_rag.infrastructure.embedding_cache import EmbeddingCache
from manual_rag.infrastructure.kv_store import InMemoryKeyValueStore


VOCABULARY = ["stress", "pain", "energy", "muscle", "gv20", "li4", "headache", "balance"]


def vectorize(text: str) -> np.ndarray:
    """Bag-of-words over a tiny vocabulary, so related texts point the same way."""
    lowered = text.lower()
    return np.array([float(lowered.count(word)) for word in VOCABULARY])


class FakeProvider(EmbeddingProviderPort):
    """Deterministic provider that records every text it was asked to embed."""

    def __init__(self, model_name="fake-embed", available=True, fail_texts=(), dimension=None):
        self._model_name = model_name
        self._available = available
        self._fail_texts = set(fail_texts)
        self._dimension = dimension
        self.calls: List[str] = []

    @property
    def model_name(self) -> str:
        return self._model_name

    async def embed(self, text: str) -> np.ndarray:
        self.calls.append(text)
        if text in self._fail_texts:
            raise EmbeddingProviderError(f"refused: {text}")
        if self._dimension:
            return np.linspace(0.1, 0.9, self._dimension) + len(text) / 1000
        return vectorize(text)

    async def is_available(self) -> bool:
        return self._available


class FailingProvider(EmbeddingProviderPort):
    @property
    def model_name(self) -> str:
        return "broken-embed"

    async def embed(self, text: str) -> np.ndarray:
        raise EmbeddingProviderError("Embedding API error: 500")


class SlowProvider(EmbeddingProviderPort):
    def __init__(self, delay: float):
        self._delay = delay

    @property
    def model_name(self) -> str:
        return "slow-embed"

    async def embed(self, text: str) -> np.ndarray:
        await asyncio.sleep(self._delay)
        return vectorize(text)


def make_document_store(provider=None, storage=None, **kwargs) -> DocumentStore:
    service = EmbeddingService(
        provider=provider or FakeProvider(),
        cache=EmbeddingCache(),
        batch_delay=0,
        request_timeout=1.0,
    )
    return DocumentStore(
        storage=storage if storage is not None else InMemoryKeyValueStore(),
        embedding_service=service,
        **kwargs,
    )


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def storage() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def embedding_service(provider) -> EmbeddingService:
    return EmbeddingService(provider=provider, cache=EmbeddingCache(), batch_delay=0, request_timeout=1.0)


SAMPLE_MANUAL = (
    "--- Page 1 ---\n"
    "Test for Stress: Apply pressure to GV20 for 2 minutes.\n"
    "--- Page 2 ---\n"
    "Short."
)
