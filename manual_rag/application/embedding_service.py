# manual_rag/application/embedding_service.py

import asyncio
import logging
from typing import List, Sequence, Union

import numpy as np

from manual_rag.domain.errors import EmbeddingProviderError
from manual_rag.domain.interfaces import EmbeddingProviderPort
from manual_rag.domain.models import (
    DocumentChunk,
    EmbeddingErr,
    EmbeddingOk,
    EmbeddingResult,
    SearchHit,
)
from manual_rag.infrastructure.embedding_cache import EmbeddingCache
from manual_rag.infrastructure.file_hasher import text_digest


logger = logging.getLogger(__name__)


DEFAULT_BATCH_DELAY = 0.1
DEFAULT_REQUEST_TIMEOUT = 30.0

VectorLike = Union[np.ndarray, Sequence[float]]


def cache_key(model_name: str, text: str) -> str:
    """Content-addressed: identical text under one model always maps to one slot."""
    return f"{model_name}:{text_digest(text)}"


class EmbeddingService:
    """
    Cache-aside wrapper around one embedding provider.

    Lifecycle of a request:
    - cache hit  → EmbeddingOk(from_cache=True), no provider call
    - cache miss → provider call bounded by request_timeout
                   success is cached before it is returned
                   failure becomes EmbeddingErr, never an exception

    The model is fixed for the life of the instance; the cache key embeds it,
    so services for different models can share one cache safely.
    """

    def __init__(
        self,
        provider: EmbeddingProviderPort,
        cache: EmbeddingCache,
        batch_delay: float = DEFAULT_BATCH_DELAY,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        self._provider = provider
        self._cache = cache
        self._batch_delay = batch_delay
        self._request_timeout = request_timeout

    @property
    def model_name(self) -> str:
        return self._provider.model_name

    @property
    def cache(self) -> EmbeddingCache:
        return self._cache

    async def is_available(self) -> bool:
        try:
            return await asyncio.wait_for(self._provider.is_available(), timeout=self._request_timeout)
        except asyncio.TimeoutError:
            logger.warning("[EmbeddingService] Availability check timed out.")
            return False

    async def create_embedding(self, text: str) -> EmbeddingResult:
        if not text or not text.strip():
            return EmbeddingErr(reason="Cannot embed empty text.")

        key = cache_key(self.model_name, text)
        cached = self._cache.get(key)
        if cached is not None:
            return EmbeddingOk(vector=cached, from_cache=True)

        try:
            vector = await asyncio.wait_for(self._provider.embed(text), timeout=self._request_timeout)
        except asyncio.TimeoutError:
            logger.warning("[EmbeddingService] Embedding timed out after %ss.", self._request_timeout)
            return EmbeddingErr(reason=f"Embedding timed out after {self._request_timeout}s")
        except EmbeddingProviderError as error:
            logger.warning("[EmbeddingService] Embedding creation failed: %s", error)
            return EmbeddingErr(reason=f"Failed to create embedding: {error}")

        vector = np.asarray(vector, dtype=np.float64)
        self._cache.set(key, vector)
        return EmbeddingOk(vector=vector, from_cache=False)

    async def create_batch_embeddings(self, texts: Sequence[str]) -> List[EmbeddingResult]:
        """
        Embed texts one at a time, in order, pausing between provider calls.
        Each result is independent; one failure never aborts the batch.
        """
        results: List[EmbeddingResult] = []

        for i, text in enumerate(texts):
            result = await self.create_embedding(text)
            results.append(result)

            is_last = i == len(texts) - 1
            if not is_last and self._batch_delay > 0 and not getattr(result, "from_cache", False):
                await asyncio.sleep(self._batch_delay)

        succeeded = sum(1 for r in results if r.success)
        logger.info("[EmbeddingService] Batch embedding complete: %d/%d successful", succeeded, len(texts))
        return results

    @staticmethod
    def calculate_similarity(a: VectorLike, b: VectorLike) -> float:
        """
        Cosine similarity in [-1, 1].
        0.0 when lengths differ or either vector has zero magnitude.
        """
        vec_a = np.asarray(a, dtype=np.float64).ravel()
        vec_b = np.asarray(b, dtype=np.float64).ravel()
        if vec_a.shape != vec_b.shape or vec_a.size == 0:
            return 0.0

        magnitude = float(np.linalg.norm(vec_a) * np.linalg.norm(vec_b))
        if magnitude == 0.0:
            return 0.0

        similarity = float(np.dot(vec_a, vec_b) / magnitude)
        return max(-1.0, min(1.0, similarity))

    def find_similar_chunks(
        self,
        query_vector: VectorLike,
        candidates: Sequence[DocumentChunk],
        k: int = 5,
    ) -> List[SearchHit]:
        """Top-k by descending similarity; ties keep input order."""
        if k <= 0:
            return []

        scored = [
            SearchHit(chunk=chunk, score=self.calculate_similarity(query_vector, chunk.embedding))
            for chunk in candidates
            if chunk.has_embedding
        ]
        scored.sort(key=lambda hit: hit.score, reverse=True)
        return scored[:k]
