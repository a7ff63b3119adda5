# manual_rag/infrastructure/embedding_provider.py
# model_name is fixed per instance; switching models means a new provider.

import logging
from typing import Optional

import httpx
import numpy as np

from manual_rag.domain.errors import EmbeddingProviderError
from manual_rag.domain.interfaces import EmbeddingProviderPort


logger = logging.getLogger(__name__)


DEFAULT_BASE_URL = "http://localhost:11434"
DEFAULT_MODEL_NAME = "nomic-embed-text"
DEFAULT_TIMEOUT = 30.0

EMBEDDING_ENDPOINT = "/api/embeddings"
MODELS_ENDPOINT = "/api/tags"
# Substrings that identify an embedding-capable model in the tag list.
EMBEDDING_MODEL_MARKERS = ("embed", "Embedding")


class OllamaEmbeddingProvider(EmbeddingProviderPort):
    """
    HTTP client for an Ollama-compatible embedding endpoint.

    POST {base_url}/api/embeddings  {"model": ..., "prompt": ...}
      → 2xx {"embedding": [float, ...]}

    Non-2xx, malformed bodies, empty vectors, timeouts and transport errors
    all surface as EmbeddingProviderError.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        model_name: str = DEFAULT_MODEL_NAME,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._model_name = model_name
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    @property
    def model_name(self) -> str:
        return self._model_name

    async def embed(self, text: str) -> np.ndarray:
        client = self._get_client()
        try:
            response = await client.post(
                f"{self._base_url}{EMBEDDING_ENDPOINT}",
                json={"model": self._model_name, "prompt": text},
            )
        except httpx.TimeoutException as error:
            raise EmbeddingProviderError(f"Embedding request timed out after {self._timeout}s") from error
        except httpx.HTTPError as error:
            raise EmbeddingProviderError(f"Embedding request failed: {error}") from error

        if not response.is_success:
            raise EmbeddingProviderError(f"Embedding API error: {response.status_code}")

        try:
            data = response.json()
        except ValueError as error:
            raise EmbeddingProviderError("Embedding API returned a non-JSON body") from error

        return self._extract_embedding(data)

    async def is_available(self) -> bool:
        """True when the backend lists an embedding-capable model."""
        client = self._get_client()
        try:
            response = await client.get(f"{self._base_url}{MODELS_ENDPOINT}")
            if not response.is_success:
                return False
            models = [model.get("name", "") for model in response.json().get("models", [])]
        except (httpx.HTTPError, ValueError, AttributeError) as error:
            logger.warning("[EmbeddingProvider] Failed to check embedding model: %s", error)
            return False

        if self._model_name in models:
            return True
        return any(marker in name for name in models for marker in EMBEDDING_MODEL_MARKERS)

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # ─── Private ─────────────────────────────────────────────────────────────

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    @staticmethod
    def _extract_embedding(data) -> np.ndarray:
        embedding = data.get("embedding") if isinstance(data, dict) else None
        if not isinstance(embedding, list) or not embedding:
            keys = list(data.keys()) if isinstance(data, dict) else type(data).__name__
            raise EmbeddingProviderError(f"Embedding API response has no valid embedding. Response keys: {keys}")
        try:
            vector = np.asarray(embedding, dtype=np.float64)
        except (TypeError, ValueError) as error:
            raise EmbeddingProviderError(f"Embedding contains non-numeric values: {error}") from error
        if vector.ndim != 1:
            raise EmbeddingProviderError(f"Embedding must be a flat vector, got shape {vector.shape}")
        return vector
