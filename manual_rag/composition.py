# manual_rag/composition.py
# Composition root shared by main.py and api.py.

from dataclasses import dataclass

from manual_rag.application.cache_optimizer import CacheOptimizer
from manual_rag.application.deduplication import DeduplicationManager
from manual_rag.application.document_store import DocumentStore
from manual_rag.application.embedding_service import EmbeddingService
from manual_rag.config import Settings
from manual_rag.domain.interfaces import EmbeddingProviderPort, KeyValueStorePort
from manual_rag.infrastructure.chroma_store import ChromaKeyValueStore
from manual_rag.infrastructure.chunker import ManualChunker
from manual_rag.infrastructure.embedding_cache import EmbeddingCache
from manual_rag.infrastructure.embedding_provider import OllamaEmbeddingProvider
from manual_rag.infrastructure.kv_store import InMemoryKeyValueStore


@dataclass
class RagServices:
    storage: KeyValueStorePort
    provider: EmbeddingProviderPort
    cache: EmbeddingCache
    embedding_service: EmbeddingService
    document_store: DocumentStore
    deduplication: DeduplicationManager
    optimizer: CacheOptimizer

    async def aclose(self) -> None:
        await self.optimizer.stop()
        await self.provider.close()


def build_storage(settings: Settings) -> KeyValueStorePort:
    if settings.storage_backend == "memory":
        return InMemoryKeyValueStore(max_value_bytes=settings.max_value_bytes)
    return ChromaKeyValueStore(
        persist_directory=settings.persist_directory,
        max_value_bytes=settings.max_value_bytes,
    )


def build_services(
    settings: Settings,
    provider: EmbeddingProviderPort | None = None,
    storage: KeyValueStorePort | None = None,
) -> RagServices:
    """Wire every component explicitly; nothing is a module-level singleton."""
    storage = storage or build_storage(settings)
    provider = provider or OllamaEmbeddingProvider(
        base_url=settings.ollama_base_url,
        model_name=settings.embed_model,
        timeout=settings.embed_timeout,
    )
    cache = EmbeddingCache(
        max_size=settings.cache_max_size,
        max_memory_mb=settings.cache_max_memory_mb,
        compression_threshold=settings.cache_compression_threshold,
    )
    embedding_service = EmbeddingService(
        provider=provider,
        cache=cache,
        batch_delay=settings.batch_delay,
        request_timeout=settings.embed_timeout,
    )
    chunker = ManualChunker(
        max_chunk_length=settings.max_chunk_length,
        min_page_length=settings.min_page_length,
    )
    document_store = DocumentStore(
        storage=storage,
        embedding_service=embedding_service,
        chunker=chunker,
        embedding_batch_size=settings.embed_batch_size,
        storage_threshold_bytes=settings.storage_threshold_bytes,
    )
    return RagServices(
        storage=storage,
        provider=provider,
        cache=cache,
        embedding_service=embedding_service,
        document_store=document_store,
        deduplication=DeduplicationManager(storage),
        optimizer=CacheOptimizer(
            cache,
            interval_seconds=settings.optimize_interval,
            min_entries=settings.optimize_min_entries,
        ),
    )
