# manual_rag/domain/errors.py


class EmbeddingProviderError(RuntimeError):
    """Network failure, timeout, non-2xx status or malformed body from the embedding endpoint."""


class StorageCapacityError(RuntimeError):
    """A key-value backend refused a write because the value is too large."""


class IngestionValidationError(ValueError):
    """Input rejected at the ingestion boundary (empty text, unsupported file, no chunks)."""


class CacheImportError(ValueError):
    """Exported cache data is malformed or has an unknown version."""
