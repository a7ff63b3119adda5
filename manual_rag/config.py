# manual_rag/config.py

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


ENV_PREFIX = "RAG_"


def _env(key: str, default: str) -> str:
    """Read RAG_<key>; empty strings count as unset."""
    value = os.getenv(f"{ENV_PREFIX}{key}")
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_int(key: str, default: int) -> int:
    raw = _env(key, str(default))
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Environment variable '{ENV_PREFIX}{key}' is not a valid integer: '{raw}'.")


def _env_float(key: str, default: float) -> float:
    raw = _env(key, str(default))
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"Environment variable '{ENV_PREFIX}{key}' is not a valid number: '{raw}'.")


@dataclass(frozen=True)
class Settings:
    """Runtime configuration. Build with Settings.from_env()."""

    # Embedding provider
    ollama_base_url: str = "http://localhost:11434"
    embed_model: str = "nomic-embed-text"
    embed_timeout: float = 30.0
    batch_delay: float = 0.1
    embed_batch_size: int = 3

    # Embedding cache
    cache_max_size: int = 1000
    cache_max_memory_mb: float = 50.0
    cache_compression_threshold: int = 100
    optimize_interval: float = 300.0
    optimize_min_entries: int = 100

    # Chunking
    max_chunk_length: int = 500
    min_page_length: int = 50

    # Storage
    storage_backend: str = "chroma"
    persist_directory: str = "./data/rag_store"
    storage_threshold_bytes: int = 5_000_000
    max_value_bytes: int = 0

    data_directory: str = "data"
    log_level: str = "info"

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        """
        Load settings from the environment. A .env file fills in missing keys;
        variables already set in the OS environment win.
        """
        load_dotenv(dotenv_path=env_file or Path.cwd() / ".env", override=False)

        backend = _env("STORAGE_BACKEND", cls.storage_backend).lower()
        if backend not in ("chroma", "memory"):
            raise ValueError(f"Unsupported storage backend '{backend}'. Expected 'chroma' or 'memory'.")

        return cls(
            ollama_base_url=_env("OLLAMA_BASE_URL", cls.ollama_base_url),
            embed_model=_env("EMBED_MODEL", cls.embed_model),
            embed_timeout=_env_float("EMBED_TIMEOUT", cls.embed_timeout),
            batch_delay=_env_float("BATCH_DELAY", cls.batch_delay),
            embed_batch_size=_env_int("EMBED_BATCH_SIZE", cls.embed_batch_size),
            cache_max_size=_env_int("CACHE_MAX_SIZE", cls.cache_max_size),
            cache_max_memory_mb=_env_float("CACHE_MAX_MEMORY_MB", cls.cache_max_memory_mb),
            cache_compression_threshold=_env_int("CACHE_COMPRESSION_THRESHOLD", cls.cache_compression_threshold),
            optimize_interval=_env_float("OPTIMIZE_INTERVAL", cls.optimize_interval),
            optimize_min_entries=_env_int("OPTIMIZE_MIN_ENTRIES", cls.optimize_min_entries),
            max_chunk_length=_env_int("MAX_CHUNK_LENGTH", cls.max_chunk_length),
            min_page_length=_env_int("MIN_PAGE_LENGTH", cls.min_page_length),
            storage_backend=backend,
            persist_directory=_env("PERSIST_DIRECTORY", cls.persist_directory),
            storage_threshold_bytes=_env_int("STORAGE_THRESHOLD_BYTES", cls.storage_threshold_bytes),
            max_value_bytes=_env_int("MAX_VALUE_BYTES", cls.max_value_bytes),
            data_directory=_env("DATA_DIRECTORY", cls.data_directory),
            log_level=os.getenv("LOG_LEVEL") or _env("LOG_LEVEL", cls.log_level),
        )
