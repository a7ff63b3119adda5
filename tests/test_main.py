# tests/test_main.py

import asyncio

import pytest

from main import _ingest_new_files
from manual_rag.composition import build_services
from manual_rag.config import Settings
from manual_rag.infrastructure.kv_store import InMemoryKeyValueStore
from conftest import SAMPLE_MANUAL, FakeProvider


@pytest.fixture
def services():
    settings = Settings(storage_backend="memory", batch_delay=0)
    return build_services(settings, provider=FakeProvider(), storage=InMemoryKeyValueStore())


def test_ingests_each_new_file_once(services, tmp_path):
    (tmp_path / "sample.txt").write_text(SAMPLE_MANUAL, encoding="utf-8")
    (tmp_path / "blank.md").write_text("  ", encoding="utf-8")

    asyncio.run(_ingest_new_files(services, str(tmp_path)))
    asyncio.run(_ingest_new_files(services, str(tmp_path)))

    documents = services.document_store.list_documents()
    assert [d.file_name for d in documents] == ["sample.txt"]
    assert len(services.deduplication.list()) == 1


def test_missing_data_directory_keeps_existing_library(services, tmp_path):
    asyncio.run(_ingest_new_files(services, str(tmp_path / "absent")))
    assert services.document_store.list_documents() == []


def test_build_services_picks_memory_backend():
    services = build_services(Settings(storage_backend="memory"), provider=FakeProvider())
    assert isinstance(services.storage, InMemoryKeyValueStore)
