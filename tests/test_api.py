# tests/test_api.py

import pytest
from fastapi.testclient import TestClient

from api import build_app
from manual_rag.composition import build_services
from manual_rag.config import Settings
from manual_rag.infrastructure.kv_store import InMemoryKeyValueStore
from conftest import SAMPLE_MANUAL, FakeProvider


@pytest.fixture
def services():
    settings = Settings(storage_backend="memory", batch_delay=0, embed_timeout=1.0)
    return build_services(settings, provider=FakeProvider(), storage=InMemoryKeyValueStore())


@pytest.fixture
def client(services):
    with TestClient(build_app(services)) as test_client:
        yield test_client


def _ingest(client, file_name="sample.txt", text=SAMPLE_MANUAL, **extra):
    return client.post("/documents", json={"file_name": file_name, "text": text, **extra})


# ── Lifecycle ────────────────────────────────────────────────────────────────

def test_lifespan_starts_and_stops_optimizer(services):
    with TestClient(build_app(services)) as test_client:
        assert test_client.get("/status").json()["optimizer_running"] is True
    assert services.optimizer.is_running is False


def test_status_reports_library_and_model(client):
    body = client.get("/status").json()
    assert body["documents"] == 0
    assert body["embedding_model"] == "fake-embed"
    assert body["embeddings_available"] is True


# ── Documents ────────────────────────────────────────────────────────────────

def test_ingest_then_fetch_document(client):
    response = _ingest(client)
    assert response.status_code == 201
    document_id = response.json()["document_id"]

    listed = client.get("/documents").json()["documents"]
    assert [d["document_id"] for d in listed] == [document_id]

    detail = client.get(f"/documents/{document_id}").json()
    assert detail["document"]["chunk_count"] == 1
    assert detail["chunks"][0]["content_type"] == "procedure"
    assert detail["chunks"][0]["embedding"] is None


def test_reingest_reports_exact_duplicate(client):
    _ingest(client)
    body = _ingest(client).json()
    assert body["duplicate"]["duplicate_type"] == "exact_file"
    assert body["skipped"] is False


def test_skip_if_duplicate_does_not_ingest(client):
    _ingest(client)
    body = _ingest(client, skip_if_duplicate=True).json()

    assert body["skipped"] is True
    assert body["document_id"] is None
    assert len(client.get("/documents").json()["documents"]) == 1
    assert client.get("/fingerprints").json()["stats"]["total_uploads"] == 1


def test_invalid_document_is_unprocessable(client):
    response = _ingest(client, document_type="novel")
    assert response.status_code == 422
    assert "novel" in response.json()["detail"]


def test_unknown_document_is_404(client):
    assert client.get("/documents/doc_missing").status_code == 404
    assert client.delete("/documents/doc_missing").status_code == 404


def test_delete_document(client):
    document_id = _ingest(client).json()["document_id"]
    assert client.delete(f"/documents/{document_id}").status_code == 200
    assert client.get("/documents").json()["documents"] == []


def test_duplicate_check_with_protocols(client):
    body = client.post("/duplicates/check", json={
        "file_name": "guide.md",
        "text": "Plain text.",
        "protocols": [{"name": "Calm", "points": ["gv 20", "LI4"]}],
    }).json()
    assert body["duplicate_type"] == "none"
    assert body["fingerprint"]["point_codes"] == ["GV20", "LI4"]


# ── Search ───────────────────────────────────────────────────────────────────

def test_search_and_context(client):
    _ingest(client)

    results = client.post("/search", json={"query": "stress", "top_k": 2}).json()["results"]
    assert len(results) == 1
    assert "GV20" in results[0]["chunk"]["content"]

    context = client.post("/context", json={"query": "stress"}).json()["context"]
    assert "[sample, Page 1]" in context


def test_search_rejects_bad_top_k(client):
    assert client.post("/search", json={"query": "stress", "top_k": 0}).status_code == 422


# ── Cache ────────────────────────────────────────────────────────────────────

def test_cache_endpoints(client):
    _ingest(client)
    assert client.get("/cache/stats").json()["total_entries"] == 1
    assert client.post("/cache/optimize").json() == {"compressed": 0}

    exported = client.get("/cache/export").json()["data"]
    assert client.post("/cache/import", json={"data": exported}).json() == {"imported": 1}


def test_cache_import_rejects_garbage(client):
    response = client.post("/cache/import", json={"data": "{not json"})
    assert response.status_code == 400


def test_cache_import_rejects_bad_stats(client):
    data = '{"version": "1.0", "entries": [], "stats": {"hits": "lots"}}'
    assert client.post("/cache/import", json={"data": data}).status_code == 400
