from contextlib import asynccontextmanager
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from manual_rag.composition import RagServices, build_services
from manual_rag.config import Settings
from manual_rag.domain.errors import CacheImportError, IngestionValidationError
from manual_rag.domain.models import (
    ContentFingerprint,
    DuplicateCheckResult,
    ExtractedProtocol,
    ExtractedSummary,
    SearchHit,
    StoredDocument,
)
from manual_rag.infrastructure.logging_setup import setup_logging

# ── Configuration ────────────────────────────────────────────────────────────
DEFAULT_TOP_K = 5
CORS_ORIGINS = ["http://localhost:5173", "http://localhost:8080", "http://127.0.0.1:8080"]


# ── API Models ───────────────────────────────────────────────────────────────
class ProtocolSchema(BaseModel):
    name: str
    points: List[str] = []


class IngestRequest(BaseModel):
    file_name: str
    text: str
    document_type: str = "manual"
    protocols: Optional[List[ProtocolSchema]] = None
    skip_if_duplicate: bool = False


class DuplicateCheckRequest(BaseModel):
    file_name: str
    text: str
    protocols: Optional[List[ProtocolSchema]] = None


class SearchRequest(BaseModel):
    query: str
    top_k: int = Field(default=DEFAULT_TOP_K, ge=1, le=50)


class ContextRequest(BaseModel):
    query: str


class CacheImportRequest(BaseModel):
    data: str


# ── Serialization helpers ────────────────────────────────────────────────────
def _summary(protocols: Optional[List[ProtocolSchema]]) -> Optional[ExtractedSummary]:
    if protocols is None:
        return None
    return ExtractedSummary([ExtractedProtocol(p.name, list(p.points)) for p in protocols])


def _document_json(document: StoredDocument) -> dict:
    return document.to_record()


def _hit_json(hit: SearchHit) -> dict:
    return {
        "chunk": hit.chunk.to_record(include_embedding=False),
        "score": round(float(hit.score), 4),
    }


def _fingerprint_json(fingerprint: Optional[ContentFingerprint]) -> Optional[dict]:
    return fingerprint.to_record() if fingerprint else None


def _duplicate_json(result: DuplicateCheckResult) -> dict:
    return {
        "is_duplicate": result.is_duplicate,
        "duplicate_type": result.duplicate_type,
        "similarity": result.similarity,
        "recommendations": result.recommendations,
        "fingerprint": _fingerprint_json(result.fingerprint),
        "existing": _fingerprint_json(result.existing),
    }


# ── App Initialization ───────────────────────────────────────────────────────
def build_app(services: Optional[RagServices] = None) -> FastAPI:
    """
    Create the API. Tests inject a prebuilt RagServices; otherwise the
    lifespan builds one from the environment.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = services is None
        if owned:
            settings = Settings.from_env()
            setup_logging(settings.log_level)
            app.state.services = build_services(settings)
        else:
            app.state.services = services

        app.state.services.optimizer.start()
        try:
            yield
        finally:
            await app.state.services.aclose()

    app = FastAPI(
        title="Manual RAG API",
        description="Semantic + keyword search over a local manual library.",
        version="1.0.0",
        lifespan=lifespan,
    )

    # ── CORS Middleware ──────────────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def get_services(request: Request) -> RagServices:
        return request.app.state.services

    # ── Endpoints ────────────────────────────────────────────────────────────
    @app.get("/status")
    async def get_status(request: Request):
        """Library size, embedding availability and cache statistics."""
        svc = get_services(request)
        stats = svc.document_store.stats()
        cache_stats = svc.cache.stats()
        return {
            "documents": stats.documents,
            "chunks": stats.chunks,
            "keywords": stats.keywords,
            "embedding_model": svc.embedding_service.model_name,
            "embeddings_available": await svc.embedding_service.is_available(),
            "cache_entries": cache_stats.total_entries,
            "optimizer_running": svc.optimizer.is_running,
        }

    @app.get("/documents")
    async def list_documents(request: Request):
        documents = get_services(request).document_store.list_documents()
        return {"documents": [_document_json(d) for d in documents]}

    @app.get("/documents/{document_id}")
    async def get_document(document_id: str, request: Request):
        store = get_services(request).document_store
        document = store.get_document(document_id)
        if document is None:
            raise HTTPException(status_code=404, detail=f"Document '{document_id}' not found")
        return {
            "document": _document_json(document),
            "chunks": [c.to_record(include_embedding=False) for c in store.get_document_chunks(document_id)],
        }

    @app.delete("/documents/{document_id}")
    async def delete_document(document_id: str, request: Request):
        if not get_services(request).document_store.delete_document(document_id):
            raise HTTPException(status_code=404, detail=f"Document '{document_id}' not found")
        return {"message": f"Successfully deleted document '{document_id}'"}

    @app.post("/documents", status_code=201)
    async def ingest_document(body: IngestRequest, request: Request):
        """Run the duplicate check, then ingest unless the caller opted out on a hit."""
        svc = get_services(request)
        check = svc.deduplication.check_duplicate(body.file_name, body.text, _summary(body.protocols))

        if check.is_duplicate and body.skip_if_duplicate:
            return {"document_id": None, "skipped": True, "duplicate": _duplicate_json(check)}

        try:
            document_id = await svc.document_store.ingest(body.file_name, body.text, body.document_type)
        except IngestionValidationError as error:
            raise HTTPException(status_code=422, detail=str(error))

        svc.deduplication.store(check.fingerprint)
        return {"document_id": document_id, "skipped": False, "duplicate": _duplicate_json(check)}

    @app.post("/duplicates/check")
    async def check_duplicate(body: DuplicateCheckRequest, request: Request):
        result = get_services(request).deduplication.check_duplicate(
            body.file_name, body.text, _summary(body.protocols)
        )
        return _duplicate_json(result)

    @app.get("/fingerprints")
    async def list_fingerprints(request: Request):
        dedup = get_services(request).deduplication
        return {
            "fingerprints": [fp.to_record() for fp in dedup.list()],
            "stats": dedup.duplicate_stats(),
        }

    @app.post("/search")
    async def search(body: SearchRequest, request: Request):
        hits = await get_services(request).document_store.search(body.query, body.top_k)
        return {"query": body.query, "results": [_hit_json(h) for h in hits]}

    @app.post("/context")
    async def get_context(body: ContextRequest, request: Request):
        context = await get_services(request).document_store.get_context_for_query(body.query)
        return {"query": body.query, "context": context}

    @app.get("/cache/stats")
    async def cache_stats(request: Request):
        stats = get_services(request).cache.stats()
        return {
            "total_entries": stats.total_entries,
            "memory_bytes": stats.memory_bytes,
            "hit_rate": stats.hit_rate,
            "evictions": stats.evictions,
        }

    @app.post("/cache/optimize")
    async def optimize_cache(request: Request):
        compressed = get_services(request).cache.optimize()
        return {"compressed": compressed}

    @app.get("/cache/export")
    async def export_cache(request: Request):
        return {"data": get_services(request).cache.export_cache()}

    @app.post("/cache/import")
    async def import_cache(body: CacheImportRequest, request: Request):
        try:
            imported = get_services(request).cache.import_cache(body.data)
        except CacheImportError as error:
            raise HTTPException(status_code=400, detail=str(error))
        return {"imported": imported}

    return app


if __name__ == "__main__":
    uvicorn.run(build_app(), host="0.0.0.0", port=8000)
