# kbengine/api.py
from dataclasses import asdict
from functools import lru_cache

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app
from pydantic import BaseModel, Field

from kbengine.embed.remote import EmbeddingProvider
from kbengine.http_errors import register_exception_handlers
from kbengine.kb import KnowledgeBase
from kbengine.obs.middleware import ObservabilityMiddleware
from kbengine.obs.tracing import setup_logging, setup_tracing

load_dotenv()

# --- FastAPI App ---
app = FastAPI(title="kbengine")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # local desktop/dev use
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_logging()
setup_tracing(app)
app.add_middleware(ObservabilityMiddleware)
register_exception_handlers(app)
# expose /metrics (Prometheus text format)
app.mount("/metrics", make_asgi_app())


# --- Components ---
@lru_cache(maxsize=1)
def get_kb() -> KnowledgeBase:
    """Process-wide knowledge base; tests swap it via app.dependency_overrides."""
    return KnowledgeBase()


def _hits(hits) -> list[dict]:
    return [dict(h.to_dict(), rank=rank) for rank, h in enumerate(hits, start=1)]


def _require_doc(kb: KnowledgeBase, doc_id: str):
    meta = kb.get_doc(doc_id)
    if meta is None:
        raise HTTPException(status_code=404, detail=f"Document not found: {doc_id}")
    return meta


# --- Request Models ---
class ImportTextReq(BaseModel):
    name: str = "Untitled"
    text: str
    chunk_size: int | None = Field(default=None, ge=1)
    overlap: int | None = Field(default=None, ge=0)


class SearchReq(BaseModel):
    query: str
    top_k: int = Field(5, ge=1, le=50)


class VectorSearchReq(BaseModel):
    vector: list[float] = Field(..., min_length=1)
    top_k: int = Field(5, ge=1, le=50)


class EmbedReq(BaseModel):
    provider: str = "openai"  # openai | aliyun
    api_key: str | None = None


# --- Endpoints ---
@app.get("/healthz")
def health():
    return {"ok": True}


@app.get("/docs-kb")
def list_docs(kb: KnowledgeBase = Depends(get_kb)):
    return {"docs": [m.to_dict() for m in kb.list_all_docs()]}


@app.post("/docs-kb")
def import_text(req: ImportTextReq, kb: KnowledgeBase = Depends(get_kb)):
    meta = kb.import_text(req.name, req.text, chunk_size=req.chunk_size, overlap=req.overlap)
    return meta.to_dict()


@app.delete("/docs-kb")
def clear_docs(kb: KnowledgeBase = Depends(get_kb)):
    kb.clear_knowledge_base()
    return {"ok": True}


@app.get("/docs-kb/{doc_id}/chunks")
def doc_chunks(doc_id: str, kb: KnowledgeBase = Depends(get_kb)):
    return {"doc_id": doc_id, "chunks": [c.to_dict() for c in kb.get_doc_chunks(doc_id)]}


@app.delete("/docs-kb/{doc_id}")
def delete_doc(doc_id: str, kb: KnowledgeBase = Depends(get_kb)):
    kb.delete_doc(doc_id)
    return {"ok": True}


@app.post("/docs-kb/{doc_id}/search")
def search_doc(doc_id: str, req: SearchReq, kb: KnowledgeBase = Depends(get_kb)):
    return {"hits": _hits(kb.search_in_doc(doc_id, req.query, req.top_k))}


@app.post("/docs-kb/{doc_id}/vector-search")
def vector_search(doc_id: str, req: VectorSearchReq, kb: KnowledgeBase = Depends(get_kb)):
    return {"hits": _hits(kb.vector_search(doc_id, req.vector, req.top_k))}


@app.post("/docs-kb/{doc_id}/embed")
def embed_doc(doc_id: str, req: EmbedReq, kb: KnowledgeBase = Depends(get_kb)):
    _require_doc(kb, doc_id)
    try:
        provider = EmbeddingProvider.parse(req.provider)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return {"doc_id": doc_id, "embedded": kb.embed_and_save(doc_id, provider, req.api_key)}


@app.post("/imports", status_code=202)
async def start_import(
    request: Request,
    name: str = Query("Untitled"),
    ext: str = Query("txt"),
    chunk_size: int | None = Query(None, ge=1),
    overlap: int | None = Query(None, ge=0),
    kb: KnowledgeBase = Depends(get_kb),
):
    """Start a background import of the raw request body."""
    data = await request.body()
    status = kb.start_import(name, ext, data, chunk_size=chunk_size, overlap=overlap)
    return asdict(status)


@app.get("/imports/{job_id}")
def import_status(job_id: str, kb: KnowledgeBase = Depends(get_kb)):
    status = kb.jobs.status(job_id)
    if status is None:
        raise HTTPException(status_code=404, detail=f"Import job not found: {job_id}")
    return asdict(status)


@app.delete("/imports/{job_id}")
def cancel_import(job_id: str, kb: KnowledgeBase = Depends(get_kb)):
    status = kb.jobs.cancel(job_id)
    if status is None:
        raise HTTPException(status_code=404, detail=f"Import job not found: {job_id}")
    return asdict(status)
