import asyncio
import json

import httpx
import pytest

from kbengine.errors import ValidationError
from kbengine.kb import AsyncKnowledgeBase


def test_import_text_rejects_blank(kb):
    with pytest.raises(ValidationError) as ei:
        kb.import_text("blank", "  \n\t ")
    assert ei.value.code == "empty_text"
    assert kb.list_all_docs() == []


def test_import_text_trims_and_names(kb):
    meta = kb.import_text("", "   hello there   ")
    assert meta.name == "Untitled"
    assert meta.size == len("hello there")
    assert meta.id.startswith("doc-")
    assert [c.text for c in kb.get_doc_chunks(meta.id)] == ["hello there"]
    assert kb.get_doc(meta.id) == meta


def test_import_text_honours_zero_overlap(kb):
    meta = kb.import_text("n", "abcdefghijklmnopqrstuvwxyz", chunk_size=10, overlap=0)
    assert [c.text for c in kb.get_doc_chunks(meta.id)] == ["abcdefghij", "klmnopqrst", "uvwxyz"]


def test_incremental_import_keeps_indices_contiguous(kb):
    pieces = ["a" * 50, "b" * 30, "", "c" * 45]
    meta = kb.import_chunks_incremental("streamed", pieces)

    chunks = kb.get_doc_chunks(meta.id)
    assert [c.index for c in chunks] == list(range(len(chunks)))
    assert [c.id for c in chunks] == [f"{meta.id}:{i}" for i in range(len(chunks))]
    assert "".join(sorted(set("".join(c.text for c in chunks)))) == "abc"
    assert kb.get_doc(meta.id).size == 125


def test_delete_and_clear(kb):
    a = kb.import_text("a", "first document")
    b = kb.import_text("b", "second document")
    kb.delete_doc(a.id)
    assert [m.id for m in kb.list_all_docs()] == [b.id]
    kb.clear_knowledge_base()
    assert kb.list_all_docs() == []
    assert kb.get_doc_chunks(b.id) == []


def test_embed_and_save_then_vector_search(kb):
    meta = kb.import_text("v", "red apples and green pears", chunk_size=10, overlap=0)

    def handler(request):
        inputs = json.loads(request.content)["input"]
        data = [{"embedding": [1.0, 0.0] if "apple" in t else [0.0, 1.0]} for t in inputs]
        return httpx.Response(200, json={"data": data})

    client = httpx.Client(transport=httpx.MockTransport(handler))
    saved = kb.embed_and_save(meta.id, "openai", api_key="sk-test", client=client)

    assert saved == len(kb.get_doc_chunks(meta.id))
    hits = kb.vector_search(meta.id, [1.0, 0.0], top_k=1)
    assert "apple" in hits[0].chunk.text


def test_embed_without_key_is_rejected(kb):
    kb.settings.openai_api_key = None
    meta = kb.import_text("k", "needs a key")
    with pytest.raises(ValidationError) as ei:
        kb.embed_and_save(meta.id, "openai")
    assert ei.value.code == "missing_api_key"


def test_async_facade(kb):
    akb = AsyncKnowledgeBase(kb)

    async def scenario():
        meta = await akb.import_text("async", "The quick brown fox. The fox runs.")
        hits = await akb.search_in_doc(meta.id, "fox", top_k=2)
        docs = await akb.list_all_docs()
        await akb.delete_doc(meta.id)
        return meta, hits, docs

    meta, hits, docs = asyncio.run(scenario())
    assert [d.id for d in docs] == [meta.id]
    assert hits[0].chunk.index == 1
    assert kb.get_doc(meta.id) is None


def test_async_facade_consumes_async_stream(kb):
    akb = AsyncKnowledgeBase(kb)

    async def pieces():
        for text in ["a" * 50, "b" * 30, "", "c" * 45]:
            await asyncio.sleep(0)
            yield text

    meta = asyncio.run(akb.import_chunks_incremental("streamed", pieces()))

    chunks = kb.get_doc_chunks(meta.id)
    assert [c.index for c in chunks] == list(range(len(chunks)))
    assert meta.size == 125
    assert kb.get_doc(meta.id).size == 125


def test_failed_async_stream_leaves_no_document(kb):
    akb = AsyncKnowledgeBase(kb)

    async def pieces():
        yield "x" * 60
        raise RuntimeError("upstream closed")

    with pytest.raises(RuntimeError):
        asyncio.run(akb.import_chunks_incremental("broken", pieces()))
    assert kb.list_all_docs() == []


def test_failed_stream_deletes_partial_document(kb):
    def pieces():
        yield "y" * 60
        raise RuntimeError("read error")

    with pytest.raises(RuntimeError):
        kb.import_chunks_incremental("broken", pieces())
    assert kb.list_all_docs() == []


def test_sync_import_rejects_async_stream(kb):
    async def pieces():
        yield "z"

    gen = pieces()
    with pytest.raises(TypeError):
        kb.import_chunks_incremental("wrong", gen)
    assert kb.list_all_docs() == []
    asyncio.run(gen.aclose())
