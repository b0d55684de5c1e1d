import json

import httpx
import pytest

from kbengine.corpus.chunk import chunk_text
from kbengine.corpus.interfaces import EmbeddingResult
from kbengine.embed.remote import EmbeddingProvider, embed_chunks_remotely
from kbengine.embed.store import save_vectors, vector_id_for
from kbengine.errors import EmbeddingError, ValidationError

CHUNKS = chunk_text("d", "first chunk!second chunk", 12, 0)


def _client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


def _ok(request):
    body = json.loads(request.content)
    data = [{"embedding": [float(i), 1.0], "index": i} for i, _ in enumerate(body["input"])]
    return httpx.Response(200, json={"data": data})


def test_provider_parse():
    assert EmbeddingProvider.parse("OpenAI") is EmbeddingProvider.OPENAI
    assert EmbeddingProvider.parse(EmbeddingProvider.ALIYUN) is EmbeddingProvider.ALIYUN
    assert EmbeddingProvider.ALIYUN.endpoint.startswith("https://dashscope.aliyuncs.com/")
    with pytest.raises(ValueError):
        EmbeddingProvider.parse("cohere")


def test_embed_sends_one_request_and_aligns_results():
    seen = []

    def handler(request):
        seen.append(request)
        return _ok(request)

    results = embed_chunks_remotely(CHUNKS, "openai", "sk-test", client=_client(handler))

    assert len(seen) == 1
    req = seen[0]
    assert str(req.url) == EmbeddingProvider.OPENAI.endpoint
    assert req.headers["authorization"] == "Bearer sk-test"
    body = json.loads(req.content)
    assert body["input"] == ["first chunk!", "second chunk"]
    assert body["model"] == EmbeddingProvider.OPENAI.configured_model()
    assert results == [
        EmbeddingResult(chunk_id="d:0", vector=[0.0, 1.0]),
        EmbeddingResult(chunk_id="d:1", vector=[1.0, 1.0]),
    ]


def test_empty_chunks_make_no_request():
    def handler(request):  # pragma: no cover
        raise AssertionError("no request expected")

    assert embed_chunks_remotely([], "aliyun", "key", client=_client(handler)) == []


def test_http_error_status():
    client = _client(lambda request: httpx.Response(500, text="boom"))
    with pytest.raises(EmbeddingError) as ei:
        embed_chunks_remotely(CHUNKS, "aliyun", "key", client=client)
    assert ei.value.status_code == 500
    assert ei.value.code == "http_error"


def test_transport_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(EmbeddingError) as ei:
        embed_chunks_remotely(CHUNKS, "openai", "key", client=_client(handler))
    assert ei.value.code == "transport_error"


@pytest.mark.parametrize(
    "payload",
    [
        {"data": [{"embedding": [1.0]}]},
        {"data": [{"embedding": [1.0]}, {"embedding": "nope"}]},
        {"result": []},
    ],
)
def test_malformed_response_fails_whole_call(payload):
    client = _client(lambda request: httpx.Response(200, json=payload))
    with pytest.raises(EmbeddingError) as ei:
        embed_chunks_remotely(CHUNKS, "openai", "key", client=client)
    assert ei.value.code == "malformed_response"


def test_save_vectors_replaces_by_chunk(store):
    results = [EmbeddingResult(chunk_id=c.id, vector=[1.0, 2.0]) for c in CHUNKS]
    assert save_vectors(store, "d", CHUNKS, results) == 2
    assert save_vectors(store, "d", CHUNKS, results) == 2

    rows = store.get_vectors_by_doc("d")
    assert sorted(r.id for r in rows) == [vector_id_for("d:0"), vector_id_for("d:1")]
    assert vector_id_for("d:0") == "v_d:0"


def test_save_vectors_rejects_unknown_chunk(store):
    with pytest.raises(ValidationError):
        save_vectors(store, "d", CHUNKS, [EmbeddingResult(chunk_id="other:0", vector=[1.0])])
    assert store.get_vectors_by_doc("d") == []
