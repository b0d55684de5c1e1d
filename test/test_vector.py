import numpy as np
import pytest

from kbengine.corpus.chunk import chunk_text
from kbengine.corpus.interfaces import DocumentMeta, VectorRow
from kbengine.retrieval.vector import VectorSearcher, cosine_similarity


def test_cosine_basics():
    assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
    assert cosine_similarity([], []) == 0.0


def test_cosine_stays_in_bounds():
    rng = np.random.default_rng(7)
    for _ in range(200):
        a, b = rng.normal(size=16), rng.normal(size=16) * 1e6
        assert -1.0 <= cosine_similarity(a, b) <= 1.0
        assert cosine_similarity(a, a) == pytest.approx(1.0)


def test_cosine_rejects_mismatched_dims():
    with pytest.raises(ValueError):
        cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0])


@pytest.fixture
def doc_with_vectors(store):
    chunks = chunk_text("d", "aaaa" + "bbbb" + "cccc", 4, 0)
    store.put_doc(DocumentMeta(id="d", name="d", created_at=1, size=12), chunks)
    store.put_vectors(
        [
            VectorRow(id="v_d:0", doc_id="d", chunk_id="d:0", vector=[1.0, 0.0]),
            VectorRow(id="v_d:1", doc_id="d", chunk_id="d:1", vector=[0.7, 0.7]),
            VectorRow(id="v_d:2", doc_id="d", chunk_id="d:2", vector=[0.0, 1.0]),
        ]
    )
    return store


def test_vector_search_ranks_by_cosine(doc_with_vectors):
    hits = VectorSearcher(doc_with_vectors).search("d", [0.0, 2.0], top_k=2)
    assert [h.chunk.text for h in hits] == ["cccc", "bbbb"]
    assert hits[0].score == pytest.approx(1.0)


def test_vector_search_without_vectors(store):
    store.put_doc(DocumentMeta(id="plain", name="p", created_at=1, size=4), chunk_text("plain", "text", 10, 0))
    assert VectorSearcher(store).search("plain", [1.0]) == []
    assert VectorSearcher(store).search("missing", [1.0]) == []


def test_vector_for_missing_chunk_is_skipped(doc_with_vectors):
    doc_with_vectors.put_vectors([VectorRow(id="v_orphan", doc_id="d", chunk_id="d:99", vector=[0.0, 1.0])])
    hits = VectorSearcher(doc_with_vectors).search("d", [0.0, 1.0], top_k=10)
    assert [h.chunk.id for h in hits] == ["d:2", "d:1", "d:0"]


def test_duplicate_vectors_rank_independently(doc_with_vectors):
    doc_with_vectors.put_vectors([VectorRow(id="v_extra", doc_id="d", chunk_id="d:0", vector=[0.1, 1.0])])
    hits = VectorSearcher(doc_with_vectors).search("d", [0.0, 1.0], top_k=10)
    assert len(hits) == 4
    assert [h.chunk.id for h in hits].count("d:0") == 2
