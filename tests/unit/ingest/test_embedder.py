"""Tests for Embedder — batching, ordering, retry and validation."""

from __future__ import annotations

import pytest

from quarry.errors import EmbeddingError
from quarry.ingest.embedder import Embedder


def _indexed_embed(calls: list[list[str]]):
    """Fake embed_fn whose vector encodes the text's numeric suffix."""

    def _embed(model: str, texts: list[str]) -> list[list[float]]:
        calls.append(list(texts))
        return [[float(t.split("-")[-1]), 1.0] for t in texts]

    return _embed


def _embedder(embed_fn, **kwargs) -> Embedder:
    kwargs.setdefault("backoff_min", 0.0)
    kwargs.setdefault("backoff_max", 0.0)
    return Embedder("openai/text-embedding-3-small", 2, embed_fn=embed_fn, **kwargs)


# ------------------------------------------------------------------
# Batching / ordering
# ------------------------------------------------------------------


def test_embed_many_preserves_order_across_batches():
    calls: list[list[str]] = []
    embedder = _embedder(_indexed_embed(calls), batch_size=3)
    texts = [f"text-{i}" for i in range(8)]
    vectors = embedder.embed_many(texts)
    assert [v[0] for v in vectors] == [float(i) for i in range(8)]
    assert [len(c) for c in calls] == [3, 3, 2]
    assert embedder.total_api_calls == 3


def test_embed_many_empty_makes_no_call():
    calls: list[list[str]] = []
    assert _embedder(_indexed_embed(calls)).embed_many([]) == []
    assert calls == []


def test_embed_one():
    calls: list[list[str]] = []
    assert _embedder(_indexed_embed(calls)).embed_one("q-4") == [4.0, 1.0]


def test_blank_text_sent_as_space(bow_embed):
    embedder = Embedder("openai/text-embedding-3-small", 16, embed_fn=bow_embed)
    embedder.embed_many(["", "word"])
    assert bow_embed.calls == [[" ", "word"]]


# ------------------------------------------------------------------
# Retry
# ------------------------------------------------------------------


def test_transient_failure_is_retried():
    attempts = {"n": 0}

    def _flaky(model, texts):
        attempts["n"] += 1
        if attempts["n"] < 3:
            raise TimeoutError("slow")
        return [[0.0, 1.0] for _ in texts]

    embedder = _embedder(_flaky, max_attempts=3)
    assert embedder.embed_many(["a"]) == [[0.0, 1.0]]
    assert embedder.total_api_calls == 3


def test_exhausted_retries_raise_embedding_error():
    def _down(model, texts):
        raise ConnectionError("reset")

    embedder = _embedder(_down, max_attempts=2)
    with pytest.raises(EmbeddingError, match="after 2 attempts"):
        embedder.embed_many(["a"])
    assert embedder.total_api_calls == 2


def test_non_transient_failure_not_retried():
    def _bad(model, texts):
        raise ValueError("invalid model")

    embedder = _embedder(_bad, max_attempts=5)
    with pytest.raises(EmbeddingError, match="invalid model"):
        embedder.embed_many(["a"])
    assert embedder.total_api_calls == 1


# ------------------------------------------------------------------
# Response validation
# ------------------------------------------------------------------


def test_wrong_dimensions_raise():
    embedder = _embedder(lambda model, texts: [[1.0, 2.0, 3.0] for _ in texts])
    with pytest.raises(EmbeddingError, match="3 dimensions"):
        embedder.embed_many(["a"])


def test_wrong_count_raises():
    embedder = _embedder(lambda model, texts: [[1.0, 2.0]])
    with pytest.raises(EmbeddingError, match="1 vectors for 2 texts"):
        embedder.embed_many(["a", "b"])


@pytest.mark.parametrize("kwargs", [{"batch_size": 0}, {"max_attempts": 0}])
def test_invalid_parameters_raise(kwargs):
    with pytest.raises(ValueError):
        _embedder(lambda m, t: [], **kwargs)
