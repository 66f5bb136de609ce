"""Shared pytest fixtures."""

from __future__ import annotations

import hashlib
import re

import pytest

from quarry.db.connection import Database
from quarry.db.schema import initialize

BOW_DIMS = 16


def bow_vector(text: str, dims: int = BOW_DIMS) -> list[float]:
    """Deterministic bag-of-words vector: one hashed bucket per word plus a bias."""
    vector = [0.0] * dims
    vector[0] = 0.5
    for word in re.findall(r"[a-z]+", text.lower()):
        bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % (dims - 1)
        vector[bucket + 1] += 1.0
    return vector


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".quarry.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def bow_embed():
    """Fake ``embed_fn(model, texts)`` that records every batch it receives."""
    calls: list[list[str]] = []

    def _embed(model: str, texts: list[str]) -> list[list[float]]:
        calls.append(list(texts))
        return [bow_vector(t) for t in texts]

    _embed.calls = calls  # type: ignore[attr-defined]
    return _embed
