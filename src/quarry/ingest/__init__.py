"""Quarry ingest stages — content resolver, chunker, embedder."""

from quarry.ingest.chunker import ChunkSequence, TextChunker, chunk
from quarry.ingest.embedder import Embedder
from quarry.ingest.resolver import ContentResolver, ResolvedSource

__all__ = [
    "ChunkSequence",
    "ContentResolver",
    "Embedder",
    "ResolvedSource",
    "TextChunker",
    "chunk",
]
