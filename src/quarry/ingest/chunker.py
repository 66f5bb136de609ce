"""Boundary-aware character chunker with exact overlap.

Windows are at most ``chunk_size`` characters. Each window ends at the last
paragraph break it contains, else the last line break, sentence end, or space,
else at the hard ``chunk_size`` cut. The next window starts exactly
``overlap`` characters before the previous one ended, so dropping the first
``overlap`` characters of every chunk after the first and concatenating
reproduces the input text exactly.
"""

from __future__ import annotations

from collections.abc import Iterator

from quarry.db.models import Chunk

# Preferred break points, strongest first. A window ends *after* the separator.
_SEPARATORS: tuple[str, ...] = ("\n\n", "\n", ". ", "? ", "! ", " ")


class ChunkSequence:
    """Lazy, restartable view over the chunks of one text.

    Every ``iter()`` starts a fresh pass; nothing is computed until iterated.
    """

    def __init__(self, chunker: TextChunker, text: str) -> None:
        self._chunker = chunker
        self._text = text

    def __iter__(self) -> Iterator[str]:
        return self._chunker._windows(self._text)

    def __len__(self) -> int:
        return sum(1 for _ in self)


class TextChunker:
    """Split text into overlapping, size-bounded segments.

    Args:
        chunk_size: Maximum characters per chunk.
        overlap: Characters shared by adjacent chunks; must be < chunk_size.
    """

    def __init__(self, chunk_size: int = 1000, overlap: int = 100) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if not 0 <= overlap < chunk_size:
            raise ValueError("overlap must be in [0, chunk_size)")
        self.chunk_size = chunk_size
        self.overlap = overlap

    def chunk(self, text: str) -> ChunkSequence:
        """Return the chunks of *text*. Empty text yields no chunks."""
        return ChunkSequence(self, text)

    def chunk_source(self, source_index: int, text: str) -> list[Chunk]:
        """Chunk one resolved source into sequentially indexed Chunks.

        Whitespace-only segments carry nothing to embed and are skipped;
        sequence indexes stay contiguous.
        """
        texts = [t for t in self.chunk(text) if t.strip()]
        return [
            Chunk(source_index=source_index, sequence_index=i, text=t)
            for i, t in enumerate(texts)
        ]

    def _windows(self, text: str) -> Iterator[str]:
        length = len(text)
        start = 0
        while start < length:
            end = min(start + self.chunk_size, length)
            if end < length:
                end = self._break_point(text, start, end)
            yield text[start:end]
            if end >= length:
                return
            start = end - self.overlap

    def _break_point(self, text: str, start: int, end: int) -> int:
        """Return the best window end in (start, end].

        A break must leave the window longer than ``overlap`` (so the next
        window advances) and at least half of ``chunk_size`` long (so natural
        boundaries don't produce runt chunks).
        """
        floor = start + max(self.overlap + 1, self.chunk_size // 2)
        for sep in _SEPARATORS:
            pos = text.rfind(sep, start, end)
            if pos != -1 and pos + len(sep) >= floor:
                return pos + len(sep)
        return end


def chunk(text: str, chunk_size: int = 1000, overlap: int = 100) -> ChunkSequence:
    """Convenience wrapper: ``TextChunker(chunk_size, overlap).chunk(text)``."""
    return TextChunker(chunk_size=chunk_size, overlap=overlap).chunk(text)
