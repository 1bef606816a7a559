"""
Tests for the chunking module.
"""

import pytest

from syncengine.chunker import TextChunker, Chunk


class TestTextChunker:
    """Tests for TextChunker class."""

    def test_estimate_tokens(self):
        """Token estimate is ceil(len / 4)."""
        assert TextChunker.estimate_tokens("") == 0
        assert TextChunker.estimate_tokens("hello") == 2
        assert TextChunker.estimate_tokens("abcd") == 1
        assert TextChunker.estimate_tokens("a" * 100) == 25

    def test_chunk_empty_text(self):
        """Empty text yields no chunks."""
        assert TextChunker(chunk_size=10, overlap=2).chunk_text("") == []

    def test_chunk_small_text(self):
        """Text that fits in one window is a single chunk."""
        c = TextChunker(chunk_size=100, overlap=20)
        text = "short file contents"

        chunks = c.chunk_text(text)

        assert len(chunks) == 1
        assert chunks[0] == Chunk(
            content=text,
            start_char=0,
            end_char=len(text),
            chunk_index=0,
            token_count=TextChunker.estimate_tokens(text),
        )

    def test_text_exactly_chunk_size(self):
        c = TextChunker(chunk_size=10, overlap=3)
        chunks = c.chunk_text("0123456789")
        assert len(chunks) == 1

    def test_windows_overlap(self):
        """Consecutive chunks share ``overlap`` characters."""
        c = TextChunker(chunk_size=10, overlap=3)
        text = "abcdefghijklmnopqrstuvwxyz"

        chunks = c.chunk_text(text)

        assert [(ch.start_char, ch.end_char) for ch in chunks] == [(0, 10), (7, 17), (14, 24), (21, 26)]
        for prev, nxt in zip(chunks, chunks[1:]):
            assert prev.content[-3:] == nxt.content[:3]

    def test_chunks_cover_text(self):
        """Every character appears in some chunk and the last chunk ends the text."""
        c = TextChunker(chunk_size=50, overlap=10)
        text = "def handler(event):\n    return event\n" * 40

        chunks = c.chunk_text(text)

        assert chunks[0].start_char == 0
        assert chunks[-1].end_char == len(text)
        for prev, nxt in zip(chunks, chunks[1:]):
            assert nxt.start_char <= prev.end_char
            assert nxt.start_char > prev.start_char
        for i, chunk in enumerate(chunks):
            assert chunk.chunk_index == i
            assert chunk.content == text[chunk.start_char:chunk.end_char]
            assert len(chunk.content) <= 50

    def test_no_overlap(self):
        c = TextChunker(chunk_size=5, overlap=0)
        chunks = c.chunk_text("a" * 23)
        assert len(chunks) == 5
        assert sum(len(ch.content) for ch in chunks) == 23

    def test_overlap_not_smaller_than_size_terminates(self):
        """A window that cannot advance stops instead of looping."""
        c = TextChunker(chunk_size=5, overlap=5)
        chunks = c.chunk_text("a" * 50)
        assert len(chunks) == 1
        assert chunks[0].end_char == 5

    def test_defaults_from_config(self):
        from syncengine.config import Config

        c = TextChunker()
        assert c.chunk_size == Config.CHUNK_SIZE
        assert c.overlap == Config.CHUNK_OVERLAP

    @pytest.mark.parametrize("size,overlap", [(0, 0), (-5, 0), (10, -1)])
    def test_invalid_parameters(self, size, overlap):
        with pytest.raises(ValueError):
            TextChunker(chunk_size=size, overlap=overlap)
