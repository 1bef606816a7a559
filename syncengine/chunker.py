"""
Text chunking module for the sync engine.
Splits file contents into overlapping character windows for embedding.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

from syncengine.config import Config

logger = logging.getLogger(__name__)


@dataclass
class Chunk:
    """Represents a text chunk for embedding."""
    content: str
    start_char: int
    end_char: int
    chunk_index: int
    token_count: int


class TextChunker:
    """
    Splits text into fixed-size character windows.

    Consecutive windows share ``overlap`` characters so text cut at a
    boundary still appears whole in one of the two chunks.
    """

    # Approximate tokens per character ratio
    CHARS_PER_TOKEN = 4

    def __init__(self, chunk_size: Optional[int] = None, overlap: Optional[int] = None):
        """
        Initialize the chunker.

        Args:
            chunk_size: Maximum characters per chunk.
            overlap: Characters shared by consecutive chunks.
        """
        self.chunk_size = Config.CHUNK_SIZE if chunk_size is None else chunk_size
        self.overlap = Config.CHUNK_OVERLAP if overlap is None else overlap

        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.overlap < 0:
            raise ValueError(f"overlap must not be negative, got {self.overlap}")

    @classmethod
    def estimate_tokens(cls, text: str) -> int:
        """Estimate token count for text."""
        return math.ceil(len(text) / cls.CHARS_PER_TOKEN)

    def _make_chunk(self, text: str, start: int, end: int, index: int) -> Chunk:
        content = text[start:end]
        return Chunk(
            content=content,
            start_char=start,
            end_char=end,
            chunk_index=index,
            token_count=self.estimate_tokens(content),
        )

    def chunk_text(self, text: str) -> list[Chunk]:
        """
        Split text into chunks.

        Args:
            text: The text to chunk.

        Returns:
            List of Chunk objects in order; empty for empty text.
        """
        if not text:
            return []

        if len(text) <= self.chunk_size:
            return [self._make_chunk(text, 0, len(text), 0)]

        chunks = []
        start = 0
        while start < len(text):
            end = min(start + self.chunk_size, len(text))
            chunks.append(self._make_chunk(text, start, end, len(chunks)))

            if end >= len(text):
                break

            next_start = end - self.overlap
            # Overlap >= chunk size would never advance
            if next_start <= start:
                logger.warning(
                    f"Chunk window stopped advancing at {start} "
                    f"(size={self.chunk_size}, overlap={self.overlap})"
                )
                break
            start = next_start

        return chunks
