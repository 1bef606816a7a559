"""
Embedding service for the sync engine.
Generates vector embeddings for stored chunks in fixed-size batches.
"""

import asyncio
import logging
import struct
from typing import Awaitable, Callable, Optional

from syncengine.config import Config
from syncengine.db import Database
from syncengine.errors import EmbeddingError
from syncengine.llm import EmbeddingProvider

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], Awaitable[None]]


def embedding_to_bytes(embedding: list[float]) -> bytes:
    """Convert embedding list to bytes for storage."""
    return struct.pack(f'{len(embedding)}f', *embedding)


def bytes_to_embedding(data: bytes) -> list[float]:
    """Convert bytes back to embedding list."""
    num_floats = len(data) // 4  # 4 bytes per float
    return list(struct.unpack(f'{num_floats}f', data))


class EmbeddingBatcher:
    """
    Embeds chunks batch by batch.

    A failed batch is logged and left without embeddings, so the next run
    picks it up again; the remaining batches still go through.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        database: Database,
        batch_size: Optional[int] = None,
        batch_delay_ms: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.provider = provider
        self.database = database
        self.batch_size = Config.EMBED_BATCH_SIZE if batch_size is None else batch_size
        self.batch_delay_ms = Config.EMBED_BATCH_DELAY_MS if batch_delay_ms is None else batch_delay_ms
        self._sleep = sleep

        if self.batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")

    async def embed(self, chunks: list[dict], on_progress: Optional[ProgressCallback] = None) -> int:
        """
        Generate and store embeddings for chunks that have none.

        Args:
            chunks: Chunk dicts with at least 'id' and 'content'.
            on_progress: Awaited with the running total after each stored batch.

        Returns:
            Number of embeddings generated.
        """
        pending = [c for c in chunks if c.get("embedded_at") is None]
        if not pending:
            logger.debug("No pending chunks to embed")
            return 0

        total_batches = (len(pending) + self.batch_size - 1) // self.batch_size
        logger.info(f"Embedding {len(pending)} chunks in {total_batches} batches")

        generated = 0
        for batch_number, start in enumerate(range(0, len(pending), self.batch_size), start=1):
            batch = pending[start:start + self.batch_size]

            try:
                vectors = await self.provider.embed_batch([c["content"] for c in batch])
                if len(vectors) != len(batch):
                    raise EmbeddingError(
                        f"Provider returned {len(vectors)} embeddings for {len(batch)} chunks"
                    )

                self.database.set_chunk_embeddings(
                    [(c["id"], embedding_to_bytes(v)) for c, v in zip(batch, vectors)],
                    model=self.provider.model_name,
                )
            except Exception as e:
                logger.error(f"Failed to generate embeddings batch {batch_number}/{total_batches}: {e}")
            else:
                generated += len(batch)
                logger.debug(f"Embedding batch {batch_number}/{total_batches} complete ({generated} total)")
                if on_progress is not None:
                    await on_progress(generated)

            if batch_number < total_batches and self.batch_delay_ms > 0:
                await self._sleep(self.batch_delay_ms / 1000)

        logger.info(f"Embedded {generated} of {len(pending)} chunks")
        return generated
