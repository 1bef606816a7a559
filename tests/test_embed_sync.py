"""
Tests for chunking/embedding jobs and the embedding batcher.
"""

from unittest.mock import patch

import pytest

from syncengine.chunker import TextChunker
from syncengine.embed_sync import EmbedSyncer
from syncengine.embeddings import EmbeddingBatcher, bytes_to_embedding, embedding_to_bytes
from syncengine.models import EmbedConfig, EmbedJobStatus

from conftest import FakeEmbeddingProvider, no_sleep


def claim_embed(database, repo_id, config=None):
    job_id, _ = database.create_embed_job(repo_id, config)
    assert database.claim_embed_job(job_id)
    return database.get_embed_job(job_id)


def add_file(database, repo_id, path, content, sha):
    return database.upsert_file(repo_id, path, sha, len(content), content, "utf-8", None, "python", 1)


def make_syncer(database, provider, notifier=None, batch_size=50):
    return EmbedSyncer(
        database,
        provider=provider,
        notifier=notifier,
        batch_size=batch_size,
        batch_delay_ms=0,
        sleep=no_sleep,
    )


class TestEmbeddingBytes:
    def test_round_trip(self):
        vector = [0.5, -1.25, 3.0]
        blob = embedding_to_bytes(vector)
        assert len(blob) == 12
        assert bytes_to_embedding(blob) == vector


class TestEmbeddingBatcher:
    @pytest.mark.asyncio
    async def test_batches_and_delay(self, temp_db, repo):
        file_id = add_file(temp_db, repo.id, "a.py", "x" * 30, "s1")
        temp_db.replace_file_chunks(file_id, TextChunker(chunk_size=10, overlap=0).chunk_text("x" * 30), "s1")

        sleeps = []

        async def record_sleep(seconds):
            sleeps.append(seconds)

        provider = FakeEmbeddingProvider()
        batcher = EmbeddingBatcher(provider, temp_db, batch_size=2, batch_delay_ms=100, sleep=record_sleep)
        progress = []

        async def on_progress(generated):
            progress.append(generated)

        generated = await batcher.embed(temp_db.get_chunks_without_embeddings(repo.id), on_progress)

        assert generated == 3
        assert [len(call) for call in provider.calls] == [2, 1]
        assert sleeps == [0.1]
        assert progress == [2, 3]
        chunk = temp_db.get_chunks_by_file(file_id)[0]
        assert chunk["embedded_at"] is not None
        assert bytes_to_embedding(temp_db.get_chunk_embedding(chunk["id"])) == [10.0, 1.0, 0.5]

    @pytest.mark.asyncio
    async def test_skips_already_embedded(self, temp_db):
        provider = FakeEmbeddingProvider()
        batcher = EmbeddingBatcher(provider, temp_db, batch_size=10, batch_delay_ms=0, sleep=no_sleep)

        generated = await batcher.embed([{"id": 1, "content": "x", "embedded_at": "2025-01-01T00:00:00"}])

        assert generated == 0
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_count_mismatch_is_a_failed_batch(self, temp_db, repo):
        file_id = add_file(temp_db, repo.id, "a.py", "abc", "s1")
        temp_db.replace_file_chunks(file_id, TextChunker(chunk_size=10, overlap=0).chunk_text("abc"), "s1")

        class ShortProvider(FakeEmbeddingProvider):
            async def embed_batch(self, texts):
                return []

        batcher = EmbeddingBatcher(ShortProvider(), temp_db, batch_size=10, batch_delay_ms=0, sleep=no_sleep)
        generated = await batcher.embed(temp_db.get_chunks_without_embeddings(repo.id))

        assert generated == 0
        assert temp_db.count_chunks_without_embeddings(repo.id) == 1

    def test_invalid_batch_size(self, temp_db):
        with pytest.raises(ValueError):
            EmbeddingBatcher(FakeEmbeddingProvider(), temp_db, batch_size=0)


class TestEmbedSyncer:
    """Tests for the chunk/embed job workflow."""

    @pytest.mark.asyncio
    async def test_chunks_and_embeds(self, temp_db, repo, fake_provider, notifier, observer):
        add_file(temp_db, repo.id, "a.py", "a" * 25, "sha-a")
        add_file(temp_db, repo.id, "b.py", "b" * 5, "sha-b")
        temp_db.upsert_file(repo.id, "yarn.lock", "sha-l", 9, None, None, "lock_file", None, None)
        job = claim_embed(temp_db, repo.id, EmbedConfig(chunk_size=10, overlap=0))

        result = await make_syncer(temp_db, fake_provider, notifier).embed(job)

        stored = temp_db.get_embed_job(job.id)
        assert stored.status == EmbedJobStatus.COMPLETED
        assert stored.total_files == 2
        assert stored.processed_files == 2
        assert stored.chunks_created == 4
        assert stored.embeddings_generated == 4
        assert result["pending_chunks"] == 0
        assert temp_db.get_file(repo.id, "a.py").last_chunked_sha == "sha-a"
        assert len(observer.completed) == 1
        assert observer.completed[0].embeddings_generated == 4

    @pytest.mark.asyncio
    async def test_failed_batch_then_retry(self, temp_db, repo, notifier):
        """Batch 2 of 3 fails: the job completes and the next run embeds the leftovers."""
        add_file(temp_db, repo.id, "big.py", "x" * 1500, "sha-big")
        provider = FakeEmbeddingProvider(fail_on_calls={2})
        syncer = make_syncer(temp_db, provider, notifier, batch_size=50)

        job = claim_embed(temp_db, repo.id, EmbedConfig(chunk_size=10, overlap=0))
        result = await syncer.embed(job)

        stored = temp_db.get_embed_job(job.id)
        assert stored.status == EmbedJobStatus.COMPLETED
        assert stored.chunks_created == 150
        assert stored.embeddings_generated == 100
        assert result["pending_chunks"] == 50
        assert len(provider.calls) == 3
        assert temp_db.count_chunks_without_embeddings(repo.id) == 50

        file_id = temp_db.get_file(repo.id, "big.py").id
        chunk_ids = [c["id"] for c in temp_db.get_chunks_by_file(file_id)]

        retry = claim_embed(temp_db, repo.id)
        retry_result = await syncer.embed(retry)

        assert retry_result["chunks_created"] == 0
        assert retry_result["embeddings_generated"] == 50
        assert temp_db.count_chunks_without_embeddings(repo.id) == 0
        # Unchanged file: its chunks survive untouched
        assert [c["id"] for c in temp_db.get_chunks_by_file(file_id)] == chunk_ids

    @pytest.mark.asyncio
    async def test_changed_file_is_rechunked(self, temp_db, repo, fake_provider):
        file_id = add_file(temp_db, repo.id, "a.py", "a" * 20, "v1")
        syncer = make_syncer(temp_db, fake_provider)
        await syncer.embed(claim_embed(temp_db, repo.id, EmbedConfig(chunk_size=10, overlap=0)))
        old_ids = {c["id"] for c in temp_db.get_chunks_by_file(file_id)}

        add_file(temp_db, repo.id, "a.py", "b" * 30, "v2")
        result = await syncer.embed(claim_embed(temp_db, repo.id, EmbedConfig(chunk_size=10, overlap=0)))

        chunks = temp_db.get_chunks_by_file(file_id)
        assert result["chunks_created"] == 3
        assert len(chunks) == 3
        assert not old_ids & {c["id"] for c in chunks}
        assert all(c["content"] == "b" * 10 for c in chunks)
        assert temp_db.get_file(repo.id, "a.py").last_chunked_sha == "v2"

    @pytest.mark.asyncio
    async def test_provider_not_built_without_work(self, temp_db, repo):
        syncer = EmbedSyncer(temp_db, batch_delay_ms=0, sleep=no_sleep)

        with patch("syncengine.embed_sync.get_embedding_provider", side_effect=ValueError("no key")) as factory:
            result = await syncer.embed(claim_embed(temp_db, repo.id))

        factory.assert_not_called()
        assert result["embeddings_generated"] == 0
        assert temp_db.get_embed_job(result["job_id"]).status == EmbedJobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_progress_events(self, temp_db, repo, fake_provider, notifier, observer):
        for i in range(12):
            add_file(temp_db, repo.id, f"f{i:02d}.py", f"value_{i}", f"s{i}")

        await make_syncer(temp_db, fake_provider, notifier, batch_size=5).embed(claim_embed(temp_db, repo.id))

        chunking = [e.processed for e in observer.progress if e.status == "CHUNKING" and e.current_file]
        embedding = [e.embeddings_generated for e in observer.progress if e.status == "EMBEDDING"]
        assert chunking == [10, 12]
        assert embedding == [0, 5, 10, 12]
