"""
Tests for the queue processor, startup recovery and the periodic sweep.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from syncengine.errors import GitHubError, RepoNotFoundError
from syncengine.models import EmbedJobStatus, SyncJobStatus
from syncengine.queue.processor import QueueProcessor
from syncengine.queue.recovery import RECOVERY_ERROR, recover_stuck_jobs
from syncengine.queue.sweeper import SyncSweeper

from conftest import no_sleep


class TestProcessNextJob:
    @pytest.mark.asyncio
    async def test_empty_queue(self, engine):
        assert await engine.processor.process_next_job() is None

    @pytest.mark.asyncio
    async def test_runs_sync_then_embed(self, temp_db, repo, engine, fake_github):
        fake_github.files["src/app.py"] = "print('hi')\n"
        sync_id = engine.processor.create_sync_job(repo.id)

        ran = await engine.processor.process_next_job()

        assert ran == ("sync", sync_id)
        assert temp_db.get_sync_job(sync_id).status == SyncJobStatus.COMPLETED
        # The completed sync queued an embed job
        kind, embed_id = await engine.processor.process_next_job()
        assert kind == "embed"
        assert temp_db.get_embed_job(embed_id).status == EmbedJobStatus.COMPLETED
        assert temp_db.count_chunks_without_embeddings(repo.id) == 0

    @pytest.mark.asyncio
    async def test_file_turning_metadata_only_drops_old_chunks(self, temp_db, repo, engine, fake_github):
        """A file re-synced without content keeps no chunks of its previous version."""
        fake_github.files["a.py"] = "print('v1')\n"
        engine.processor.create_sync_job(repo.id)
        await engine.processor.process_next_job()
        await engine.processor.process_next_job()
        file_id = temp_db.get_file(repo.id, "a.py").id
        assert [c["content"] for c in temp_db.get_chunks_by_file(file_id)] == ["print('v1')\n"]

        fake_github.files["a.py"] = "print('v2')\n"
        fake_github.sizes["a.py"] = 50 * 1024 * 1024
        # Base commit no longer resolvable, so the second run lists the full tree
        fake_github.commit_sha = "commit-2"
        fake_github.compare_error = GitHubError(422, "No common ancestor")
        engine.processor.create_sync_job(repo.id)
        while await engine.processor.process_next_job() is not None:
            pass

        record = temp_db.get_file(repo.id, "a.py")
        assert record.skipped_reason == "too_large"
        assert record.content is None
        assert temp_db.get_chunks_by_file(file_id) == []

    @pytest.mark.asyncio
    async def test_sync_before_embed(self, temp_db, repo, engine):
        embed_id = engine.processor.create_embed_job(repo.id)
        sync_id = engine.processor.create_sync_job(repo.id)

        assert await engine.processor.process_next_job() == ("sync", sync_id)
        assert temp_db.get_embed_job(embed_id).status == EmbedJobStatus.PENDING

    @pytest.mark.asyncio
    async def test_failure_marks_job_failed(self, temp_db, repo, engine, fake_github, observer):
        fake_github.tree_error = GitHubError(500, "Server Error")
        sync_id = engine.processor.create_sync_job(repo.id)

        await engine.processor.process_next_job()

        job = temp_db.get_sync_job(sync_id)
        assert job.status == SyncJobStatus.FAILED
        assert "Server Error" in job.error
        assert job.completed_at is not None
        assert [e.job_id for e in observer.failed] == [sync_id]
        assert engine.processor.current_job is None

    @pytest.mark.asyncio
    async def test_lost_claim_is_skipped(self, temp_db, repo):
        repo_syncer = MagicMock()
        repo_syncer.sync = AsyncMock()
        processor = QueueProcessor(temp_db, repo_syncer, MagicMock(), sleep=no_sleep)
        job_id, _ = temp_db.create_sync_job(repo.id)
        pending = temp_db.get_next_pending_sync_job()
        # Another worker claims it between our read and our claim
        temp_db.claim_sync_job(job_id)
        temp_db.get_next_pending_sync_job = lambda: pending

        assert await processor.process_next_job() is None
        repo_syncer.sync.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_state_write_is_logged(self, temp_db, repo, caplog):
        repo_syncer = MagicMock()

        async def sync(job):
            # Job already finished elsewhere; FAILED cannot be written
            temp_db.transition_sync_job(job.id, SyncJobStatus.FAILED, error="first")
            raise RuntimeError("second")

        repo_syncer.sync = sync
        processor = QueueProcessor(temp_db, repo_syncer, MagicMock(), sleep=no_sleep)
        job_id, _ = temp_db.create_sync_job(repo.id)

        assert await processor.process_next_job() == ("sync", job_id)
        assert temp_db.get_sync_job(job_id).error == "first"
        assert "Could not mark sync job" in caplog.text


class TestCreateJobs:
    def test_unknown_repo(self, engine):
        with pytest.raises(RepoNotFoundError):
            engine.processor.create_sync_job(42)
        with pytest.raises(RepoNotFoundError):
            engine.processor.create_embed_job(42)

    def test_idempotent(self, engine, repo):
        assert engine.processor.create_sync_job(repo.id) == engine.processor.create_sync_job(repo.id)
        assert engine.processor.create_embed_job(repo.id) == engine.processor.create_embed_job(repo.id)


class TestRunLoop:
    @pytest.mark.asyncio
    async def test_stop_ends_loop(self, temp_db):
        sleeps = []

        async def sleep(seconds):
            sleeps.append(seconds)
            processor.stop()

        processor = QueueProcessor(temp_db, MagicMock(), MagicMock(), poll_interval_ms=250, sleep=sleep)

        await processor.run()

        assert sleeps == [0.25]
        assert processor.running is False
        assert processor.get_status() == {"running": False, "current_job_kind": None, "current_job_id": None}

    @pytest.mark.asyncio
    async def test_loop_survives_errors(self, temp_db):
        ticks = []

        async def sleep(seconds):
            if len(ticks) >= 2:
                processor.stop()

        processor = QueueProcessor(temp_db, MagicMock(), MagicMock(), sleep=sleep)

        async def failing_tick():
            ticks.append(1)
            raise RuntimeError("database is locked")

        processor.process_next_job = failing_tick
        await processor.run()

        assert len(ticks) == 2

    @pytest.mark.asyncio
    async def test_wait_for_current_job(self, temp_db):
        processor = QueueProcessor(temp_db, MagicMock(), MagicMock())
        assert await processor.wait_for_current_job(timeout=1) is True

        processor.current_job = ("sync", 1)
        assert await processor.wait_for_current_job(timeout=0.1) is False


class TestRecovery:
    @pytest.mark.asyncio
    async def test_recovers_interrupted_jobs(self, temp_db, repo, notifier, observer):
        sync_id, _ = temp_db.create_sync_job(repo.id)
        temp_db.claim_sync_job(sync_id)
        temp_db.transition_sync_job(sync_id, SyncJobStatus.PROCESSING_FILES, total_files=10)
        embed_id, _ = temp_db.create_embed_job(repo.id)
        temp_db.claim_embed_job(embed_id)
        other_repo = temp_db.add_repo("o/pending", "c")
        pending_id, _ = temp_db.create_sync_job(other_repo)

        recovered = await recover_stuck_jobs(temp_db, notifier)

        assert recovered == 2
        sync_job = temp_db.get_sync_job(sync_id)
        assert sync_job.status == SyncJobStatus.FAILED
        assert sync_job.error == RECOVERY_ERROR
        assert sync_job.completed_at is not None
        assert temp_db.get_embed_job(embed_id).status == EmbedJobStatus.FAILED
        assert temp_db.get_sync_job(pending_id).status == SyncJobStatus.PENDING
        assert {(e.kind.value, e.job_id) for e in observer.failed} == {("sync", sync_id), ("embed", embed_id)}

    @pytest.mark.asyncio
    async def test_nothing_to_recover(self, temp_db, engine):
        assert await engine.processor.recover_stuck_jobs() == 0


class TestSweeper:
    def test_sweep_queues_each_repo_once(self, temp_db):
        first = temp_db.add_repo("o/one", "c")
        second = temp_db.add_repo("o/two", "c")
        existing, _ = temp_db.create_sync_job(first)
        sweeper = SyncSweeper(temp_db, interval_seconds=60, sleep=no_sleep)

        created = sweeper.sweep()

        assert len(created) == 1
        assert temp_db.get_sync_job(created[0]).repo_id == second
        assert existing not in created
        assert temp_db.get_metadata("last_sweep_at") is not None
        assert sweeper.sweep() == []

    @pytest.mark.asyncio
    async def test_disabled_interval_returns(self, temp_db):
        sweeper = SyncSweeper(temp_db, interval_seconds=0)
        await sweeper.run()
        assert temp_db.get_metadata("last_sweep_at") is None

    @pytest.mark.asyncio
    async def test_run_sweeps_until_stopped(self, temp_db, repo):
        async def sleep(seconds):
            if temp_db.get_metadata("last_sweep_at"):
                sweeper.stop()

        sweeper = SyncSweeper(temp_db, interval_seconds=60, sleep=sleep)
        await sweeper.run()

        assert len(temp_db.list_sync_jobs(repo_id=repo.id)) == 1
