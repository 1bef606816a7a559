"""
Tests for per-credential rate limit tracking.
"""

from datetime import datetime, timedelta, timezone

import pytest

from syncengine.db import Database
from syncengine.rate_limiter import RateLimiter


NOW = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class SleepRecorder:
    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def limiter(temp_db: Database, sleeper: SleepRecorder) -> RateLimiter:
    return RateLimiter(temp_db, buffer=100, clock=lambda: NOW, sleep=sleeper)


def epoch(dt: datetime) -> int:
    return int(dt.timestamp())


class TestCanProceed:
    def test_unknown_credential(self, limiter):
        assert limiter.can_proceed("new") is True
        assert limiter.get_wait_time_ms("new") == 0

    def test_above_buffer(self, limiter):
        limiter.record("cred", 101, 5000, epoch(NOW + timedelta(minutes=10)))
        assert limiter.can_proceed("cred") is True

    def test_at_buffer_blocks(self, limiter):
        limiter.record("cred", 100, 5000, epoch(NOW + timedelta(minutes=10)))
        assert limiter.can_proceed("cred") is False

    def test_reset_passed(self, limiter):
        limiter.record("cred", 0, 5000, epoch(NOW - timedelta(seconds=1)))
        assert limiter.can_proceed("cred") is True
        assert limiter.get_wait_time_ms("cred") == 0


class TestAcquire:
    @pytest.mark.asyncio
    async def test_no_wait_when_budget_left(self, limiter, sleeper):
        limiter.record("cred", 4000, 5000, epoch(NOW + timedelta(minutes=10)))
        await limiter.acquire("cred")
        assert sleeper.calls == []

    @pytest.mark.asyncio
    async def test_waits_until_reset_plus_buffer(self, limiter, sleeper):
        """A blocked caller sleeps no longer than the reset time plus one second."""
        limiter.record("cred", 5, 5000, epoch(NOW + timedelta(seconds=30)))

        await limiter.acquire("cred")

        assert sleeper.calls == [pytest.approx(31.0)]

    @pytest.mark.asyncio
    async def test_wait_is_per_credential(self, limiter, sleeper):
        limiter.record("exhausted", 0, 5000, epoch(NOW + timedelta(seconds=30)))
        await limiter.acquire("other")
        assert sleeper.calls == []


class TestPersistence:
    def test_record_is_shared_through_database(self, temp_db, limiter):
        limiter.record("cred", 42, 5000, epoch(NOW + timedelta(minutes=5)))

        other = RateLimiter(temp_db, buffer=100, clock=lambda: NOW)
        assert other.can_proceed("cred") is False
        assert other.get_wait_time_ms("cred") == 5 * 60 * 1000

    def test_database_error_treated_as_unknown(self, temp_db):
        limiter = RateLimiter(temp_db, buffer=100, clock=lambda: NOW)
        temp_db.close()
        temp_db.db_path = "/nonexistent-dir/never.db"
        assert limiter.can_proceed("cred") is True


class TestHeaders:
    def test_extract(self):
        parsed = RateLimiter.extract_from_headers({
            "X-RateLimit-Remaining": "4999",
            "X-RateLimit-Limit": "5000",
            "X-RateLimit-Reset": "1735732800",
        })
        assert parsed.remaining == 4999
        assert parsed.limit == 5000
        assert parsed.reset == 1735732800

    @pytest.mark.parametrize("headers", [
        {},
        {"x-ratelimit-remaining": "1", "x-ratelimit-limit": "5000"},
        {"x-ratelimit-remaining": "abc", "x-ratelimit-limit": "5000", "x-ratelimit-reset": "1"},
    ])
    def test_extract_missing_or_malformed(self, headers):
        assert RateLimiter.extract_from_headers(headers) is None

    def test_record_from_headers(self, limiter, temp_db):
        reset = epoch(NOW + timedelta(minutes=1))
        recorded = limiter.record_from_headers("cred", {
            "x-ratelimit-remaining": "10",
            "x-ratelimit-limit": "60",
            "x-ratelimit-reset": str(reset),
        })

        assert recorded is True
        stored = temp_db.get_rate_limit("cred")
        assert stored["remaining"] == 10
        assert stored["limit"] == 60
        assert stored["reset_at"] == datetime.fromtimestamp(reset, tz=timezone.utc)

    def test_record_from_headers_absent(self, limiter):
        assert limiter.record_from_headers("cred", {"content-type": "application/json"}) is False
