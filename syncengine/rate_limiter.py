"""
Per-credential GitHub rate limit tracking.

Quota snapshots come from response headers, live in an in-memory cache
and are persisted so other worker processes see the same budget.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Mapping, Optional

from syncengine.config import Config
from syncengine.db import Database, utcnow

logger = logging.getLogger(__name__)


@dataclass
class RateLimitInfo:
    """Last known quota for one credential."""
    remaining: int
    limit: int
    reset_at: datetime


@dataclass
class RateLimitHeaders:
    """Raw quota values parsed from x-ratelimit-* headers."""
    remaining: int
    limit: int
    reset: int  # epoch seconds


class RateLimiter:
    """
    Gates remote calls on the remaining request budget of a credential.

    Callers stop once ``remaining`` drops to ``buffer`` and wait for the
    reset time plus ``reset_buffer_ms``.
    """

    def __init__(
        self,
        database: Database,
        buffer: Optional[int] = None,
        reset_buffer_ms: int = 1000,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.database = database
        self.buffer = Config.RATE_LIMIT_BUFFER if buffer is None else buffer
        self.reset_buffer_ms = reset_buffer_ms
        self._clock = clock
        self._sleep = sleep
        self._cache: dict[str, RateLimitInfo] = {}

    def _get_info(self, credential_id: str) -> Optional[RateLimitInfo]:
        key = str(credential_id)
        cached = self._cache.get(key)
        if cached:
            return cached

        try:
            record = self.database.get_rate_limit(key)
        except Exception as e:
            logger.error(f"Failed to fetch rate limit info for credential {key}: {e}")
            return None

        if record is None:
            return None

        info = RateLimitInfo(
            remaining=record["remaining"],
            limit=record["limit"],
            reset_at=record["reset_at"],
        )
        self._cache[key] = info
        return info

    def can_proceed(self, credential_id: str) -> bool:
        info = self._get_info(credential_id)
        if info is None:
            # Nothing observed yet
            return True
        if self._clock() > info.reset_at:
            return True
        return info.remaining > self.buffer

    def get_wait_time_ms(self, credential_id: str) -> int:
        """Milliseconds until the credential's quota resets (0 if unknown or past)."""
        info = self._get_info(credential_id)
        if info is None:
            return 0
        now = self._clock()
        if now > info.reset_at:
            return 0
        return int((info.reset_at - now).total_seconds() * 1000)

    async def wait_for_reset(self, credential_id: str) -> None:
        wait_ms = self.get_wait_time_ms(credential_id)
        if wait_ms > 0:
            logger.info(
                f"Rate limit reached for credential {credential_id}, "
                f"waiting {wait_ms + self.reset_buffer_ms}ms for reset"
            )
            await self._sleep((wait_ms + self.reset_buffer_ms) / 1000)

    async def acquire(self, credential_id: str) -> None:
        """Block until a request for this credential may be sent."""
        if not self.can_proceed(credential_id):
            await self.wait_for_reset(credential_id)

    def record(self, credential_id: str, remaining: int, limit: int, reset_epoch_seconds: int) -> None:
        """Store a quota snapshot in the cache and the database."""
        key = str(credential_id)
        reset_at = datetime.fromtimestamp(reset_epoch_seconds, tz=timezone.utc)
        self._cache[key] = RateLimitInfo(remaining=remaining, limit=limit, reset_at=reset_at)

        try:
            self.database.upsert_rate_limit(key, remaining, limit, reset_at)
        except Exception as e:
            logger.error(f"Failed to persist rate limit info for credential {key}: {e}")

    @staticmethod
    def extract_from_headers(headers: Mapping[str, str]) -> Optional[RateLimitHeaders]:
        """Parse x-ratelimit-remaining/limit/reset; None if any is missing or malformed."""
        lowered = {str(k).lower(): v for k, v in headers.items()}
        raw = (
            lowered.get("x-ratelimit-remaining"),
            lowered.get("x-ratelimit-limit"),
            lowered.get("x-ratelimit-reset"),
        )
        if not all(raw):
            return None
        try:
            remaining, limit, reset = (int(value) for value in raw)
        except (TypeError, ValueError):
            return None
        return RateLimitHeaders(remaining=remaining, limit=limit, reset=reset)

    def record_from_headers(self, credential_id: str, headers: Mapping[str, str]) -> bool:
        """Record quota from response headers. Returns False if they were absent."""
        parsed = self.extract_from_headers(headers)
        if parsed is None:
            return False
        self.record(credential_id, parsed.remaining, parsed.limit, parsed.reset)
        return True
