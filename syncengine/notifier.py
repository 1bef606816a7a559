"""
Job event fan-out.

Observers receive progress, completion and failure events. Delivery is
best effort: an observer that raises is logged and skipped.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

import httpx

from syncengine.config import Config

logger = logging.getLogger(__name__)


class JobKind(str, Enum):
    SYNC = "sync"
    EMBED = "embed"


@dataclass
class JobProgressEvent:
    """Snapshot of a job at the moment an event is emitted."""
    kind: JobKind
    job_id: int
    repo_id: int
    status: str
    processed: int = 0
    total: int = 0
    skipped: int = 0
    failed: int = 0
    chunks_created: int = 0
    embeddings_generated: int = 0
    current_file: Optional[str] = None
    error: Optional[str] = None
    repo_name: Optional[str] = None
    duration_ms: Optional[int] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class JobObserver:
    """Base observer; override the hooks you care about."""

    async def on_progress(self, event: JobProgressEvent) -> None:
        pass

    async def on_completed(self, event: JobProgressEvent) -> None:
        pass

    async def on_failed(self, event: JobProgressEvent) -> None:
        pass

    async def close(self) -> None:
        pass


class LoggingObserver(JobObserver):
    """Writes job events to the application log."""

    async def on_progress(self, event: JobProgressEvent) -> None:
        where = f" ({event.current_file})" if event.current_file else ""
        logger.info(
            f"{event.kind.value} job {event.job_id} {event.status}: "
            f"{event.processed}/{event.total}{where}"
        )

    async def on_completed(self, event: JobProgressEvent) -> None:
        if event.kind == JobKind.SYNC:
            logger.info(
                f"Sync job {event.job_id} completed: {event.processed} processed, "
                f"{event.skipped} skipped, {event.failed} failed"
            )
        else:
            logger.info(
                f"Embed job {event.job_id} completed: {event.chunks_created} chunks, "
                f"{event.embeddings_generated} embeddings"
            )

    async def on_failed(self, event: JobProgressEvent) -> None:
        logger.error(f"{event.kind.value} job {event.job_id} failed: {event.error}")


# Discord embed colors
COLORS = {
    "success": 0x22C55E,
    "info": 0x3B82F6,
    "warning": 0xF59E0B,
    "error": 0xEF4444,
}


def format_duration(ms: Optional[int]) -> str:
    if ms is None:
        return "n/a"
    if ms < 1000:
        return f"{ms}ms"
    seconds = ms / 1000
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}m {secs}s"


class WebhookObserver(JobObserver):
    """Posts Discord-compatible embeds for finished jobs."""

    def __init__(self, url: str, http_client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self._owns_client = http_client is None
        self.client = http_client or httpx.AsyncClient(timeout=10.0)

    async def _send(self, payload: dict) -> None:
        response = await self.client.post(self.url, json=payload)
        response.raise_for_status()

    @staticmethod
    def build_payload(event: JobProgressEvent, failed: bool = False) -> dict:
        name = event.repo_name or f"repo {event.repo_id}"

        if failed:
            title = f"{event.kind.value.capitalize()} Failed: {name}"
            color = COLORS["error"]
            fields = [
                {"name": "Processed", "value": f"{event.processed}/{event.total}", "inline": True},
                {"name": "Error", "value": (event.error or "unknown")[:1000], "inline": False},
            ]
        elif event.kind == JobKind.SYNC:
            title = f"Sync Completed: {name}"
            color = COLORS["warning"] if event.failed else COLORS["success"]
            fields = [
                {"name": "Total Files", "value": str(event.total), "inline": True},
                {"name": "Processed", "value": str(event.processed), "inline": True},
                {"name": "Skipped", "value": str(event.skipped), "inline": True},
                {"name": "Failed", "value": str(event.failed), "inline": True},
                {"name": "Duration", "value": format_duration(event.duration_ms), "inline": True},
            ]
        else:
            title = f"Embeddings Generated: {name}"
            color = COLORS["info"]
            fields = [
                {"name": "Files Processed", "value": str(event.processed), "inline": True},
                {"name": "Chunks Created", "value": str(event.chunks_created), "inline": True},
                {"name": "Embeddings", "value": str(event.embeddings_generated), "inline": True},
                {"name": "Duration", "value": format_duration(event.duration_ms), "inline": True},
            ]

        return {
            "embeds": [{
                "title": title,
                "color": color,
                "fields": fields,
                "footer": {"text": f"Job ID: {event.job_id}"},
                "timestamp": event.timestamp.isoformat(),
            }]
        }

    async def on_completed(self, event: JobProgressEvent) -> None:
        await self._send(self.build_payload(event))

    async def on_failed(self, event: JobProgressEvent) -> None:
        await self._send(self.build_payload(event, failed=True))

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()


class Notifier:
    """Delivers job events to every registered observer."""

    def __init__(self, observers: Optional[list[JobObserver]] = None):
        self.observers: list[JobObserver] = list(observers or [])

    def add_observer(self, observer: JobObserver) -> None:
        self.observers.append(observer)

    async def _dispatch(self, hook: str, event: JobProgressEvent) -> None:
        for observer in self.observers:
            try:
                await getattr(observer, hook)(event)
            except Exception as e:
                logger.warning(f"Observer {type(observer).__name__}.{hook} failed: {e}")

    async def progress(self, event: JobProgressEvent) -> None:
        await self._dispatch("on_progress", event)

    async def completed(self, event: JobProgressEvent) -> None:
        await self._dispatch("on_completed", event)

    async def failed(self, event: JobProgressEvent) -> None:
        await self._dispatch("on_failed", event)

    async def close(self) -> None:
        for observer in self.observers:
            try:
                await observer.close()
            except Exception as e:
                logger.warning(f"Error closing observer {type(observer).__name__}: {e}")


def build_default_notifier() -> Notifier:
    """Logging observer, plus the webhook when NOTIFY_WEBHOOK_URL is set."""
    notifier = Notifier([LoggingObserver()])
    if Config.NOTIFY_WEBHOOK_URL:
        notifier.add_observer(WebhookObserver(Config.NOTIFY_WEBHOOK_URL))
    return notifier
