"""Idle retirement and daily cache wipe using APScheduler.

Sessions that stop streaming lose their piece requests after an idle
timeout but keep their files. Once a day every session is destroyed and
the cache directory emptied.

Usage:
    retention = RetentionManager(registry)
    retention.start()

    # On shutdown:
    retention.stop()
"""

import asyncio
import shutil
from dataclasses import dataclass
from pathlib import Path

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from src.streaming.registry import SessionRegistry
from src.streaming.session import SessionState, TorrentSession

logger = structlog.get_logger(__name__)

DEFAULT_IDLE_TIMEOUT_SECONDS = 120


@dataclass
class WipeReport:
    """Outcome of a purge or daily wipe."""

    sessions: int = 0
    removed_entries: int = 0
    freed_bytes: int = 0


def _entry_size(path: Path) -> int:
    if path.is_symlink() or path.is_file():
        return path.lstat().st_size
    return sum(p.lstat().st_size for p in path.rglob("*") if p.is_file() and not p.is_symlink())


def clear_directory(directory: Path) -> tuple[int, int]:
    """Delete everything inside ``directory``, keeping the directory itself.

    Returns:
        (entries removed, bytes freed)
    """
    if not directory.exists():
        return 0, 0

    removed = 0
    freed = 0
    for entry in directory.iterdir():
        try:
            size = _entry_size(entry)
            if entry.is_dir() and not entry.is_symlink():
                shutil.rmtree(entry)
            else:
                entry.unlink()
        except OSError as e:
            logger.warning("cache_entry_delete_failed", path=str(entry), error=str(e))
            continue
        removed += 1
        freed += size
    return removed, freed


class RetentionManager:
    """Owns idle timers and the scheduled cache wipe."""

    def __init__(
        self,
        registry: SessionRegistry,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT_SECONDS,
        wipe_hour: int = 3,
        wipe_minute: int = 0,
        timezone: str = "Europe/London",
    ):
        self._registry = registry
        self._idle_timeout = idle_timeout
        self._wipe_hour = wipe_hour
        self._wipe_minute = wipe_minute
        self._timezone = timezone

        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._scheduler: AsyncIOScheduler | None = None
        self._is_running = False

    # =========================================================================
    # Idle timers
    # =========================================================================

    def has_pending_idle(self, content_id: str) -> bool:
        return content_id in self._timers

    def schedule_idle(self, session: TorrentSession) -> None:
        """Arm the idle timer for a session unless one is already pending."""
        if session.content_id in self._timers:
            return

        loop = asyncio.get_running_loop()
        self._timers[session.content_id] = loop.call_later(
            self._idle_timeout, self._on_idle, session
        )
        logger.debug("idle_timer_armed", content_id=session.content_id, timeout=self._idle_timeout)

    def cancel_idle(self, content_id: str) -> None:
        timer = self._timers.pop(content_id, None)
        if timer is not None:
            timer.cancel()
            logger.debug("idle_timer_cancelled", content_id=content_id)

    def _on_idle(self, session: TorrentSession) -> None:
        self._timers.pop(session.content_id, None)
        if session.state == SessionState.RETIRED:
            return
        if session.is_streaming:
            # The last stream to finish arms a fresh timer
            logger.debug("idle_skipped_streaming", content_id=session.content_id)
            return
        session.demote()
        logger.info("session_idle", content_id=session.content_id)

    def clear_timers(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

    # =========================================================================
    # Wipe
    # =========================================================================

    async def purge(self) -> WipeReport:
        """Destroy every session and empty the cache directory."""
        self.clear_timers()
        sessions = await self._registry.destroy_all()
        removed, freed = await asyncio.to_thread(clear_directory, self._registry.cache_dir)

        report = WipeReport(sessions=sessions, removed_entries=removed, freed_bytes=freed)
        logger.info(
            "cache_wiped",
            sessions=report.sessions,
            removed_entries=report.removed_entries,
            freed_mb=round(report.freed_bytes / (1024 * 1024), 1),
        )
        return report

    async def _scheduled_wipe(self) -> None:
        try:
            await self.purge()
        except Exception:
            logger.exception("scheduled_wipe_failed")

    def start(self) -> None:
        """Schedule the daily wipe."""
        if self._is_running:
            logger.warning("retention_already_running")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self._scheduled_wipe,
            trigger=CronTrigger(
                hour=self._wipe_hour,
                minute=self._wipe_minute,
                timezone=self._timezone,
            ),
            id="daily_cache_wipe",
            name="Daily Cache Wipe",
            replace_existing=True,
            max_instances=1,
        )
        self._scheduler.start()
        self._is_running = True

        logger.info(
            "retention_started",
            wipe_at=f"{self._wipe_hour:02d}:{self._wipe_minute:02d}",
            timezone=self._timezone,
            idle_timeout=self._idle_timeout,
        )

    def stop(self) -> None:
        self.clear_timers()
        if self._scheduler and self._is_running:
            self._scheduler.shutdown(wait=False)
            self._is_running = False
            logger.info("retention_stopped")
