"""Registry of torrent sessions keyed by content id."""

import asyncio
from collections.abc import Callable
from pathlib import Path

import structlog

from src.search.dedup import extract_content_id
from src.streaming.engine import SwarmEngine
from src.streaming.session import (
    MetadataTimeoutError,
    NoPlayableFileError,
    SessionState,
    TorrentSession,
    select_video_file,
)

logger = structlog.get_logger(__name__)


class SessionRegistry:
    """Creates, reuses and retires torrent sessions.

    Work on one content id is serialized by a per-key lock, so two
    concurrent requests for the same swarm share a single session.
    Acquiring a session demotes every other one to IDLE before the
    new swarm is added or its metadata awaited.

    Example:
        registry = SessionRegistry(engine, Path("cache"))
        session = await registry.acquire("magnet:?xt=urn:btih:...")
    """

    def __init__(
        self,
        engine: SwarmEngine,
        cache_dir: Path,
        metadata_timeout: float | None = None,
        on_demote: Callable[[TorrentSession], None] | None = None,
    ) -> None:
        self._engine = engine
        self._cache_dir = Path(cache_dir)
        self._metadata_timeout = metadata_timeout
        self.on_demote = on_demote

        self._sessions: dict[str, TorrentSession] = {}
        self._key_locks: dict[str, asyncio.Lock] = {}
        self._lock = asyncio.Lock()

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    async def _lock_for(self, content_id: str) -> asyncio.Lock:
        async with self._lock:
            lock = self._key_locks.get(content_id)
            if lock is None:
                lock = asyncio.Lock()
                self._key_locks[content_id] = lock
            return lock

    async def acquire(self, locator: str) -> TorrentSession:
        """Return a ready session for ``locator``, creating it if needed.

        Raises:
            SwarmEngineError: If the engine refuses the locator
            MetadataTimeoutError: If metadata does not arrive within the bound
            NoPlayableFileError: If the swarm holds no video file
        """
        content_id = extract_content_id(locator)
        self._demote_others(content_id)
        lock = await self._lock_for(content_id)

        async with lock:
            session = self._sessions.get(content_id)
            if session is None:
                handle = await self._engine.add(locator, self._cache_dir)
                session = TorrentSession(content_id=content_id, locator=locator, handle=handle)
                self._sessions[content_id] = session
                logger.info("session_created", content_id=content_id)
            else:
                logger.debug("session_reused", content_id=content_id, state=session.state.value)

            if session.state in (SessionState.ADDED, SessionState.METADATA_PENDING):
                await self._await_metadata(session)

        if session.selected_file is None:
            raise NoPlayableFileError(f"No playable video file in {content_id}")
        return session

    async def _await_metadata(self, session: TorrentSession) -> None:
        session.state = SessionState.METADATA_PENDING
        try:
            await asyncio.wait_for(session.handle.wait_metadata(), self._metadata_timeout)
        except TimeoutError as e:
            logger.warning(
                "metadata_timeout",
                content_id=session.content_id,
                timeout=self._metadata_timeout,
            )
            raise MetadataTimeoutError(
                f"Metadata for {session.content_id} not received in {self._metadata_timeout}s"
            ) from e

        session.files = session.handle.files()
        session.state = SessionState.READY
        try:
            session.selected_file = select_video_file(session.files)
        except NoPlayableFileError:
            logger.warning(
                "no_playable_file",
                content_id=session.content_id,
                files=[f.name for f in session.files],
            )
            return

        logger.info(
            "session_ready",
            content_id=session.content_id,
            files=len(session.files),
            selected=session.selected_file.name,
            size=session.selected_file.size,
        )

    def _demote_others(self, content_id: str) -> None:
        for other in self._sessions.values():
            if other.content_id == content_id:
                continue
            if other.state not in (SessionState.READY, SessionState.ACTIVELY_STREAMING):
                continue
            other.demote()
            logger.info("session_demoted", content_id=other.content_id)
            if self.on_demote:
                self.on_demote(other)

    def get(self, locator: str) -> TorrentSession | None:
        return self._sessions.get(extract_content_id(locator))

    def sessions(self) -> list[TorrentSession]:
        return list(self._sessions.values())

    async def destroy_all(self) -> int:
        """Remove every session together with its downloaded data.

        Returns:
            Number of sessions destroyed
        """
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
            self._key_locks.clear()

        for session in sessions:
            try:
                await self._engine.remove(session.handle, delete_files=True)
            except Exception:
                logger.exception("session_destroy_failed", content_id=session.content_id)
            session.state = SessionState.RETIRED

        logger.info("sessions_destroyed", count=len(sessions))
        return len(sessions)
