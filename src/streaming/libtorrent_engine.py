"""libtorrent-backed swarm engine.

One ``lt.session`` owns every swarm. Calls into libtorrent are short and
non-blocking; waits for metadata and pieces poll with ``asyncio.sleep`` and
disk reads run in a worker thread so the event loop stays responsive.
"""

import asyncio
from collections.abc import AsyncIterator
from pathlib import Path

import libtorrent as lt
import structlog

from src.search.dedup import extract_content_id
from src.streaming.engine import (
    FileEntry,
    SwarmEngine,
    SwarmEngineError,
    SwarmHandle,
    SwarmStatus,
)

logger = structlog.get_logger(__name__)

METADATA_POLL_INTERVAL = 0.25
PIECE_POLL_INTERVAL = 0.1

# libtorrent piece priorities
PRIORITY_SKIP = 0
PRIORITY_NORMAL = 4
PRIORITY_TOP = 7

# Deadline in milliseconds for pieces the reader is blocked on
READ_DEADLINE_MS = 0
CRITICAL_DEADLINE_STEP_MS = 50


class LibtorrentHandle(SwarmHandle):
    """Adapter around ``lt.torrent_handle``."""

    def __init__(self, handle: "lt.torrent_handle", content_id: str, save_path: Path) -> None:
        self._handle = handle
        self.content_id = content_id
        self._save_path = save_path

    @property
    def native(self) -> "lt.torrent_handle":
        return self._handle

    def _info(self) -> "lt.torrent_info":
        info = self._handle.torrent_file()
        if info is None:
            raise SwarmEngineError(f"Metadata not available for {self.content_id}")
        return info

    async def wait_metadata(self) -> None:
        while not self._handle.status().has_metadata:
            await asyncio.sleep(METADATA_POLL_INTERVAL)
        logger.info("swarm_metadata_received", content_id=self.content_id)

    def files(self) -> list[FileEntry]:
        storage = self._info().files()
        return [
            FileEntry(
                index=i,
                name=storage.file_path(i),
                size=storage.file_size(i),
                offset=storage.file_offset(i),
            )
            for i in range(storage.num_files())
        ]

    @property
    def piece_length(self) -> int:
        return self._info().piece_length()

    @property
    def num_pieces(self) -> int:
        return self._info().num_pieces()

    def _clamp(self, first_piece: int, last_piece: int) -> range:
        last = min(last_piece, self.num_pieces - 1)
        return range(max(first_piece, 0), last + 1)

    def select(self, first_piece: int, last_piece: int) -> None:
        for piece in self._clamp(first_piece, last_piece):
            if self._handle.piece_priority(piece) < PRIORITY_NORMAL:
                self._handle.piece_priority(piece, PRIORITY_NORMAL)

    def mark_critical(self, first_piece: int, last_piece: int) -> None:
        for n, piece in enumerate(self._clamp(first_piece, last_piece)):
            self._handle.piece_priority(piece, PRIORITY_TOP)
            self._handle.set_piece_deadline(piece, n * CRITICAL_DEADLINE_STEP_MS)

    def deselect_all(self) -> None:
        self._handle.clear_piece_deadlines()
        self._handle.prioritize_pieces([PRIORITY_SKIP] * self.num_pieces)

    def status(self) -> SwarmStatus:
        st = self._handle.status()
        return SwarmStatus(
            progress=st.progress,
            download_rate=st.download_rate,
            peers=st.num_peers,
            total_wanted=st.total_wanted,
            total_wanted_done=st.total_wanted_done,
        )

    def file_progress(self, file_index: int) -> float:
        size = self._info().files().file_size(file_index)
        if size <= 0:
            return 1.0
        done = self._handle.file_progress(lt.torrent_handle.piece_granularity)[file_index]
        return min(done / size, 1.0)

    async def _wait_piece(self, piece: int) -> None:
        if self._handle.have_piece(piece):
            return
        if self._handle.piece_priority(piece) < PRIORITY_TOP:
            self._handle.piece_priority(piece, PRIORITY_TOP)
        self._handle.set_piece_deadline(piece, READ_DEADLINE_MS)
        while not self._handle.have_piece(piece):
            await asyncio.sleep(PIECE_POLL_INTERVAL)

    async def read(
        self,
        file_index: int,
        start: int = 0,
        end: int | None = None,
        chunk_size: int = 256 * 1024,
    ) -> AsyncIterator[bytes]:
        entry = self.files()[file_index]
        if end is None or end >= entry.size:
            end = entry.size - 1
        path = self._save_path / entry.name
        piece_length = self.piece_length

        # The file only exists on disk once its first piece is written
        await self._wait_piece((entry.offset + start) // piece_length)

        position = start
        with open(path, "rb") as fh:
            while position <= end:
                piece = (entry.offset + position) // piece_length
                await self._wait_piece(piece)

                piece_end = (piece + 1) * piece_length - entry.offset - 1
                length = min(chunk_size, end - position + 1, piece_end - position + 1)
                fh.seek(position)
                data = await asyncio.to_thread(fh.read, length)
                if not data:
                    # Written piece not flushed yet
                    await asyncio.sleep(PIECE_POLL_INTERVAL)
                    continue
                position += len(data)
                yield data


class LibtorrentEngine(SwarmEngine):
    """Swarm engine running a single libtorrent session."""

    def __init__(
        self,
        listen_port: int = 6881,
        max_connections: int = 200,
        extra_trackers: list[str] | None = None,
    ) -> None:
        self._extra_trackers = list(extra_trackers or [])
        self._session = lt.session(
            {
                "listen_interfaces": f"0.0.0.0:{listen_port},[::]:{listen_port}",
                "connections_limit": max_connections,
                "enable_dht": True,
                "enable_lsd": True,
                "enable_upnp": True,
                "enable_natpmp": True,
                "announce_to_all_trackers": True,
                "announce_to_all_tiers": True,
                "alert_mask": lt.alert.category_t.error_notification,
            }
        )
        logger.info(
            "swarm_engine_started",
            listen_port=listen_port,
            max_connections=max_connections,
            extra_trackers=len(self._extra_trackers),
        )

    async def add(self, locator: str, save_path: Path) -> LibtorrentHandle:
        save_path.mkdir(parents=True, exist_ok=True)
        try:
            params = lt.parse_magnet_uri(locator)
            params.save_path = str(save_path)
            params.storage_mode = lt.storage_mode_t.storage_mode_sparse
            params.trackers = list(params.trackers) + [
                t for t in self._extra_trackers if t not in params.trackers
            ]
            handle = self._session.add_torrent(params)
        except RuntimeError as e:
            raise SwarmEngineError(f"Failed to add torrent: {e}") from e

        content_id = extract_content_id(locator)
        logger.info("swarm_added", content_id=content_id, save_path=str(save_path))
        return LibtorrentHandle(handle, content_id, save_path)

    async def remove(self, handle: SwarmHandle, delete_files: bool = False) -> None:
        if not isinstance(handle, LibtorrentHandle):
            raise SwarmEngineError("Handle does not belong to this engine")
        if delete_files:
            self._session.remove_torrent(handle.native, lt.options_t.delete_files)
        else:
            self._session.remove_torrent(handle.native)
        logger.info("swarm_removed", content_id=handle.content_id, delete_files=delete_files)

    async def close(self) -> None:
        self._session.pause()
        logger.info("swarm_engine_stopped")
