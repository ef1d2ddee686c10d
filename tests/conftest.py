"""Shared fixtures: an in-memory swarm engine and sample locators."""

import asyncio
from collections.abc import AsyncIterator
from pathlib import Path

import pytest

from src.search.dedup import extract_content_id
from src.streaming.engine import (
    FileEntry,
    SwarmEngine,
    SwarmEngineError,
    SwarmHandle,
    SwarmStatus,
)

HASH_A = "A" * 40
HASH_B = "B" * 40
MAGNET_A = f"magnet:?xt=urn:btih:{HASH_A}&dn=Movie.A.1080p.mp4"
MAGNET_B = f"magnet:?xt=urn:btih:{HASH_B}&dn=Movie.B.720p.mkv"


def file_bytes(start: int, end: int) -> bytes:
    """Deterministic content of bytes ``start..end`` (exclusive) of any fake file."""
    return bytes(i % 251 for i in range(start, end))


class FakeSwarmHandle(SwarmHandle):
    """Swarm whose files live in memory and whose pieces are always present."""

    def __init__(
        self,
        content_id: str,
        files: list[FileEntry],
        piece_length: int = 1024,
        metadata_ready: bool = True,
    ) -> None:
        self.content_id = content_id
        self._files = files
        self._piece_length = piece_length
        self.metadata_event = asyncio.Event()
        if metadata_ready:
            self.metadata_event.set()

        self.selected: list[tuple[int, int]] = []
        self.critical: list[tuple[int, int]] = []
        self.deselect_calls = 0
        self.reads_closed = 0

    async def wait_metadata(self) -> None:
        await self.metadata_event.wait()

    def files(self) -> list[FileEntry]:
        return list(self._files)

    @property
    def piece_length(self) -> int:
        return self._piece_length

    @property
    def num_pieces(self) -> int:
        total = sum(f.size for f in self._files)
        return max((total + self._piece_length - 1) // self._piece_length, 1)

    def select(self, first_piece: int, last_piece: int) -> None:
        self.selected.append((first_piece, last_piece))

    def mark_critical(self, first_piece: int, last_piece: int) -> None:
        self.critical.append((first_piece, last_piece))

    def deselect_all(self) -> None:
        self.deselect_calls += 1
        self.selected.clear()
        self.critical.clear()

    def status(self) -> SwarmStatus:
        return SwarmStatus(
            progress=0.5,
            download_rate=2048,
            peers=7,
            total_wanted=10_000,
            total_wanted_done=5_904,
        )

    def file_progress(self, file_index: int) -> float:
        return 0.25

    async def read(
        self,
        file_index: int,
        start: int = 0,
        end: int | None = None,
        chunk_size: int = 256 * 1024,
    ) -> AsyncIterator[bytes]:
        size = next(f.size for f in self._files if f.index == file_index)
        if end is None or end >= size:
            end = size - 1
        position = start
        try:
            while position <= end:
                chunk = file_bytes(position, min(position + chunk_size, end + 1))
                position += len(chunk)
                yield chunk
                await asyncio.sleep(0)
        finally:
            self.reads_closed += 1


class FakeSwarmEngine(SwarmEngine):
    """Engine handing out :class:`FakeSwarmHandle` objects."""

    def __init__(self, files: list[FileEntry] | None = None, metadata_ready: bool = True) -> None:
        self.default_files = files or [FileEntry(index=0, name="Movie.mp4", size=5000)]
        self.metadata_ready = metadata_ready
        self.files_by_id: dict[str, list[FileEntry]] = {}
        self.handles: dict[str, FakeSwarmHandle] = {}
        self.added: list[str] = []
        self.removed: list[tuple[str, bool]] = []
        self.fail_add = False

    async def add(self, locator: str, save_path: Path) -> FakeSwarmHandle:
        if self.fail_add:
            raise SwarmEngineError("engine refused locator")
        content_id = extract_content_id(locator)
        handle = FakeSwarmHandle(
            content_id,
            self.files_by_id.get(content_id, self.default_files),
            metadata_ready=self.metadata_ready,
        )
        self.handles[content_id] = handle
        self.added.append(content_id)
        return handle

    async def remove(self, handle: SwarmHandle, delete_files: bool = False) -> None:
        self.removed.append((handle.content_id, delete_files))


@pytest.fixture
def fake_engine() -> FakeSwarmEngine:
    return FakeSwarmEngine()


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    path = tmp_path / "cache"
    path.mkdir()
    return path
