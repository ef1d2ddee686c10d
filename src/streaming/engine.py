"""Swarm engine interface.

The registry and scheduler only talk to these abstract types, so the
libtorrent implementation can be swapped for an in-memory engine in tests.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass
from pathlib import Path


class SwarmEngineError(Exception):
    """Raised when the download engine cannot add or operate on a swarm."""

    pass


@dataclass(frozen=True)
class FileEntry:
    """One file inside a swarm.

    ``offset`` is the byte position of the file inside the swarm's
    concatenated payload, used to map file bytes to pieces.
    """

    index: int
    name: str
    size: int
    offset: int = 0

    @property
    def extension(self) -> str:
        return Path(self.name).suffix.lower()


@dataclass
class SwarmStatus:
    """Transfer statistics for one swarm."""

    progress: float = 0.0
    download_rate: int = 0
    peers: int = 0
    total_wanted: int = 0
    total_wanted_done: int = 0

    @property
    def eta(self) -> float | None:
        """Seconds until the wanted data is complete, None when stalled."""
        remaining = self.total_wanted - self.total_wanted_done
        if remaining <= 0:
            return 0.0
        if self.download_rate <= 0:
            return None
        return remaining / self.download_rate


class SwarmHandle(ABC):
    """A single swarm added to the engine."""

    content_id: str

    @abstractmethod
    async def wait_metadata(self) -> None:
        """Suspend until the file list and piece layout are known."""
        ...

    @abstractmethod
    def files(self) -> list[FileEntry]:
        ...

    @property
    @abstractmethod
    def piece_length(self) -> int:
        ...

    @property
    @abstractmethod
    def num_pieces(self) -> int:
        ...

    @abstractmethod
    def select(self, first_piece: int, last_piece: int) -> None:
        """Request pieces ``first_piece..last_piece`` (inclusive) at normal priority."""
        ...

    @abstractmethod
    def mark_critical(self, first_piece: int, last_piece: int) -> None:
        """Request pieces ``first_piece..last_piece`` ahead of everything else."""
        ...

    @abstractmethod
    def deselect_all(self) -> None:
        """Drop every piece request. Downloaded data stays on disk."""
        ...

    @abstractmethod
    def status(self) -> SwarmStatus:
        ...

    @abstractmethod
    def file_progress(self, file_index: int) -> float:
        """Downloaded fraction of one file, 0.0 to 1.0."""
        ...

    @abstractmethod
    def read(
        self,
        file_index: int,
        start: int = 0,
        end: int | None = None,
        chunk_size: int = 256 * 1024,
    ) -> AsyncIterator[bytes]:
        """Yield file bytes ``start..end`` (inclusive), waiting for pieces as needed."""
        ...


class SwarmEngine(ABC):
    """Adds, removes and owns swarms."""

    @abstractmethod
    async def add(self, locator: str, save_path: Path) -> SwarmHandle:
        """Join the swarm behind ``locator``.

        Raises:
            SwarmEngineError: If the locator is rejected or the engine fails
        """
        ...

    @abstractmethod
    async def remove(self, handle: SwarmHandle, delete_files: bool = False) -> None:
        ...

    async def close(self) -> None:
        """Release engine resources on shutdown."""
        return None
