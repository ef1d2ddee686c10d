"""Torrent session state and video file selection."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from src.streaming.engine import FileEntry, SwarmHandle

# Container preference, most browser-friendly first
VIDEO_EXTENSIONS = (".mp4", ".webm", ".mkv", ".avi")


# =============================================================================
# Exceptions
# =============================================================================


class StreamError(Exception):
    """Base exception for streaming errors."""

    pass


class SessionError(StreamError):
    """Raised when a session cannot be created or used."""

    pass


class MetadataTimeoutError(SessionError):
    """Raised when swarm metadata does not arrive in time."""

    pass


class NoPlayableFileError(SessionError):
    """Raised when a swarm holds no video file."""

    pass


# =============================================================================
# Session
# =============================================================================


class SessionState(str, Enum):
    """Lifecycle of a torrent session."""

    ADDED = "added"
    METADATA_PENDING = "metadata_pending"
    READY = "ready"
    ACTIVELY_STREAMING = "actively_streaming"
    IDLE = "idle"
    RETIRED = "retired"


def select_video_file(files: list[FileEntry]) -> FileEntry:
    """Pick the file to stream.

    Only mp4, webm, mkv and avi files qualify. Container priority comes
    first (mp4 > webm > mkv > avi), then the larger file.

    Raises:
        NoPlayableFileError: If no file has a video extension
    """
    videos = [f for f in files if f.extension in VIDEO_EXTENSIONS]
    if not videos:
        raise NoPlayableFileError("No playable video file in torrent")

    videos.sort(key=lambda f: (VIDEO_EXTENSIONS.index(f.extension), -f.size))
    return videos[0]


@dataclass
class TorrentSession:
    """One swarm joined on behalf of stream requests."""

    content_id: str
    locator: str
    handle: SwarmHandle
    state: SessionState = SessionState.ADDED
    files: list[FileEntry] = field(default_factory=list)
    selected_file: FileEntry | None = None
    open_streams: int = 0
    last_active_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_ready(self) -> bool:
        return self.state in (
            SessionState.READY,
            SessionState.ACTIVELY_STREAMING,
            SessionState.IDLE,
        )

    def touch(self) -> None:
        self.last_active_at = datetime.now(UTC)

    @property
    def is_streaming(self) -> bool:
        """True while at least one response body is still being sent."""
        return self.open_streams > 0

    def activate(self) -> None:
        self.state = SessionState.ACTIVELY_STREAMING
        self.touch()

    def demote(self) -> None:
        """Stop requesting pieces; data already on disk is kept."""
        if self.is_ready:
            self.handle.deselect_all()
            self.state = SessionState.IDLE
