"""HTTP byte-range parsing and container/browser decisions."""

import re
from dataclasses import dataclass
from pathlib import Path

from src.streaming.session import StreamError

RANGE_RE = re.compile(r"^bytes=(\d*)-(\d*)$")

SAFARI_RE = re.compile(r"Safari", re.IGNORECASE)
NOT_SAFARI_RE = re.compile(r"Chrome|Chromium|Edg", re.IGNORECASE)

MIME_TYPES = {
    ".mp4": "video/mp4",
    ".mkv": "video/x-matroska",
    ".webm": "video/webm",
    ".avi": "video/x-msvideo",
}
DEFAULT_MIME_TYPE = "application/octet-stream"


class RangeNotSatisfiableError(StreamError):
    """Raised for multi-range, malformed or out-of-bounds Range headers."""

    def __init__(self, size: int, header: str = "") -> None:
        super().__init__(f"Range not satisfiable: {header!r} for {size} bytes")
        self.size = size
        self.header = header


@dataclass(frozen=True)
class ByteRange:
    """Inclusive byte range inside a resource of ``size`` bytes."""

    start: int
    end: int
    size: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    @property
    def content_range(self) -> str:
        return f"bytes {self.start}-{self.end}/{self.size}"


def parse_range(header: str | None, size: int) -> ByteRange | None:
    """Parse a single ``bytes=`` Range header.

    Supports ``a-b``, open ``a-`` and suffix ``-n`` forms; the end is
    clamped to the last byte.

    Returns:
        ByteRange, or None when no Range header was sent

    Raises:
        RangeNotSatisfiableError: For multiple ranges, bad syntax or a
            start beyond the end of the resource
    """
    if header is None or not header.strip():
        return None

    match = RANGE_RE.match(header.strip().replace(" ", ""))
    if not match or size <= 0:
        raise RangeNotSatisfiableError(size, header)

    first, last = match.groups()
    if not first and not last:
        raise RangeNotSatisfiableError(size, header)

    if not first:
        suffix = int(last)
        if suffix == 0:
            raise RangeNotSatisfiableError(size, header)
        return ByteRange(max(size - suffix, 0), size - 1, size)

    start = int(first)
    end = int(last) if last else size - 1
    if start >= size or end < start:
        raise RangeNotSatisfiableError(size, header)

    return ByteRange(start, min(end, size - 1), size)


def is_safari(user_agent: str | None) -> bool:
    """Safari on macOS or iOS, excluding Chromium browsers that also say Safari."""
    if not user_agent:
        return False
    return bool(SAFARI_RE.search(user_agent)) and not NOT_SAFARI_RE.search(user_agent)


def is_playable_container(file_name: str, user_agent: str | None) -> bool:
    """Whether the browser can play the file as-is (Safari: mp4 only)."""
    extension = Path(file_name).suffix.lower()
    if is_safari(user_agent):
        return extension == ".mp4"
    return extension in (".mp4", ".webm")


def should_transcode(file_name: str, user_agent: str | None, forced: bool = False) -> bool:
    return forced or not is_playable_container(file_name, user_agent)


def mime_type(file_name: str) -> str:
    return MIME_TYPES.get(Path(file_name).suffix.lower(), DEFAULT_MIME_TYPE)
