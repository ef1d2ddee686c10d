"""Piece prioritization for the selected file of a session."""

import structlog

from src.streaming.session import SessionError, TorrentSession

logger = structlog.get_logger(__name__)

HEAD_BYTES = 4 * 1024 * 1024
TAIL_BYTES = 1 * 1024 * 1024
SEEK_WINDOW_BYTES = 2 * 1024 * 1024

# Transcode requests carry a time offset, not a byte offset. Bytes per
# second are estimated from a nominal duration.
NOMINAL_DURATION_SECONDS = 3600
PREFETCH_SECONDS = 60


class PieceScheduler:
    """Maps byte windows of the selected file to swarm pieces and requests them."""

    def __init__(
        self,
        head_bytes: int = HEAD_BYTES,
        tail_bytes: int = TAIL_BYTES,
        seek_window_bytes: int = SEEK_WINDOW_BYTES,
        nominal_duration: int = NOMINAL_DURATION_SECONDS,
        prefetch_seconds: int = PREFETCH_SECONDS,
    ) -> None:
        self.head_bytes = head_bytes
        self.tail_bytes = tail_bytes
        self.seek_window_bytes = seek_window_bytes
        self.nominal_duration = nominal_duration
        self.prefetch_seconds = prefetch_seconds

    @staticmethod
    def piece_range(session: TorrentSession, start: int, end: int) -> tuple[int, int]:
        """Pieces covering file bytes ``start..end`` (inclusive, clamped to the file)."""
        file = session.selected_file
        if file is None:
            raise SessionError(f"Session {session.content_id} has no selected file")

        last_byte = max(file.size - 1, 0)
        start = min(max(start, 0), last_byte)
        end = min(max(end, start), last_byte)

        piece_length = session.handle.piece_length
        return (
            (file.offset + start) // piece_length,
            (file.offset + end) // piece_length,
        )

    def preselect_head_tail(self, session: TorrentSession) -> None:
        """Request the start and end of the file, where container headers live."""
        size = session.selected_file.size if session.selected_file else 0
        head = self.piece_range(session, 0, self.head_bytes)
        tail = self.piece_range(session, size - self.tail_bytes, size - 1)

        session.handle.select(*head)
        session.handle.select(*tail)
        logger.debug("pieces_head_tail_selected", content_id=session.content_id, head=head, tail=tail)

    def mark_seek_window(self, session: TorrentSession, start: int) -> tuple[int, int]:
        """Drop queued requests and put the window after ``start`` first."""
        session.handle.deselect_all()

        window = self.piece_range(session, start, start + self.seek_window_bytes)
        session.handle.select(*window)
        session.handle.mark_critical(*window)
        logger.debug("pieces_seek_critical", content_id=session.content_id, start=start, pieces=window)
        return window

    def mark_transcode_prefetch(self, session: TorrentSession, start_seconds: float) -> tuple[int, int]:
        """Request about a minute of data from the estimated position of ``start_seconds``."""
        size = session.selected_file.size if session.selected_file else 0
        bytes_per_second = size / self.nominal_duration

        start = int(bytes_per_second * max(start_seconds, 0))
        end = start + int(bytes_per_second * self.prefetch_seconds)

        window = self.piece_range(session, start, end)
        session.handle.select(*window)
        session.handle.mark_critical(*window)
        logger.debug(
            "pieces_prefetch_critical",
            content_id=session.content_id,
            start_seconds=start_seconds,
            pieces=window,
        )
        return window
