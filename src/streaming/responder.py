"""Builds HTTP responses that stream a session's selected file."""

from collections.abc import AsyncIterator

import structlog
from fastapi.responses import StreamingResponse

from src.streaming.ranges import mime_type, parse_range, should_transcode
from src.streaming.registry import SessionRegistry
from src.streaming.retention import RetentionManager
from src.streaming.scheduler import PieceScheduler
from src.streaming.session import TorrentSession
from src.streaming.transcode import DISCONNECT_ERRORS, TranscodePipeline

logger = structlog.get_logger(__name__)

READ_CHUNK_SIZE = 256 * 1024


class StreamResponder:
    """Turns a stream request into a direct, partial or transcoded response.

    - no Range, playable: 200 with the full length
    - Range, playable: 206 with ``Content-Range``
    - not playable or transcode forced: 200 fragmented MP4, Range ignored
    """

    def __init__(
        self,
        registry: SessionRegistry,
        scheduler: PieceScheduler,
        retention: RetentionManager,
        ffmpeg_path: str = "ffmpeg",
        chunk_size: int = READ_CHUNK_SIZE,
    ) -> None:
        self._registry = registry
        self._scheduler = scheduler
        self._retention = retention
        self._ffmpeg_path = ffmpeg_path
        self._chunk_size = chunk_size

    async def respond(
        self,
        locator: str,
        range_header: str | None = None,
        user_agent: str | None = None,
        start_seconds: float = 0.0,
        transcode: bool = False,
    ) -> StreamingResponse:
        """Acquire the session for ``locator`` and build its response.

        Raises:
            SwarmEngineError: If the swarm cannot be added
            MetadataTimeoutError: If metadata does not arrive in time
            NoPlayableFileError: If the swarm has no video file
            RangeNotSatisfiableError: If the Range header cannot be served
        """
        session = await self._registry.acquire(locator)
        file = session.selected_file

        transcoding = should_transcode(file.name, user_agent, transcode)
        byte_range = None if transcoding else parse_range(range_header, file.size)

        self._retention.cancel_idle(session.content_id)
        session.activate()
        self._scheduler.preselect_head_tail(session)

        logger.info(
            "stream_start",
            content_id=session.content_id,
            file=file.name,
            size=file.size,
            transcode=transcoding,
            forced=transcode,
            range=range_header,
            start_seconds=start_seconds,
        )

        if transcoding:
            self._scheduler.mark_transcode_prefetch(session, start_seconds)
            return StreamingResponse(
                self._transcode_body(session, start_seconds),
                status_code=200,
                media_type="video/mp4",
            )

        headers = {"Accept-Ranges": "bytes"}
        if byte_range is None:
            headers["Content-Length"] = str(file.size)
            return StreamingResponse(
                self._direct_body(session, 0, file.size - 1),
                status_code=200,
                headers=headers,
                media_type=mime_type(file.name),
            )

        self._scheduler.mark_seek_window(session, byte_range.start)
        headers["Content-Range"] = byte_range.content_range
        headers["Content-Length"] = str(byte_range.length)
        return StreamingResponse(
            self._direct_body(session, byte_range.start, byte_range.end),
            status_code=206,
            headers=headers,
            media_type=mime_type(file.name),
        )

    async def _direct_body(self, session: TorrentSession, start: int, end: int) -> AsyncIterator[bytes]:
        reader = session.handle.read(session.selected_file.index, start, end, self._chunk_size)
        sent = 0
        session.open_streams += 1
        try:
            async for chunk in reader:
                sent += len(chunk)
                yield chunk
        except DISCONNECT_ERRORS as e:
            logger.debug("stream_client_disconnected", content_id=session.content_id, error=str(e))
        except Exception:
            logger.exception("stream_body_failed", content_id=session.content_id)
        finally:
            await reader.aclose()
            self._finish(session, sent)

    async def _transcode_body(self, session: TorrentSession, start_seconds: float) -> AsyncIterator[bytes]:
        # ffmpeg seeks itself, so it always reads from the first byte
        source = session.handle.read(session.selected_file.index, 0, None, self._chunk_size)
        sent = 0
        session.open_streams += 1
        try:
            async with TranscodePipeline(
                source,
                start_seconds=start_seconds,
                ffmpeg_path=self._ffmpeg_path,
            ) as pipeline:
                async for chunk in pipeline:
                    sent += len(chunk)
                    yield chunk
        except Exception:
            logger.exception("transcode_body_failed", content_id=session.content_id)
        finally:
            self._finish(session, sent)

    def _finish(self, session: TorrentSession, sent: int) -> None:
        session.open_streams -= 1
        session.touch()
        logger.info(
            "stream_end",
            content_id=session.content_id,
            bytes_sent=sent,
            open_streams=session.open_streams,
        )
        if not session.is_streaming:
            self._retention.schedule_idle(session)
