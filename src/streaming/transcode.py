"""Container normalization through an ffmpeg subprocess.

Video is copied, audio re-encoded to AAC, and the result written as
fragmented MP4 so it can be streamed without knowing the final length.
"""

import asyncio
import contextlib
import shutil
from collections.abc import AsyncIterator

import structlog

logger = structlog.get_logger(__name__)

OUTPUT_CHUNK_SIZE = 64 * 1024

# Raised when the client or ffmpeg goes away mid-stream
DISCONNECT_ERRORS = (ConnectionResetError, BrokenPipeError, asyncio.IncompleteReadError)


def build_ffmpeg_args(start_seconds: float | None = None) -> list[str]:
    """Arguments after the executable: stdin in, fragmented MP4 on stdout."""
    args = ["-hide_banner", "-loglevel", "error", "-i", "pipe:0"]
    if start_seconds:
        args += ["-ss", str(start_seconds)]
    args += [
        "-c:v", "copy",
        "-c:a", "aac",
        "-f", "mp4",
        "-movflags", "frag_keyframe+empty_moov",
        "pipe:1",
    ]  # fmt: skip
    return args


def resolve_ffmpeg(path: str) -> str | None:
    return shutil.which(path)


class TranscodePipeline:
    """Pipes a byte source through ffmpeg.

    Use as an async context manager; leaving the block stops the feeder,
    closes the source and kills ffmpeg whatever the outcome. Without an
    ffmpeg executable the source bytes pass through unchanged.

    Example:
        async with TranscodePipeline(source, start_seconds=120) as pipeline:
            async for chunk in pipeline:
                ...
    """

    def __init__(
        self,
        source: AsyncIterator[bytes],
        start_seconds: float | None = None,
        ffmpeg_path: str = "ffmpeg",
        chunk_size: int = OUTPUT_CHUNK_SIZE,
    ) -> None:
        self._source = source
        self._start_seconds = start_seconds
        self._ffmpeg_path = ffmpeg_path
        self._chunk_size = chunk_size
        self._process: asyncio.subprocess.Process | None = None
        self._feeder: asyncio.Task | None = None

    @property
    def passthrough(self) -> bool:
        return self._process is None

    async def __aenter__(self) -> "TranscodePipeline":
        executable = resolve_ffmpeg(self._ffmpeg_path)
        if executable is None:
            logger.warning("ffmpeg_not_found", path=self._ffmpeg_path)
            return self

        self._process = await asyncio.create_subprocess_exec(
            executable,
            *build_ffmpeg_args(self._start_seconds),
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        self._feeder = asyncio.create_task(self._feed())
        logger.info("transcode_started", pid=self._process.pid, start_seconds=self._start_seconds)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        if self._feeder is not None:
            self._feeder.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._feeder

        aclose = getattr(self._source, "aclose", None)
        if aclose is not None:
            with contextlib.suppress(*DISCONNECT_ERRORS):
                await aclose()

        if self._process is not None and self._process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                self._process.kill()
            await self._process.wait()
            logger.info("transcode_stopped", pid=self._process.pid)

        if exc_type is not None and issubclass(exc_type, DISCONNECT_ERRORS):
            logger.debug("transcode_disconnected", error=str(exc_val))
            return True
        return False

    async def _feed(self) -> None:
        stdin = self._process.stdin
        try:
            async for chunk in self._source:
                stdin.write(chunk)
                await stdin.drain()
        except DISCONNECT_ERRORS as e:
            logger.debug("transcode_feed_disconnected", error=str(e))
        except Exception:
            logger.exception("transcode_feed_failed")
        finally:
            with contextlib.suppress(*DISCONNECT_ERRORS):
                stdin.close()

    async def __aiter__(self) -> AsyncIterator[bytes]:
        if self._process is None:
            async for chunk in self._source:
                yield chunk
            return

        while True:
            data = await self._process.stdout.read(self._chunk_size)
            if not data:
                break
            yield data
