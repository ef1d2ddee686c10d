"""Streaming module.

Serves a swarm's video file over HTTP while it downloads: session
registry, piece prioritization, range handling, ffmpeg transcoding and
cache retention.
"""

from src.streaming.engine import FileEntry, SwarmEngine, SwarmEngineError, SwarmHandle, SwarmStatus
from src.streaming.ranges import (
    ByteRange,
    RangeNotSatisfiableError,
    is_playable_container,
    is_safari,
    mime_type,
    parse_range,
    should_transcode,
)
from src.streaming.registry import SessionRegistry
from src.streaming.responder import StreamResponder
from src.streaming.retention import RetentionManager, WipeReport
from src.streaming.scheduler import PieceScheduler
from src.streaming.session import (
    MetadataTimeoutError,
    NoPlayableFileError,
    SessionError,
    SessionState,
    StreamError,
    TorrentSession,
    select_video_file,
)
from src.streaming.transcode import TranscodePipeline, build_ffmpeg_args

__all__ = [
    # Engine
    "SwarmEngine",
    "SwarmHandle",
    "SwarmStatus",
    "FileEntry",
    # Sessions
    "SessionRegistry",
    "SessionState",
    "TorrentSession",
    "select_video_file",
    # Delivery
    "PieceScheduler",
    "StreamResponder",
    "TranscodePipeline",
    "build_ffmpeg_args",
    "ByteRange",
    "parse_range",
    "is_safari",
    "is_playable_container",
    "should_transcode",
    "mime_type",
    # Retention
    "RetentionManager",
    "WipeReport",
    # Errors
    "StreamError",
    "SessionError",
    "MetadataTimeoutError",
    "NoPlayableFileError",
    "RangeNotSatisfiableError",
    "SwarmEngineError",
]
