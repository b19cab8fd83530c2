"""
Transcoding package for Cinevault.
Probing, per-track planning and FFmpeg execution with hardware fallback.
"""

from .probe import StreamProbe
from .strategy import plan, VIDEO_COPY_ALLOWLIST, AUDIO_COPY_ALLOWLIST
from .encoders import EncoderSelector
from .commands import CommandBuilder
from .error_classifier import ErrorClassifier, FFmpegError, get_error_classifier
from .engine import TranscodeExecutor, TranscodeJob, TranscodeJobState, remove_partial_output
from .subtitles import SubtitleExtractor

__all__ = [
    "StreamProbe",
    "plan",
    "VIDEO_COPY_ALLOWLIST",
    "AUDIO_COPY_ALLOWLIST",
    "EncoderSelector",
    "CommandBuilder",
    "ErrorClassifier",
    "FFmpegError",
    "get_error_classifier",
    "TranscodeExecutor",
    "TranscodeJob",
    "TranscodeJobState",
    "remove_partial_output",
    "SubtitleExtractor",
]
