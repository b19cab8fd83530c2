"""
FFmpeg error classification for encoder fallback decisions.

Categorizes FFmpeg stderr so the engine can decide whether to:
- Step down to the next encoder (hardware and unknown errors)
- Fail immediately (fatal input errors)
"""

import logging
from dataclasses import dataclass
from typing import List, Tuple, Optional

logger = logging.getLogger(__name__)


@dataclass
class FFmpegError:
    """Represents a classified FFmpeg error."""
    pattern: str
    category: str  # 'hardware', 'resource', 'fatal'
    description: str


# Checked in order: hardware init failures often also print "Invalid argument"
FFMPEG_ERROR_MAP: List[FFmpegError] = [
    # === NVIDIA NVENC ===
    FFmpegError("no nvenc capable devices", "hardware", "No NVENC capable GPU"),
    FFmpegError("no capable devices found", "hardware", "No hardware encoder devices"),
    FFmpegError("openencodesessionex failed", "hardware", "NVENC session init failed"),
    FFmpegError("encodesessionlimitexceeded", "hardware", "NVENC session limit reached"),
    FFmpegError("nvenc", "hardware", "NVENC error"),
    FFmpegError("cuda", "hardware", "CUDA error"),
    FFmpegError("cannot load libcuda", "hardware", "CUDA driver missing"),

    # === Intel QuickSync ===
    FFmpegError("mfx_err", "hardware", "Intel QSV error"),
    FFmpegError("error initializing an internal mfx session", "hardware", "Intel QSV session init failed"),
    FFmpegError("qsv", "hardware", "QuickSync error"),

    # === VAAPI ===
    FFmpegError("failed to initialise vaapi connection", "hardware", "VAAPI connection failed"),
    FFmpegError("vaapi", "hardware", "VAAPI error"),
    FFmpegError("/dev/dri", "hardware", "DRI device error"),

    # === Generic hardware ===
    FFmpegError("device creation failed", "hardware", "Hardware device creation failed"),
    FFmpegError("failed to set value", "hardware", "Hardware device option rejected"),
    FFmpegError("initialization failed", "hardware", "Hardware init failed"),
    FFmpegError("hw_frames_ctx", "hardware", "Hardware frame context error"),
    FFmpegError("hwaccel", "hardware", "Hardware acceleration error"),
    FFmpegError("hwupload", "hardware", "Hardware upload failed"),
    FFmpegError("driver", "hardware", "Driver error"),
    FFmpegError("unsupported property", "hardware", "Encoder property unsupported"),
    FFmpegError("incompatible pixel format", "hardware", "Incompatible pixel format for encoder"),
    FFmpegError("unknown encoder", "hardware", "Encoder not compiled into this FFmpeg"),

    # === Resource ===
    FFmpegError("out of memory", "resource", "Out of memory"),
    FFmpegError("cannot allocate", "resource", "Memory allocation failed"),
    FFmpegError("too many open files", "resource", "File descriptor limit"),
    FFmpegError("no space left", "resource", "No disk space"),
    FFmpegError("disk quota", "resource", "Disk quota exceeded"),

    # === Fatal input errors: another encoder will not help ===
    FFmpegError("invalid data found", "fatal", "Invalid input data"),
    FFmpegError("moov atom not found", "fatal", "Truncated or invalid MP4 input"),
    FFmpegError("no such file", "fatal", "File not found"),
    FFmpegError("permission denied", "fatal", "Permission denied"),
    FFmpegError("decoder not found", "fatal", "Decoder not found"),
    FFmpegError("stream map", "fatal", "Requested stream does not exist"),
    FFmpegError("does not contain any stream", "fatal", "Input has no streams"),
    FFmpegError("invalid argument", "fatal", "Invalid argument"),
]


class ErrorClassifier:
    """Classifies FFmpeg errors for encoder fallback decisions."""

    def __init__(self, error_map: Optional[List[FFmpegError]] = None):
        self.error_map = error_map or FFMPEG_ERROR_MAP

    def classify(self, error_msg: str) -> Tuple[Optional[FFmpegError], str]:
        """
        Classify FFmpeg stderr using the error map.

        Returns:
            Tuple of (matched_error, category). Category is 'unknown' if no match.
        """
        error_lower = error_msg.lower()

        for error in self.error_map:
            if error.pattern in error_lower:
                return error, error.category

        return None, "unknown"

    def is_hardware_error(self, error_msg: str) -> bool:
        _, category = self.classify(error_msg)
        return category == "hardware"

    def is_fatal_error(self, error_msg: str) -> bool:
        _, category = self.classify(error_msg)
        return category == "fatal"

    def get_error_description(self, error_msg: str) -> str:
        error, _ = self.classify(error_msg)
        if error:
            return error.description
        return "Unknown error"

    def should_fall_back(self, error_msg: str) -> bool:
        """Anything but a fatal input error may succeed on a lower encoder."""
        return not self.is_fatal_error(error_msg)


# Global classifier instance
_classifier: Optional[ErrorClassifier] = None


def get_error_classifier() -> ErrorClassifier:
    """Get or create the global error classifier."""
    global _classifier
    if _classifier is None:
        _classifier = ErrorClassifier()
    return _classifier
