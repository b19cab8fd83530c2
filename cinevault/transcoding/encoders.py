"""
Encoder argument tables for video and audio tracks.
Every EncoderChoice maps to a fixed H.264 parameter set.
"""

import logging
from typing import List, Tuple

from ..models import TrackAction
from ..hardware import EncoderChoice, ENCODER_NAMES
from ..config import HardwareConfig, TranscodingConfig

logger = logging.getLogger(__name__)


# =============================================================================
# ENCODER QUALITY SETTINGS
# =============================================================================

# NVENC quality tuning - prevents blocking, banding, and scene change artifacts
NVENC_QUALITY_ARGS = {
    "p4": [  # Balanced quality/speed (default)
        "-preset", "p4",
        "-tune", "hq",
        "-rc", "vbr",
        "-spatial-aq", "1",
        "-temporal-aq", "1",
        "-aq-strength", "8",
        "-rc-lookahead", "32",
        "-bf", "3",
    ],
    "p5": [  # Quality priority
        "-preset", "p5",
        "-tune", "hq",
        "-rc", "vbr",
        "-spatial-aq", "1",
        "-temporal-aq", "1",
        "-aq-strength", "10",
        "-rc-lookahead", "32",
        "-bf", "4",
    ],
}

# QSV quality tuning - Intel QuickSync
QSV_QUALITY_ARGS = {
    "medium": [
        "-preset", "medium",
        "-look_ahead", "1",
        "-bf", "3",
    ],
    "fast": [
        "-preset", "fast",
        "-look_ahead", "1",
        "-bf", "2",
    ],
    "slow": [
        "-preset", "slow",
        "-look_ahead", "1",
        "-bf", "4",
    ],
}

# All variants end in a browser-safe 8-bit 4:2:0 stream
VAAPI_UPLOAD_FILTER = "format=nv12,hwupload"


class EncoderSelector:
    """Maps a track action and EncoderChoice onto FFmpeg arguments."""

    def __init__(self, hw_config: HardwareConfig, transcoding_config: TranscodingConfig):
        self.hw_config = hw_config
        self.transcoding_config = transcoding_config

    def get_hw_device_args(self, choice: EncoderChoice) -> List[str]:
        """Arguments placed before ``-i`` to open the hardware device, if any."""
        if choice == EncoderChoice.VAAPI:
            return [
                "-init_hw_device", f"vaapi=va:{self.hw_config.vaapi_device}",
                "-filter_hw_device", "va",
            ]
        if choice == EncoderChoice.QSV:
            return ["-init_hw_device", "qsv=qs", "-filter_hw_device", "qs"]
        # NVENC opens its CUDA context itself; software never touches a device
        return []

    def get_video_encoder(self, action: TrackAction, choice: EncoderChoice) -> Tuple[str, List[str]]:
        """Get the video encoder name and its extra output args."""
        if action == TrackAction.COPY:
            return "copy", []

        quality = str(self.hw_config.hw_quality)
        encoder = ENCODER_NAMES[choice]

        if choice == EncoderChoice.VAAPI:
            return encoder, ["-vf", VAAPI_UPLOAD_FILTER, "-qp", quality]

        if choice == EncoderChoice.QSV:
            qsv_args = QSV_QUALITY_ARGS.get(self.hw_config.qsv_preset, QSV_QUALITY_ARGS["medium"])
            return encoder, qsv_args + ["-global_quality", quality, "-pix_fmt", "nv12"]

        if choice == EncoderChoice.NVENC:
            nvenc_args = NVENC_QUALITY_ARGS.get(self.hw_config.nvenc_preset, NVENC_QUALITY_ARGS["p4"])
            return encoder, nvenc_args + ["-cq", quality, "-b:v", "0", "-pix_fmt", "yuv420p"]

        return encoder, [
            "-preset", self.transcoding_config.software_preset,
            "-crf", str(self.transcoding_config.software_crf),
            "-profile:v", "high",
            "-pix_fmt", "yuv420p",
        ]

    def get_audio_encoder(self, action: TrackAction) -> Tuple[str, List[str]]:
        """Get the audio encoder name and its extra output args."""
        if action == TrackAction.COPY:
            return "copy", []
        return "aac", [
            "-ac", str(self.transcoding_config.audio_channels),
            "-b:a", self.transcoding_config.audio_bitrate,
        ]

