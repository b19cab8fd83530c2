"""
FFmpeg command building for ingest transcodes and subtitle extraction.
"""

import logging
from pathlib import Path
from typing import List

from ..models import TrackAction, TranscodeStrategy
from ..hardware import EncoderChoice
from .encoders import EncoderSelector

logger = logging.getLogger(__name__)


class CommandBuilder:
    """Builds FFmpeg argument lists (without the executable) for the engine."""

    def __init__(self, encoder_selector: EncoderSelector):
        self.encoder_selector = encoder_selector

    def _base_args(self) -> List[str]:
        return ["-y", "-hide_banner", "-nostdin"]

    def build_transcode_command(
        self,
        source: Path,
        output_path: Path,
        strategy: TranscodeStrategy,
        choice: EncoderChoice,
    ) -> List[str]:
        """Build the MP4 (+faststart) command for one strategy and encoder choice."""
        video_encoder, video_args = self.encoder_selector.get_video_encoder(
            strategy.video_action, choice
        )
        audio_encoder, audio_args = self.encoder_selector.get_audio_encoder(
            strategy.audio_action
        )

        cmd = self._base_args()

        # Hardware device init only matters when the video track is re-encoded
        if strategy.video_action == TrackAction.TRANSCODE:
            cmd.extend(self.encoder_selector.get_hw_device_args(choice))

        cmd.extend(["-i", str(source)])

        # Map streams explicitly
        cmd.extend(["-map", "0:v:0", "-map", "0:a:0?"])
        for index in strategy.subtitle_indexes:
            cmd.extend(["-map", f"0:{index}"])

        cmd.extend(["-c:v", video_encoder])
        cmd.extend(video_args)

        cmd.extend(["-c:a", audio_encoder])
        cmd.extend(audio_args)

        if strategy.subtitle_indexes:
            cmd.extend(["-c:s", "mov_text"])

        # Move the moov atom to the head so playback can start before download finishes
        cmd.extend(["-movflags", "+faststart"])
        cmd.extend(["-f", "mp4", str(output_path)])

        return cmd

    def build_subtitle_command(self, source: Path, track_index: int, output_path: Path) -> List[str]:
        """Build the command that converts one subtitle stream to SRT."""
        cmd = self._base_args()
        cmd.extend(["-i", str(source)])
        cmd.extend(["-map", f"0:{track_index}"])
        cmd.extend(["-c:s", "srt"])
        cmd.extend(["-f", "srt", str(output_path)])
        return cmd
