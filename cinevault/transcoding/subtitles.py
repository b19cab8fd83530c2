"""
Subtitle extraction to SRT.
"""

import logging
from pathlib import Path

from ..errors import NotFoundError
from ..models import CodecProfile
from .engine import TranscodeExecutor, TranscodeJob

logger = logging.getLogger(__name__)


class SubtitleExtractor:
    """Pulls one subtitle stream out of a media file as SRT."""

    def __init__(self, executor: TranscodeExecutor):
        self.executor = executor

    async def extract(
        self,
        source: Path,
        track_index: int,
        output_path: Path,
        profile: CodecProfile,
    ) -> Path:
        """Write subtitle stream ``track_index`` of ``source`` to ``output_path``."""
        track = profile.get_subtitle_track(track_index)
        if track is None:
            available = [t.index for t in profile.subtitle_tracks]
            raise NotFoundError(f"Subtitle track {track_index} not found (available: {available})")

        source = Path(source)
        output_path = Path(output_path)
        job = TranscodeJob(
            command=self.executor.command_builder.build_subtitle_command(source, track_index, output_path),
            output_path=output_path,
        )
        logger.info(
            f"[Subtitle] Extracting track {track_index} ({track.codec_name}, "
            f"{track.language or 'und'}) from {source.name}"
        )
        return await self.executor.run_job(job)
