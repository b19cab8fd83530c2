"""
Media probing using ffprobe.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..errors import ProbeError
from ..models import CodecProfile, SubtitleTrack
from ..process import CommandRunner

logger = logging.getLogger(__name__)


class StreamProbe:
    """Reads the codec layout of a media file with three concurrent ffprobe calls."""

    def __init__(
        self,
        ffprobe_path: str = "ffprobe",
        runner: Optional[CommandRunner] = None,
        timeout: Optional[float] = 60.0,
    ):
        self.ffprobe_path = ffprobe_path
        self.runner = runner or CommandRunner()
        self.timeout = timeout

    async def _run_ffprobe(self, source: Path, selector: str, entries: str) -> List[Dict[str, Any]]:
        args = [
            "-v", "error",
            "-select_streams", selector,
            "-show_entries", entries,
            "-of", "json",
            str(source),
        ]
        result = await self.runner.run(
            self.ffprobe_path, args, timeout=self.timeout, tail_lines=20
        )

        if result.spawn_error:
            raise ProbeError(f"ffprobe could not be started: {result.spawn_error}")
        if result.timed_out:
            raise ProbeError(f"ffprobe timed out after {self.timeout}s on {source.name}")
        if result.exit_code != 0:
            detail = result.stderr.strip() or "no output"
            raise ProbeError(f"ffprobe exited with code {result.exit_code} on {source.name}: {detail}")

        try:
            data = json.loads(result.stdout or "{}")
        except json.JSONDecodeError as e:
            raise ProbeError(f"ffprobe output is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ProbeError("ffprobe output is not a JSON object")

        streams = data.get("streams", [])
        if not isinstance(streams, list):
            raise ProbeError("ffprobe output has a malformed 'streams' field")
        return streams

    async def _first_codec(self, source: Path, selector: str) -> Optional[str]:
        streams = await self._run_ffprobe(source, selector, "stream=codec_name")
        if not streams:
            return None
        codec = streams[0].get("codec_name")
        return codec.lower() if isinstance(codec, str) and codec else None

    async def _subtitle_tracks(self, source: Path) -> List[SubtitleTrack]:
        streams = await self._run_ffprobe(
            source, "s", "stream=index,codec_name:stream_tags=language"
        )
        tracks = []
        for stream in streams:
            index = stream.get("index")
            if not isinstance(index, int):
                continue
            tags = stream.get("tags") or {}
            language = tags.get("language") if isinstance(tags, dict) else None
            codec = stream.get("codec_name") or "unknown"
            tracks.append(SubtitleTrack(index=index, codec_name=str(codec).lower(), language=language))
        return tracks

    async def probe(self, source: Union[str, Path]) -> CodecProfile:
        """
        Inspect ``source`` and return its CodecProfile.

        All three inspections are awaited before the first failure is raised
        so no ffprobe child outlives this call.
        """
        source = Path(source)
        results = await asyncio.gather(
            self._first_codec(source, "v:0"),
            self._first_codec(source, "a:0"),
            self._subtitle_tracks(source),
            return_exceptions=True,
        )

        for result in results:
            if isinstance(result, BaseException):
                if isinstance(result, ProbeError):
                    raise result
                raise ProbeError(f"ffprobe failed on {source.name}: {result}") from result

        video_codec, audio_codec, subtitle_tracks = results
        profile = CodecProfile(
            video_codec=video_codec,
            audio_codec=audio_codec,
            subtitle_tracks=tuple(subtitle_tracks),
        )
        logger.info(
            f"[Probe] {source.name}: video={video_codec} audio={audio_codec} "
            f"subtitles={[t.codec_name for t in profile.subtitle_tracks]}"
        )
        return profile
