"""
Transcode executor: runs FFmpeg for one ingest and guarantees that a failed
run never leaves a partial output behind.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional

from ..config import CinevaultConfig, get_config
from ..errors import TranscodeError, TranscodeSpawnError
from ..hardware import EncoderChoice, HardwareEncoderSelector, ENCODER_NAMES
from ..models import TrackAction, TranscodeStrategy
from ..process import CommandRunner
from .commands import CommandBuilder
from .encoders import EncoderSelector
from .error_classifier import ErrorClassifier, get_error_classifier

logger = logging.getLogger(__name__)


class TranscodeJobState(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    EXITED = "exited"
    SPAWN_ERROR = "spawn_error"


@dataclass
class TranscodeJob:
    """One FFmpeg invocation. ``encoder`` is None for subtitle extraction."""
    command: List[str]
    output_path: Path
    encoder: Optional[EncoderChoice] = None
    state: TranscodeJobState = TranscodeJobState.CREATED
    exit_code: Optional[int] = None
    stderr_tail: str = ""
    timed_out: bool = False


def remove_partial_output(path: Path) -> None:
    """Delete a failed job's output. Missing files are fine."""
    try:
        path.unlink()
        logger.debug(f"[Transcode] Removed partial output {path}")
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"[Transcode] Failed to remove partial output {path}: {e}")


class TranscodeExecutor:
    """FFmpeg runner with hardware-to-software fallback."""

    def __init__(
        self,
        ffmpeg_path: str,
        selector: HardwareEncoderSelector,
        command_builder: CommandBuilder,
        runner: Optional[CommandRunner] = None,
        timeout: Optional[float] = None,
        stderr_tail_lines: int = 100,
        fallback_enabled: bool = True,
        classifier: Optional[ErrorClassifier] = None,
    ):
        self.ffmpeg_path = ffmpeg_path
        self.selector = selector
        self.command_builder = command_builder
        self.runner = runner or CommandRunner()
        self.timeout = timeout
        self.stderr_tail_lines = stderr_tail_lines
        self.fallback_enabled = fallback_enabled
        self.classifier = classifier or get_error_classifier()

    @classmethod
    def from_config(
        cls,
        config: Optional[CinevaultConfig] = None,
        selector: Optional[HardwareEncoderSelector] = None,
        runner: Optional[CommandRunner] = None,
    ) -> "TranscodeExecutor":
        config = config or get_config()
        selector = selector or HardwareEncoderSelector(config.hardware)
        encoder_selector = EncoderSelector(config.hardware, config.transcoding)
        return cls(
            ffmpeg_path=config.transcoding.resolve_ffmpeg(),
            selector=selector,
            command_builder=CommandBuilder(encoder_selector),
            runner=runner,
            timeout=config.transcoding.transcode_timeout,
            stderr_tail_lines=config.transcoding.stderr_tail_lines,
            fallback_enabled=config.hardware.fallback_to_software,
        )

    async def run_job(self, job: TranscodeJob) -> Path:
        """
        Run a prepared job to completion.

        Returns the output path on exit 0 with a non-empty output. Every other
        outcome deletes the output first, then raises TranscodeSpawnError or
        TranscodeError.
        """
        job.output_path.parent.mkdir(parents=True, exist_ok=True)
        job.state = TranscodeJobState.RUNNING

        try:
            result = await self.runner.run(
                self.ffmpeg_path,
                job.command,
                timeout=self.timeout,
                tail_lines=self.stderr_tail_lines,
            )
        except BaseException:
            # Cancelled while FFmpeg was writing
            remove_partial_output(job.output_path)
            raise

        if result.spawn_error:
            job.state = TranscodeJobState.SPAWN_ERROR
            remove_partial_output(job.output_path)
            raise TranscodeSpawnError(f"FFmpeg could not be started: {result.spawn_error}")

        job.state = TranscodeJobState.EXITED
        job.exit_code = result.exit_code
        job.stderr_tail = result.stderr
        job.timed_out = result.timed_out

        if result.ok:
            try:
                size = job.output_path.stat().st_size
            except FileNotFoundError:
                size = 0
            if size > 0:
                return job.output_path
            message = "FFmpeg exited cleanly but produced no output"
        elif result.timed_out:
            message = f"FFmpeg timed out after {self.timeout}s"
        else:
            message = f"FFmpeg exited with code {result.exit_code}"

        remove_partial_output(job.output_path)
        raise TranscodeError(
            message,
            exit_code=result.exit_code,
            stderr_tail=result.stderr,
            timed_out=result.timed_out,
        )

    def _should_fall_back(self, strategy: TranscodeStrategy, choice: EncoderChoice, error: TranscodeError) -> bool:
        if not self.fallback_enabled or error.timed_out:
            return False
        if strategy.video_action != TrackAction.TRANSCODE or not choice.is_hardware:
            return False
        return self.classifier.should_fall_back(error.stderr_tail)

    async def transcode(
        self,
        source: Path,
        strategy: TranscodeStrategy,
        choice: EncoderChoice,
        output_path: Path,
    ) -> Path:
        """
        Produce a faststart MP4 at ``output_path`` following ``strategy``.

        A hardware encoder that fails at runtime is replaced by the next
        lower available one until software has been tried.
        """
        source = Path(source)
        output_path = Path(output_path)
        current = choice

        while True:
            job = TranscodeJob(
                command=self.command_builder.build_transcode_command(source, output_path, strategy, current),
                output_path=output_path,
                encoder=current,
            )
            encoder_name = ENCODER_NAMES[current] if strategy.video_action == TrackAction.TRANSCODE else "copy"
            logger.info(
                f"[Transcode] {source.name}: video={strategy.video_action.value} "
                f"audio={strategy.audio_action.value} encoder={encoder_name}"
            )

            try:
                result_path = await self.run_job(job)
            except TranscodeError as e:
                if not self._should_fall_back(strategy, current, e):
                    logger.warning(
                        f"[Transcode] {source.name} failed with {encoder_name}: "
                        f"{self.classifier.get_error_description(e.stderr_tail)}"
                    )
                    raise
                next_choice = self.selector.next_after(current)
                if next_choice is None:
                    raise
                logger.warning(
                    f"[Transcode] {encoder_name} failed "
                    f"({self.classifier.get_error_description(e.stderr_tail)}), "
                    f"falling back to {ENCODER_NAMES[next_choice]}"
                )
                current = next_choice
                continue

            logger.info(f"[Transcode] Complete: {result_path.name} ({encoder_name})")
            return result_path
