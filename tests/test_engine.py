"""
Tests for FFmpeg command building and the transcode executor.
"""

import asyncio
from pathlib import Path

import pytest

from cinevault.config import HardwareConfig, TranscodingConfig
from cinevault.errors import TranscodeError, TranscodeSpawnError
from cinevault.hardware import EncoderChoice
from cinevault.models import TrackAction, TranscodeStrategy
from cinevault.process import CommandResult
from cinevault.transcoding.commands import CommandBuilder
from cinevault.transcoding.encoders import EncoderSelector
from cinevault.transcoding.engine import TranscodeExecutor
from cinevault.transcoding.error_classifier import ErrorClassifier

from conftest import FakeRunner, make_selector


COPY_COPY = TranscodeStrategy(TrackAction.COPY, TrackAction.COPY)
FULL_TRANSCODE = TranscodeStrategy(TrackAction.TRANSCODE, TrackAction.TRANSCODE)

KNOWN_ENCODERS = {"libx264", "h264_vaapi", "h264_qsv", "h264_nvenc", "aac"}


def make_builder(**transcoding) -> CommandBuilder:
    return CommandBuilder(EncoderSelector(HardwareConfig(), TranscodingConfig(**transcoding)))


def make_executor(runner, *available, fallback=True) -> TranscodeExecutor:
    return TranscodeExecutor(
        "ffmpeg",
        make_selector(*available),
        make_builder(),
        runner=runner,
        fallback_enabled=fallback,
    )


def writes_output(args, payload: bytes = b"\x00\x00\x00\x18ftypmp42") -> None:
    Path(args[-1]).write_bytes(payload)


class TestCommandBuilder:
    """Tests for CommandBuilder."""

    def test_copy_copy_has_no_encoder_only_faststart(self, tmp_path):
        cmd = make_builder().build_transcode_command(
            tmp_path / "in.mp4", tmp_path / "out.mp4", COPY_COPY, EncoderChoice.NVENC
        )

        assert cmd[cmd.index("-c:v") + 1] == "copy"
        assert cmd[cmd.index("-c:a") + 1] == "copy"
        assert not KNOWN_ENCODERS.intersection(cmd)
        assert "-init_hw_device" not in cmd
        assert cmd[cmd.index("-movflags") + 1] == "+faststart"
        assert cmd[-3:] == ["-f", "mp4", str(tmp_path / "out.mp4")]

    def test_software_transcode(self, tmp_path):
        cmd = make_builder(software_preset="fast", software_crf=20).build_transcode_command(
            tmp_path / "in.mkv", tmp_path / "out.mp4", FULL_TRANSCODE, EncoderChoice.SOFTWARE
        )

        assert cmd[cmd.index("-c:v") + 1] == "libx264"
        assert cmd[cmd.index("-preset") + 1] == "fast"
        assert cmd[cmd.index("-crf") + 1] == "20"
        assert cmd[cmd.index("-c:a") + 1] == "aac"
        assert cmd[cmd.index("-b:a") + 1] == "160k"
        assert "-init_hw_device" not in cmd

    def test_vaapi_opens_device_before_input(self, tmp_path):
        cmd = make_builder().build_transcode_command(
            tmp_path / "in.mkv", tmp_path / "out.mp4", FULL_TRANSCODE, EncoderChoice.VAAPI
        )

        assert cmd.index("-init_hw_device") < cmd.index("-i")
        assert cmd[cmd.index("-init_hw_device") + 1] == "vaapi=va:/dev/dri/renderD128"
        assert cmd[cmd.index("-c:v") + 1] == "h264_vaapi"
        assert cmd[cmd.index("-vf") + 1] == "format=nv12,hwupload"

    def test_nvenc_and_qsv_encoders(self, tmp_path):
        builder = make_builder()
        nvenc = builder.build_transcode_command(
            tmp_path / "in.mkv", tmp_path / "out.mp4", FULL_TRANSCODE, EncoderChoice.NVENC
        )
        qsv = builder.build_transcode_command(
            tmp_path / "in.mkv", tmp_path / "out.mp4", FULL_TRANSCODE, EncoderChoice.QSV
        )

        assert nvenc[nvenc.index("-c:v") + 1] == "h264_nvenc"
        assert "-init_hw_device" not in nvenc
        assert qsv[qsv.index("-c:v") + 1] == "h264_qsv"
        assert qsv[qsv.index("-init_hw_device") + 1] == "qsv=qs"

    def test_audio_only_transcode_keeps_video(self, tmp_path):
        strategy = TranscodeStrategy(TrackAction.COPY, TrackAction.TRANSCODE)
        cmd = make_builder().build_transcode_command(
            tmp_path / "in.mp4", tmp_path / "out.mp4", strategy, EncoderChoice.VAAPI
        )

        assert cmd[cmd.index("-c:v") + 1] == "copy"
        assert cmd[cmd.index("-c:a") + 1] == "aac"
        assert "-init_hw_device" not in cmd

    def test_text_subtitles_become_mov_text(self, tmp_path):
        strategy = TranscodeStrategy(TrackAction.COPY, TrackAction.COPY, subtitle_indexes=(2, 4))
        cmd = make_builder().build_transcode_command(
            tmp_path / "in.mkv", tmp_path / "out.mp4", strategy, EncoderChoice.SOFTWARE
        )

        maps = [cmd[i + 1] for i, arg in enumerate(cmd) if arg == "-map"]
        assert maps == ["0:v:0", "0:a:0?", "0:2", "0:4"]
        assert cmd[cmd.index("-c:s") + 1] == "mov_text"

    def test_subtitle_command(self, tmp_path):
        cmd = make_builder().build_subtitle_command(tmp_path / "in.mkv", 3, tmp_path / "out.srt")

        assert cmd[cmd.index("-map") + 1] == "0:3"
        assert cmd[cmd.index("-c:s") + 1] == "srt"
        assert cmd[-3:] == ["-f", "srt", str(tmp_path / "out.srt")]


class TestErrorClassifier:
    def test_hardware_errors_fall_back(self):
        classifier = ErrorClassifier()
        assert classifier.is_hardware_error("[h264_nvenc] No NVENC capable devices found")
        assert classifier.should_fall_back("Failed to initialise VAAPI connection: -1")

    def test_fatal_errors_do_not_fall_back(self):
        classifier = ErrorClassifier()
        assert classifier.is_fatal_error("in.mkv: Invalid data found when processing input")
        assert not classifier.should_fall_back("moov atom not found")

    def test_unknown_errors_fall_back(self):
        classifier = ErrorClassifier()
        assert classifier.classify("something odd happened") == (None, "unknown")
        assert classifier.should_fall_back("something odd happened")
        assert classifier.get_error_description("something odd happened") == "Unknown error"


class TestTranscodeExecutor:
    """Executor behaviour against a scripted runner."""

    @pytest.mark.asyncio
    async def test_success_returns_output(self, temp_output_dir):
        def handler(command, args):
            writes_output(args)
            return CommandResult(exit_code=0)

        runner = FakeRunner(handler)
        output = temp_output_dir / "out.mp4"
        result = await make_executor(runner).transcode(Path("in.mp4"), COPY_COPY, EncoderChoice.SOFTWARE, output)

        assert result == output
        assert output.stat().st_size > 0
        assert runner.encoders_used() == ["copy"]

    @pytest.mark.asyncio
    async def test_hardware_failure_falls_back_to_software(self, temp_output_dir):
        def handler(command, args):
            if "h264_nvenc" in args:
                writes_output(args, b"partial")
                return CommandResult(exit_code=1, stderr="[h264_nvenc] No NVENC capable devices found")
            writes_output(args)
            return CommandResult(exit_code=0)

        runner = FakeRunner(handler)
        executor = make_executor(runner, EncoderChoice.NVENC)
        output = temp_output_dir / "out.mp4"

        await executor.transcode(Path("in.mkv"), FULL_TRANSCODE, EncoderChoice.NVENC, output)

        assert runner.encoders_used() == ["h264_nvenc", "libx264"]
        assert output.read_bytes() != b"partial"

    @pytest.mark.asyncio
    async def test_fallback_walks_the_whole_chain(self, temp_output_dir):
        def handler(command, args):
            if "libx264" in args:
                writes_output(args)
                return CommandResult(exit_code=0)
            return CommandResult(exit_code=1, stderr="Device creation failed: -22")

        runner = FakeRunner(handler)
        executor = make_executor(runner, EncoderChoice.VAAPI, EncoderChoice.QSV, EncoderChoice.NVENC)
        await executor.transcode(Path("in.mkv"), FULL_TRANSCODE, EncoderChoice.VAAPI, temp_output_dir / "o.mp4")

        assert runner.encoders_used() == ["h264_vaapi", "h264_qsv", "h264_nvenc", "libx264"]

    @pytest.mark.asyncio
    async def test_fatal_input_error_does_not_fall_back(self, temp_output_dir):
        runner = FakeRunner(lambda command, args: CommandResult(
            exit_code=1, stderr="in.mkv: Invalid data found when processing input"
        ))
        executor = make_executor(runner, EncoderChoice.NVENC)

        with pytest.raises(TranscodeError) as exc_info:
            await executor.transcode(Path("in.mkv"), FULL_TRANSCODE, EncoderChoice.NVENC, temp_output_dir / "o.mp4")

        assert exc_info.value.exit_code == 1
        assert "Invalid data" in exc_info.value.stderr_tail
        assert len(runner.calls) == 1

    @pytest.mark.asyncio
    async def test_fallback_disabled(self, temp_output_dir):
        runner = FakeRunner(lambda command, args: CommandResult(exit_code=1, stderr="nvenc failure"))
        executor = make_executor(runner, EncoderChoice.NVENC, fallback=False)

        with pytest.raises(TranscodeError):
            await executor.transcode(Path("in.mkv"), FULL_TRANSCODE, EncoderChoice.NVENC, temp_output_dir / "o.mp4")
        assert len(runner.calls) == 1

    @pytest.mark.asyncio
    async def test_timeout_is_not_retried(self, temp_output_dir):
        def handler(command, args):
            writes_output(args, b"half a movie")
            return CommandResult(exit_code=None, timed_out=True)

        runner = FakeRunner(handler)
        executor = make_executor(runner, EncoderChoice.NVENC)

        with pytest.raises(TranscodeError) as exc_info:
            await executor.transcode(Path("in.mkv"), FULL_TRANSCODE, EncoderChoice.NVENC, temp_output_dir / "o.mp4")

        assert exc_info.value.timed_out
        assert len(runner.calls) == 1
        assert list(temp_output_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_spawn_error(self, temp_output_dir):
        runner = FakeRunner(lambda command, args: CommandResult(exit_code=None, spawn_error="No such file"))

        with pytest.raises(TranscodeSpawnError):
            await make_executor(runner).transcode(
                Path("in.mp4"), COPY_COPY, EncoderChoice.SOFTWARE, temp_output_dir / "o.mp4"
            )
        assert list(temp_output_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_clean_exit_without_output_is_an_error(self, temp_output_dir):
        def handler(command, args):
            Path(args[-1]).touch()
            return CommandResult(exit_code=0)

        with pytest.raises(TranscodeError, match="no output"):
            await make_executor(FakeRunner(handler)).transcode(
                Path("in.mp4"), COPY_COPY, EncoderChoice.SOFTWARE, temp_output_dir / "o.mp4"
            )
        assert list(temp_output_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_cancellation_removes_partial_output(self, temp_output_dir):
        started = asyncio.Event()

        async def slow(args):
            writes_output(args, b"partial")
            started.set()
            await asyncio.sleep(30)
            return CommandResult(exit_code=0)

        runner = FakeRunner(lambda command, args: slow(args))
        output = temp_output_dir / "o.mp4"
        task = asyncio.create_task(
            make_executor(runner).transcode(Path("in.mp4"), COPY_COPY, EncoderChoice.SOFTWARE, output)
        )
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert not output.exists()


@pytest.mark.requires_ffmpeg
@pytest.mark.integration
class TestTranscodeWithFFmpeg:
    """Executor against real FFmpeg."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("choice", list(EncoderChoice))
    async def test_invalid_input_leaves_no_files(self, requires_ffmpeg, tmp_path, choice):
        garbage = tmp_path / "garbage.mkv"
        garbage.write_bytes(b"\x1a\x45\xdf\xa3 definitely not matroska " * 256)
        out_dir = tmp_path / "out"

        executor = TranscodeExecutor(
            "ffmpeg", make_selector(choice) if choice.is_hardware else make_selector(), make_builder(
                software_preset="ultrafast"
            ),
        )
        with pytest.raises(TranscodeError):
            await executor.transcode(garbage, FULL_TRANSCODE, choice, out_dir / "output.mp4")

        assert list(out_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_copy_copy_remux(self, requires_ffmpeg, browser_ready_video, temp_output_dir):
        executor = TranscodeExecutor("ffmpeg", make_selector(), make_builder())
        output = await executor.transcode(
            browser_ready_video, COPY_COPY, EncoderChoice.SOFTWARE, temp_output_dir / "remux.mp4"
        )

        data = output.read_bytes()
        # faststart puts moov ahead of mdat
        assert data.index(b"moov") < data.index(b"mdat")

    @pytest.mark.asyncio
    @pytest.mark.slow
    async def test_software_transcode(self, requires_ffmpeg, needs_transcode_video, temp_output_dir):
        executor = TranscodeExecutor("ffmpeg", make_selector(), make_builder(software_preset="ultrafast"))
        strategy = TranscodeStrategy(TrackAction.TRANSCODE, TrackAction.TRANSCODE, subtitle_indexes=(2,))
        output = await executor.transcode(
            needs_transcode_video, strategy, EncoderChoice.SOFTWARE, temp_output_dir / "full.mp4"
        )
        assert output.stat().st_size > 0
