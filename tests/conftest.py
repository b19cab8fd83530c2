"""
Cinevault Test Configuration and Fixtures

Provides:
- Auto-generated test media files (no external downloads needed)
- Scriptable fakes for the command runner and metadata lookups
- Shared fixtures for config, stores, the service and the API client
"""

import asyncio
import shutil
import subprocess
from pathlib import Path
from typing import Callable, Dict, Generator, List, Optional, Tuple
import pytest
from fastapi.testclient import TestClient

# Add project root to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from cinevault.api import create_app
from cinevault.config import CinevaultConfig, HardwareConfig, set_config
from cinevault.errors import NotFoundError
from cinevault.hardware import EncoderChoice, HardwareEncoderSelector
from cinevault.models import MovieMetadata
from cinevault.process import CommandResult
from cinevault.service import MediaService
from cinevault.storage.objects import LocalObjectStore
from cinevault.storage.status import MemoryStatusStore


SAMPLE_SRT = """1
00:00:00,000 --> 00:00:00,800
Hello from the test suite

2
00:00:00,900 --> 00:00:01,500
Second line
"""


# =============================================================================
# TEST MEDIA GENERATION
# =============================================================================

class TestMediaGenerator:
    """
    Generates test media files using FFmpeg.
    No external downloads - creates synthetic test videos.
    """

    __test__ = False  # Not a test class despite the name

    def __init__(self, output_dir: Path):
        self.output_dir = output_dir
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self._ffmpeg = shutil.which("ffmpeg")

    @property
    def has_ffmpeg(self) -> bool:
        return self._ffmpeg is not None and shutil.which("ffprobe") is not None

    def _run(self, cmd: List[str], output_path: Path) -> Optional[Path]:
        try:
            result = subprocess.run(cmd, capture_output=True, timeout=60)
            if result.returncode == 0 and output_path.exists():
                return output_path
        except (subprocess.TimeoutExpired, OSError) as e:
            print(f"Failed to generate test media: {e}")
        return None

    def generate_browser_ready(self, name: str = "browser_ready", duration: int = 1) -> Optional[Path]:
        """H.264 + AAC in MP4: both tracks can be copied."""
        if not self.has_ffmpeg:
            return None
        output_path = self.output_dir / f"{name}.mp4"
        cmd = [
            self._ffmpeg, "-y",
            "-f", "lavfi", "-i", f"testsrc=duration={duration}:size=320x240:rate=24",
            "-f", "lavfi", "-i", f"sine=frequency=440:duration={duration}",
            "-c:v", "libx264", "-preset", "ultrafast", "-pix_fmt", "yuv420p",
            "-c:a", "aac", "-b:a", "64k",
            "-shortest",
            str(output_path),
        ]
        return self._run(cmd, output_path)

    def generate_needs_transcode(self, name: str = "needs_transcode", duration: int = 1) -> Optional[Path]:
        """MPEG-4 Part 2 + AC-3 in MKV with an English SRT track: nothing can be copied."""
        if not self.has_ffmpeg:
            return None
        srt_path = self.output_dir / f"{name}.srt"
        srt_path.write_text(SAMPLE_SRT)
        output_path = self.output_dir / f"{name}.mkv"
        cmd = [
            self._ffmpeg, "-y",
            "-f", "lavfi", "-i", f"testsrc=duration={duration}:size=320x240:rate=24",
            "-f", "lavfi", "-i", f"sine=frequency=440:duration={duration}",
            "-i", str(srt_path),
            "-map", "0:v", "-map", "1:a", "-map", "2:s",
            "-c:v", "mpeg4", "-c:a", "ac3", "-c:s", "srt",
            "-metadata:s:s:0", "language=eng",
            "-shortest",
            str(output_path),
        ]
        return self._run(cmd, output_path)

    def generate_test_videos(self) -> dict:
        """
        Generate a set of test videos for different scenarios.

        Returns:
            Dict mapping video type to path
        """
        videos = {}

        path = self.generate_browser_ready()
        if path:
            videos["browser_ready"] = path

        path = self.generate_needs_transcode()
        if path:
            videos["needs_transcode"] = path

        return videos


# =============================================================================
# FAKES
# =============================================================================

RunHandler = Callable[[str, List[str]], CommandResult]


class FakeRunner:
    """
    Stands in for CommandRunner. ``handler(command, args)`` returns the
    CommandResult (or a coroutine producing one); every call is recorded.
    """

    def __init__(self, handler: RunHandler):
        self.handler = handler
        self.calls: List[Tuple[str, List[str]]] = []

    async def run(self, command, args=(), cwd=None, timeout=None, on_stderr_line=None, tail_lines=None):
        args = [str(a) for a in args]
        self.calls.append((str(command), args))
        result = self.handler(str(command), args)
        if asyncio.iscoroutine(result):
            result = await result
        return result

    def encoders_used(self) -> List[str]:
        encoders = []
        for _, args in self.calls:
            if "-c:v" in args:
                encoders.append(args[args.index("-c:v") + 1])
        return encoders


class FakeMetadata:
    """Metadata lookup backed by a dict; unknown ids raise NotFoundError."""

    def __init__(self, titles: Optional[Dict[str, str]] = None):
        self.titles = titles if titles is not None else {}
        self.lookups: List[str] = []

    async def fetch(self, identifier: str) -> MovieMetadata:
        self.lookups.append(identifier)
        if identifier not in self.titles:
            raise NotFoundError(f"No metadata for {identifier}")
        return MovieMetadata(
            identifier=identifier,
            title=self.titles[identifier],
            description=f"Plot of {self.titles[identifier]}",
        )


def make_selector(*available: EncoderChoice, prefer_hw_accel: bool = True) -> HardwareEncoderSelector:
    """Selector whose hardware probes report exactly ``available``."""
    probes = {
        choice: (lambda present=(choice in available): present)
        for choice in (EncoderChoice.VAAPI, EncoderChoice.QSV, EncoderChoice.NVENC)
    }
    return HardwareEncoderSelector(HardwareConfig(prefer_hw_accel=prefer_hw_accel), probes=probes)


# =============================================================================
# PYTEST FIXTURES
# =============================================================================

@pytest.fixture(scope="session")
def test_media_dir(tmp_path_factory) -> Path:
    """
    Session-scoped temp directory for test media.
    Auto-cleaned after all tests complete.
    """
    return tmp_path_factory.mktemp("cinevault_test_media")


@pytest.fixture(scope="session")
def media_generator(test_media_dir) -> TestMediaGenerator:
    """Session-scoped media generator."""
    return TestMediaGenerator(test_media_dir)


@pytest.fixture(scope="session")
def test_videos(media_generator) -> dict:
    """
    Generate test videos once per session.
    Returns dict of video paths by type.
    """
    if not media_generator.has_ffmpeg:
        pytest.skip("FFmpeg not available for test media generation")

    videos = media_generator.generate_test_videos()
    if not videos:
        pytest.skip("Failed to generate test videos")

    return videos


@pytest.fixture
def browser_ready_video(test_videos, tmp_path) -> Path:
    """Private copy of the H.264/AAC sample (ingestion deletes its source)."""
    if "browser_ready" not in test_videos:
        pytest.skip("Could not generate H.264/AAC sample")
    target = tmp_path / "incoming" / "Browser Ready.mp4"
    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(test_videos["browser_ready"], target)
    return target


@pytest.fixture
def needs_transcode_video(test_videos, tmp_path) -> Path:
    """Private copy of the MPEG-4/AC-3/SRT sample."""
    if "needs_transcode" not in test_videos:
        pytest.skip("Could not generate MPEG-4/AC-3 sample")
    target = tmp_path / "incoming" / "needs_transcode.mkv"
    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(test_videos["needs_transcode"], target)
    return target


@pytest.fixture
def test_config(tmp_path) -> CinevaultConfig:
    """
    Per-test configuration with every path under a temp directory.
    Hardware acceleration is off so runs are deterministic.
    """
    config = CinevaultConfig()
    config.transcoding.temp_directory = str(tmp_path / "ingest_temp")
    config.transcoding.max_concurrent_jobs = 1
    config.transcoding.max_queued_jobs = 2
    config.transcoding.software_preset = "ultrafast"
    config.hardware.prefer_hw_accel = False
    config.storage.local_root = str(tmp_path / "objects")
    config.catalog.database_path = str(tmp_path / "cinevault.db")
    config.library.directory = str(tmp_path / "library")
    config.logging.level = "WARNING"  # Less noise in tests

    set_config(config)
    return config


@pytest.fixture
def local_store(tmp_path) -> LocalObjectStore:
    store = LocalObjectStore(tmp_path / "objects", bucket="movies", chunk_size=1024)
    store.prepare_sync()
    return store


@pytest.fixture
def fake_metadata() -> FakeMetadata:
    return FakeMetadata({"tt0000001": "Test Pattern", "tt0000002": "Sine Wave"})


@pytest.fixture
def media_service(test_config, local_store, fake_metadata) -> MediaService:
    """Service over real FFmpeg, a local object store and fake metadata."""
    return MediaService.from_config(
        test_config,
        selector=make_selector(prefer_hw_accel=False),
        store=local_store,
        metadata=fake_metadata,
        status_store=MemoryStatusStore(),
    )


@pytest.fixture
def api_client(media_service) -> Generator[TestClient, None, None]:
    """
    Test client for API endpoints.
    The lifespan starts and stops the service around each test.
    """
    with TestClient(create_app(media_service)) as client:
        yield client


@pytest.fixture
def temp_output_dir(tmp_path) -> Path:
    """Per-test temp directory for output files."""
    output_dir = tmp_path / "output"
    output_dir.mkdir()
    return output_dir


# =============================================================================
# SKIP CONDITIONS
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "requires_ffmpeg: marks tests that require FFmpeg"
    )


@pytest.fixture
def requires_ffmpeg():
    """Skip test if FFmpeg not available."""
    if not shutil.which("ffmpeg") or not shutil.which("ffprobe"):
        pytest.skip("FFmpeg not available")
