"""
Tests for the HTTP API.

Most tests run against a service whose ffprobe/ffmpeg are scripted, so
they need no media tools; the last class drives real FFmpeg.
"""

import time

import pytest
from fastapi.testclient import TestClient

from cinevault import __version__
from cinevault.api import create_app
from cinevault.api.routes import ingest as ingest_routes
from cinevault.errors import QueueFullError
from cinevault.service import MediaService
from cinevault.storage.status import MemoryStatusStore

from conftest import SAMPLE_SRT, FakeRunner, make_selector
from test_ingest import media_handler


PAYLOAD = bytes(range(256)) * 100
STORED = b"REMUX:" + PAYLOAD


@pytest.fixture
def scripted_service(test_config, local_store, fake_metadata) -> MediaService:
    test_config.transcoding.ffmpeg_path = "ffmpeg"
    test_config.transcoding.ffprobe_path = "ffprobe"
    runner = FakeRunner(media_handler(
        subtitles=[{"index": 2, "codec_name": "subrip", "tags": {"language": "eng"}}],
    ))
    return MediaService.from_config(
        test_config,
        runner=runner,
        selector=make_selector(prefer_hw_accel=False),
        store=local_store,
        metadata=fake_metadata,
        status_store=MemoryStatusStore(),
    )


@pytest.fixture
def client(scripted_service):
    with TestClient(create_app(scripted_service)) as client:
        yield client


def post_movie(client, metadata_id="tt0000001", name="Test Pattern.mp4", payload=PAYLOAD, wait=True, **extra):
    files = {"file": (name, payload, "video/mp4")}
    if "subtitle" in extra:
        files["subtitle"] = ("subs.srt", extra.pop("subtitle"), "application/x-subrip")
    data = {"metadata_id": metadata_id}
    data.update({k: str(v) for k, v in extra.items()})
    return client.post("/api/movies", files=files, data=data, params={"wait": "true"} if wait else None)


def wait_for_job(client, job_id, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        job = client.get(f"/api/jobs/{job_id}").json()
        if job["status"] not in ("queued", "processing"):
            return job
        time.sleep(0.05)
    raise AssertionError(f"Job {job_id} did not finish")


class TestHealthEndpoints:
    """Tests for health, capabilities and stats."""

    def test_health(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == __version__
        assert data["current_jobs"] == 0
        assert data["queued_jobs"] == 0
        assert data["uptime_seconds"] >= 0

    def test_capabilities(self, client):
        data = client.get("/api/capabilities").json()

        assert [e["choice"] for e in data["encoders"]] == ["vaapi", "qsv", "nvenc", "software"]
        assert data["selected"] == "software"
        assert data["max_concurrent_jobs"] == 1
        assert data["max_queued_jobs"] == 2
        assert data["fallback_to_software"] is True

    def test_stats(self, client):
        post_movie(client)
        data = client.get("/api/stats").json()

        assert data["successful_jobs"] == 1
        assert data["current_queue_length"] == 0
        assert data["active_jobs"] == 0

    def test_service_is_stopped_after_shutdown(self, scripted_service):
        with TestClient(create_app(scripted_service)):
            assert scripted_service.queue.running
        assert not scripted_service.queue.running


class TestIngestEndpoints:
    """Tests for movie upload and job tracking."""

    def test_upload_and_wait(self, client, scripted_service):
        response = post_movie(client)

        assert response.status_code == 201
        entry = response.json()
        assert entry["title"] == "Test Pattern"
        assert entry["description"] == "Plot of Test Pattern"
        assert entry["stored_object_key"].startswith("test-pattern-")
        assert entry["stored_object_key"].endswith(".mp4")
        assert list(scripted_service.upload_dir.iterdir()) == []

    def test_upload_returns_job(self, client):
        response = post_movie(client, wait=False)

        assert response.status_code == 202
        job = response.json()
        assert job["metadata_id"] == "tt0000001"
        assert job["source_name"] == "Test Pattern.mp4"

        finished = wait_for_job(client, job["job_id"])
        assert finished["status"] == "completed"
        assert finished["entry"]["title"] == "Test Pattern"
        assert any(j["job_id"] == job["job_id"] for j in client.get("/api/jobs").json())

    def test_upload_with_subtitle(self, client):
        entry = post_movie(client, subtitle=SAMPLE_SRT.encode()).json()

        assert entry["subtitle_object_key"].endswith(".srt")
        response = client.get("/api/movies/tt0000001/subtitle")
        assert response.status_code == 200
        assert b"Hello from the test suite" in response.content

    def test_unsupported_extension(self, client):
        response = post_movie(client, name="notes.txt")
        assert response.status_code == 415

    def test_unsupported_subtitle_extension(self, client):
        response = client.post(
            "/api/movies",
            files={"file": ("movie.mp4", PAYLOAD, "video/mp4"), "subtitle": ("subs.vtt", b"WEBVTT", "text/vtt")},
            data={"metadata_id": "tt0000001"},
        )
        assert response.status_code == 415

    def test_oversized_subtitle(self, client, scripted_service):
        response = post_movie(client, subtitle=b"x" * (5 * 1024 * 1024 + 1))

        assert response.status_code == 413
        assert list(scripted_service.upload_dir.iterdir()) == []

    def test_failed_subtitle_save_removes_video(self, scripted_service, monkeypatch):
        real_save = ingest_routes.save_upload

        async def save_then_fail(upload, directory):
            if upload.filename.endswith(".srt"):
                raise OSError("No space left on device")
            return await real_save(upload, directory)

        monkeypatch.setattr(ingest_routes, "save_upload", save_then_fail)
        with TestClient(create_app(scripted_service), raise_server_exceptions=False) as client:
            response = post_movie(client, subtitle=SAMPLE_SRT.encode())

        assert response.status_code == 500
        assert list(scripted_service.upload_dir.iterdir()) == []

    def test_unknown_metadata_is_404(self, client, local_store):
        response = post_movie(client, metadata_id="tt9999999")

        assert response.status_code == 404
        assert response.json()["stage"] == "catalog"
        assert response.json()["retryable"] is False
        assert list(local_store.base.iterdir()) == []

    def test_duplicate_is_rejected(self, client):
        assert post_movie(client).status_code == 201

        response = post_movie(client, name="Again.mp4")
        assert response.status_code == 422
        assert response.json()["stage"] == "catalog"

    def test_missing_subtitle_track(self, client):
        response = post_movie(client, subtitle_track=7)

        assert response.status_code == 404
        assert response.json()["stage"] == "transcode"

    def test_backlog_full(self, client, scripted_service, monkeypatch):
        def reject(*args, **kwargs):
            raise QueueFullError("Ingestion backlog is full (2 waiting)")

        monkeypatch.setattr(scripted_service.queue, "submit", reject)
        response = post_movie(client, wait=False)

        assert response.status_code == 503
        assert response.headers["retry-after"] == "30"
        assert response.json()["retryable"] is True
        assert list(scripted_service.upload_dir.iterdir()) == []

    def test_unknown_job(self, client):
        assert client.get("/api/jobs/nope").status_code == 404
        assert client.delete("/api/jobs/nope").status_code == 404

    def test_cancel_finished_job(self, client):
        job = post_movie(client, wait=False).json()
        wait_for_job(client, job["job_id"])

        response = client.delete(f"/api/jobs/{job['job_id']}")
        assert response.status_code == 409


class TestCatalogEndpoints:
    """Tests for listing, lookup, delete and subtitle extraction."""

    def test_list_and_get(self, client):
        post_movie(client, "tt0000001")
        post_movie(client, "tt0000002", name="Sine Wave.mkv")

        movies = client.get("/api/movies").json()
        assert [m["metadata_id"] for m in movies] == ["tt0000002", "tt0000001"]
        assert len(client.get("/api/movies", params={"limit": 1}).json()) == 1
        assert client.get("/api/movies/tt0000002").json()["title"] == "Sine Wave"

    def test_invalid_paging(self, client):
        assert client.get("/api/movies", params={"limit": 0}).status_code == 422

    def test_missing_movie(self, client):
        assert client.get("/api/movies/tt0000001").status_code == 404
        assert client.get("/api/movies/tt0000001/stream").status_code == 404

    def test_delete(self, client, local_store):
        post_movie(client)

        response = client.delete("/api/movies/tt0000001")

        assert response.status_code == 200
        assert client.get("/api/movies/tt0000001").status_code == 404
        assert list(local_store.base.iterdir()) == []

    def test_extract_subtitle(self, client):
        entry = post_movie(client).json()

        response = client.post("/api/movies/tt0000001/subtitles/2")

        assert response.status_code == 200
        key = response.json()["subtitle_object_key"]
        assert key == entry["stored_object_key"].replace(".mp4", ".2.srt")
        assert b"extracted" in client.get("/api/movies/tt0000001/subtitle").content

    def test_extract_missing_track(self, client):
        post_movie(client)
        assert client.post("/api/movies/tt0000001/subtitles/9").status_code == 404

    def test_movie_without_subtitle(self, client):
        post_movie(client)
        response = client.get("/api/movies/tt0000001/subtitle")
        assert response.status_code == 404
        assert response.json()["detail"] == "Movie has no subtitle"


class TestStreamEndpoint:
    """Tests for Range handling on the stream route."""

    def test_full_stream(self, client):
        post_movie(client)

        response = client.get("/api/movies/tt0000001/stream")

        assert response.status_code == 200
        assert response.content == STORED
        assert response.headers["accept-ranges"] == "bytes"
        assert response.headers["content-length"] == str(len(STORED))
        assert response.headers["content-type"] == "video/mp4"

    def test_range(self, client):
        post_movie(client)

        response = client.get("/api/movies/tt0000001/stream", headers={"Range": "bytes=100-199"})

        assert response.status_code == 206
        assert response.content == STORED[100:200]
        assert response.headers["content-range"] == f"bytes 100-199/{len(STORED)}"
        assert response.headers["content-length"] == "100"

    def test_open_ended_range(self, client):
        post_movie(client)

        response = client.get("/api/movies/tt0000001/stream", headers={"Range": "bytes=25000-"})

        assert response.status_code == 206
        assert response.content == STORED[25000:]

    def test_suffix_range(self, client):
        post_movie(client)

        response = client.get("/api/movies/tt0000001/stream", headers={"Range": "bytes=-6"})

        assert response.status_code == 206
        assert response.content == STORED[-6:]

    def test_unsatisfiable_range(self, client):
        post_movie(client)

        response = client.get("/api/movies/tt0000001/stream", headers={"Range": "bytes=999999-"})

        assert response.status_code == 416
        assert response.headers["content-range"] == f"bytes */{len(STORED)}"


class TestUploadEndpoints:
    """Tests for library placement uploads."""

    def test_upload_is_placed(self, client, test_config, tmp_path):
        response = client.post("/api/uploads", files={"file": ("Holiday Film.mkv", b"film", "video/x-matroska")})

        assert response.status_code == 202
        upload_id = response.json()["id"]
        assert response.json()["original_name"] == "Holiday Film.mkv"

        record = client.get(f"/api/uploads/{upload_id}").json()
        assert record["status"] == "completed"
        assert record["message"] == "Upload processed successfully."
        assert record["target_path"].startswith(str((tmp_path / "library").resolve()))
        assert [u["id"] for u in client.get("/api/uploads").json()] == [upload_id]

    def test_rejects_non_video(self, client):
        response = client.post("/api/uploads", files={"file": ("notes.txt", b"x", "text/plain")})
        assert response.status_code == 415

    def test_unknown_upload(self, client):
        assert client.get("/api/uploads/nope").status_code == 404


@pytest.mark.requires_ffmpeg
@pytest.mark.integration
class TestApiWithFFmpeg:
    """Upload and stream a real file."""

    def test_upload_and_stream(self, requires_ffmpeg, api_client, browser_ready_video):
        with open(browser_ready_video, "rb") as f:
            response = api_client.post(
                "/api/movies",
                files={"file": ("Browser Ready.mp4", f, "video/mp4")},
                data={"metadata_id": "tt0000001"},
                params={"wait": "true"},
            )

        assert response.status_code == 201
        head = api_client.get("/api/movies/tt0000001/stream", headers={"Range": "bytes=0-11"})
        assert head.status_code == 206
        assert head.content[4:8] == b"ftyp"
