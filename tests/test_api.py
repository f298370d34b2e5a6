"""HTTP API tests running the full app against the fake FFmpeg tools."""

import asyncio
import json
import time

import pytest
from fastapi.testclient import TestClient

from vidingest.core.config import Settings
from vidingest.main import create_app

UPLOAD = "/api/v1/videos/upload"
UPLOAD_ASYNC = "/api/v1/videos/upload-async"


def media(**spec) -> bytes:
    return json.dumps(spec).encode()


REMUXABLE = media(probe="h264,1920,1080", ffmpeg="ok", segments=3)


def post_video(client, url, video_id, content=REMUXABLE, filename="clip.mp4"):
    data = {"video_id": video_id} if video_id is not None else {}
    files = {"video_file": (filename, content, "video/mp4")} if content is not None else None
    return client.post(url, data=data, files=files)


def wait_terminal(client, video_id, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get(f"/api/v1/videos/status/{video_id}").json()
        if body["status"] in ("completed", "failed"):
            return body
        time.sleep(0.05)
    raise AssertionError(f"{video_id} still {body['status']}")


@pytest.fixture
def make_settings(tmp_path, fake_tools):
    def _make(**overrides):
        values = dict(
            video_storage_path=str(tmp_path / "videos"),
            public_base_url="http://cdn.test/videos",
            ffmpeg_path=fake_tools["ffmpeg"],
            ffprobe_path=fake_tools["ffprobe"],
            probe_timeout_seconds=5,
            queue_poll_interval=0.05,
            max_upload_size=1024 * 1024,
        )
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def settings(make_settings):
    return make_settings()


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as test_client:
        yield test_client


def test_ping_and_root(client):
    assert client.get("/api/ping").json() == {"status": "online", "message": "Pong"}
    assert client.get("/").json()["status"] == "online"


def test_inline_upload_remux(client, settings):
    response = post_video(client, UPLOAD, "abc123")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["status"] == "completed"
    assert body["data"]["strategy"] == "remux"
    assert body["data"]["cdn_url"] == "http://cdn.test/videos/abc123/master.m3u8"

    pipeline = client.app.state.pipeline
    job_dir = pipeline.layout.job_dir("abc123")
    assert (job_dir / "master.m3u8").is_file()
    assert len(pipeline.layout.list_segments("abc123")) == 3
    assert not any(p.name.startswith("temp_") for p in job_dir.iterdir())


def test_inline_upload_corrupt_file(client):
    response = post_video(client, UPLOAD, "xyz999", content=b"\x00\xffnot a video")

    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "PROCESSING_ERROR"
    assert body["data"]["status"] == "failed"
    assert body["data"]["cdn_url"] is None
    assert not client.app.state.pipeline.layout.manifest_path("xyz999").exists()


def test_async_upload_then_poll(client):
    response = post_video(client, UPLOAD_ASYNC, "bg1", content=media(probe="hevc,3840,2160", sleep=0.2))

    assert response.status_code == 202
    body = response.json()
    assert body["processing"] == "queued"
    assert body["data"]["cdn_url"] == "http://cdn.test/videos/bg1/master.m3u8"

    final = wait_terminal(client, "bg1")
    assert final["status"] == "completed"
    assert final["strategy"] == "reencode"
    assert final["started_at"] is not None


def test_status_unknown_video(client):
    response = client.get("/api/v1/videos/status/never-seen")

    assert response.status_code == 404
    assert response.json()["status"] == "not_found"


@pytest.mark.parametrize(
    "video_id, content, filename, code",
    [
        (None, REMUXABLE, "clip.mp4", "MISSING_VIDEO_ID"),
        ("   ", REMUXABLE, "clip.mp4", "MISSING_VIDEO_ID"),
        ("../escape", REMUXABLE, "clip.mp4", "INVALID_VIDEO_ID"),
        ("abc", None, "clip.mp4", "MISSING_VIDEO_FILE"),
        ("abc", b"", "clip.mp4", "MISSING_VIDEO_FILE"),
        ("abc", REMUXABLE, "notes.txt", "INVALID_FORMAT"),
        ("abc", b"x" * (2 * 1024 * 1024), "big.mp4", "FILE_TOO_LARGE"),
    ],
)
def test_upload_validation(client, video_id, content, filename, code):
    response = post_video(client, UPLOAD_ASYNC, video_id, content=content, filename=filename)

    assert response.status_code == 400
    assert response.json()["code"] == code
    assert client.app.state.pipeline.store.count() == 0


def test_duplicate_active_upload_is_rejected(client):
    slow = media(probe="h264,640,360", sleep=0.5)
    assert post_video(client, UPLOAD_ASYNC, "dup", content=slow).status_code == 202

    response = post_video(client, UPLOAD_ASYNC, "dup", content=slow)
    assert response.status_code == 409
    assert response.json()["code"] == "DUPLICATE_JOB"
    assert response.json()["data"]["status"] in ("queued", "processing")

    assert wait_terminal(client, "dup")["status"] == "completed"


def test_reupload_after_completion(client):
    assert post_video(client, UPLOAD, "again").status_code == 200
    response = post_video(client, UPLOAD, "again")

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "completed"


def test_info_jobs_and_delete(client):
    post_video(client, UPLOAD, "abc123")
    post_video(client, UPLOAD, "xyz999", content=b"garbage")

    info = client.get("/api/v1/videos/info/abc123").json()
    assert info["info"]["has_manifest"] is True
    assert info["info"]["segments"] == 3
    assert client.get("/api/v1/videos/info/xyz999").status_code == 404

    jobs = client.get("/api/v1/videos/jobs").json()
    assert jobs["total"] == 2
    failed = client.get("/api/v1/videos/jobs", params={"status": "failed"}).json()
    assert [job["video_id"] for job in failed["jobs"]] == ["xyz999"]

    response = client.delete("/api/v1/videos/jobs/abc123", params={"purge_files": True})
    assert response.status_code == 200
    assert client.get("/api/v1/videos/status/abc123").status_code == 404
    assert not client.app.state.pipeline.layout.job_dir("abc123").exists()
    assert client.delete("/api/v1/videos/jobs/abc123").status_code == 404


def test_cleanup(client):
    post_video(client, UPLOAD, "one")
    post_video(client, UPLOAD, "two")

    kept = client.post("/api/v1/videos/cleanup", params={"older_than_days": 1}).json()
    assert kept["deleted"] == 0

    response = client.post("/api/v1/videos/cleanup", params={"older_than_days": 0})
    assert response.status_code == 200
    assert response.json()["deleted"] == 2
    assert client.app.state.pipeline.layout.list_job_dirs() == []


def test_health(client):
    body = client.get("/health").json()

    assert body["accepting_uploads"] is True
    assert body["tools"]["ffmpeg"]["available"] is True
    assert body["tools"]["ffprobe"]["available"] is True
    assert body["scheduler"]["capacity"] == 2
    assert body["job_store"] == "memory"


def test_missing_tools_degrade_service(make_settings, tmp_path):
    settings = make_settings(ffmpeg_path=str(tmp_path / "no-ffmpeg"))

    with TestClient(create_app(settings)) as client:
        response = post_video(client, UPLOAD_ASYNC, "abc")
        assert response.status_code == 503
        assert response.json()["code"] == "TOOLS_UNAVAILABLE"

        health = client.get("/health").json()
        assert health["status"] == "degraded"
        assert health["accepting_uploads"] is False


def test_missing_tools_fail_startup_when_required(make_settings, tmp_path):
    settings = make_settings(ffprobe_path=str(tmp_path / "no-ffprobe"), require_tools_on_startup=True)

    with pytest.raises(RuntimeError):
        with TestClient(create_app(settings)):
            pass


def test_database_backend(make_settings, tmp_path):
    settings = make_settings(job_store_backend="database", database_url=f"sqlite:///{tmp_path / 'jobs.db'}")

    with TestClient(create_app(settings)) as client:
        assert post_video(client, UPLOAD, "persisted").status_code == 200

    with TestClient(create_app(settings)) as client:
        body = client.get("/api/v1/videos/status/persisted").json()
        assert body["status"] == "completed"
        assert client.get("/health").json()["job_store"] == "database"


@pytest.mark.parametrize("days", ["1e9", "inf"])
def test_cleanup_with_huge_age_removes_nothing(client, days):
    post_video(client, UPLOAD, "keep")

    response = client.post("/api/v1/videos/cleanup", params={"older_than_days": days})

    assert response.status_code == 200
    assert response.json()["deleted"] == 0
    assert [p.name for p in client.app.state.pipeline.layout.list_job_dirs()] == ["keep"]


def test_upload_handlers_keep_store_calls_off_the_event_loop(client, monkeypatch):
    pipeline = client.app.state.pipeline
    on_loop = []

    def outside_loop(fn):
        def wrapper(*args, **kwargs):
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                pass
            else:
                on_loop.append(fn.__name__)
            return fn(*args, **kwargs)

        return wrapper

    monkeypatch.setattr(pipeline.store, "get", outside_loop(pipeline.store.get))
    monkeypatch.setattr(pipeline.store, "create", outside_loop(pipeline.store.create))
    monkeypatch.setattr(pipeline.scheduler, "submit", outside_loop(pipeline.scheduler.submit))

    assert post_video(client, UPLOAD_ASYNC, "offloop").status_code == 202
    assert post_video(client, UPLOAD, "inline").status_code == 200
    assert wait_terminal(client, "offloop")["status"] == "completed"
    assert on_loop == []


def test_database_backend_async_upload(make_settings, tmp_path):
    settings = make_settings(job_store_backend="database", database_url=f"sqlite:///{tmp_path / 'jobs.db'}")

    with TestClient(create_app(settings)) as client:
        assert post_video(client, UPLOAD_ASYNC, "queued-db").status_code == 202
        assert wait_terminal(client, "queued-db")["status"] == "completed"
        assert post_video(client, UPLOAD_ASYNC, "queued-db").status_code == 202
        assert wait_terminal(client, "queued-db")["status"] == "completed"
