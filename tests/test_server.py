"""Endpoint tests for the FastAPI server."""
import base64

import pytest
from fastapi.testclient import TestClient

from framecast.backend import create_app
from framecast.renderer import Finalizer
from framecast.tools.storage import LocalObjectStore

from conftest import FAKE_MP4, FakeEncoder, make_frames

W, H = 64, 48


class Recorder:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.records = []

    def __call__(self, record):
        if self.fail:
            raise RuntimeError("insert rejected")
        self.records.append(record)
        return "content-1"


@pytest.fixture
def encoder():
    return FakeEncoder()


@pytest.fixture
def objects(tmp_path):
    return LocalObjectStore(tmp_path / "objects")


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def client(store, registry, encoder, objects, recorder, tmp_path):
    app = create_app(
        store=store,
        registry=registry,
        finalizer=Finalizer(store, registry, output_dir=tmp_path / "renders", runner=encoder),
        object_store=objects,
        record_content=recorder,
        reaper_interval_s=0,
    )
    return TestClient(app)


def _upload(client, session_id, batch_number, start, count, width=W, height=H, payload=None):
    if payload is None:
        payload = make_frames(count, width, height, start=start)
    return client.post(
        "/upload-frame-batch",
        data={
            "sessionId": session_id,
            "batchNumber": str(batch_number),
            "startFrame": str(start),
            "frameCount": str(count),
            "width": str(width),
            "height": str(height),
        },
        files={"frameData": ("batch.raw", payload, "application/octet-stream")},
    )


def _finalize(client, session_id, total, width=W, height=H):
    return client.post("/encode-from-batches", json={
        "sessionId": session_id,
        "totalFrames": total,
        "fps": 30,
        "width": width,
        "height": height,
    })


def test_two_batches_then_finalize(client, store, encoder):
    for number, start in enumerate((0, 30)):
        response = _upload(client, "abc123", number, start, 30)
        assert response.status_code == 200
        assert response.json() == {"success": True, "framesWritten": 30}

    assert store.staged_indices("abc123") == list(range(60))

    response = _finalize(client, "abc123", 60)
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["contentType"] == "video/mp4"
    assert base64.b64decode(body["videoBase64"]) == FAKE_MP4
    assert body["size"] == len(FAKE_MP4)
    assert len(encoder.calls) == 1
    assert not store.exists("abc123")


def test_bad_payload_length_is_400(client, store):
    response = _upload(client, "s1", 0, 0, 2, payload=b"\x00" * 100)

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Batch validation failed"
    assert body["details"]
    assert not store.exists("s1")


def test_zero_frame_batch_is_accepted(client):
    response = _upload(client, "s1", 0, 0, 0, payload=b"")

    assert response.status_code == 200
    assert response.json()["framesWritten"] == 0


def test_missing_form_field_is_400(client):
    response = client.post(
        "/upload-frame-batch",
        data={"sessionId": "s1", "batchNumber": "0"},
        files={"frameData": ("batch.raw", b"", "application/octet-stream")},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid request"
    assert "startFrame" in response.json()["details"]


def test_invalid_session_id_is_400(client):
    response = _upload(client, "../etc", 0, 0, 1)
    assert response.status_code == 400


def test_finalize_with_gap_is_422_and_names_frame(client, encoder):
    _upload(client, "s1", 0, 0, 30)
    # Frames 30..44 never arrive
    _upload(client, "s1", 1, 45, 15)

    response = _finalize(client, "s1", 60)

    assert response.status_code == 422
    body = response.json()
    assert body["error"] == "Missing frame"
    assert body["missingFrame"] == 30
    assert encoder.calls == []


def test_gap_can_be_resent_after_missing_frame(client, encoder):
    _upload(client, "s1", 0, 0, 30)
    _upload(client, "s1", 1, 45, 15)
    assert _finalize(client, "s1", 60).status_code == 422

    assert _upload(client, "s1", 2, 30, 15).status_code == 200
    response = _finalize(client, "s1", 60)

    assert response.status_code == 200
    assert len(encoder.calls) == 1


def test_out_of_order_batch_while_collecting_is_409(client):
    _upload(client, "s1", 0, 30, 30)
    assert _upload(client, "s1", 1, 0, 30).status_code == 409


def test_second_finalize_is_409(client, encoder):
    _upload(client, "abc123", 0, 0, 5)
    assert _finalize(client, "abc123", 5).status_code == 200

    response = _finalize(client, "abc123", 5)

    assert response.status_code == 409
    assert "already complete" in response.json()["details"]
    assert len(encoder.calls) == 1


def test_batch_after_finalize_is_409(client):
    _upload(client, "s1", 0, 0, 3)
    _finalize(client, "s1", 3)

    assert _upload(client, "s1", 1, 3, 1).status_code == 409


def test_encoder_failure_is_500(store, registry, objects, tmp_path):
    from framecast.errors import EncodingFailed

    failing = FakeEncoder(fail_with=EncodingFailed("ffmpeg exited with code 1", returncode=1))
    app = create_app(
        store=store,
        registry=registry,
        finalizer=Finalizer(store, registry, output_dir=tmp_path / "renders", runner=failing),
        object_store=objects,
        record_content=Recorder(),
        reaper_interval_s=0,
    )
    client = TestClient(app)
    _upload(client, "s1", 0, 0, 2)

    response = _finalize(client, "s1", 2)

    assert response.status_code == 500
    assert response.json()["error"] == "Encoding failed"
    assert not store.exists("s1")


def test_malformed_finalize_body_is_400(client):
    response = client.post("/encode-from-batches", json={"sessionId": "s1"})
    assert response.status_code == 400


def test_session_status(client):
    _upload(client, "s1", 0, 0, 4)

    body = client.get("/sessions/s1").json()

    assert body["sessionId"] == "s1"
    assert body["state"] == "collecting"
    assert body["stagedFrames"] == 4


def test_unknown_session_is_404(client):
    assert client.get("/sessions/nobody").status_code == 404


def test_publish_stores_under_owner_path_and_records_content(client, objects, recorder):
    response = client.post(
        "/upload-enhanced-video",
        data={"ownerId": "user-42"},
        files={"file": ("enhanced-video-abc123.mp4", FAKE_MP4, "video/mp4")},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["storagePath"] == "users/user-42/videos/enhanced-video-abc123.mp4"
    assert body["size"] == len(FAKE_MP4)
    assert body["contentId"] == "content-1"
    assert (objects.root / body["storagePath"]).read_bytes() == FAKE_MP4
    assert recorder.records[0]["user_id"] == "user-42"
    assert recorder.records[0]["storage_path"] == body["storagePath"]


def test_publish_record_failure_removes_object(store, registry, objects, tmp_path):
    app = create_app(
        store=store,
        registry=registry,
        finalizer=Finalizer(store, registry, output_dir=tmp_path / "renders", runner=FakeEncoder()),
        object_store=objects,
        record_content=Recorder(fail=True),
        reaper_interval_s=0,
    )

    response = TestClient(app).post(
        "/upload-enhanced-video",
        data={"ownerId": "user-42"},
        files={"file": ("clip.mp4", FAKE_MP4, "video/mp4")},
    )

    assert response.status_code == 502
    assert "insert rejected" in response.json()["details"]
    assert not (objects.root / "users/user-42/videos/clip.mp4").exists()


def test_publish_rejects_empty_file(client):
    response = client.post(
        "/upload-enhanced-video",
        data={"ownerId": "user-42"},
        files={"file": ("clip.mp4", b"", "video/mp4")},
    )
    assert response.status_code == 400


def test_publish_rejects_bad_owner(client):
    response = client.post(
        "/upload-enhanced-video",
        data={"ownerId": "../admin"},
        files={"file": ("clip.mp4", FAKE_MP4, "video/mp4")},
    )
    assert response.status_code == 400


def test_health_and_root(client):
    health = client.get("/health").json()
    assert health["status"] == "ok"
    assert health["strategy"] == "image-sequence"
    assert "available" in health["encoder"]

    root = client.get("/").json()
    assert root["service"] == "Framecast Server"
    assert "upload_frame_batch" in root["endpoints"]


def test_disk_failure_returns_structured_500(client, store, monkeypatch):
    def full_disk(*args):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(store, "write_frame", full_disk)

    response = _upload(client, "s1", 0, 0, 2)

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "Staging failed"
    assert "No space left" in body["details"]


def test_unexpected_error_returns_structured_500(store, registry, objects, tmp_path):
    finalizer = Finalizer(store, registry, output_dir=tmp_path / "renders", runner=FakeEncoder())
    app = create_app(
        store=store,
        registry=registry,
        finalizer=finalizer,
        object_store=objects,
        record_content=Recorder(),
        reaper_interval_s=0,
    )

    def broken(request):
        raise RuntimeError("registry corrupted")

    finalizer.finalize = broken

    response = TestClient(app, raise_server_exceptions=False).post("/encode-from-batches", json={
        "sessionId": "s1", "totalFrames": 1, "fps": 30, "width": W, "height": H,
    })

    assert response.status_code == 500
    assert response.json() == {"error": "Internal error", "details": "registry corrupted"}
