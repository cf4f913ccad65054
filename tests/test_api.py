"""Tests for the FastAPI digest API.

WHY: Validates every endpoint the editor relies on: happy paths, the
status codes each pipeline error maps to, and the polling flow from
"created" to "ready".

HOW: The app's orchestrator dependency is overridden with one built on
FakeRunner (see conftest), so no yt-dlp, ffmpeg or aligner process is
ever started. Requests go through the FastAPI TestClient.

RULES:
- All tests use the FastAPI TestClient (synchronous)
- Each test gets its own data directory through the orchestrator fixture
- Background processing is observed only through GET /status
"""

from __future__ import annotations

import io
import time

import pytest
from fastapi.testclient import TestClient

from tests.conftest import SAMPLE_TRANSCRIPT, SEGMENTER_STDOUT, VIDEO_ID
from video_digest import __version__
from video_digest.core.ir import DigestState
from video_digest.server.app import STATUS_BY_CATEGORY, app, get_orchestrator

WATCH_URL = "https://www.youtube.com/watch?v={}".format(VIDEO_ID)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def client(orchestrator):
    """TestClient whose endpoints use the scripted orchestrator."""
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()


def _upload(content: bytes = SAMPLE_TRANSCRIPT.encode("utf-8"), name: str = "talk.txt"):
    return {"transcript": (name, io.BytesIO(content), "text/plain")}


def _create(client, **form) -> dict:
    data = {"url": WATCH_URL, "title": "API Digest"}
    data.update(form)
    response = client.post("/digests", data=data, files=_upload())
    assert response.status_code == 201, response.text
    return response.json()


def _wait_for(client, digest_id: str, state: str, timeout: float = 10.0) -> dict:
    deadline = time.monotonic() + timeout
    while True:
        body = client.get("/digests/{}/status".format(digest_id)).json()
        if body["state"] == state or time.monotonic() > deadline:
            return body
        time.sleep(0.02)


@pytest.fixture
def ready_id(client, notifier):
    """A digest that is READY and whose post-ready steps have run."""
    digest_id = _create(client)["id"]
    assert client.post("/digests/{}/advance".format(digest_id)).status_code == 202
    assert _wait_for(client, digest_id, "ready")["state"] == "ready"
    deadline = time.monotonic() + 10.0
    while digest_id not in notifier.notified and time.monotonic() < deadline:
        time.sleep(0.02)
    return digest_id


# ---------------------------------------------------------------------------
# GET /health
# ---------------------------------------------------------------------------


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "version": __version__}


# ---------------------------------------------------------------------------
# POST /digests/lookup
# ---------------------------------------------------------------------------


class TestLookup:

    def test_lookup(self, client):
        response = client.post("/digests/lookup", json={"url": WATCH_URL})
        assert response.status_code == 200
        assert response.json() == {
            "video_id": VIDEO_ID,
            "title": "A Talk",
            "duration": 120.0,
            "iurl": "http://img/0.jpg",
        }

    def test_bad_url(self, client):
        response = client.post("/digests/lookup", json={"url": "https://example.com/nothing"})
        assert response.status_code == 404
        assert response.json()["category"] == "source_not_found"

    def test_missing_body(self, client):
        assert client.post("/digests/lookup", json={}).status_code == 422


# ---------------------------------------------------------------------------
# POST /digests
# ---------------------------------------------------------------------------


class TestCreateDigest:

    def test_upload(self, client, orchestrator):
        body = _create(client)
        assert body["state"] == "created"
        assert body["video_id"] == VIDEO_ID
        assert body["title"] == "API Digest"
        assert body["video_length"] == 120.0
        assert body["has_caption_alignment"] is False
        assert orchestrator.get(body["id"]).state == DigestState.CREATED

    def test_captions(self, client):
        response = client.post("/digests", data={"url": WATCH_URL, "use_captions": "true"})
        assert response.status_code == 201, response.text
        body = response.json()
        assert body["title"] == "A Talk"
        assert body["has_caption_alignment"] is True

    def test_no_source(self, client):
        response = client.post("/digests", data={"url": WATCH_URL})
        assert response.status_code == 409

    def test_upload_too_large(self, client, orchestrator):
        big = b"x" * (orchestrator.settings.max_transcript_upload_bytes + 1)
        response = client.post("/digests", data={"url": WATCH_URL}, files=_upload(big))
        assert response.status_code == 413
        assert orchestrator.store.list_ids() == []

    def test_bad_url(self, client):
        response = client.post("/digests", data={"url": "not a url"}, files=_upload())
        assert response.status_code == 404


# ---------------------------------------------------------------------------
# Processing and status
# ---------------------------------------------------------------------------


class TestProcessing:

    def test_advance_then_ready(self, client):
        digest_id = _create(client)["id"]
        response = client.post("/digests/{}/advance".format(digest_id), json={"confirm": True})
        assert response.status_code == 202
        assert response.json()["state"] == "cleaning"

        body = _wait_for(client, digest_id, "ready")
        assert body["state"] == "ready"
        assert body["message"] == "video digest is ready for editing"
        assert body["failure"] is None

    def test_advance_unconfirmed(self, client):
        digest_id = _create(client)["id"]
        response = client.post("/digests/{}/advance".format(digest_id), json={"confirm": False})
        assert response.status_code == 409

    def test_advance_unknown(self, client):
        response = client.post("/digests/{}/advance".format("0" * 32))
        assert response.status_code == 404
        assert response.json()["category"] == "digest_not_found"

    def test_failure_reported_in_status(self, client, happy_runner):
        happy_runner.on("ffmpeg", returncode=1)
        digest_id = _create(client)["id"]
        client.post("/digests/{}/advance".format(digest_id))

        body = _wait_for(client, digest_id, "failed")
        assert body["state"] == "failed"
        assert body["failure"] == {"stage": "audio", "reason": "error processing the video"}

    def test_align_before_cleaning(self, client):
        digest_id = _create(client)["id"]
        response = client.post("/digests/{}/align".format(digest_id))
        assert response.status_code == 409
        assert response.json()["stage"] == "align"

    def test_align_retry(self, client, ready_id):
        response = client.post("/digests/{}/align".format(ready_id))
        assert response.status_code == 202
        assert response.json()["state"] == "aligning"

    def test_status_unknown(self, client):
        response = client.get("/digests/{}/status".format("f" * 32))
        assert response.status_code == 404

    def test_status_invalid_id(self, client):
        response = client.get("/digests/..%2Fsecrets/status")
        assert response.status_code == 404


# ---------------------------------------------------------------------------
# Editor data
# ---------------------------------------------------------------------------


class TestDigestData:

    def test_not_ready(self, client):
        digest_id = _create(client)["id"]
        response = client.get("/digests/{}/data".format(digest_id))
        assert response.status_code == 409
        assert "from scratch" in response.json()["detail"]

    def test_load(self, client, ready_id):
        response = client.get("/digests/{}/data".format(ready_id))
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/json"
        body = response.json()
        assert body["ytid"] == VIDEO_ID
        assert body["digest"] == {"title": "API Digest"}
        assert body["transcript"]["words"][0]["speaker"] == "0"

    def test_save_then_load(self, client, ready_id):
        client.get("/digests/{}/data".format(ready_id))
        document = {"title": "Edited", "sections": [{"start": 0}]}
        response = client.put("/digests/{}/data".format(ready_id), json={"object": document})
        assert response.status_code == 200
        assert response.json() == {"status": "success", "message": "saved the video digest data"}
        assert client.get("/digests/{}/data".format(ready_id)).json()["digest"] == document

    def test_save_unknown(self, client):
        response = client.put("/digests/{}/data".format("a" * 32), json={"object": {}})
        assert response.status_code == 404


# ---------------------------------------------------------------------------
# GET /digests/{id}/segments
# ---------------------------------------------------------------------------


class TestSegments:

    def test_segments(self, client, ready_id):
        response = client.get("/digests/{}/segments".format(ready_id))
        assert response.status_code == 200
        assert response.json() == {"breaks": [3, 7], "raw_line": "[3, 7]"}

    def test_segmenter_stderr(self, client, ready_id, happy_runner):
        happy_runner.on("adv_seg.py", stdout=SEGMENTER_STDOUT, stderr="Traceback (most recent call last)")
        response = client.get("/digests/{}/segments".format(ready_id))
        assert response.status_code == 502
        body = response.json()
        assert body["category"] == "external_tool_failure"
        assert body["digest_id"] == ready_id


def test_every_category_has_a_status():
    assert set(STATUS_BY_CATEGORY.values()) <= {404, 409, 413, 415, 500, 502}
