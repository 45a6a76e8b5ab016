"""Smoke tests for API endpoints."""

import secrets

import pytest
from fastapi.testclient import TestClient

from postcraft.main import app
from postcraft.services import generator as gen_svc
from postcraft.services import transcripts as tr_svc
from postcraft.services import youtube as yt_svc

client = TestClient(app)

VIDEO_URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"


def _register(username=None):
    username = username or f"user-{secrets.token_hex(4)}"
    r = client.post("/v1/auth/register", json={"username": username, "password": "testpass123"})
    assert r.status_code == 200
    return {"X-API-Key": r.json()["api_key"]}


@pytest.fixture(scope="module")
def operator():
    r = client.post("/v1/auth/register", json={"username": "opsadmin", "password": "testpass123"})
    if r.status_code == 400:
        r = client.post("/v1/auth/login", json={"username": "opsadmin", "password": "testpass123"})
    assert r.json()["role"] == "operator"
    return {"X-API-Key": r.json()["api_key"]}


@pytest.fixture
def user():
    return _register()


@pytest.fixture
def no_metadata(monkeypatch):
    monkeypatch.setattr(
        yt_svc,
        "get_metadata",
        lambda url: yt_svc.VideoMeta(video_id="dQw4w9WgXcQ", title="Demo talk", channel="Demo", duration=125),
    )


def _grant(operator, headers, plan_id="basic", **extra):
    account_id = client.get("/v1/quota", headers=headers).json()["account_id"]
    r = client.put(f"/v1/admin/quota/{account_id}", json={"plan_id": plan_id, **extra}, headers=operator)
    assert r.status_code == 200, r.text
    return account_id


class FakeStrategy:
    name = "captions"

    def __init__(self, text):
        self.text = text

    def fetch(self, video_id, timeout):
        if not self.text:
            raise LookupError("no caption tracks")
        return tr_svc.TranscriptResult(transcript=self.text, language="en")


class TestHealth:
    def test_health(self):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "ok"


class TestAuth:
    def test_register_login_and_duplicate(self):
        body = {"username": "testuser", "password": "testpass123"}
        r = client.post("/v1/auth/register", json=body)
        assert r.status_code == 200
        assert r.json()["role"] == "user"

        assert client.post("/v1/auth/register", json=body).status_code == 400
        assert client.post("/v1/auth/login", json=body).json()["api_key"] == r.json()["api_key"]

    def test_login_wrong_password(self):
        r = client.post("/v1/auth/login", json={"username": "testuser", "password": "wrongpass"})
        assert r.status_code == 401

    def test_rotate_key(self, user):
        r = client.post("/v1/auth/rotate-key", headers=user)
        assert r.status_code == 200
        assert client.get("/v1/quota", headers=user).status_code == 401
        assert client.get("/v1/quota", headers={"X-API-Key": r.json()["api_key"]}).status_code == 200

    def test_missing_key(self):
        assert client.get("/v1/videos").status_code == 422
        assert client.get("/v1/videos", headers={"X-API-Key": "bogus"}).status_code == 401


class TestVideos:
    def test_save_list_get_delete(self, user, no_metadata):
        r = client.post("/v1/videos", json={"url": VIDEO_URL}, headers=user)
        assert r.status_code == 201
        video = r.json()
        assert video["youtube_id"] == "dQw4w9WgXcQ"
        assert video["title"] == "Demo talk"
        assert video["duration_label"] == "2:05"
        assert video["transcript_status"] == "missing"

        again = client.post("/v1/videos", json={"url": "dQw4w9WgXcQ"}, headers=user)
        assert again.status_code == 200
        assert again.json()["id"] == video["id"]

        items = client.get("/v1/videos", headers=user).json()["items"]
        assert [v["id"] for v in items] == [video["id"]]

        assert client.delete(f"/v1/videos/{video['id']}", headers=user).status_code == 204
        assert client.get(f"/v1/videos/{video['id']}", headers=user).status_code == 404

    def test_invalid_url(self, user):
        r = client.post("/v1/videos", json={"url": "https://example.com/watch"}, headers=user)
        assert r.status_code == 400

    def test_videos_are_private_to_their_account(self, user, no_metadata):
        video = client.post("/v1/videos", json={"url": VIDEO_URL}, headers=user).json()
        other = _register()
        assert client.get(f"/v1/videos/{video['id']}", headers=other).status_code == 404

    def test_transcript_inline(self, user, no_metadata, monkeypatch):
        monkeypatch.setattr(tr_svc, "build_strategies", lambda: [FakeStrategy("hello world")])
        video = client.post("/v1/videos", json={"url": VIDEO_URL}, headers=user).json()

        r = client.post(f"/v1/videos/{video['id']}/transcript?wait=true", headers=user)
        assert r.status_code == 200
        assert r.json()["transcript"] == "hello world"
        assert r.json()["strategy"] == "captions"

        stored = client.get(f"/v1/videos/{video['id']}", headers=user).json()
        assert stored["transcript"] == "hello world"
        assert stored["transcript_status"] == "ready"

    def test_transcript_unavailable(self, user, no_metadata, monkeypatch):
        monkeypatch.setattr(tr_svc, "build_strategies", lambda: [FakeStrategy("")])
        video = client.post("/v1/videos", json={"url": VIDEO_URL}, headers=user).json()

        r = client.post(f"/v1/videos/{video['id']}/transcript?wait=true", headers=user)
        assert r.status_code == 502
        error = r.json()["error"]
        assert error["code"] == "transcript_unavailable"
        assert error["retryable"] is True
        assert "captions: no caption tracks" in error["message"]

        stored = client.get(f"/v1/videos/{video['id']}", headers=user).json()
        assert stored["transcript_status"] == "failed"

    def test_transcript_background(self, user, no_metadata, monkeypatch):
        queued = []
        monkeypatch.setattr("postcraft.api.videos.enqueue_task", lambda path, *args: queued.append((path, args)))
        video = client.post("/v1/videos", json={"url": VIDEO_URL}, headers=user).json()

        r = client.post(f"/v1/videos/{video['id']}/transcript", headers=user)
        assert r.status_code == 202
        assert r.json()["transcript_status"] == "fetching"
        assert queued == [("postcraft.workers.tasks.acquire_transcript_job", (video["id"],))]


class TestQuota:
    def test_new_account_has_no_credits(self, user):
        r = client.get("/v1/quota", headers=user)
        assert r.status_code == 200
        assert r.json()["plan_id"] == "expired"
        assert r.json()["remaining"] == 0

    def test_plans_are_listed(self):
        plans = {p["plan_id"]: p for p in client.get("/v1/quota/plans").json()["items"]}
        assert plans["trial"]["limit"] == 3
        assert plans["trial"]["duration_days"] == 7

    def test_operator_adjusts_and_resets(self, user, operator):
        account_id = _grant(operator, user, "premium")
        quota = client.get("/v1/quota", headers=user).json()
        assert (quota["plan_id"], quota["limit"], quota["count"]) == ("premium", 25, 0)

        r = client.post(f"/v1/admin/quota/{account_id}/reset", headers=operator)
        assert r.status_code == 200

        listed = client.get("/v1/admin/quota", headers=operator).json()["items"]
        assert account_id in {row["account_id"] for row in listed}

    def test_admin_routes_need_operator(self, user):
        assert client.get("/v1/admin/quota", headers=user).status_code == 403
        assert client.get("/v1/admin/requests", headers=user).status_code == 403

    def test_unknown_plan_is_rejected(self, user, operator):
        account_id = client.get("/v1/quota", headers=user).json()["account_id"]
        r = client.put(f"/v1/admin/quota/{account_id}", json={"plan_id": "gold"}, headers=operator)
        assert r.status_code == 400
        assert r.json()["error"]["code"] == "quota_adjustment_rejected"


class TestContent:
    @pytest.fixture
    def video(self, user, no_metadata, monkeypatch):
        monkeypatch.setattr(tr_svc, "build_strategies", lambda: [FakeStrategy("a talk about shipping")])
        video = client.post("/v1/videos", json={"url": VIDEO_URL}, headers=user).json()
        client.post(f"/v1/videos/{video['id']}/transcript?wait=true", headers=user)
        return video

    def test_generate_and_export(self, user, operator, video, monkeypatch):
        monkeypatch.setattr(gen_svc, "_call_llm", lambda system, user, model=None: "Slide 1: Ship small\n\nSlide 2: Ship often")
        _grant(operator, user, "basic")

        r = client.post("/v1/content", json={"video_id": video["id"], "content_type": "carousel"}, headers=user)
        assert r.status_code == 201, r.text
        content = r.json()
        assert content["slides"] == ["Ship small", "Ship often"]
        assert client.get("/v1/quota", headers=user).json()["count"] == 1

        assert client.get(f"/v1/content/{content['id']}", headers=user).json()["id"] == content["id"]
        assert len(client.get("/v1/content", headers=user).json()["items"]) == 1

        md = client.get(f"/v1/content/{content['id']}/export.md", headers=user)
        assert md.status_code == 200
        assert "## Slide 2" in md.text

        docx = client.get(f"/v1/content/{content['id']}/export.docx", headers=user)
        assert docx.status_code == 200
        assert docx.content[:2] == b"PK"

        pdf = client.get(f"/v1/content/{content['id']}/export.pdf", headers=user)
        assert pdf.status_code == 200
        assert pdf.content[:4] == b"%PDF"

    def test_generation_without_credits(self, user, video, monkeypatch):
        monkeypatch.setattr(gen_svc, "_call_llm", lambda *args, **kwargs: "never used")
        r = client.post("/v1/content", json={"video_id": video["id"], "content_type": "text-post"}, headers=user)
        assert r.status_code == 402
        assert r.json()["error"]["code"] == "plan_expired"

    def test_unknown_content_type(self, user, video):
        r = client.post("/v1/content", json={"video_id": video["id"], "content_type": "thread"}, headers=user)
        assert r.status_code == 400


class TestRequests:
    def _submit(self, headers, **extra):
        body = {"title": "Launch deck", "content_snapshot": "Slide one", "carousel_type": "creative", **extra}
        return client.post("/v1/requests", json=body, headers=headers)

    def test_full_lifecycle(self, user, operator):
        _grant(operator, user, "basic")
        r = self._submit(user)
        assert r.status_code == 201, r.text
        req_id = r.json()["id"]
        assert r.json()["status"] == "pending"

        r = client.post(f"/v1/admin/requests/{req_id}/status", json={"status": "rejected", "notes": "Add logo"}, headers=operator)
        assert r.status_code == 200
        assert r.json()["assigned_operator"] == "opsadmin"

        r = client.put(
            f"/v1/requests/{req_id}",
            json={"title": "Launch deck v2", "content_snapshot": "Slide one, with logo", "carousel_type": "creative"},
            headers=user,
        )
        assert r.status_code == 200
        assert r.json()["resend_count"] == 1

        original = client.get(f"/v1/requests/{req_id}?version=original", headers=user).json()
        assert original["content_snapshot"] == "Slide one"

        r = client.post(f"/v1/admin/requests/{req_id}/status", json={"status": "in_progress"}, headers=operator)
        assert r.status_code == 200

        file_ref = {"url": "/media/x.pdf", "filename": "x.pdf", "original_name": "deck.pdf", "mime_type": "application/pdf", "size_bytes": 10}
        r = client.post(f"/v1/admin/requests/{req_id}/complete", json={"files": [file_ref]}, headers=operator)
        assert r.status_code == 200
        assert r.json()["status"] == "completed"

        r = client.post(f"/v1/admin/requests/{req_id}/status", json={"status": "rejected"}, headers=operator)
        assert r.status_code == 409
        assert r.json()["error"]["code"] == "invalid_transition"

        assert client.get("/v1/quota", headers=user).json()["count"] == 1

    def test_original_version_missing(self, user, operator):
        _grant(operator, user, "basic")
        req_id = self._submit(user).json()["id"]
        r = client.get(f"/v1/requests/{req_id}?version=original", headers=user)
        assert r.status_code == 404

    def test_submit_without_credits(self, user):
        r = self._submit(user)
        assert r.status_code == 402
        assert client.get("/v1/requests", headers=user).json()["items"] == []

    def test_admin_list_filters_by_status(self, user, operator):
        _grant(operator, user, "basic")
        req_id = self._submit(user).json()["id"]
        items = client.get("/v1/admin/requests?status=pending", headers=operator).json()["items"]
        assert req_id in {item["id"] for item in items}


class TestUploads:
    def test_single_shot_upload(self, user):
        r = client.post("/v1/uploads", files={"file": ("logo.png", b"\x89PNG....", "image/png")}, headers=user)
        assert r.status_code == 201
        ref = r.json()
        assert ref["original_name"] == "logo.png"
        assert ref["mime_type"] == "image/png"
        assert client.get(ref["url"]).content == b"\x89PNG...."

    def test_chunked_upload_requires_every_chunk(self, user):
        file_id = secrets.token_hex(8)
        parts = [b"aaaa", b"bbbb", b"cc"]

        def send(index):
            return client.post(
                "/v1/uploads/chunk",
                data={
                    "file_id": file_id,
                    "chunk_index": str(index),
                    "total_chunks": "3",
                    "original_name": "notes.txt",
                    "mime_type": "text/plain",
                },
                files={"chunk": (f"{index}.part", parts[index], "application/octet-stream")},
                headers=user,
            )

        assert send(0).status_code == 200
        assert send(2).status_code == 200

        r = client.post(f"/v1/uploads/{file_id}/finalize", headers=user)
        assert r.status_code == 409
        assert r.json()["error"]["context"]["missing"] == [1]

        assert send(1).json()["received"] == 3
        r = client.post(f"/v1/uploads/{file_id}/finalize", headers=user)
        assert r.status_code == 201
        assert r.json()["size_bytes"] == 10
        assert client.get(r.json()["url"]).content == b"aaaabbbbcc"

    def test_bad_file_id(self, user):
        r = client.post("/v1/uploads/bad/finalize", headers=user)
        assert r.status_code == 400
