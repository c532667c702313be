import pytest
from fastapi.testclient import TestClient

from conftest import FakeSpeech, RecordingQueue, make_pipeline, make_request
from story_localizer.app import app, get_pipeline


@pytest.fixture
def client(media_root):
    pipeline = make_pipeline(media_root, queue=RecordingQueue())
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    yield TestClient(app)
    app.dependency_overrides.clear()


def _create(client, **overrides):
    r = client.post("/v1/stories", json=make_request(**overrides).model_dump(mode="json"))
    assert r.status_code == 201, r.text
    return r.json()


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["ok"] is True
    assert "has_keys" in r.json()


def test_validate_endpoint(client):
    r = client.post("/v1/stories:validate", json=make_request(content="short").model_dump(mode="json"))
    assert r.status_code == 200
    body = r.json()
    assert body["valid"] is False
    assert body["errors"]


def test_create_rejects_invalid_story(client):
    r = client.post("/v1/stories", json=make_request(title="x").model_dump(mode="json"))
    assert r.status_code == 400
    assert r.json()["code"] == "validation_error"


def test_create_process_and_status(client):
    story = _create(client)
    assert story["status"] == "created"

    r = client.post(f"/v1/stories/{story['id']}:process")
    assert r.status_code == 200
    assert r.json() == {"story_id": story["id"], "run_id": "run-1", "status": "queued"}

    again = client.post(f"/v1/stories/{story['id']}:process")
    assert again.status_code == 400
    assert again.json()["code"] == "already_processing"

    status = client.get(f"/v1/stories/{story['id']}").json()
    assert status["status"] == "queued"
    assert status["progress"] == 0
    assert status["current_step"] == "Queued"
    assert status["error_message"] is None

    logs = client.get(f"/v1/stories/{story['id']}/logs").json()
    assert logs[0]["step"] == "create"
    assert client.get(f"/v1/stories/{story['id']}/scenes").json() == []


def test_download_and_delete_rules(client):
    story = _create(client)
    r = client.get(f"/v1/stories/{story['id']}/download")
    assert r.status_code == 409
    assert r.json()["code"] == "story_not_ready"

    client.post(f"/v1/stories/{story['id']}:process")
    assert client.delete(f"/v1/stories/{story['id']}").status_code == 400

    other = _create(client)
    assert client.delete(f"/v1/stories/{other['id']}").status_code == 204
    assert client.get(f"/v1/stories/{other['id']}").status_code == 404


def test_unknown_story(client):
    r = client.get("/v1/stories/missing")
    assert r.status_code == 404
    assert r.json() == {"detail": "Story missing not found", "code": "story_not_found"}
    assert client.post("/v1/stories/missing:process").status_code == 404


def test_styles(client):
    builtin = client.get("/v1/users/u1/styles").json()
    assert {s["id"] for s in builtin} >= {"cinematic", "vintage", "documentary", "artistic"}

    for style_id in ("a", "b"):
        r = client.post("/v1/users/u1/styles", json={"id": style_id, "name": style_id.upper(), "is_default": True})
        assert r.status_code == 201
    r = client.post("/v1/users/u1/styles/a:default")
    assert r.status_code == 200
    mine = [s for s in client.get("/v1/users/u1/styles").json() if s["user_id"] == "u1"]
    assert {s["id"]: s["is_default"] for s in mine} == {"a": True, "b": False}

    assert client.post("/v1/users/u1/styles/zzz:default").status_code == 404


def test_coqui_connection_check(media_root):
    speech = FakeSpeech(reachable={"https://tts.example.com"})
    pipeline = make_pipeline(media_root, speech=speech, queue=RecordingQueue())
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    try:
        client = TestClient(app)
        r = client.post("/v1/tts/coqui:test", json={"url": "tts.example.com/"})
        assert r.status_code == 200
        assert r.json() == {"url": "https://tts.example.com", "ok": True}

        r = client.post("/v1/tts/coqui:test", json={"url": "http://other.example.com"})
        assert r.json()["ok"] is False

        r = client.post("/v1/tts/coqui:test", json={"url": "   "})
        assert r.status_code == 502
    finally:
        app.dependency_overrides.clear()
