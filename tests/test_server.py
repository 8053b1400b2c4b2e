import time

import pytest
from fastapi.testclient import TestClient

import server
import settings
from emotion_state import DEFAULT_EMOTIONS
from transcription import TranscriptionError

from conftest import ScriptedProvider


@pytest.fixture
def client(make_core, monkeypatch):
    """TestClient wired to a core with a scripted provider and fake voice."""
    core = make_core(ScriptedProvider('{"text": "mrrp", "emotions": {"happiness": 99}}'))
    monkeypatch.setattr(server, "core", core)
    with TestClient(server.app) as c:
        yield c


def _wait_for_version(client, version, attempts=200):
    for _ in range(attempts):
        state = client.get("/api/state").json()
        if state["version"] >= version and not state["busy"]:
            return state
        time.sleep(0.01)
    raise AssertionError(f"state never reached version {version}")


def _fake_transcriber(result):
    async def transcribe(audio_bytes, suffix=".wav", **kwargs):
        if isinstance(result, Exception):
            raise result
        return result
    return transcribe


# ── State / events ──

def test_health(client):
    body = client.get("/api/health").json()
    assert body["status"] == "ok"
    assert body["provider"] == "fake"
    assert "timestamp" in body


def test_initial_state(client):
    body = client.get("/api/state").json()
    assert body["emotion"] == DEFAULT_EMOTIONS
    assert body["version"] == 0
    assert body["audio"] is None
    assert body["busy"] is False


def test_event_runs_in_background_and_state_advances(client):
    response = client.post("/api/event", json={"text": "hello", "kind": "language"})
    assert response.status_code == 200
    assert response.json()["admitted"] is True

    state = _wait_for_version(client, 2)
    assert state["emotion"]["happiness"] == 99
    assert state["text"] == "mrrp"
    assert state["audio"]["path"].startswith("/audio/pet_")
    assert state["audio"]["id"] == 1


def test_language_window_rejects_parameters_event(client):
    assert client.post("/api/event", json={"text": "hi", "kind": "language"}).json()["admitted"]

    body = client.post("/api/event", json={
        "kind": "parametersOnly",
        "input": {"distance": 4, "force": 100, "touched_area": "face"},
    }).json()

    assert body["admitted"] is False
    assert body["state"]["priority_window_active"] is True
    assert body["state"]["input"]["distance"] == 4
    assert body["state"]["input"]["touched_area"] == "face"


def test_event_defaults_to_parameters_only(client):
    assert client.post("/api/event", json={"input": {"motion": 80}}).json()["admitted"]
    state = _wait_for_version(client, 1)
    assert state["emotion"]["happiness"] == 99
    assert state["text"] == ""
    assert state["audio"] is None


def test_reset_via_event_flag(client):
    client.post("/api/event", json={"kind": "parametersOnly"})
    _wait_for_version(client, 1)

    body = client.post("/api/event", json={"reset": True}).json()

    assert body["reset"] is True
    assert body["admitted"] is False
    assert body["state"]["emotion"] == DEFAULT_EMOTIONS
    assert body["state"]["version"] == 2


def test_reset_endpoint(client):
    body = client.post("/api/reset").json()
    assert body["emotion"] == DEFAULT_EMOTIONS
    assert body["version"] == 1


def test_unknown_kind_is_rejected(client):
    response = client.post("/api/event", json={"kind": "telepathy"})
    assert response.status_code == 422


# ── Audio upload ──

def test_process_audio_submits_transcript(client, monkeypatch):
    monkeypatch.setattr(server, "transcribe_audio", _fake_transcriber("hello pet"))

    response = client.post("/api/process-audio", files={"file": ("clip.wav", b"RIFF0000", "audio/wav")})

    assert response.status_code == 200
    body = response.json()
    assert body["transcript"] == "hello pet"
    assert body["admitted"] is True
    assert body["state"]["priority_window_active"] is True


def test_transcribe_only_leaves_pet_alone(client, monkeypatch):
    monkeypatch.setattr(server, "transcribe_audio", _fake_transcriber("just words"))

    response = client.post("/api/transcribe", files={"file": ("clip.webm", b"\x1a\x45", "audio/webm")})

    assert response.json() == {"transcript": "just words"}
    state = client.get("/api/state").json()
    assert state["busy"] is False
    assert state["priority_window_active"] is False


def test_process_audio_rejects_wrong_type(client, monkeypatch):
    monkeypatch.setattr(server, "transcribe_audio", _fake_transcriber("never"))
    response = client.post("/api/process-audio", files={"file": ("notes.txt", b"hi", "text/plain")})
    assert response.status_code == 415


def test_process_audio_requires_file(client):
    response = client.post("/api/process-audio", data={"kind": "language"})
    assert response.status_code == 400


def test_process_audio_rejects_oversized_upload(client, monkeypatch):
    monkeypatch.setattr(server, "transcribe_audio", _fake_transcriber("never"))
    monkeypatch.setattr(settings, "MAX_UPLOAD_BYTES", 4)
    response = client.post("/api/process-audio", files={"file": ("clip.wav", b"RIFF0000", "audio/wav")})
    assert response.status_code == 413


def test_empty_transcript_is_unprocessable(client, monkeypatch):
    monkeypatch.setattr(server, "transcribe_audio", _fake_transcriber("   "))
    response = client.post("/api/process-audio", files={"file": ("clip.wav", b"RIFF", "audio/wav")})
    assert response.status_code == 422
    assert client.get("/api/state").json()["busy"] is False


def test_transcription_failure_is_bad_gateway(client, monkeypatch):
    monkeypatch.setattr(server, "transcribe_audio", _fake_transcriber(TranscriptionError("model missing")))
    response = client.post("/api/process-audio", files={"file": ("clip.wav", b"RIFF", "audio/wav")})
    assert response.status_code == 502
    assert "model missing" in response.json()["detail"]


# ── Streaming STT links ──

def test_deepgram_link_without_key(client, monkeypatch):
    monkeypatch.setattr(settings, "DEEPGRAM_API_KEY", None)
    assert client.get("/api/speech/deepgram").status_code == 503


def test_deepgram_link_with_language(client, monkeypatch):
    monkeypatch.setattr(settings, "DEEPGRAM_API_KEY", "dg-key")
    body = client.get("/api/speech/deepgram", params={"language": "zh-CN"}).json()
    assert body["protocol"] == ["token", "dg-key"]
    assert "language=zh-CN" in body["url"]


def test_xfyun_link_without_credentials(client, monkeypatch):
    monkeypatch.setattr(settings, "XFYUN_API_KEY", None)
    assert client.get("/api/speech/xfyun").status_code == 503


def test_xfyun_link(client, monkeypatch):
    monkeypatch.setattr(settings, "XFYUN_API_KEY", "key")
    monkeypatch.setattr(settings, "XFYUN_API_SECRET", "secret")
    monkeypatch.setattr(settings, "XFYUN_APP_ID", "app-1")
    body = client.get("/api/speech/xfyun").json()
    assert body["appId"] == "app-1"
    assert body["url"].startswith("wss://iat-api.xfyun.cn/v2/iat?host=iat-api.xfyun.cn&date=")


def test_event_accepts_camel_case_touch_area(client):
    body = client.post("/api/event", json={"kind": "parametersOnly", "input": {"touchedArea": "forehead"}}).json()
    assert body["state"]["input"]["touched_area"] == "forehead"
