import time
from concurrent.futures import ThreadPoolExecutor
from types import SimpleNamespace

import httpx
import pytest
import respx

import transcription
from transcription import TranscriptionError, transcribe_audio

API_URL = "https://stt.test"


class FakeWhisper:
    def __init__(self, *texts):
        self.texts = texts
        self.calls = []

    def transcribe(self, path, beam_size=5, language=None):
        self.calls.append((path, language))
        segments = [SimpleNamespace(text=f" {t} ") for t in self.texts]
        return iter(segments), SimpleNamespace(duration=1.5)


@pytest.mark.asyncio
async def test_local_backend_joins_segments(monkeypatch):
    model = FakeWhisper("hello", "little alien")
    monkeypatch.setattr(transcription, "get_stt_model", lambda: model)

    text = await transcribe_audio(b"RIFF", suffix=".wav", language="en-US", backend="local")

    assert text == "hello little alien"
    path, language = model.calls[0]
    assert language == "en"
    assert path.endswith(".wav")


@pytest.mark.asyncio
async def test_local_backend_failure_is_wrapped(monkeypatch):
    def broken():
        raise RuntimeError("no model files")

    monkeypatch.setattr(transcription, "get_stt_model", broken)
    with pytest.raises(TranscriptionError, match="no model files"):
        await transcribe_audio(b"RIFF", backend="local")


@pytest.mark.asyncio
@respx.mock
async def test_remote_backend():
    route = respx.post(f"{API_URL}/v1/audio/transcriptions").mock(
        return_value=httpx.Response(200, json={"text": " ni hao "})
    )
    text = await transcribe_audio(b"OggS", suffix=".ogg", language="zh-CN", backend="remote",
                                  api_key="k", api_url=API_URL)

    assert text == "ni hao"
    request = route.calls.last.request
    assert request.headers["Authorization"] == "Bearer k"
    assert b'name="language"' in request.content
    assert b'filename="audio.ogg"' in request.content


@pytest.mark.asyncio
@respx.mock
async def test_remote_backend_error_status():
    respx.post(f"{API_URL}/v1/audio/transcriptions").mock(return_value=httpx.Response(503, text="busy"))
    with pytest.raises(TranscriptionError, match="503"):
        await transcribe_audio(b"x", backend="remote", api_key="k", api_url=API_URL)


@pytest.mark.asyncio
async def test_remote_backend_requires_key():
    with pytest.raises(TranscriptionError, match="not configured"):
        await transcribe_audio(b"x", backend="remote", api_key="", api_url=API_URL)


def test_whisper_model_loads_once_under_concurrency(monkeypatch):
    loads = []

    class SlowWhisper:
        def __init__(self, *args, **kwargs):
            loads.append(args)
            time.sleep(0.05)

    monkeypatch.setattr(transcription, "WhisperModel", SlowWhisper)
    monkeypatch.setattr(transcription, "_stt_model", None)

    with ThreadPoolExecutor(max_workers=4) as pool:
        models = list(pool.map(lambda _: transcription.get_stt_model(), range(4)))

    assert len(loads) == 1
    assert all(m is models[0] for m in models)
