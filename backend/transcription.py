"""
Alien Pet STT (Speech-to-Text)
Local faster-whisper by default, or a remote OpenAI-compatible transcription endpoint.
"""

import asyncio
import os
import tempfile
import threading
from typing import Optional

import httpx
from faster_whisper import WhisperModel

import settings


class TranscriptionError(Exception):
    pass


_stt_model: Optional[WhisperModel] = None
_stt_model_lock = threading.Lock()


def get_stt_model() -> WhisperModel:
    """Load the whisper model on first use (tiny = fast, ~75MB)."""
    global _stt_model
    # Called from worker threads; load exactly once
    with _stt_model_lock:
        if _stt_model is None:
            print(f"[STT] Loading whisper model ({settings.WHISPER_MODEL})...")
            _stt_model = WhisperModel(settings.WHISPER_MODEL, device="cpu", compute_type="int8")
            print("[STT] Whisper model ready")
    return _stt_model


def _whisper_language(language: Optional[str]) -> Optional[str]:
    # Whisper wants "en", not "en-US"
    if not language:
        return None
    return language.split("-")[0].lower()


def _transcribe_local(audio_bytes: bytes, suffix: str, language: Optional[str]) -> str:
    with tempfile.NamedTemporaryFile(suffix=suffix, delete=False) as tmp:
        tmp.write(audio_bytes)
        tmp_path = tmp.name
    try:
        segments, info = get_stt_model().transcribe(
            tmp_path, beam_size=3, language=_whisper_language(language)
        )
        text = " ".join(seg.text.strip() for seg in segments).strip()
        print(f"[STT] Transcribed ({info.duration:.1f}s): \"{text}\"")
        return text
    finally:
        os.unlink(tmp_path)


async def _transcribe_remote(audio_bytes: bytes, suffix: str, language: Optional[str],
                             api_key: str, api_url: str) -> str:
    if not api_key:
        raise TranscriptionError("AI API key not configured")

    data = {"model": "whisper-1"}
    if language:
        data["language"] = _whisper_language(language)

    try:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"{api_url.rstrip('/')}/v1/audio/transcriptions",
                headers={"Authorization": f"Bearer {api_key}"},
                data=data,
                files={"file": (f"audio{suffix}", audio_bytes)},
                timeout=settings.LLM_TIMEOUT,
            )
    except httpx.HTTPError as e:
        raise TranscriptionError(f"Transcription request failed: {e!r}") from e

    if response.status_code != 200:
        raise TranscriptionError(f"Transcription error {response.status_code}: {response.text}")

    try:
        text = response.json().get("text")
    except ValueError:
        text = None
    if not isinstance(text, str):
        raise TranscriptionError("Transcript text missing from response")
    print(f"[STT] Transcribed (remote): \"{text}\"")
    return text.strip()


async def transcribe_audio(audio_bytes: bytes, suffix: str = ".wav", language: str = None,
                           backend: str = None, api_key: str = None, api_url: str = None) -> str:
    """Transcribe audio bytes to text. Raises TranscriptionError on failure."""
    backend = backend or settings.STT_BACKEND
    language = language if language is not None else settings.SPEECH_LANGUAGE

    if backend == "remote":
        return await _transcribe_remote(
            audio_bytes, suffix, language,
            settings.AI_API_KEY if api_key is None else api_key,
            api_url or settings.AI_API_URL,
        )

    try:
        return await asyncio.to_thread(_transcribe_local, audio_bytes, suffix, language)
    except Exception as e:
        raise TranscriptionError(f"Local transcription failed: {e}") from e
