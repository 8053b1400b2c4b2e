#!/usr/bin/env python3
"""
Alien Pet Backend Server
Sensor events + speech in, mood/speech/audio state out.
Generation runs in the background; clients poll /api/state.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

import settings
from emotion_state import InputSnapshot, PetSnapshot
from pet_core import build_default_core
from prompt_builder import RequestKind
from speech_links import SpeechConfigError, deepgram_connection_info, xfyun_signed_url
from transcription import TranscriptionError, transcribe_audio

core = build_default_core()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Let in-flight generations land before exit
    await core.drain()


app = FastAPI(title="Alien Pet Backend", version="0.3.0", lifespan=lifespan)

# Allow CORS for the pet frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

settings.AUDIO_DIR.mkdir(parents=True, exist_ok=True)
app.mount(settings.AUDIO_URL_PREFIX, StaticFiles(directory=str(settings.AUDIO_DIR)), name="audio")

# Accepted upload types
ALLOWED_AUDIO_TYPES = {
    "audio/mpeg",   # mp3
    "audio/wav",
    "audio/x-wav",
    "audio/webm",
    "audio/ogg",
    "audio/mp4",    # m4a
}


class EventRequest(BaseModel):
    text: Optional[str] = None
    input: Optional[InputSnapshot] = None
    kind: RequestKind = RequestKind.PARAMETERS_ONLY
    reset: bool = False


class EventResponse(BaseModel):
    admitted: bool
    reset: bool = False
    state: PetSnapshot


class AudioResponse(BaseModel):
    transcript: str
    admitted: bool
    state: PetSnapshot


@app.get("/api/health")
async def health_check():
    """Server status and whether provider credentials are configured."""
    return core.health_summary()


@app.get("/api/state", response_model=PetSnapshot)
async def get_state():
    """Current pet state. Compare `version` with the last one you saw."""
    return core.current_snapshot()


@app.post("/api/event", response_model=EventResponse)
async def submit_event(request: EventRequest):
    """Submit a sensor change and/or text. Returns immediately with the current state."""
    result = core.submit_event(
        text=request.text,
        input_snapshot=request.input,
        kind=request.kind,
        reset=request.reset,
    )
    return EventResponse(admitted=result.admitted, reset=result.reset, state=core.current_snapshot())


@app.post("/api/reset", response_model=PetSnapshot)
async def reset_pet():
    core.reset()
    return core.current_snapshot()


async def _read_upload(file: Optional[UploadFile]) -> tuple[bytes, str]:
    if file is None:
        raise HTTPException(status_code=400, detail="No audio file provided")
    if file.content_type not in ALLOWED_AUDIO_TYPES:
        raise HTTPException(
            status_code=415,
            detail="Unsupported file type. Upload MP3, WAV, WebM, OGG or M4A audio."
        )
    content = await file.read()
    if len(content) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="Audio file too large")

    suffix = ".wav"
    if file.filename and "." in file.filename:
        suffix = "." + file.filename.rsplit(".", 1)[1]
    print(f"[STT] Received {file.filename} ({len(content)} bytes, {file.content_type})")
    return content, suffix


async def _transcribe(file: Optional[UploadFile]) -> str:
    content, suffix = await _read_upload(file)
    try:
        transcript = await transcribe_audio(content, suffix=suffix)
    except TranscriptionError as e:
        print(f"[STT] Error: {e}")
        raise HTTPException(status_code=502, detail=str(e))

    if not transcript.strip():
        raise HTTPException(
            status_code=422,
            detail="No speech recognized. Make sure the audio is clear."
        )
    return transcript


@app.post("/api/transcribe")
async def transcribe_only(file: UploadFile = File(None)):
    """Transcribe audio to text without touching the pet."""
    transcript = await _transcribe(file)
    return {"transcript": transcript}


@app.post("/api/process-audio", response_model=AudioResponse)
async def process_audio(file: UploadFile = File(None), kind: RequestKind = Form(RequestKind.LANGUAGE)):
    """Transcribe speech and hand it to the pet as a language event."""
    transcript = await _transcribe(file)
    result = core.submit_event(text=transcript, kind=kind)
    return AudioResponse(transcript=transcript, admitted=result.admitted, state=core.current_snapshot())


@app.get("/api/speech/deepgram")
async def deepgram_connection(language: Optional[str] = None):
    """Websocket URL + auth subprotocol for browser-side Deepgram streaming."""
    options = {"language": language} if language else None
    try:
        return deepgram_connection_info(options)
    except SpeechConfigError as e:
        raise HTTPException(status_code=503, detail=str(e))


@app.get("/api/speech/xfyun")
async def xfyun_connection():
    """Signed websocket URL for browser-side iFlytek dictation."""
    try:
        return {"url": xfyun_signed_url(), "appId": settings.XFYUN_APP_ID}
    except SpeechConfigError as e:
        raise HTTPException(status_code=503, detail=str(e))


if __name__ == "__main__":
    import uvicorn

    print("=" * 50)
    print("  Alien Pet Backend v0.3.0")
    print("=" * 50)
    print(f"Provider: {settings.LLM_PROVIDER}")
    print(f"API URL: {settings.AI_API_URL}")
    print(f"API Key: {'configured' if settings.AI_API_KEY else 'NOT SET'}")
    print(f"Speech language: {settings.SPEECH_LANGUAGE} (STT: {settings.STT_BACKEND})")
    print(f"Priority window: {settings.PRIORITY_WINDOW_SECONDS}s")
    print(f"Audio dir: {Path(settings.AUDIO_DIR).resolve()}")
    print("=" * 50)
    print(f"Starting server on http://localhost:{settings.PORT}")
    print()

    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
