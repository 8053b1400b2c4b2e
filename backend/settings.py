"""
Alien Pet Backend configuration.
Everything comes from the environment (optionally a .env file next to the process).
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# LLM provider
LLM_PROVIDER = os.getenv("LLM_PROVIDER", "openai")  # "openai" (compatible API) or "ollama"
AI_API_KEY = os.getenv("AI_API_KEY", "")
AI_API_URL = os.getenv("AI_API_URL", "https://api.bltcy.ai").rstrip("/")
AI_MODEL = os.getenv("AI_MODEL", "qwen-turbo")
OLLAMA_URL = os.getenv("OLLAMA_URL", "http://localhost:11434").rstrip("/")
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "qwen2.5:7b")
LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", "60"))

# Speech
SPEECH_LANGUAGE = os.getenv("SPEECH_LANGUAGE", "en-US")
STT_BACKEND = os.getenv("STT_BACKEND", "local")  # "local" (faster-whisper) or "remote"
WHISPER_MODEL = os.getenv("WHISPER_MODEL", "tiny")
TTS_VOICE = os.getenv("TTS_VOICE", "en-US-AnaNeural")
TTS_TIMEOUT = float(os.getenv("TTS_TIMEOUT", "30"))

# Request arbitration
PRIORITY_WINDOW_SECONDS = float(os.getenv("PRIORITY_WINDOW_SECONDS", "8"))

# Audio artifacts
AUDIO_DIR = Path(os.getenv("AUDIO_DIR", str(Path(__file__).parent / "audio")))
AUDIO_URL_PREFIX = os.getenv("AUDIO_URL_PREFIX", "/audio")
AUDIO_KEEP_FILES = int(os.getenv("AUDIO_KEEP_FILES", "20"))
PUBLISH_TEXT_ON_AUDIO_FAILURE = _env_bool("PUBLISH_TEXT_ON_AUDIO_FAILURE", True)

# Uploads
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(25 * 1024 * 1024)))

# Streaming STT credentials handed to the frontend
DEEPGRAM_API_KEY = os.getenv("DEEPGRAM_API_KEY", "")
XFYUN_API_KEY = os.getenv("XFYUN_API_KEY", "")
XFYUN_API_SECRET = os.getenv("XFYUN_API_SECRET", "")
XFYUN_APP_ID = os.getenv("XFYUN_APP_ID", "")

# Server
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3001"))
