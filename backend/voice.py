"""
Alien Pet Voice
- Derives speaking style from the emotion vector (dominant mood -> prosody)
- Synthesizes speech via edge-tts
- Publishes audio artifacts after a generation, without ever rolling back
  the emotion/text update when synthesis fails
"""

import asyncio
import uuid
from pathlib import Path
from typing import Awaitable, Callable, Optional

import edge_tts
from pydantic import BaseModel

import settings


class SynthesisError(Exception):
    pass


class VoiceParams(BaseModel):
    mood: str
    intensity: float
    voice: str
    rate: str = "+0%"
    pitch: str = "+0Hz"
    volume: str = "+0%"


Synthesize = Callable[[str, VoiceParams], Awaitable[bytes]]


# ── Mood scoring ──

def mood_scores(e: dict) -> dict[str, float]:
    """Weighted blends of the vector, one score per speakable mood."""
    return {
        "happy": 0.5 * e["happiness"] + 0.3 * e["trust"] + 0.2 * e["energy"],
        "sad": 0.5 * (100 - e["happiness"]) + 0.3 * (100 - e["trust"]) + 0.2 * (100 - e["energy"]),
        "curious": 0.5 * e["curiosity"] + 0.3 * e["intelligence"] + 0.2 * e["energy"],
        "sleepy": 0.7 * (100 - e["energy"]) + 0.3 * e["patience"],
        "confused": 0.6 * e["confusion"] + 0.4 * (100 - e["intelligence"]),
        "mad": 0.3 * (100 - e["patience"]) + 0.5 * e["anger"] + 0.2 * (100 - e["trust"]),
        "scared": (0.3 * (100 - e["trust"]) + 0.5 * (100 - e["sociability"])
                   + 0.1 * (100 - e["energy"]) + 0.1 * (100 - e["happiness"])),
    }


def dominant_mood(emotion: dict) -> tuple[str, str, float]:
    """Return (dominant, secondary, intensity) where intensity is the lead over second place."""
    ranked = sorted(mood_scores(emotion).items(), key=lambda item: item[1], reverse=True)
    (top, top_score), (second, second_score) = ranked[0], ranked[1]
    intensity = min(1.0, (top_score - second_score) / 30)
    return top, second, intensity


# Prosody offsets at full intensity: (rate %, pitch Hz, volume %)
MOOD_PROSODY = {
    "happy": (15, 20, 10),
    "sad": (-15, -20, -10),
    "curious": (10, 30, 0),
    "sleepy": (-30, -25, -20),
    "confused": (-5, 10, 0),
    "mad": (25, -10, 20),
    "scared": (25, 40, -5),
}


def voice_params_for(emotion: dict, voice: str = None) -> VoiceParams:
    mood, secondary, intensity = dominant_mood(emotion)
    scale = 0.5 + 0.5 * intensity
    rate, pitch, volume = (v * scale for v in MOOD_PROSODY[mood])

    # Low-energy anger is slow and heavy, not fast
    if mood == "mad" and emotion["energy"] <= 50:
        rate = -10 * scale

    # Weak lead: let the runner-up colour the voice too
    if intensity < 0.5:
        blend = 0.3 * (1 - intensity)
        s_rate, s_pitch, s_volume = MOOD_PROSODY[secondary]
        rate += s_rate * blend
        pitch += s_pitch * blend
        volume += s_volume * blend

    return VoiceParams(
        mood=mood,
        intensity=round(intensity, 2),
        voice=voice or settings.TTS_VOICE,
        rate=f"{int(round(rate)):+d}%",
        pitch=f"{int(round(pitch)):+d}Hz",
        volume=f"{int(round(volume)):+d}%",
    )


# ── TTS (Text-to-Speech) via edge-tts ──

async def synthesize_speech(text: str, params: VoiceParams) -> bytes:
    """Convert text to MP3 bytes."""
    try:
        communicate = edge_tts.Communicate(
            text, params.voice, rate=params.rate, pitch=params.pitch, volume=params.volume
        )
        audio_chunks = []
        async for chunk in communicate.stream():
            if chunk["type"] == "audio":
                audio_chunks.append(chunk["data"])
    except Exception as e:
        raise SynthesisError(f"edge-tts failed: {e}") from e

    if not audio_chunks:
        raise SynthesisError("No audio generated")

    audio_data = b"".join(audio_chunks)
    print(f"[TTS] Generated {len(audio_data)} bytes ({params.mood}, {params.rate}, {params.pitch}) "
          f"for: \"{text[:60]}\"")
    return audio_data


def prune_audio_files(audio_dir: Path, keep: int) -> int:
    """Delete all but the newest `keep` audio artifacts. Returns how many were removed.

    The newest file is always kept; it is the one the snapshot points at.
    """
    stamped = []
    for path in Path(audio_dir).glob("pet_*.mp3"):
        try:
            stamped.append((path.stat().st_mtime, path))
        except FileNotFoundError:
            continue
    files = [path for _, path in sorted(stamped, key=lambda item: item[0], reverse=True)]
    removed = 0
    for old in files[max(keep, 1):]:
        try:
            old.unlink()
            removed += 1
        except FileNotFoundError:
            continue
    if removed:
        print(f"[TTS] Pruned {removed} old audio file(s)")
    return removed


# ── Side-effect dispatcher ──

class AudioDispatcher:
    """Runs speech synthesis after a generation and publishes text + audio together."""

    def __init__(self, synthesize: Synthesize = None, audio_dir: Path = None,
                 url_prefix: str = None, keep_files: int = None,
                 publish_text_on_failure: bool = None, timeout: float = None,
                 voice: str = None):
        self.synthesize = synthesize or synthesize_speech
        self.audio_dir = Path(audio_dir or settings.AUDIO_DIR)
        self.url_prefix = (url_prefix if url_prefix is not None else settings.AUDIO_URL_PREFIX).rstrip("/")
        self.keep_files = settings.AUDIO_KEEP_FILES if keep_files is None else keep_files
        self.publish_text_on_failure = (settings.PUBLISH_TEXT_ON_AUDIO_FAILURE
                                        if publish_text_on_failure is None else publish_text_on_failure)
        self.timeout = timeout or settings.TTS_TIMEOUT
        self.voice = voice

    async def dispatch(self, state, text: str) -> bool:
        """Synthesize `text` with the current mood and publish it. Returns True if audio was produced."""
        params = voice_params_for(state.emotion_snapshot(), voice=self.voice)

        try:
            audio = await asyncio.wait_for(self.synthesize(text, params), timeout=self.timeout)
            url = self._write(audio)
        except (SynthesisError, TimeoutError, OSError) as e:
            print(f"[TTS] Error: {str(e) or type(e).__name__}")
            if self.publish_text_on_failure:
                state.publish_text(text)
            return False

        version = state.publish_text(text, audio_path=url)
        print(f"[TTS] Published {url} (v{version})")
        prune_audio_files(self.audio_dir, self.keep_files)
        return True

    def _write(self, audio: bytes) -> str:
        self.audio_dir.mkdir(parents=True, exist_ok=True)
        name = f"pet_{uuid.uuid4().hex}.mp3"
        (self.audio_dir / name).write_bytes(audio)
        return f"{self.url_prefix}/{name}"
