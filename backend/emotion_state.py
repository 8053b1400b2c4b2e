"""
Alien Pet Emotion State

Holds the single authoritative copy of:
- the emotion vector (nine bounded attributes, 0-100)
- the last sensor reading
- the current speech text and audio artifact
- a version counter + timestamp for change polling

All mutation goes through PetState; readers only ever get copies.
"""

import math
import threading
import time
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator


# ── Emotion Vector ──

EMOTION_NAMES = (
    "happiness",
    "energy",
    "curiosity",
    "trust",
    "sociability",
    "patience",
    "confusion",
    "intelligence",
    "anger",
)

DEFAULT_EMOTIONS = {
    "happiness": 60,
    "energy": 70,
    "curiosity": 80,
    "trust": 40,
    "sociability": 50,
    "patience": 50,
    "confusion": 20,
    "intelligence": 50,
    "anger": 10,
}

EMOTION_MIN = 0
EMOTION_MAX = 100


def clamp_value(value) -> Optional[int]:
    """Coerce one proposed attribute value into range. Returns None if malformed."""
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    clamped = max(EMOTION_MIN, min(EMOTION_MAX, value))
    # Round half up so 50.5 -> 51
    return int(math.floor(clamped + 0.5))


# ── Input Snapshot ──

FORCE_LEVELS = {"none": 0, "medium": 50, "strong": 100}
TOUCH_AREAS = ("none", "eyes", "mouth", "forehead", "face", "other")


class InputSnapshot(BaseModel):
    """Last environmental reading from the pet's sensors."""
    distance: float = 100.0      # cm
    force: int = 0               # 0 / 50 / 100
    motion: int = 0              # 0-100
    temperature: float = 22.0    # °C
    touched_area: str = Field("none", validation_alias=AliasChoices("touched_area", "touchedArea"))

    @field_validator("distance", mode="before")
    @classmethod
    def _non_negative_distance(cls, v):
        if v is None:
            return 0.0
        return max(0.0, float(v))

    @field_validator("force", mode="before")
    @classmethod
    def _snap_force(cls, v):
        if v is None:
            return 0
        if isinstance(v, str):
            key = v.strip().lower()
            if key in FORCE_LEVELS:
                return FORCE_LEVELS[key]
            v = float(key)
        # Snap to the nearest discrete level
        return min(FORCE_LEVELS.values(), key=lambda level: abs(level - float(v)))

    @field_validator("motion", mode="before")
    @classmethod
    def _motion_range(cls, v):
        if v is None:
            return 0
        if isinstance(v, bool):
            return 100 if v else 0
        return max(0, min(100, int(round(float(v)))))

    @field_validator("touched_area", mode="before")
    @classmethod
    def _known_area(cls, v):
        if not v:
            return "none"
        area = str(v).strip().lower()
        return area if area in TOUCH_AREAS else "other"


class AudioArtifactRef(BaseModel):
    path: str
    id: int


class PetSnapshot(BaseModel):
    """Point-in-time copy of everything a client can observe."""
    emotion: dict[str, int]
    input: InputSnapshot
    text: str = ""
    audio: Optional[AudioArtifactRef] = None
    version: int
    timestamp: float
    busy: bool = False
    priority_window_active: bool = False
    last_error: Optional[str] = None


# ── State Merge & Clamp Engine ──

class PetState:
    """Single owner of the pet's mutable state.

    Every logical update happens inside one critical section and bumps the
    version at most once, so pollers never see half-applied cycles.
    """

    def __init__(self, defaults: Optional[dict] = None, clock=time.time):
        self._defaults = dict(defaults or DEFAULT_EMOTIONS)
        self._clock = clock
        self._lock = threading.Lock()
        self._emotion = dict(self._defaults)
        self._input = InputSnapshot()
        self._text = ""
        self._audio: Optional[AudioArtifactRef] = None
        self._audio_counter = 0
        self._version = 0
        self._updated_at = self._clock()

    def _bump(self):
        # Caller holds the lock
        self._version += 1
        self._updated_at = self._clock()

    @property
    def version(self) -> int:
        return self._version

    def emotion_snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._emotion)

    def input_snapshot(self) -> InputSnapshot:
        with self._lock:
            return self._input.model_copy()

    def apply_delta(self, delta: Optional[dict]) -> dict[str, int]:
        """Merge proposed target values onto the vector.

        Values are absolute targets, clamped to 0-100. Unknown names and
        malformed values are dropped; the rest still apply.
        """
        accepted = {}
        for name, raw in (delta or {}).items():
            if name not in EMOTION_NAMES:
                continue
            value = clamp_value(raw)
            if value is None:
                print(f"[State] Dropped malformed {name}={raw!r}")
                continue
            accepted[name] = value

        with self._lock:
            if accepted:
                self._emotion.update(accepted)
                self._bump()
            return dict(self._emotion)

    def set_input(self, snapshot: InputSnapshot):
        with self._lock:
            self._input = snapshot.model_copy()

    def publish_text(self, text: str, audio_path: Optional[str] = None) -> int:
        """Store new speech text (and optionally a new audio artifact) as one change."""
        with self._lock:
            self._text = text
            if audio_path is not None:
                self._audio_counter += 1
                self._audio = AudioArtifactRef(path=audio_path, id=self._audio_counter)
            self._bump()
            return self._version

    def reset(self) -> int:
        with self._lock:
            self._emotion = dict(self._defaults)
            self._input = InputSnapshot()
            self._text = ""
            self._audio = None
            self._bump()
            return self._version

    def snapshot(self) -> PetSnapshot:
        with self._lock:
            return PetSnapshot(
                emotion=dict(self._emotion),
                input=self._input.model_copy(),
                text=self._text,
                audio=self._audio.model_copy() if self._audio else None,
                version=self._version,
                timestamp=self._updated_at,
            )
