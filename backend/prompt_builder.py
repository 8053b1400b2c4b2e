"""
Alien Pet Prompt Builder
Turns the current emotion vector + sensor reading into a system/user prompt pair.
Pure and deterministic: same inputs, same payload.
"""

import json
from enum import Enum

from pydantic import BaseModel

from emotion_state import EMOTION_NAMES, InputSnapshot


class RequestKind(str, Enum):
    LANGUAGE = "language"
    VOCALIZATION = "vocalization"
    PARAMETERS_ONLY = "parametersOnly"


class PromptPayload(BaseModel):
    kind: RequestKind
    system: str
    user: str


PET_PERSONA = """You are Kiki, a small alien pet who recently landed on Earth.
You live on a desk, you are curious about everything, and your mood is described
by nine attributes between 0 and 100. You react to being touched, moved, approached
and to the temperature around you, and your attributes drift with what happens to you."""

# Instruction block + response contract per request kind
KIND_INSTRUCTIONS = {
    RequestKind.LANGUAGE: """The human is talking to you. Reply in one or two short sentences of
simple, slightly odd alien English, in character, shaped by your current attributes.
Then decide how this exchange changes your attributes.""",

    RequestKind.VOCALIZATION: """Nobody is talking to you. Make one short non-verbal sound
(for example "mrrp?", "eee!", "hmmnn...") that expresses how the sensor input makes you feel.
No real words. Then decide how the input changes your attributes.""",

    RequestKind.PARAMETERS_ONLY: """Do not produce any speech or sound. Only decide how the
sensor input changes your attributes.""",
}

KIND_RESPONSE_SHAPES = {
    RequestKind.LANGUAGE: '{"text": "<your reply>", "emotions": {<all nine attributes>}}',
    RequestKind.VOCALIZATION: '{"text": "<your sound>", "emotions": {<all nine attributes>}}',
    RequestKind.PARAMETERS_ONLY: '{"emotions": {<all nine attributes>}}',
}

SENSOR_CUE = "[SENSOR UPDATE] React to the current sensor input."


def describe_input(snapshot: InputSnapshot) -> str:
    """Convert a sensor reading into a short natural-language description."""
    if snapshot.distance < 15:
        nearness = "very close"
    elif snapshot.distance < 50:
        nearness = "close"
    elif snapshot.distance < 150:
        nearness = "nearby"
    else:
        nearness = "far away"

    force = {0: "no", 50: "a gentle", 100: "a strong"}.get(snapshot.force, "a")

    lines = [
        "[SENSOR INPUT]",
        f"Distance to human: {snapshot.distance:.0f} cm ({nearness})",
        f"Touch: {force} touch" + (f" on your {snapshot.touched_area}" if snapshot.touched_area != "none" else ""),
        f"Motion intensity: {snapshot.motion}/100",
        f"Temperature: {snapshot.temperature:.1f}°C",
        "[END SENSOR INPUT]",
    ]
    return "\n".join(lines)


def build_prompt(emotion: dict, input_snapshot: InputSnapshot, kind: RequestKind,
                 user_text: str = "") -> PromptPayload:
    """Build the prompt payload for one generation request."""
    kind = RequestKind(kind)
    current = {name: emotion[name] for name in EMOTION_NAMES if name in emotion}

    system = "\n\n".join([
        PET_PERSONA,
        "Your current attributes:\n" + json.dumps(current, sort_keys=True),
        describe_input(input_snapshot),
        KIND_INSTRUCTIONS[kind],
        "Attributes: " + ", ".join(EMOTION_NAMES) + ". Return the full target value "
        "(0-100) of every attribute, not a change.",
        "Respond with ONLY this JSON object and nothing else:\n" + KIND_RESPONSE_SHAPES[kind],
    ])

    if kind == RequestKind.LANGUAGE:
        user = user_text.strip() or "(the human is looking at you without saying anything)"
    else:
        user = SENSOR_CUE

    return PromptPayload(kind=kind, system=system, user=user)
