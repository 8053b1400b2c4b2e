# tests/conftest.py
import asyncio
import os
import tempfile

# Must be set before `settings` is imported anywhere
os.environ.setdefault("AUDIO_DIR", tempfile.mkdtemp(prefix="alienpet-audio-"))

import pytest

from arbiter import RequestArbiter
from emotion_state import PetState
from llm_client import GenerationClient
from pet_core import PetCore
from voice import AudioDispatcher


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class ScriptedProvider:
    """Stands in for the LLM transport. Replies are served in order; the last one repeats."""

    def __init__(self, *replies, gate: asyncio.Event = None):
        self.replies = list(replies) or ['{"text": "", "emotions": {}}']
        self.calls = []
        self.gate = gate

    async def __call__(self, system: str, user: str) -> str:
        self.calls.append((system, user))
        if self.gate is not None:
            await self.gate.wait()
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply


async def fake_synthesize(text, params) -> bytes:
    return b"ID3" + text.encode()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_core(tmp_path, clock):
    def _make(provider=None, synthesize=fake_synthesize, window=5.0, publish_text_on_failure=True):
        provider = provider or ScriptedProvider()
        dispatcher = AudioDispatcher(
            synthesize=synthesize,
            audio_dir=tmp_path / "audio",
            url_prefix="/audio",
            keep_files=10,
            publish_text_on_failure=publish_text_on_failure,
            timeout=2.0,
            voice="en-US-AnaNeural",
        )
        return PetCore(
            generator=GenerationClient(provider),
            dispatcher=dispatcher,
            arbiter=RequestArbiter(window, clock=clock),
            state=PetState(),
            configured=True,
            details={"provider": "fake"},
        )
    return _make
