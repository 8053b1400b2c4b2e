"""
Alien Pet Core

Event intake for the pet:
  submit_event -> arbiter -> prompt -> LLM (background) -> merge -> voice

Callers never wait on the model. They get an admitted/rejected answer right
away and poll current_snapshot() for the result (watch `version`).
"""

import asyncio
from datetime import datetime
from typing import Optional

from pydantic import BaseModel

import settings
from arbiter import RequestArbiter
from emotion_state import InputSnapshot, PetSnapshot, PetState
from llm_client import GenerationClient
from prompt_builder import PromptPayload, RequestKind, build_prompt
from voice import AudioDispatcher


class EventResult(BaseModel):
    admitted: bool
    reset: bool = False


SPOKEN_KINDS = (RequestKind.LANGUAGE, RequestKind.VOCALIZATION)


class PetCore:
    def __init__(self, generator: GenerationClient, dispatcher: AudioDispatcher,
                 arbiter: RequestArbiter = None, state: PetState = None,
                 configured: bool = True, details: Optional[dict] = None):
        self.generator = generator
        self.dispatcher = dispatcher
        self.arbiter = arbiter or RequestArbiter(settings.PRIORITY_WINDOW_SECONDS)
        self.state = state or PetState()
        self.configured = configured
        self.details = details or {}
        self.last_error: Optional[str] = None
        self._tasks: set[asyncio.Task] = set()

    # ── Intake ──

    def submit_event(self, text: Optional[str] = None,
                     input_snapshot: Optional[InputSnapshot] = None,
                     kind: RequestKind = RequestKind.LANGUAGE,
                     reset: bool = False) -> EventResult:
        """Accept one event. Never blocks on generation; must run inside the event loop."""
        kind = RequestKind(kind)

        if reset:
            self.reset()
            if input_snapshot is not None:
                self.state.set_input(input_snapshot)
            return EventResult(admitted=False, reset=True)

        if input_snapshot is not None:
            self.state.set_input(input_snapshot)

        ticket = self.arbiter.admit(kind)
        if ticket is None:
            return EventResult(admitted=False)

        payload = build_prompt(self.state.emotion_snapshot(), self.state.input_snapshot(),
                               kind, text or "")
        task = asyncio.create_task(self._run_generation(ticket, payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        print(f"[Core] Admitted {kind.value} (ticket {ticket})")
        return EventResult(admitted=True)

    def reset(self):
        """Back to defaults. In-flight work keeps running; its result lands on the new baseline."""
        self.arbiter.reset()
        version = self.state.reset()
        self.last_error = None
        print(f"[Core] Reset to defaults (v{version})")

    # ── Background task ──

    async def _run_generation(self, ticket: int, payload: PromptPayload):
        try:
            result = await self.generator.generate(payload)
            if not result.success:
                self.last_error = result.error_message
                print(f"[Core] Generation failed ({payload.kind.value}): {result.error_message}")
                return

            self.last_error = None
            self.state.apply_delta(result.emotion_delta)

            if payload.kind in SPOKEN_KINDS and result.text:
                await self.dispatcher.dispatch(self.state, result.text)
        except Exception as e:
            self.last_error = str(e) or type(e).__name__
            print(f"[Core] Error in {payload.kind.value} task: {e!r}")
        finally:
            self.arbiter.complete(ticket)

    async def drain(self):
        """Wait for every outstanding generation task."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ── Reads ──

    def current_snapshot(self) -> PetSnapshot:
        snapshot = self.state.snapshot()
        snapshot.busy = self.arbiter.busy
        snapshot.priority_window_active = self.arbiter.priority_window_active
        snapshot.last_error = self.last_error
        return snapshot

    def health_summary(self) -> dict:
        status = {
            "status": "ok" if self.configured else "warning",
            "message": "Server is running" if self.configured else "API key not set",
            "configured": self.configured,
            "timestamp": datetime.now().isoformat(),
        }
        status.update(self.details)
        return status


def build_default_core() -> PetCore:
    """Wire a core from environment settings."""
    if settings.LLM_PROVIDER == "ollama":
        model = settings.OLLAMA_MODEL
        configured = True
    else:
        model = settings.AI_MODEL
        configured = bool(settings.AI_API_KEY)

    return PetCore(
        generator=GenerationClient(),
        dispatcher=AudioDispatcher(),
        arbiter=RequestArbiter(settings.PRIORITY_WINDOW_SECONDS),
        state=PetState(),
        configured=configured,
        details={
            "provider": settings.LLM_PROVIDER,
            "model": model,
            "apiUrl": settings.OLLAMA_URL if settings.LLM_PROVIDER == "ollama" else settings.AI_API_URL,
            "language": settings.SPEECH_LANGUAGE,
            "stt": settings.STT_BACKEND,
            "priorityWindowSeconds": settings.PRIORITY_WINDOW_SECONDS,
        },
    )
