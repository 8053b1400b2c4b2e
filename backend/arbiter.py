"""
Alien Pet Request Arbiter

Decides whether a new background generation may start.
- Single-flight: one generation task at a time, any kind.
- Priority window: an admitted "language" request blocks every other kind
  for a fixed duration, starting at admission (not completion).
Rejected requests are dropped; the polling client resubmits on its own cadence.
"""

import threading
import time
from typing import Optional

from pydantic import BaseModel

from prompt_builder import RequestKind


class ArbitrationState(BaseModel):
    in_flight: bool = False
    busy_kind: Optional[RequestKind] = None
    priority_holder_kind: Optional[RequestKind] = None
    priority_window_expiry: Optional[float] = None


class RequestArbiter:
    def __init__(self, window_seconds: float, clock=time.monotonic):
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._busy_kind: Optional[RequestKind] = None
        self._ticket: Optional[int] = None
        self._next_ticket = 0
        self._window_kind: Optional[RequestKind] = None
        self._window_expiry: Optional[float] = None

    def _window_open(self, now: float) -> bool:
        return self._window_expiry is not None and now < self._window_expiry

    def admit(self, kind: RequestKind) -> Optional[int]:
        """Try to start a task of this kind. Returns a ticket, or None if rejected."""
        kind = RequestKind(kind)
        with self._lock:
            now = self._clock()

            if self._window_open(now) and kind != self._window_kind:
                print(f"[Arbiter] Rejected {kind.value}: {self._window_kind.value} priority window "
                      f"({self._window_expiry - now:.1f}s left)")
                return None

            if self._ticket is not None:
                print(f"[Arbiter] Rejected {kind.value}: {self._busy_kind.value} in flight")
                return None

            self._next_ticket += 1
            self._ticket = self._next_ticket
            self._busy_kind = kind
            if kind == RequestKind.LANGUAGE:
                self._window_kind = kind
                self._window_expiry = now + self.window_seconds
            return self._ticket

    def complete(self, ticket: int):
        """Mark a task finished. The priority window is time-based and stays put."""
        with self._lock:
            if ticket != self._ticket:
                # Issued before a reset; a newer task may own the slot now
                return
            self._ticket = None
            self._busy_kind = None

    def reset(self):
        with self._lock:
            self._ticket = None
            self._busy_kind = None
            self._window_kind = None
            self._window_expiry = None

    @property
    def busy(self) -> bool:
        return self._ticket is not None

    @property
    def priority_window_active(self) -> bool:
        with self._lock:
            return self._window_open(self._clock())

    def state(self) -> ArbitrationState:
        with self._lock:
            open_ = self._window_open(self._clock())
            return ArbitrationState(
                in_flight=self._ticket is not None,
                busy_kind=self._busy_kind,
                priority_holder_kind=self._window_kind if open_ else None,
                priority_window_expiry=self._window_expiry if open_ else None,
            )
