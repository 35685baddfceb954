"""
Per-call session record.

Holds:
- identity (call_id)
- wall-clock bounds (started_at_ms, ended_at_ms)
- the ordered transcript (append-only while the call is open)
- lifecycle status

Does NOT:
- talk to the network or audio devices
- decide when a call ends (session/controller.py)
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import uuid4

from constants import CALL_ID_PREFIX, CALL_ID_SUFFIX_CHARS
from context.serialization import serialize_messages
from context.transcript import TranscriptMessage


def _now_ms() -> int:
    return int(time.time() * 1000)


def new_call_id(now_ms: int | None = None) -> str:
    """CALL-<epoch ms>-<9 uppercase hex chars>, unique per call."""
    ts = _now_ms() if now_ms is None else now_ms
    return f"{CALL_ID_PREFIX}-{ts}-{uuid4().hex[:CALL_ID_SUFFIX_CHARS].upper()}"


def format_duration(duration_ms: int) -> str:
    """m:ss, as shown on the call timer."""
    total_s = max(0, duration_ms) // 1000
    return f"{total_s // 60}:{total_s % 60:02d}"


class CallStatus(str, Enum):
    CONNECTING = "connecting"
    LIVE = "live"
    ENDED = "ended"
    FAILED = "failed"


class CallSessionClosed(Exception):
    """Raised when mutating a call that has already been finalized."""


@dataclass
class CallSession:
    """
    Mutable record for exactly one call.

    Invariants:
    - messages only grow, in arrival order, and only before finalize()
    - ended_at_ms is set exactly once, by finalize()
    - status ends as ENDED or FAILED
    """

    call_id: str
    started_at_ms: int
    status: CallStatus = CallStatus.CONNECTING
    ended_at_ms: int | None = None
    failure_reason: str | None = None
    messages: list[TranscriptMessage] = field(default_factory=list)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def mark_live(self) -> None:
        if self.status is CallStatus.CONNECTING:
            self.status = CallStatus.LIVE

    def append(self, message: TranscriptMessage) -> None:
        if self.is_finalized:
            raise CallSessionClosed(f"call {self.call_id} already finalized")
        self.messages.append(message)

    def finalize(
        self,
        *,
        ended_at_ms: int,
        failed: bool = False,
        reason: str | None = None,
    ) -> None:
        if self.is_finalized:
            raise CallSessionClosed(f"call {self.call_id} already finalized")
        self.ended_at_ms = ended_at_ms
        self.status = CallStatus.FAILED if failed else CallStatus.ENDED
        self.failure_reason = reason

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def is_finalized(self) -> bool:
        return self.ended_at_ms is not None

    def duration_ms(self, now_ms: int | None = None) -> int:
        end = self.ended_at_ms
        if end is None:
            end = _now_ms() if now_ms is None else now_ms
        return max(0, end - self.started_at_ms)

    def snapshot(self) -> tuple[TranscriptMessage, ...]:
        """Immutable copy of the transcript (safe to hand to the critic)."""
        return tuple(self.messages)

    def to_dict(self) -> dict[str, Any]:
        return {
            "call_id": self.call_id,
            "status": self.status.value,
            "started_at_ms": self.started_at_ms,
            "ended_at_ms": self.ended_at_ms,
            "duration_ms": self.duration_ms() if self.is_finalized else None,
            "failure_reason": self.failure_reason,
            "messages": serialize_messages(self.messages),
        }
