"""
Transcript assembly for the two speaker channels.

Responsibilities:
- Turn streaming transcription fragments into whole TranscriptMessages.
- Operator channel: flush exactly once per turn-complete marker.
- Caller channel: flush after a quiet period (debounce). Each fragment
  re-arms the timer, so one utterance becomes one message.
- flush_all(): cancel the pending timer and force out both buffers
  (call end, transport failure).

Non-responsibilities:
- No storage of finished messages (the call session owns that)
- No network or audio concerns

Fragments are concatenated as received (the remote service carries its
own spacing); the flushed text is trimmed. Whitespace-only fragments are
ignored and never arm the timer.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from constants import CALLER_DEBOUNCE_MS


def _now_ms() -> int:
    return int(time.time() * 1000)


class Role(str, Enum):
    CALLER = "caller"
    OPERATOR = "operator"


@dataclass(frozen=True)
class TranscriptMessage:
    """One finished utterance. Immutable once created."""
    role: Role
    text: str
    timestamp_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role.value,
            "text": self.text,
            "timestamp_ms": self.timestamp_ms,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> TranscriptMessage:
        return TranscriptMessage(
            role=Role(data["role"]),
            text=str(data["text"]),
            timestamp_ms=int(data["timestamp_ms"]),
        )


class _ChannelBuffer:
    def __init__(self) -> None:
        self.parts: list[str] = []
        self.first_ts_ms: int | None = None

    def add(self, text: str, ts_ms: int) -> None:
        if self.first_ts_ms is None:
            self.first_ts_ms = ts_ms
        self.parts.append(text)

    def take(self) -> tuple[str, int | None]:
        text = "".join(self.parts).strip()
        first = self.first_ts_ms
        self.parts = []
        self.first_ts_ms = None
        return text, first

    def text(self) -> str:
        return "".join(self.parts)

    def __bool__(self) -> bool:
        return bool(self.parts)


class TranscriptAssembler:
    """
    Per-call fragment buffers for caller and operator.

    emit:
        Called synchronously with each finished message, in flush order.
    on_partial:
        Optional live-caption hook, called with the channel's accumulated
        (untrimmed) text after every accepted fragment.
    clock:
        Millisecond wall clock used for message timestamps.
    """

    def __init__(
        self,
        *,
        emit: Callable[[TranscriptMessage], None],
        debounce_ms: int = CALLER_DEBOUNCE_MS,
        on_partial: Callable[[Role, str], None] | None = None,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._emit = emit
        self._debounce_s = debounce_ms / 1000.0
        self._on_partial = on_partial
        self._clock = clock

        self._caller = _ChannelBuffer()
        self._operator = _ChannelBuffer()
        self._caller_timer: asyncio.TimerHandle | None = None

    # ------------------------------------------------------------------
    # Operator channel
    # ------------------------------------------------------------------

    def add_operator_fragment(self, text: str) -> None:
        if not text.strip():
            return
        self._operator.add(text, self._clock())
        self._partial(Role.OPERATOR, self._operator)

    def complete_operator_turn(self) -> None:
        self._flush(Role.OPERATOR, self._operator)

    # ------------------------------------------------------------------
    # Caller channel
    # ------------------------------------------------------------------

    def add_caller_fragment(self, text: str) -> None:
        if not text.strip():
            return
        self._caller.add(text, self._clock())
        self._partial(Role.CALLER, self._caller)
        self._arm_caller_timer()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def flush_all(self) -> None:
        """Cancel the debounce timer and flush both buffers, oldest first."""
        self._cancel_caller_timer()

        pending = [
            (buf.first_ts_ms, role, buf)
            for role, buf in ((Role.CALLER, self._caller), (Role.OPERATOR, self._operator))
            if buf
        ]
        for _, role, buf in sorted(pending, key=lambda item: item[0] or 0):
            self._flush(role, buf)

    @property
    def has_pending(self) -> bool:
        return bool(self._caller) or bool(self._operator)

    @property
    def caller_timer_armed(self) -> bool:
        return self._caller_timer is not None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _arm_caller_timer(self) -> None:
        self._cancel_caller_timer()
        loop = asyncio.get_running_loop()
        self._caller_timer = loop.call_later(self._debounce_s, self._on_caller_quiet)

    def _cancel_caller_timer(self) -> None:
        if self._caller_timer is not None:
            self._caller_timer.cancel()
            self._caller_timer = None

    def _on_caller_quiet(self) -> None:
        self._caller_timer = None
        self._flush(Role.CALLER, self._caller)

    def _flush(self, role: Role, buf: _ChannelBuffer) -> None:
        text, first_ts_ms = buf.take()
        if not text:
            return
        self._emit(TranscriptMessage(
            role=role,
            text=text,
            timestamp_ms=first_ts_ms if first_ts_ms is not None else self._clock(),
        ))

    def _partial(self, role: Role, buf: _ChannelBuffer) -> None:
        if self._on_partial is not None:
            self._on_partial(role, buf.text())
