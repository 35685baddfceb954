"""
Post-call critic.

Flow (runs after the call, never on the call path):

    finalized transcript snapshot
        -> rubric prompt
        -> critique model (single request, bounded by a timeout)
        -> tolerant verdict parsing
        -> lesson merge + evaluated-call counter + record annotation

Isolation:
- submit() schedules the review as its own task and returns immediately.
- review() never raises (cancellation aside): every failure is logged and
  the lesson set is left as it was.
"""

from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Sequence

from adapters.llm.base import CriticClient
from adapters.llm.prompts import CRITIC_PROMPT_V1
from constants import (
    CRITIC_MIN_MESSAGES,
    CRITIC_SCORE_MAX,
    CRITIC_SCORE_MIN,
    CRITIC_SCORE_NEUTRAL,
    CRITIC_TIMEOUT_S,
)
from context.serialization import format_transcript_for_critic
from context.transcript import TranscriptMessage
from feedback.lessons import LessonStore
from observability.logger import log_event
from observability.metrics import timed
from storage.transcripts import TranscriptStore


def _now_ms() -> int:
    return int(time.time() * 1000)


# -------------------------
# Verdict
# -------------------------

@dataclass(frozen=True)
class CriticVerdict:
    score: int
    issues: tuple[str, ...]
    lessons: tuple[str, ...]
    timestamp_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "issues": list(self.issues),
            "lessons": list(self.lessons),
            "timestamp_ms": self.timestamp_ms,
        }


@dataclass(frozen=True)
class CritiqueRequest:
    """Immutable hand-off from the controller."""
    call_id: str
    messages: tuple[TranscriptMessage, ...]


_SCORE_RE = re.compile(r"SCORE:\s*(\d+)", re.IGNORECASE)
_ISSUES_RE = re.compile(r"ISSUES:(.*?)(?=LESSONS:|\Z)", re.IGNORECASE | re.DOTALL)
_LESSONS_RE = re.compile(r"LESSONS:(.*)\Z", re.IGNORECASE | re.DOTALL)
# "-" may hug its text; "*" and numbers need a following space so "**bold**" is not a bullet
_BULLET_RE = re.compile(r"^\s*(?:[-•]\s*|\*\s+|\d+[.)]\s+)")


def _bullets(section: str) -> Iterator[str]:
    for line in section.splitlines():
        match = _BULLET_RE.match(line)
        if match is None:
            continue
        item = line[match.end():].strip()
        if item:
            yield item


def parse_verdict(text: str, timestamp_ms: int | None = None) -> CriticVerdict:
    """
    Parse SCORE / ISSUES / LESSONS text into a verdict.

    Tolerant by contract:
    - missing or unparsable score -> neutral score
    - score outside the scale -> clamped
    - missing section -> empty list
    - never raises
    """
    score = CRITIC_SCORE_NEUTRAL
    score_match = _SCORE_RE.search(text)
    if score_match is not None:
        score = min(CRITIC_SCORE_MAX, max(CRITIC_SCORE_MIN, int(score_match.group(1))))

    issues_match = _ISSUES_RE.search(text)
    lessons_match = _LESSONS_RE.search(text)

    return CriticVerdict(
        score=score,
        issues=tuple(_bullets(issues_match.group(1))) if issues_match else (),
        lessons=tuple(_bullets(lessons_match.group(1))) if lessons_match else (),
        timestamp_ms=_now_ms() if timestamp_ms is None else timestamp_ms,
    )


def build_critic_prompt(messages: Sequence[TranscriptMessage]) -> str:
    # str.replace, not format(): transcripts may contain braces
    return CRITIC_PROMPT_V1.replace("{transcript}", format_transcript_for_critic(messages))


# -------------------------
# Critic
# -------------------------

VerdictCallback = Callable[[CriticVerdict], None]


class Critic:
    """
    Shared by all calls of a process; owns no per-call state beyond its
    in-flight review tasks.
    """

    def __init__(
        self,
        *,
        client: CriticClient,
        lesson_store: LessonStore,
        transcript_store: TranscriptStore | None = None,
        timeout_s: float = CRITIC_TIMEOUT_S,
    ) -> None:
        self._client = client
        self._lessons = lesson_store
        self._transcripts = transcript_store
        self._timeout_s = timeout_s
        self._pending: set[asyncio.Task[CriticVerdict | None]] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def submit(
        self,
        request: CritiqueRequest,
        *,
        on_verdict: VerdictCallback | None = None,
    ) -> asyncio.Task[CriticVerdict | None]:
        """Fire-and-forget: schedule review() and return its task."""
        task = asyncio.create_task(self.review(request, on_verdict=on_verdict))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for in-flight reviews (shutdown, tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def review(
        self,
        request: CritiqueRequest,
        *,
        on_verdict: VerdictCallback | None = None,
    ) -> CriticVerdict | None:
        if len(request.messages) < CRITIC_MIN_MESSAGES:
            log_event({
                "event_type": "CRITIQUE_SKIPPED",
                "call_id": request.call_id,
                "message_count": len(request.messages),
            })
            return None

        prompt = build_critic_prompt(request.messages)

        try:
            with timed("critic_latency", call_id=request.call_id):
                text = await asyncio.wait_for(
                    self._client.complete(prompt),
                    timeout=self._timeout_s,
                )
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "CRITIQUE_FAILED",
                "level": "ERROR",
                "call_id": request.call_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
            return None

        verdict = parse_verdict(text)
        self._persist(request.call_id, verdict)

        log_event({
            "event_type": "CRITIQUE_COMPLETE",
            "call_id": request.call_id,
            "score": verdict.score,
            "issues": len(verdict.issues),
            "lessons": len(verdict.lessons),
        })

        if on_verdict is not None:
            try:
                on_verdict(verdict)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_event({
                    "event_type": "CRITIQUE_CALLBACK_FAILED",
                    "level": "WARNING",
                    "call_id": request.call_id,
                    "exception": type(exc).__name__,
                    "message": str(exc),
                })

        return verdict

    def _persist(self, call_id: str, verdict: CriticVerdict) -> None:
        try:
            if verdict.lessons:
                self._lessons.merge(verdict.lessons)
            self._lessons.record_call()
            if self._transcripts is not None:
                self._transcripts.mark_evaluated(call_id, verdict.score)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "CRITIQUE_PERSIST_FAILED",
                "level": "ERROR",
                "call_id": call_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
