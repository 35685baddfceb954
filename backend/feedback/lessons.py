"""
Lesson set persistence.

A lesson set is an ordered list of distinct instruction strings with a
retention cap. New lessons go to the end; when the cap is exceeded the
oldest entries are evicted first. Lessons are compared byte for byte.

The store also carries the count of evaluated calls.

Implementations:
- InMemoryLessonStore: process-local (tests, stable mode)
- JsonFileLessonStore: single JSON document, replaced atomically on write

Persistence is best effort: an unreadable file is treated as empty and
logged; it never blocks a call.
"""

from __future__ import annotations

import json
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Sequence

from constants import LESSON_RETENTION_CAP
from observability.logger import log_event


def _now_ms() -> int:
    return int(time.time() * 1000)


def merge_lessons(existing: Sequence[str], new: Iterable[str], cap: int) -> list[str]:
    """
    Ordered set union followed by FIFO truncation to `cap`.

    - First occurrence wins (an existing lesson keeps its position).
    - Empty / whitespace-only entries are discarded.
    - Pure: inputs are never mutated.
    """
    merged: list[str] = []
    seen: set[str] = set()
    for lesson in [*existing, *new]:
        if not lesson.strip() or lesson in seen:
            continue
        seen.add(lesson)
        merged.append(lesson)

    if cap <= 0:
        return []
    return merged[-cap:]


def render_lessons_markdown(lessons: Sequence[str], *, now: datetime | None = None) -> str:
    """Downloadable "lessons learned" document."""
    stamp = (now or datetime.now(timezone.utc)).isoformat()
    lines = [
        "# Voice Bot Lessons Learned",
        "",
        "> **Auto-Updated by Critic Agent**",
        f"> Last updated: {stamp}",
        f"> Total lessons: {len(lessons)}",
        "",
        "---",
        "",
        "## CRITICAL CORRECTIONS",
        "",
    ]
    lines.extend(f"- {lesson}" for lesson in lessons)
    return "\n".join(lines) + "\n"


@dataclass
class LessonState:
    lessons: list[str] = field(default_factory=list)
    call_count: int = 0
    updated_at_ms: int | None = None


class LessonStore(ABC):
    """
    Read/merge/curate contract shared by the controller (read once per call),
    the critic (merge after a call) and the lessons API (manual curation).

    All mutators return the resulting lesson list.
    """

    def __init__(self, *, cap: int = LESSON_RETENTION_CAP) -> None:
        self._cap = cap

    @property
    def cap(self) -> int:
        return self._cap

    # ------------------------------------------------------------------
    # Backend hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _read_state(self) -> LessonState:
        raise NotImplementedError

    @abstractmethod
    def _write_state(self, state: LessonState) -> None:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def load(self) -> list[str]:
        return list(self._read_state().lessons)

    def merge(self, new_lessons: Iterable[str]) -> list[str]:
        state = self._read_state()
        incoming = list(new_lessons)
        merged = merge_lessons(state.lessons, incoming, self._cap)
        if merged != state.lessons:
            state.lessons = merged
            self._commit(state)
        return list(merged)

    def add(self, lesson: str) -> list[str]:
        return self.merge([lesson])

    def update(self, index: int, lesson: str) -> list[str]:
        """
        Replace the lesson at `index`.

        Raises:
            IndexError if index is out of range.
        """
        state = self._read_state()
        if not 0 <= index < len(state.lessons):
            raise IndexError(f"lesson index {index} out of range")
        edited = list(state.lessons)
        edited[index] = lesson
        state.lessons = merge_lessons(edited, [], self._cap)
        self._commit(state)
        return list(state.lessons)

    def remove(self, index: int) -> list[str]:
        """
        Raises:
            IndexError if index is out of range.
        """
        state = self._read_state()
        if not 0 <= index < len(state.lessons):
            raise IndexError(f"lesson index {index} out of range")
        state.lessons = state.lessons[:index] + state.lessons[index + 1:]
        self._commit(state)
        return list(state.lessons)

    def clear(self) -> None:
        state = self._read_state()
        state.lessons = []
        self._commit(state)

    def record_call(self) -> int:
        """Increment the evaluated-call counter; returns the new count."""
        state = self._read_state()
        state.call_count += 1
        self._commit(state)
        return state.call_count

    def call_count(self) -> int:
        return self._read_state().call_count

    def _commit(self, state: LessonState) -> None:
        state.updated_at_ms = _now_ms()
        self._write_state(state)


class InMemoryLessonStore(LessonStore):
    def __init__(
        self,
        lessons: Iterable[str] = (),
        *,
        cap: int = LESSON_RETENTION_CAP,
    ) -> None:
        super().__init__(cap=cap)
        self._state = LessonState(lessons=merge_lessons([], lessons, cap))

    def _read_state(self) -> LessonState:
        return LessonState(
            lessons=list(self._state.lessons),
            call_count=self._state.call_count,
            updated_at_ms=self._state.updated_at_ms,
        )

    def _write_state(self, state: LessonState) -> None:
        self._state = LessonState(
            lessons=list(state.lessons),
            call_count=state.call_count,
            updated_at_ms=state.updated_at_ms,
        )


class JsonFileLessonStore(LessonStore):
    """
    File layout:

        {"lessons": ["..."], "call_count": 3, "updated_at_ms": 1760000000000}
    """

    def __init__(self, path: str | Path, *, cap: int = LESSON_RETENTION_CAP) -> None:
        super().__init__(cap=cap)
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _read_state(self) -> LessonState:
        if not self._path.exists():
            return LessonState()

        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            lessons = [str(item) for item in data.get("lessons", [])]
            call_count = int(data.get("call_count", 0))
            updated_at_ms = data.get("updated_at_ms")
        except (OSError, ValueError, TypeError, AttributeError) as exc:
            log_event({
                "event_type": "LESSON_STORE_UNREADABLE",
                "level": "WARNING",
                "path": str(self._path),
                "exception": type(exc).__name__,
                "message": str(exc),
            })
            return LessonState()

        return LessonState(
            lessons=merge_lessons([], lessons, self._cap),
            call_count=call_count,
            updated_at_ms=updated_at_ms,
        )

    def _write_state(self, state: LessonState) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        payload = {
            "lessons": state.lessons,
            "call_count": state.call_count,
            "updated_at_ms": state.updated_at_ms,
        }
        tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        os.replace(tmp, self._path)
