"""
Finalized call records.

Every finished call (ended or failed) is written once by the controller and
later annotated by the critic (evaluated + score). The UI lists, inspects,
exports and deletes records.

Implementations:
- InMemoryTranscriptStore: tests
- JsonTranscriptStore: one JSON file per call under a directory
"""

from __future__ import annotations

import json
import os
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from context.serialization import deserialize_messages, serialize_messages
from context.transcript import TranscriptMessage
from observability.logger import log_event

_CALL_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class CallRecord:
    call_id: str
    status: str
    started_at_ms: int
    ended_at_ms: int
    duration_ms: int
    messages: tuple[TranscriptMessage, ...]
    failure_reason: str | None = None
    evaluated: bool = False
    evaluation_score: int | None = None
    created_at_ms: int = field(default_factory=_now_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "call_id": self.call_id,
            "status": self.status,
            "started_at_ms": self.started_at_ms,
            "ended_at_ms": self.ended_at_ms,
            "duration_ms": self.duration_ms,
            "failure_reason": self.failure_reason,
            "messages": serialize_messages(self.messages),
            "evaluated": self.evaluated,
            "evaluation_score": self.evaluation_score,
            "created_at_ms": self.created_at_ms,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> CallRecord:
        return CallRecord(
            call_id=str(data["call_id"]),
            status=str(data["status"]),
            started_at_ms=int(data["started_at_ms"]),
            ended_at_ms=int(data["ended_at_ms"]),
            duration_ms=int(data["duration_ms"]),
            messages=deserialize_messages(data.get("messages", [])),
            failure_reason=data.get("failure_reason"),
            evaluated=bool(data.get("evaluated", False)),
            evaluation_score=data.get("evaluation_score"),
            created_at_ms=int(data.get("created_at_ms", 0)),
        )


@dataclass(frozen=True)
class TranscriptStats:
    total: int
    evaluated: int
    unevaluated: int
    average_score: float | None
    average_duration_ms: float | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "evaluated": self.evaluated,
            "unevaluated": self.unevaluated,
            "average_score": self.average_score,
            "average_duration_ms": self.average_duration_ms,
        }


class TranscriptStore(ABC):
    """Record store contract. get/mark_evaluated/delete are no-ops for unknown ids."""

    @abstractmethod
    def save(self, record: CallRecord) -> None:
        raise NotImplementedError

    @abstractmethod
    def get(self, call_id: str) -> CallRecord | None:
        raise NotImplementedError

    @abstractmethod
    def list_all(self) -> list[CallRecord]:
        """Most recent first."""
        raise NotImplementedError

    @abstractmethod
    def delete(self, call_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def clear(self) -> None:
        raise NotImplementedError

    def list_unevaluated(self) -> list[CallRecord]:
        return [record for record in self.list_all() if not record.evaluated]

    def mark_evaluated(self, call_id: str, score: int) -> bool:
        record = self.get(call_id)
        if record is None:
            return False
        self.save(replace(record, evaluated=True, evaluation_score=score))
        return True

    def stats(self) -> TranscriptStats:
        records = self.list_all()
        scores = [r.evaluation_score for r in records if r.evaluation_score is not None]
        evaluated = sum(1 for r in records if r.evaluated)
        return TranscriptStats(
            total=len(records),
            evaluated=evaluated,
            unevaluated=len(records) - evaluated,
            average_score=(sum(scores) / len(scores)) if scores else None,
            average_duration_ms=(
                sum(r.duration_ms for r in records) / len(records) if records else None
            ),
        )


def _sort_recent_first(records: list[CallRecord]) -> list[CallRecord]:
    return sorted(records, key=lambda r: (r.started_at_ms, r.created_at_ms), reverse=True)


class InMemoryTranscriptStore(TranscriptStore):
    def __init__(self) -> None:
        self._records: dict[str, CallRecord] = {}

    def save(self, record: CallRecord) -> None:
        self._records[record.call_id] = record

    def get(self, call_id: str) -> CallRecord | None:
        return self._records.get(call_id)

    def list_all(self) -> list[CallRecord]:
        return _sort_recent_first(list(self._records.values()))

    def delete(self, call_id: str) -> bool:
        return self._records.pop(call_id, None) is not None

    def clear(self) -> None:
        self._records.clear()


class JsonTranscriptStore(TranscriptStore):
    """One <call_id>.json per record; writes replace the file atomically."""

    def __init__(self, directory: str | Path) -> None:
        self._dir = Path(directory)

    def _path_for(self, call_id: str) -> Path:
        if not _CALL_ID_RE.match(call_id):
            raise ValueError(f"invalid call id: {call_id!r}")
        return self._dir / f"{call_id}.json"

    def save(self, record: CallRecord) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        path = self._path_for(record.call_id)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(
            json.dumps(record.to_dict(), ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
        os.replace(tmp, path)

    def get(self, call_id: str) -> CallRecord | None:
        path = self._path_for(call_id)
        if not path.exists():
            return None
        return self._read(path)

    def list_all(self) -> list[CallRecord]:
        if not self._dir.exists():
            return []
        records = [
            record
            for record in (self._read(path) for path in self._dir.glob("*.json"))
            if record is not None
        ]
        return _sort_recent_first(records)

    def delete(self, call_id: str) -> bool:
        path = self._path_for(call_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    def clear(self) -> None:
        if not self._dir.exists():
            return
        for path in self._dir.glob("*.json"):
            path.unlink()

    def _read(self, path: Path) -> CallRecord | None:
        try:
            return CallRecord.from_dict(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, ValueError, KeyError, TypeError) as exc:
            log_event({
                "event_type": "CALL_RECORD_UNREADABLE",
                "level": "WARNING",
                "path": str(path),
                "exception": type(exc).__name__,
                "message": str(exc),
            })
            return None
