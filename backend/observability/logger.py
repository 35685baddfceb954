"""
JSONL event logger.

- Write one JSON object per line
- Output to stdout
- No buffering, no batching
- No side effects beyond logging

configure() switches to a plain key=value rendering (ENABLE_JSON_LOGS=0)
and drops events below the configured level.
"""

from __future__ import annotations

import json
import sys
import time
from typing import Any, Mapping, Callable

from constants import LOG_LEVELS


# ------------------------------------------------------------------
# Explicit output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print

_json_output: bool = True
_min_level: int = 0


def configure(*, level: str = "DEBUG", json_output: bool = True) -> None:
    """Set the process-wide minimum level and rendering mode."""
    global _json_output, _min_level  # pylint: disable=global-statement
    _json_output = json_output
    level = level.upper()
    _min_level = LOG_LEVELS.index(level) if level in LOG_LEVELS else 0


def _level_rank(event: Mapping[str, Any]) -> int:
    level = str(event.get("level", "INFO")).upper()
    return LOG_LEVELS.index(level) if level in LOG_LEVELS else 1


def _render_plain(event: Mapping[str, Any]) -> str:
    head = event.get("event_type", "EVENT")
    rest = " ".join(
        f"{key}={value}" for key, value in event.items() if key != "event_type"
    )
    return f"{head} {rest}".rstrip()


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write a single event line to stdout.

    The caller supplies a fully-formed event dict (event_type, call_id, ...).
    ts_ms is filled in when missing. Events may carry a "level"; events without
    one are INFO.

    This function:
    - Serializes to JSON (or key=value when JSON output is disabled)
    - Writes exactly one line
    - Flushes immediately (no buffering)
    - Never raises
    """
    if _level_rank(event) < _min_level:
        return

    if "ts_ms" not in event:
        event = {"ts_ms": int(time.time() * 1000), **event}

    if not _json_output:
        _print(_render_plain(event))
        return

    try:
        line = json.dumps(event, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        # Last-resort fallback, logging must never crash the runtime
        fallback: dict[str, Any] = {
            "ts_ms": event.get("ts_ms"),
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    _print(line)
