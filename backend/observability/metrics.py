"""
Metrics and timing helpers for observability.

Responsibilities:
- Measure durations using monotonic time (immune to clock changes)
- Emit metrics as JSONL events via observability.logger
- Never aggregate: one metric = one log event
- Provide safe APIs that prevent timer leaks

Metrics emitted today:
- live_handshake_latency: transport connect -> setupComplete
- critic_latency: critique request -> verdict
- call_duration: finalized call length
"""

from __future__ import annotations

import time
import uuid
from contextlib import contextmanager
from typing import Any

from observability.logger import log_event


# -----------------------------------------------------------------------------
# Internal timer storage
# -----------------------------------------------------------------------------
# timer_id -> (metric_name, start_time_ns)
_active_timers: dict[str, tuple[str, int]] = {}


# -----------------------------------------------------------------------------
# Public API
# -----------------------------------------------------------------------------

def start_timer(name: str) -> str:
    """
    Start a monotonic timer.

    Returns:
        timer_id (str): Opaque ID required to stop the timer later.

    Callers MUST call stop_timer() (or cancel_timer()) unless using
    the `timed()` context manager.
    """
    timer_id = f"timer_{uuid.uuid4().hex[:12]}"
    _active_timers[timer_id] = (name, time.monotonic_ns())
    return timer_id


def cancel_timer(timer_id: str) -> None:
    """Discard a timer without emitting a metric (e.g. handshake never completed)."""
    _active_timers.pop(timer_id, None)


def stop_timer(
    timer_id: str,
    *,
    call_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> int | None:
    """
    Stop a previously started timer and emit a metric event.

    Returns:
        duration_ms if the timer existed, else None
    """
    entry = _active_timers.pop(timer_id, None)
    if entry is None:
        return None

    name, start_ns = entry
    duration_ms = (time.monotonic_ns() - start_ns) // 1_000_000

    emit_metric(name, duration_ms, call_id=call_id, details=details)
    return duration_ms


def emit_metric(
    name: str,
    value_ms: int,
    *,
    call_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """Emit a single already-measured duration."""
    log_event({
        # Wall-clock timestamp for log correlation
        "ts_ms": int(time.time() * 1000),
        "event_type": "METRIC_TIMER",
        "metric": name,
        "value_ms": value_ms,
        "call_id": call_id,
        "details": details or {},
    })


# -----------------------------------------------------------------------------
# Safe API: context manager
# -----------------------------------------------------------------------------

@contextmanager
def timed(
    name: str,
    *,
    call_id: str | None = None,
    details: dict[str, Any] | None = None,
):
    """
    Context manager for measuring durations safely.

    Guarantees:
    - Timer is ALWAYS stopped (no leaks)
    - Metric is emitted exactly once
    - Exceptions inside the block do NOT suppress timing

    Usage:
        with timed("critic_latency", call_id=snapshot.call_id):
            text = await client.complete(prompt)
    """
    timer_id = start_timer(name)
    try:
        yield
    finally:
        stop_timer(timer_id, call_id=call_id, details=details)
