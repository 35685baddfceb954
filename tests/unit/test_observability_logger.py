# pylint: disable=missing-module-docstring,missing-function-docstring

import json
from typing import Any

import pytest

from observability import logger
from observability.metrics import start_timer, stop_timer, timed


@pytest.fixture
def captured(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    lines: list[str] = []
    # Patch the explicit output sink used by logger
    monkeypatch.setattr(logger, "_print", lines.append)
    monkeypatch.setattr(logger, "_json_output", True)
    monkeypatch.setattr(logger, "_min_level", 0)
    return lines


def test_log_event_emits_valid_jsonl(captured: list[str]) -> None:
    """
    Contract:
    - log_event emits exactly one JSONL line
    - payload is serialized as-is, plus ts_ms when missing
    - output sink is patchable
    """
    payload: dict[str, Any] = {
        "event_type": "TEST",
        "value": 123,
    }

    logger.log_event(payload)

    assert len(captured) == 1
    decoded = json.loads(captured[0])
    ts_ms = decoded.pop("ts_ms")
    assert isinstance(ts_ms, int)
    assert decoded == payload


def test_explicit_timestamp_is_kept(captured: list[str]) -> None:
    logger.log_event({"event_type": "TEST", "ts_ms": 42})
    assert json.loads(captured[0])["ts_ms"] == 42


def test_events_below_configured_level_are_dropped(captured: list[str]) -> None:
    logger.configure(level="WARNING")

    logger.log_event({"event_type": "CHATTY", "level": "DEBUG"})
    logger.log_event({"event_type": "NORMAL"})
    logger.log_event({"event_type": "BAD", "level": "ERROR"})

    assert [json.loads(line)["event_type"] for line in captured] == ["BAD"]


def test_plain_rendering(captured: list[str]) -> None:
    logger.configure(level="DEBUG", json_output=False)

    logger.log_event({"event_type": "CALL_ENDED", "ts_ms": 1, "call_id": "CALL-1-A"})

    assert captured == ["CALL_ENDED ts_ms=1 call_id=CALL-1-A"]


def test_unserializable_payload_falls_back(captured: list[str]) -> None:
    logger.log_event({"event_type": "TEST", "bad": object()})

    decoded = json.loads(captured[0])
    assert decoded["event_type"] == "LOGGER_SERIALIZATION_ERROR"


def test_timers_emit_one_metric_each(captured: list[str]) -> None:
    timer_id = start_timer("live_handshake_latency")
    assert stop_timer(timer_id, call_id="CALL-1-A") is not None
    assert stop_timer(timer_id) is None

    with pytest.raises(RuntimeError):
        with timed("critic_latency"):
            raise RuntimeError("boom")

    metrics = [json.loads(line) for line in captured]
    assert [m["metric"] for m in metrics] == ["live_handshake_latency", "critic_latency"]
    assert all(m["event_type"] == "METRIC_TIMER" for m in metrics)
