# pylint: disable=missing-module-docstring,missing-function-docstring

import pytest

from context.transcript import Role, TranscriptMessage
from storage.transcripts import CallRecord, InMemoryTranscriptStore, JsonTranscriptStore


def _record(call_id: str, started_at_ms: int, duration_ms: int = 60_000) -> CallRecord:
    return CallRecord(
        call_id=call_id,
        status="ended",
        started_at_ms=started_at_ms,
        ended_at_ms=started_at_ms + duration_ms,
        duration_ms=duration_ms,
        messages=(TranscriptMessage(role=Role.CALLER, text="hello", timestamp_ms=started_at_ms),),
    )


@pytest.fixture(params=["memory", "json"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryTranscriptStore()
    return JsonTranscriptStore(tmp_path / "transcripts")


def test_list_is_most_recent_first(store) -> None:
    store.save(_record("CALL-1-A", 1_000))
    store.save(_record("CALL-3-C", 3_000))
    store.save(_record("CALL-2-B", 2_000))

    assert [r.call_id for r in store.list_all()] == ["CALL-3-C", "CALL-2-B", "CALL-1-A"]


def test_get_returns_saved_record(store) -> None:
    record = _record("CALL-1-A", 1_000)
    store.save(record)

    loaded = store.get("CALL-1-A")
    assert loaded.messages == record.messages
    assert loaded.status == "ended"
    assert store.get("CALL-9-Z") is None


def test_mark_evaluated_and_stats(store) -> None:
    store.save(_record("CALL-1-A", 1_000, duration_ms=30_000))
    store.save(_record("CALL-2-B", 2_000, duration_ms=90_000))

    assert store.mark_evaluated("CALL-1-A", 8) is True
    assert store.mark_evaluated("CALL-404-X", 3) is False

    assert [r.call_id for r in store.list_unevaluated()] == ["CALL-2-B"]
    stats = store.stats()
    assert stats.to_dict() == {
        "total": 2,
        "evaluated": 1,
        "unevaluated": 1,
        "average_score": 8.0,
        "average_duration_ms": 60_000.0,
    }


def test_delete_and_clear(store) -> None:
    store.save(_record("CALL-1-A", 1_000))
    store.save(_record("CALL-2-B", 2_000))

    assert store.delete("CALL-1-A") is True
    assert store.delete("CALL-1-A") is False

    store.clear()
    assert store.list_all() == []


def test_empty_store_stats(store) -> None:
    stats = store.stats()
    assert stats.total == 0
    assert stats.average_score is None
    assert stats.average_duration_ms is None


def test_json_store_rejects_path_like_ids(tmp_path) -> None:
    store = JsonTranscriptStore(tmp_path)
    with pytest.raises(ValueError):
        store.get("../etc/passwd")


def test_json_store_skips_corrupt_files(tmp_path) -> None:
    store = JsonTranscriptStore(tmp_path)
    store.save(_record("CALL-1-A", 1_000))
    (tmp_path / "CALL-2-B.json").write_text("not json", encoding="utf-8")

    assert [r.call_id for r in store.list_all()] == ["CALL-1-A"]
