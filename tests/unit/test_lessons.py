# pylint: disable=missing-module-docstring,missing-function-docstring

import json
from datetime import datetime, timezone

import pytest

from feedback.lessons import (
    InMemoryLessonStore,
    JsonFileLessonStore,
    merge_lessons,
    render_lessons_markdown,
)


# ---------------------------------------------------------------------------
# merge_lessons
# ---------------------------------------------------------------------------

def test_merge_keeps_first_occurrence_and_order() -> None:
    merged = merge_lessons(["a", "b"], ["b", "c", "a", "d"], cap=10)
    assert merged == ["a", "b", "c", "d"]


def test_merge_drops_blank_entries() -> None:
    assert merge_lessons(["a"], ["", "   ", "b"], cap=10) == ["a", "b"]


def test_cap_evicts_oldest_first() -> None:
    existing = [f"L{i}" for i in range(50)]
    merged = merge_lessons(existing, ["new-1", "new-2"], cap=50)

    assert len(merged) == 50
    assert merged[0] == "L2"
    assert merged[-2:] == ["new-1", "new-2"]


def test_merge_does_not_mutate_inputs() -> None:
    existing = ["a"]
    new = ["b"]
    merge_lessons(existing, new, cap=1)
    assert existing == ["a"]
    assert new == ["b"]


def test_lessons_are_compared_exactly() -> None:
    assert merge_lessons(["Ask about pets"], ["ask about pets"], cap=5) == [
        "Ask about pets",
        "ask about pets",
    ]


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

def test_in_memory_store_curation() -> None:
    store = InMemoryLessonStore(["one", "two"])

    assert store.add("three") == ["one", "two", "three"]
    assert store.add("two") == ["one", "two", "three"]
    assert store.update(0, "uno") == ["uno", "two", "three"]
    assert store.remove(1) == ["uno", "three"]

    with pytest.raises(IndexError):
        store.update(5, "x")
    with pytest.raises(IndexError):
        store.remove(-1)

    store.clear()
    assert store.load() == []


def test_update_to_duplicate_collapses() -> None:
    store = InMemoryLessonStore(["a", "b"])
    assert store.update(1, "a") == ["a"]


def test_record_call_counts_evaluations() -> None:
    store = InMemoryLessonStore()
    assert store.record_call() == 1
    assert store.record_call() == 2
    assert store.call_count() == 2


def test_load_returns_a_copy() -> None:
    store = InMemoryLessonStore(["a"])
    store.load().append("mutated")
    assert store.load() == ["a"]


def test_json_store_round_trips_through_disk(tmp_path) -> None:
    path = tmp_path / "nested" / "lessons.json"
    store = JsonFileLessonStore(path, cap=3)

    assert store.load() == []
    store.merge(["a", "b", "c", "d"])
    store.record_call()

    reopened = JsonFileLessonStore(path, cap=3)
    assert reopened.load() == ["b", "c", "d"]
    assert reopened.call_count() == 1

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["lessons"] == ["b", "c", "d"]
    assert isinstance(data["updated_at_ms"], int)
    assert not path.with_suffix(".json.tmp").exists()


def test_unreadable_json_store_reads_as_empty(tmp_path) -> None:
    path = tmp_path / "lessons.json"
    path.write_text("{ not json", encoding="utf-8")

    store = JsonFileLessonStore(path)

    assert store.load() == []
    assert store.add("fresh") == ["fresh"]


# ---------------------------------------------------------------------------
# Markdown export
# ---------------------------------------------------------------------------

def test_markdown_document_layout() -> None:
    now = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    doc = render_lessons_markdown(["Ask about pets early", "Confirm address"], now=now)

    assert doc.startswith("# Voice Bot Lessons Learned\n")
    assert "> Last updated: 2025-01-02T03:04:05+00:00" in doc
    assert "> Total lessons: 2" in doc
    assert "## CRITICAL CORRECTIONS" in doc
    assert doc.endswith("- Ask about pets early\n- Confirm address\n")
