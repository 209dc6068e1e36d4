import json
import logging

import pytest
from hypothesis import given
from hypothesis import strategies as st

from dialogtrainer.config import PROGRESS_KEY, SETTINGS_KEY
from dialogtrainer.errors import PersistenceError
from dialogtrainer.models import LineStat, Settings
from dialogtrainer.progress import ProgressTracker, unit_progress_from_dict
from dialogtrainer.settings import SettingsStore
from dialogtrainer.storage import MemoryKeyValueStore


class FailingWrites(MemoryKeyValueStore):
    def set(self, key: str, value: str) -> None:
        raise PersistenceError("disk full")


def _tracker(store: MemoryKeyValueStore | None = None) -> ProgressTracker:
    backing = store if store is not None else MemoryKeyValueStore()
    return ProgressTracker(backing, SettingsStore(backing))


def test_get_or_create_returns_empty_record(tracker: ProgressTracker) -> None:
    unit = tracker.get_or_create("cafe")
    assert dict(unit.line_stats) == {}
    assert unit.review_queue == ()
    assert unit.last_index == 0
    assert unit.updated_at
    assert tracker.get_or_create("cafe") is unit


def test_record_attempt_updates_line_stat_and_queue(tracker: ProgressTracker) -> None:
    unit = tracker.record_attempt("cafe", 1, 83)
    assert unit.line_stats[1] == LineStat(best_score=83, attempts=1, last_score=83)
    assert unit.review_queue == (1,)

    unit = tracker.record_attempt("cafe", 1, 100)
    assert unit.line_stats[1] == LineStat(best_score=100, attempts=2, last_score=100)
    # Mastering a queued line does not remove it.
    assert unit.review_queue == (1,)

    unit = tracker.record_attempt("cafe", 1, 40)
    assert unit.line_stats[1] == LineStat(best_score=100, attempts=3, last_score=40)


def test_mastered_first_attempt_is_not_queued(tracker: ProgressTracker) -> None:
    unit = tracker.record_attempt("cafe", 0, 90)
    assert unit.review_queue == ()


def test_review_queue_keeps_insertion_order(tracker: ProgressTracker) -> None:
    for index in (4, 2, 4, 7, 2):
        tracker.record_attempt("cafe", index, 10)
    assert tracker.review_queue("cafe") == (4, 2, 7)


def test_records_are_versioned_snapshots(tracker: ProgressTracker) -> None:
    first = tracker.record_attempt("cafe", 0, 50)
    second = tracker.record_attempt("cafe", 1, 50)
    assert second.version == first.version + 1
    assert 1 not in first.line_stats
    assert first.review_queue == (0,)
    with pytest.raises(TypeError):
        first.line_stats[5] = LineStat()  # type: ignore[index]


def test_record_attempt_rejects_out_of_range_values(tracker: ProgressTracker) -> None:
    with pytest.raises(ValueError):
        tracker.record_attempt("cafe", 0, 101)
    with pytest.raises(ValueError):
        tracker.record_attempt("cafe", -1, 50)


def test_completion_counts_mastered_lines(tracker: ProgressTracker) -> None:
    assert tracker.completion("cafe", 6) == 0
    tracker.record_attempt("cafe", 0, 95)
    tracker.record_attempt("cafe", 1, 90)
    tracker.record_attempt("cafe", 2, 89)
    assert tracker.completion("cafe", 6) == 33
    assert tracker.completion("cafe", 0) == 0
    assert tracker.completion("other", 3) == 0


def test_write_through_persists_wire_format() -> None:
    store = MemoryKeyValueStore()
    tracker = _tracker(store)
    tracker.record_attempt("cafe", 2, 50)
    tracker.set_last_index("cafe", 3)

    stored = json.loads(store.get(PROGRESS_KEY) or "{}")
    assert stored["cafe"]["lineStats"] == {"2": {"bestScore": 50, "attempts": 1, "lastScore": 50}}
    assert stored["cafe"]["reviewQueue"] == [2]
    assert stored["cafe"]["lastIndex"] == 3

    reloaded = _tracker(store)
    unit = reloaded.get_or_create("cafe")
    assert unit.line_stats[2] == LineStat(best_score=50, attempts=1, last_score=50)
    assert unit.review_queue == (2,)
    assert unit.last_index == 3


def test_set_last_index_rejects_negative(tracker: ProgressTracker) -> None:
    with pytest.raises(ValueError):
        tracker.set_last_index("cafe", -1)


def test_failed_write_is_logged_and_memory_state_kept(caplog: pytest.LogCaptureFixture) -> None:
    tracker = _tracker(FailingWrites())
    with caplog.at_level(logging.ERROR):
        unit = tracker.record_attempt("cafe", 0, 20)
    assert unit.review_queue == (0,)
    assert tracker.review_queue("cafe") == (0,)
    assert "Failed to save progress" in caplog.text


def test_corrupt_progress_blob_starts_empty(caplog: pytest.LogCaptureFixture) -> None:
    store = MemoryKeyValueStore({PROGRESS_KEY: "not-json"})
    with caplog.at_level(logging.ERROR):
        tracker = _tracker(store)
    assert tracker.unit_ids() == []
    assert "Failed to load progress" in caplog.text


def test_malformed_persisted_entries_are_dropped() -> None:
    unit = unit_progress_from_dict(
        {
            "lineStats": {"0": {"bestScore": 150, "attempts": "2"}, "x": {}, "3": "bad"},
            "reviewQueue": [1, 1, "2", -4, None],
            "lastIndex": "oops",
        },
        now="2026-01-01T00:00:00+00:00",
    )
    assert dict(unit.line_stats) == {0: LineStat(best_score=100, attempts=2, last_score=0)}
    assert unit.review_queue == (1, 2)
    assert unit.last_index == 0
    assert unit.updated_at == "2026-01-01T00:00:00+00:00"


def test_reset_requires_confirmation() -> None:
    store = MemoryKeyValueStore()
    tracker = _tracker(store)
    tracker.record_attempt("cafe", 0, 10)
    with pytest.raises(ValueError):
        tracker.reset()
    with pytest.raises(ValueError):
        tracker.reset(confirm="yes")  # type: ignore[arg-type]
    assert tracker.review_queue("cafe") == (0,)


def test_reset_clears_progress_and_settings() -> None:
    store = MemoryKeyValueStore()
    settings = SettingsStore(store)
    tracker = ProgressTracker(store, settings)
    settings.update(rate=1.7, gap_ms=100, voice_id="v", last_unit_id="cafe")
    tracker.record_attempt("cafe", 0, 10)

    tracker.reset(confirm=True)

    assert tracker.unit_ids() == []
    assert settings.current == Settings()
    assert store.get(PROGRESS_KEY) is None
    assert store.get(SETTINGS_KEY) is None


@given(st.lists(st.integers(min_value=0, max_value=100), min_size=1, max_size=20))
def test_best_score_is_max_of_all_scores(scores: list[int]) -> None:
    tracker = _tracker()
    for value in scores:
        tracker.record_attempt("unit", 0, value)
    stat = tracker.line_stat("unit", 0)
    assert stat is not None
    assert stat.best_score == max(scores)
    assert stat.attempts == len(scores)
    assert stat.last_score == scores[-1]


@given(
    st.lists(
        st.tuples(st.integers(min_value=0, max_value=5), st.integers(min_value=0, max_value=100)),
        max_size=30,
    )
)
def test_review_queue_never_has_duplicates(attempts: list[tuple[int, int]]) -> None:
    tracker = _tracker()
    for index, value in attempts:
        tracker.record_attempt("unit", index, value)
    queue = tracker.review_queue("unit")
    assert len(queue) == len(set(queue))
    assert set(queue) == {index for index, value in attempts if value < 90}
