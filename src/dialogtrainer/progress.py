"""Per-pack line mastery and review queue tracking."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import replace
from datetime import UTC, datetime
from types import MappingProxyType
from typing import cast

from .config import MASTERY_THRESHOLD, PROGRESS_KEY
from .errors import PersistenceError
from .models import LineStat, UnitProgress
from .scoring import round_half_up_percent
from .settings import SettingsStore
from .storage import KeyValueStore, coerce_int, dump_blob, load_blob

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(UTC)


class ProgressTracker:
    """Owns all pack progress records and writes them through to storage.

    Every change replaces the pack's `UnitProgress` with a new version, so
    records handed to callers are stable snapshots. A failed write is logged
    and the in-memory state stays authoritative for the session.
    """

    def __init__(self, store: KeyValueStore, settings: SettingsStore, clock: Clock | None = None) -> None:
        self._store = store
        self._settings = settings
        self._clock = clock or _utc_now
        self._units: dict[str, UnitProgress] = self._load()

    def _now(self) -> str:
        return self._clock().isoformat()

    def _load(self) -> dict[str, UnitProgress]:
        try:
            raw_obj = load_blob(self._store, PROGRESS_KEY)
        except PersistenceError as exc:
            logger.error("Failed to load progress: %s", exc)
            return {}
        if raw_obj is None:
            return {}
        if not isinstance(raw_obj, dict):
            logger.error("Failed to load progress: stored value is not an object")
            return {}
        units: dict[str, UnitProgress] = {}
        for unit_id, raw_unit in cast(dict[str, object], raw_obj).items():
            if not isinstance(raw_unit, dict):
                logger.warning("Skipping malformed progress for pack '%s'", unit_id)
                continue
            units[unit_id] = unit_progress_from_dict(cast(dict[str, object], raw_unit), self._now())
        return units

    def _save(self) -> None:
        payload = {unit_id: unit_progress_to_dict(unit) for unit_id, unit in self._units.items()}
        try:
            dump_blob(self._store, PROGRESS_KEY, payload)
        except PersistenceError as exc:
            logger.error("Failed to save progress: %s", exc)

    def unit_ids(self) -> list[str]:
        """Return ids of packs with progress records."""
        return sorted(self._units)

    def get_or_create(self, unit_id: str) -> UnitProgress:
        """Return the pack's progress, creating an empty record on first access."""
        unit = self._units.get(unit_id)
        if unit is None:
            unit = UnitProgress(updated_at=self._now())
            self._units[unit_id] = unit
            self._save()
        return unit

    def record_attempt(self, unit_id: str, line_index: int, score: int) -> UnitProgress:
        """Record one graded attempt.

        Lines scoring below the mastery threshold join the review queue once;
        the queue is never pruned when a line is later mastered.
        """
        if not 0 <= score <= 100:
            raise ValueError(f"Score must be within 0..100, got {score}.")
        if line_index < 0:
            raise ValueError(f"Line index must not be negative, got {line_index}.")

        unit = self.get_or_create(unit_id)
        previous = unit.line_stats.get(line_index, LineStat())
        stat = LineStat(
            best_score=max(previous.best_score, score),
            attempts=previous.attempts + 1,
            last_score=score,
        )
        line_stats = dict(unit.line_stats)
        line_stats[line_index] = stat

        review_queue = unit.review_queue
        if score < MASTERY_THRESHOLD and line_index not in review_queue:
            review_queue = review_queue + (line_index,)

        updated = replace(
            unit,
            line_stats=MappingProxyType(line_stats),
            review_queue=review_queue,
            updated_at=self._now(),
            version=unit.version + 1,
        )
        self._units[unit_id] = updated
        self._save()
        return updated

    def set_last_index(self, unit_id: str, index: int) -> UnitProgress:
        """Remember the last viewed line for resuming the pack."""
        if index < 0:
            raise ValueError(f"Line index must not be negative, got {index}.")
        unit = self.get_or_create(unit_id)
        updated = replace(unit, last_index=index, updated_at=self._now(), version=unit.version + 1)
        self._units[unit_id] = updated
        self._save()
        return updated

    def completion(self, unit_id: str, total_line_count: int) -> int:
        """Return the percentage of lines mastered in a pack."""
        if total_line_count <= 0:
            return 0
        unit = self._units.get(unit_id)
        if unit is None:
            return 0
        mastered = sum(1 for stat in unit.line_stats.values() if stat.best_score >= MASTERY_THRESHOLD)
        return min(100, round_half_up_percent(mastered, total_line_count))

    def review_queue(self, unit_id: str) -> tuple[int, ...]:
        unit = self._units.get(unit_id)
        return unit.review_queue if unit is not None else ()

    def line_stat(self, unit_id: str, line_index: int) -> LineStat | None:
        unit = self._units.get(unit_id)
        if unit is None:
            return None
        return unit.line_stats.get(line_index)

    def reset(self, *, confirm: bool = False) -> None:
        """Erase all progress and restore default settings.

        Irreversible; callers must pass `confirm=True` after asking the learner.
        """
        if confirm is not True:
            raise ValueError("Reset requires explicit confirmation.")
        self._units = {}
        try:
            self._store.delete(PROGRESS_KEY)
        except PersistenceError as exc:
            logger.error("Failed to clear progress: %s", exc)
        self._settings.reset()
        logger.info("All progress and settings have been reset")


def unit_progress_to_dict(unit: UnitProgress) -> dict[str, object]:
    """Serialize one record in the persisted wire format."""
    return {
        "lineStats": {
            str(index): {"bestScore": stat.best_score, "attempts": stat.attempts, "lastScore": stat.last_score}
            for index, stat in sorted(unit.line_stats.items())
        },
        "reviewQueue": list(unit.review_queue),
        "lastIndex": unit.last_index,
        "updatedAt": unit.updated_at,
    }


def unit_progress_from_dict(raw: dict[str, object], now: str) -> UnitProgress:
    """Rebuild one record from persisted data, dropping malformed entries."""
    line_stats: dict[int, LineStat] = {}
    raw_stats = raw.get("lineStats")
    if isinstance(raw_stats, dict):
        for key, value in cast(dict[object, object], raw_stats).items():
            index = coerce_int(key)
            if index is None or index < 0 or not isinstance(value, dict):
                continue
            line_stats[index] = _line_stat_from_dict(cast(dict[str, object], value))

    review_queue: list[int] = []
    raw_queue = raw.get("reviewQueue")
    if isinstance(raw_queue, list):
        for item in cast(list[object], raw_queue):
            index = coerce_int(item)
            if index is not None and index >= 0 and index not in review_queue:
                review_queue.append(index)

    last_index = coerce_int(raw.get("lastIndex", 0), default=0) or 0
    updated_at = raw.get("updatedAt")
    return UnitProgress(
        line_stats=MappingProxyType(line_stats),
        review_queue=tuple(review_queue),
        last_index=max(0, last_index),
        updated_at=updated_at if isinstance(updated_at, str) and updated_at else now,
    )


def _line_stat_from_dict(raw: Mapping[str, object]) -> LineStat:
    def score_field(name: str) -> int:
        value = coerce_int(raw.get(name, 0), default=0) or 0
        return max(0, min(100, value))

    attempts = coerce_int(raw.get("attempts", 0), default=0) or 0
    return LineStat(best_score=score_field("bestScore"), attempts=max(0, attempts), last_score=score_field("lastScore"))
