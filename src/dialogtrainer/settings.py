"""Persisted playback settings."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import cast

from .config import DEFAULT_GAP_MS, DEFAULT_RATE, DEFAULT_VOICE_ID, SETTINGS_KEY
from .errors import PersistenceError
from .models import Settings
from .storage import KeyValueStore, coerce_float, coerce_int, dump_blob, load_blob

logger = logging.getLogger(__name__)


class SettingsStore:
    """Loads, validates and writes through learner settings."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        self._settings = self._load()

    @property
    def current(self) -> Settings:
        return self._settings

    def _load(self) -> Settings:
        """Merge persisted settings over defaults; unreadable data falls back to defaults."""
        try:
            raw_obj = load_blob(self._store, SETTINGS_KEY)
        except PersistenceError as exc:
            logger.error("Failed to load settings: %s", exc)
            return Settings()
        if raw_obj is None:
            return Settings()
        if not isinstance(raw_obj, dict):
            logger.error("Failed to load settings: stored value is not an object")
            return Settings()
        return settings_from_dict(cast(dict[str, object], raw_obj))

    def update(
        self,
        *,
        rate: float | None = None,
        gap_ms: int | None = None,
        voice_id: str | None = None,
        last_unit_id: str | None = None,
    ) -> Settings:
        """Apply changed fields, persist, and return the new settings."""
        updated = self._settings
        if rate is not None:
            if not rate > 0:
                raise ValueError(f"Rate must be positive, got {rate}.")
            updated = replace(updated, rate=float(rate))
        if gap_ms is not None:
            if gap_ms < 0:
                raise ValueError(f"Gap must not be negative, got {gap_ms}.")
            updated = replace(updated, gap_ms=int(gap_ms))
        if voice_id is not None:
            updated = replace(updated, voice_id=voice_id)
        if last_unit_id is not None:
            updated = replace(updated, last_unit_id=last_unit_id)
        self._settings = updated
        self._save()
        return updated

    def reset(self) -> Settings:
        """Revert to defaults and drop the persisted copy."""
        self._settings = Settings()
        try:
            self._store.delete(SETTINGS_KEY)
        except PersistenceError as exc:
            logger.error("Failed to clear settings: %s", exc)
        return self._settings

    def _save(self) -> None:
        try:
            dump_blob(self._store, SETTINGS_KEY, settings_to_dict(self._settings))
        except PersistenceError as exc:
            logger.error("Failed to save settings: %s", exc)


def settings_to_dict(settings: Settings) -> dict[str, object]:
    """Serialize settings in the persisted wire format."""
    return {
        "rate": settings.rate,
        "gap": settings.gap_ms,
        "voiceURI": settings.voice_id,
        "lastPackId": settings.last_unit_id,
    }


def settings_from_dict(raw: dict[str, object]) -> Settings:
    """Build settings from persisted values, keeping defaults for anything invalid."""
    rate = coerce_float(raw.get("rate"), default=None)
    if rate is None or not rate > 0:
        if "rate" in raw:
            logger.warning("Ignoring invalid stored rate %r", raw.get("rate"))
        rate = DEFAULT_RATE
    gap_ms = coerce_int(raw.get("gap"), default=None)
    if gap_ms is None or gap_ms < 0:
        if "gap" in raw:
            logger.warning("Ignoring invalid stored gap %r", raw.get("gap"))
        gap_ms = DEFAULT_GAP_MS
    voice_id = raw.get("voiceURI", DEFAULT_VOICE_ID)
    last_unit_id = raw.get("lastPackId", "")
    return Settings(
        rate=rate,
        gap_ms=gap_ms,
        voice_id=voice_id if isinstance(voice_id, str) else DEFAULT_VOICE_ID,
        last_unit_id=last_unit_id if isinstance(last_unit_id, str) else "",
    )
