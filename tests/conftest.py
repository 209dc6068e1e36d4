from __future__ import annotations

import json
import sys
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from dialogtrainer.models import SpeechEvent, Voice  # noqa: E402
from dialogtrainer.progress import ProgressTracker  # noqa: E402
from dialogtrainer.settings import SettingsStore  # noqa: E402
from dialogtrainer.storage import MemoryKeyValueStore  # noqa: E402


class FakeTimer:
    def __init__(self, scheduler: ManualScheduler, delay: float, callback: Callable[[], object]) -> None:
        self.scheduler = scheduler
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Collects delayed callbacks; tests fire them explicitly."""

    def __init__(self) -> None:
        self.timers: list[FakeTimer] = []

    def call_later(self, delay: float, callback: Callable[[], object]) -> FakeTimer:
        timer = FakeTimer(self, delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[FakeTimer]:
        return [timer for timer in self.timers if not timer.cancelled]

    def fire_all(self) -> None:
        for timer in list(self.pending):
            self.timers.remove(timer)
            timer.callback()


class ScriptedSpeech:
    """Speech capability double that records utterances and lets tests emit events."""

    def __init__(self, voices: Sequence[Voice] = ()) -> None:
        self.voices = list(voices)
        self.spoken: list[tuple[str, str, float]] = []
        self.listeners: list[Callable[[SpeechEvent], None]] = []
        self.cancel_count = 0

    def list_voices(self) -> Sequence[Voice]:
        return self.voices

    def speak(self, text: str, voice_id: str, rate: float, listener: Callable[[SpeechEvent], None]) -> None:
        self.spoken.append((text, voice_id, rate))
        self.listeners.append(listener)

    def cancel(self) -> None:
        self.cancel_count += 1

    def emit(self, kind: str, reason: str = "", utterance: int = -1) -> None:
        self.listeners[utterance](SpeechEvent(kind, reason))

    def finish(self, utterance: int = -1) -> None:
        self.emit(SpeechEvent.STARTED, utterance=utterance)
        self.emit(SpeechEvent.ENDED, utterance=utterance)


class SteppingClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def settings_store(store: MemoryKeyValueStore) -> SettingsStore:
    return SettingsStore(store)


@pytest.fixture
def tracker(store: MemoryKeyValueStore, settings_store: SettingsStore) -> ProgressTracker:
    return ProgressTracker(store, settings_store, clock=SteppingClock())


@pytest.fixture
def speech() -> ScriptedSpeech:
    return ScriptedSpeech()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


def write_pack(root: Path, pack_id: str, lines: list[dict[str, object]], **extra: object) -> dict[str, object]:
    """Write one script under root/packs and return its index record."""
    packs = root / "packs"
    packs.mkdir(parents=True, exist_ok=True)
    (packs / f"{pack_id}.json").write_text(json.dumps(lines), encoding="utf-8")
    record: dict[str, object] = {"id": pack_id, "title": pack_id.title(), "scriptFile": f"packs/{pack_id}.json"}
    record.update(extra)
    return record


def write_index(root: Path, records: list[dict[str, object]]) -> None:
    packs = root / "packs"
    packs.mkdir(parents=True, exist_ok=True)
    (packs / "index.json").write_text(json.dumps(records), encoding="utf-8")
