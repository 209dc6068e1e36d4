"""Core domain models for dialogue dictation practice."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType

from .config import DEFAULT_GAP_MS, DEFAULT_RATE, DEFAULT_VOICE_ID


@dataclass(frozen=True)
class Line:
    """One scripted utterance."""

    role: str
    text: str


@dataclass(frozen=True)
class Script:
    """Ordered lines of one practice pack, in playback order."""

    lines: tuple[Line, ...] = ()

    def __len__(self) -> int:
        return len(self.lines)

    def __getitem__(self, index: int) -> Line:
        return self.lines[index]

    def __iter__(self) -> Iterator[Line]:
        return iter(self.lines)


@dataclass(frozen=True)
class PackEntry:
    """Content index record pointing at one script file."""

    id: str
    title: str
    script_file: str
    category: str | None = None
    level: str | None = None


@dataclass(frozen=True)
class LineStat:
    """Mastery record for one line of one pack."""

    best_score: int = 0
    attempts: int = 0
    last_score: int = 0


@dataclass(frozen=True)
class UnitProgress:
    """Versioned progress snapshot for one pack.

    Records are never mutated in place; the tracker replaces them with a new
    version on every change.
    """

    line_stats: Mapping[int, LineStat] = field(default_factory=lambda: MappingProxyType({}))
    review_queue: tuple[int, ...] = ()
    last_index: int = 0
    updated_at: str = ""
    version: int = 0


class OpKind(Enum):
    """Classification of one word in an alignment."""

    EQUAL = "equal"
    DELETE = "delete"
    INSERT = "insert"


@dataclass(frozen=True)
class AlignmentOp:
    """One aligned word.

    `DELETE` marks an extra word the learner typed, `INSERT` a target word they
    missed.
    """

    kind: OpKind
    word: str


@dataclass(frozen=True)
class PlaybackSettings:
    """Speech parameters applied to each utterance."""

    rate: float = DEFAULT_RATE
    gap_ms: int = DEFAULT_GAP_MS
    voice_id: str = DEFAULT_VOICE_ID


@dataclass(frozen=True)
class Settings:
    """Persisted learner settings."""

    rate: float = DEFAULT_RATE
    gap_ms: int = DEFAULT_GAP_MS
    voice_id: str = DEFAULT_VOICE_ID
    last_unit_id: str = ""

    @property
    def playback(self) -> PlaybackSettings:
        return PlaybackSettings(rate=self.rate, gap_ms=self.gap_ms, voice_id=self.voice_id)


@dataclass(frozen=True)
class Voice:
    """Voice offered by the speech capability."""

    id: str
    name: str
    lang: str


@dataclass(frozen=True)
class SpeechEvent:
    """Notification emitted by the speech capability for one utterance."""

    kind: str
    reason: str = ""

    STARTED = "started"
    ENDED = "ended"
    ERROR = "error"


@dataclass(frozen=True)
class GradeResult:
    """Outcome of checking one dictation attempt."""

    line_index: int
    alignment: tuple[AlignmentOp, ...]
    score: int
    mastered: bool
    queued_for_review: bool
