"""Session controller tying content, grading, progress and playback together."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from .alignment import align, tokenize
from .content_loader import ContentRoot, load_script
from .errors import EmptyInputError, EmptyScriptError, NoActiveUnitError, SpeechError
from .models import GradeResult, Line, PackEntry, Script, Settings
from .playback import PlaybackSequencer, PlaybackState
from .progress import ProgressTracker
from .scoring import is_mastered, score
from .settings import SettingsStore

logger = logging.getLogger(__name__)


@dataclass
class SessionContext:
    """Mutable state of the pack currently open for practice."""

    entry: PackEntry
    script: Script
    current_index: int = 0
    review_only: bool = False
    last_grade: GradeResult | None = None


class SessionController:
    """Coordinates one open pack: line selection, grading and playback."""

    def __init__(
        self,
        tracker: ProgressTracker,
        settings: SettingsStore,
        sequencer: PlaybackSequencer | None = None,
        *,
        on_speech_error: Callable[[SpeechError], None] | None = None,
    ) -> None:
        self.tracker = tracker
        self.settings = settings
        self.sequencer = sequencer
        self.on_speech_error = on_speech_error
        self.context: SessionContext | None = None
        self.last_speech_error: SpeechError | None = None
        if sequencer is not None:
            sequencer.update_settings(settings.current.playback)
            sequencer.on_index_change = self._on_playback_index
            sequencer.on_error = self._on_playback_error

    def _require(self) -> SessionContext:
        if self.context is None:
            raise NoActiveUnitError("No pack is open.")
        return self.context

    @property
    def unit_id(self) -> str:
        return self._require().entry.id

    @property
    def script(self) -> Script:
        return self._require().script

    @property
    def current_index(self) -> int:
        return self._require().current_index

    @property
    def current_line(self) -> Line:
        context = self._require()
        if not context.script:
            raise EmptyScriptError(f"Pack '{context.entry.id}' has no lines.")
        return context.script[context.current_index]

    @property
    def review_only(self) -> bool:
        return self._require().review_only

    @property
    def last_grade(self) -> GradeResult | None:
        return self._require().last_grade

    def open_pack(self, entry: PackEntry, root: ContentRoot | None = None) -> SessionContext:
        """Load, validate and open a pack; a failed load leaves the current session alone."""
        script = load_script(entry, root)
        return self.open_unit(entry, script)

    def open_unit(self, entry: PackEntry, script: Script) -> SessionContext:
        """Adopt an already validated script and resume at the last viewed line."""
        if self.sequencer is not None:
            self.sequencer.load(script)
        progress = self.tracker.get_or_create(entry.id)
        start_index = progress.last_index if 0 <= progress.last_index < len(script) else 0
        self.context = SessionContext(entry=entry, script=script, current_index=start_index)
        if self.sequencer is not None:
            self.sequencer.current_index = start_index
        self.settings.update(last_unit_id=entry.id)
        logger.info("Opened pack '%s' at line %d", entry.id, start_index)
        return self.context

    def select_line(self, index: int) -> bool:
        """Make a line current; out-of-range indices are ignored."""
        context = self._require()
        if not 0 <= index < len(context.script):
            return False
        context.current_index = index
        context.last_grade = None
        self.tracker.set_last_index(context.entry.id, index)
        if self.sequencer is not None and not self.sequencer.is_playing:
            self.sequencer.current_index = index
        return True

    def next_line(self) -> bool:
        return self._step(1)

    def prev_line(self) -> bool:
        return self._step(-1)

    def _step(self, delta: int) -> bool:
        """Move to the neighbouring line of the current view.

        In review-only mode the neighbours are taken from the review queue
        order, so lines outside the queue are skipped.
        """
        context = self._require()
        if not context.review_only:
            return self.select_line(context.current_index + delta)
        indices = [index for index, _ in self.visible_lines()]
        if context.current_index in indices:
            position = indices.index(context.current_index) + delta
        elif delta > 0:
            position = 0
        else:
            return False
        if not 0 <= position < len(indices):
            return False
        return self.select_line(indices[position])

    def visible_lines(self) -> list[tuple[int, Line]]:
        """Return (index, line) pairs in the current view."""
        context = self._require()
        if context.review_only:
            queue = self.tracker.review_queue(context.entry.id)
            return [(index, context.script[index]) for index in queue if index < len(context.script)]
        return list(enumerate(context.script))

    def set_review_only(self, enabled: bool) -> int | None:
        """Toggle review-only view and select its first line."""
        context = self._require()
        context.review_only = enabled
        visible = self.visible_lines()
        if not visible:
            return None
        first_index = visible[0][0]
        self.select_line(first_index)
        return first_index

    def grade(self, typed_text: str) -> GradeResult:
        """Check a dictation attempt against the current line and record it."""
        context = self._require()
        input_words = tokenize(typed_text)
        if not input_words:
            raise EmptyInputError("Please type something first.")
        target_words = tokenize(self.current_line.text)

        alignment = align(input_words, target_words)
        value = score(alignment, len(target_words))
        before = self.tracker.review_queue(context.entry.id)
        progress = self.tracker.record_attempt(context.entry.id, context.current_index, value)
        result = GradeResult(
            line_index=context.current_index,
            alignment=alignment,
            score=value,
            mastered=is_mastered(value),
            queued_for_review=context.current_index in progress.review_queue and context.current_index not in before,
        )
        context.last_grade = result
        logger.debug("Line %d scored %d", context.current_index, value)
        return result

    def clear_dictation(self) -> None:
        self._require().last_grade = None

    def review_count(self) -> int:
        return len(self.tracker.review_queue(self.unit_id))

    def completion(self) -> int:
        context = self._require()
        return self.tracker.completion(context.entry.id, len(context.script))

    def play(self) -> bool:
        """Play sequentially from the current line; review-only mode plays queued lines only."""
        context = self._require()
        if self.sequencer is None or not context.script:
            return False
        order = None
        if context.review_only:
            order = [index for index, _ in self.visible_lines()]
            if context.current_index not in order:
                return False
        self.last_speech_error = None
        return self.sequencer.start(context.current_index, order=order)

    def pause(self) -> None:
        if self.sequencer is not None:
            self.sequencer.pause()

    def stop(self) -> None:
        if self.sequencer is not None:
            self.sequencer.stop()

    def replay(self) -> bool:
        """Speak the current line once."""
        context = self._require()
        if self.sequencer is None or not context.script:
            return False
        self.last_speech_error = None
        return self.sequencer.play_one(context.current_index)

    @property
    def playback_state(self) -> PlaybackState:
        if self.sequencer is None:
            return PlaybackState.IDLE
        return self.sequencer.state

    def set_rate(self, rate: float) -> Settings:
        return self._apply_settings(self.settings.update(rate=rate))

    def set_gap(self, gap_ms: int) -> Settings:
        return self._apply_settings(self.settings.update(gap_ms=gap_ms))

    def set_voice(self, voice_id: str) -> Settings:
        return self._apply_settings(self.settings.update(voice_id=voice_id))

    def _apply_settings(self, settings: Settings) -> Settings:
        if self.sequencer is not None:
            self.sequencer.update_settings(settings.playback)
        return settings

    def _on_playback_index(self, index: int) -> None:
        if self.context is not None and 0 <= index < len(self.context.script):
            self.context.current_index = index

    def _on_playback_error(self, error: SpeechError) -> None:
        self.last_speech_error = error
        if self.on_speech_error is not None:
            self.on_speech_error(error)
