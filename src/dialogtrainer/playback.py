"""Line-by-line speech playback as an explicit state machine."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from enum import Enum
from typing import Protocol

from .errors import SpeechError
from .models import Line, PlaybackSettings, Script, SpeechEvent, Voice

logger = logging.getLogger(__name__)

SpeechListener = Callable[[SpeechEvent], None]


class SpeechCapability(Protocol):
    """Speech synthesis engine consumed by the sequencer."""

    def list_voices(self) -> Sequence[Voice]: ...

    def speak(self, text: str, voice_id: str, rate: float, listener: SpeechListener) -> None: ...

    def cancel(self) -> None: ...


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Fire-once delayed callbacks; `asyncio` event loops satisfy this."""

    def call_later(self, delay: float, callback: Callable[[], object]) -> TimerHandle: ...


class PlaybackState(Enum):
    """Pausing collapses into `IDLE`; there is no resume-from-word state."""

    IDLE = "idle"
    PLAYING = "playing"


def english_voices(speech: SpeechCapability) -> list[Voice]:
    """Return voices whose language tag is English."""
    return [voice for voice in speech.list_voices() if voice.lang.lower().startswith("en")]


class PlaybackSequencer:
    """Plays script lines one after another with a gap between them.

    Every utterance gets a generation number. Cancelling or starting a new
    utterance bumps the generation, and speech notifications or gap timers
    carrying an older generation are dropped. This keeps a late `started`
    from a cancelled line from reviving playback.
    """

    def __init__(
        self,
        speech: SpeechCapability,
        scheduler: Scheduler,
        settings: PlaybackSettings | None = None,
        *,
        on_state_change: Callable[[PlaybackState], None] | None = None,
        on_line_started: Callable[[int], None] | None = None,
        on_line_ended: Callable[[int], None] | None = None,
        on_index_change: Callable[[int], None] | None = None,
        on_error: Callable[[SpeechError], None] | None = None,
    ) -> None:
        self._speech = speech
        self._scheduler = scheduler
        self.settings = settings or PlaybackSettings()
        self._lines: tuple[Line, ...] = ()
        self._order: tuple[int, ...] | None = None
        self._state = PlaybackState.IDLE
        self._generation = 0
        self._timer: TimerHandle | None = None
        self._busy = False
        self.current_index = 0
        self.active_index: int | None = None
        self.on_state_change = on_state_change
        self.on_line_started = on_line_started
        self.on_line_ended = on_line_ended
        self.on_index_change = on_index_change
        self.on_error = on_error

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def is_playing(self) -> bool:
        return self._state is PlaybackState.PLAYING

    @property
    def busy(self) -> bool:
        """True while a single-line replay is in flight."""
        return self._busy

    @property
    def line_count(self) -> int:
        return len(self._lines)

    def load(self, script: Script | Sequence[Line]) -> None:
        """Replace the lines to play, stopping any current playback."""
        self.stop()
        self._lines = tuple(script)
        self._order = None
        self.current_index = 0

    def update_settings(self, settings: PlaybackSettings) -> None:
        """Use new settings from the next utterance or gap onward."""
        self.settings = settings

    def start(self, from_index: int | None = None, *, order: Sequence[int] | None = None) -> bool:
        """Begin sequential playback; ignored while playing or replaying a line.

        `order` restricts the sequence to the given line indices, played in
        that order. Without it every line from `from_index` onward is played.
        """
        if self._state is PlaybackState.PLAYING or self._busy:
            return False
        index = self.current_index if from_index is None else from_index
        self._check_index(index)
        if order is not None:
            for item in order:
                self._check_index(item)
            if index not in order:
                raise ValueError(f"Line index {index} is not part of the playback order.")
        self._order = tuple(order) if order is not None else None
        self.current_index = index
        self._set_state(PlaybackState.PLAYING)
        self._speak(index, sequence=True)
        return True

    def resume(self) -> bool:
        """Restart playback from the beginning of the current line."""
        order = self._order
        if order is not None and self.current_index not in order:
            order = None
        return self.start(self.current_index, order=order)

    def pause(self) -> None:
        """Halt playback immediately and return to idle, like `stop()`.

        Speech engines cannot resume mid-utterance, so `resume()` restarts the
        current line from its beginning.
        """
        self.stop()

    def stop(self) -> None:
        """Halt playback immediately and return to idle."""
        self._halt()
        self._set_state(PlaybackState.IDLE)

    def play_one(self, index: int) -> bool:
        """Speak a single line without advancing; ignored while another playback runs."""
        if self._state is PlaybackState.PLAYING or self._busy:
            return False
        self._check_index(index)
        self._busy = True
        self._speak(index, sequence=False)
        return True

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self._lines):
            raise ValueError(f"Line index {index} out of range for {len(self._lines)} lines.")

    def _set_state(self, state: PlaybackState) -> None:
        if state is self._state:
            return
        logger.debug("Playback %s -> %s", self._state.value, state.value)
        self._state = state
        if self.on_state_change is not None:
            self.on_state_change(state)

    def _halt(self) -> None:
        self._generation += 1
        self._cancel_timer()
        self._busy = False
        self.active_index = None
        self._speech.cancel()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _speak(self, index: int, *, sequence: bool) -> None:
        self._generation += 1
        generation = self._generation
        self._speech.cancel()
        settings = self.settings
        line = self._lines[index]

        def listener(event: SpeechEvent) -> None:
            self._on_speech_event(generation, index, event, sequence)

        self._speech.speak(line.text, settings.voice_id, settings.rate, listener)

    def _on_speech_event(self, generation: int, index: int, event: SpeechEvent, sequence: bool) -> None:
        if generation != self._generation:
            logger.debug("Dropping stale %s notification for line %d", event.kind, index)
            return

        if event.kind == SpeechEvent.STARTED:
            self.active_index = index
            if self.on_line_started is not None:
                self.on_line_started(index)
        elif event.kind == SpeechEvent.ENDED:
            self.active_index = None
            if not sequence:
                self._busy = False
            if self.on_line_ended is not None:
                self.on_line_ended(index)
            if sequence and self._state is PlaybackState.PLAYING:
                delay = max(0, self.settings.gap_ms) / 1000
                self._timer = self._scheduler.call_later(delay, lambda: self._on_gap_elapsed(generation))
        elif event.kind == SpeechEvent.ERROR:
            logger.warning("Speech failed on line %d: %s", index, event.reason)
            self._halt()
            self._set_state(PlaybackState.IDLE)
            if self.on_error is not None:
                self.on_error(SpeechError(event.reason or "unknown", line_index=index))
        else:
            logger.debug("Ignoring unknown speech event %r", event.kind)

    def _next_index(self) -> int | None:
        if self._order is None:
            candidate = self.current_index + 1
            return candidate if candidate < len(self._lines) else None
        position = self._order.index(self.current_index) + 1
        return self._order[position] if position < len(self._order) else None

    def _on_gap_elapsed(self, generation: int) -> None:
        if generation != self._generation or self._state is not PlaybackState.PLAYING:
            return
        self._timer = None
        next_index = self._next_index()
        if next_index is None:
            self._set_state(PlaybackState.IDLE)
            return
        self.current_index = next_index
        if self.on_index_change is not None:
            self.on_index_change(next_index)
        self._speak(next_index, sequence=True)
