"""Error types raised across loading, persistence and playback."""

from __future__ import annotations


class DialogTrainerError(Exception):
    """Base exception for dialogtrainer errors."""


class ValidationError(DialogTrainerError, ValueError):
    """Raised when a content index or script fails validation.

    The failed document is never adopted, so existing state stays intact.
    """

    def __init__(self, message: str, source: str | None = None) -> None:
        self.source = source
        if source:
            message = f"{source}: {message}"
        super().__init__(message)


class PersistenceError(DialogTrainerError):
    """Raised when the key-value store cannot be read or written."""


class SpeechError(DialogTrainerError):
    """Raised (or reported) when the speech capability fails an utterance."""

    def __init__(self, reason: str, line_index: int | None = None) -> None:
        self.reason = reason
        self.line_index = line_index
        super().__init__(f"Speech error: {reason}")


class EmptyInputError(DialogTrainerError, ValueError):
    """Raised when a dictation attempt contains no words."""


class NoActiveUnitError(DialogTrainerError, RuntimeError):
    """Raised when a session operation needs an open content unit."""


class EmptyScriptError(DialogTrainerError, LookupError):
    """Raised when a line is needed from a pack that has no lines."""
