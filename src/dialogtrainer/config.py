"""Limits, defaults and locations shared across the trainer."""

from __future__ import annotations

import os
from pathlib import Path

MAX_LINE_LENGTH = 300
MAX_LINES = 1000
MAX_INDEX_BYTES = 50 * 1024
MAX_PACK_BYTES = 200 * 1024
MAX_STORAGE_BYTES = 5 * 1024 * 1024

MASTERY_THRESHOLD = 90

DEFAULT_RATE = 1.0
DEFAULT_GAP_MS = 800
DEFAULT_VOICE_ID = ""

SETTINGS_KEY = "app_settings"
PROGRESS_KEY = "app_progress"

CONTENT_PREFIX = "packs/"
INDEX_FILE = "packs/index.json"
CONTENT_PACKAGE = "dialogtrainer.content"

HOME_ENV_VAR = "DIALOGTRAINER_HOME"


def data_dir() -> Path:
    """Return the directory holding the local progress database."""
    override = os.environ.get(HOME_ENV_VAR, "").strip()
    if override:
        return Path(override).expanduser()
    return Path(".dialogtrainer")


def default_db_path() -> Path:
    """Return the default SQLite database location."""
    return data_dir() / "progress.db"
