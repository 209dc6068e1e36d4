"""Load and validate content packs from JSON documents."""

from __future__ import annotations

import json
import logging
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

from .config import (
    CONTENT_PACKAGE,
    CONTENT_PREFIX,
    INDEX_FILE,
    MAX_INDEX_BYTES,
    MAX_LINE_LENGTH,
    MAX_LINES,
    MAX_PACK_BYTES,
)
from .errors import ValidationError
from .models import Line, PackEntry, Script

logger = logging.getLogger(__name__)

ContentRoot = Path | Traversable


def default_content_root() -> Traversable:
    """Return the bundled content root."""
    return resources.files(CONTENT_PACKAGE)


def validate_script_path(path: object) -> str:
    """Return the script path if it is confined to the packs directory."""
    if not isinstance(path, str) or not path:
        raise ValidationError("Invalid path format")
    if path.startswith(("/", "\\")) or (len(path) > 1 and path[1] == ":"):
        raise ValidationError("Path traversal detected")
    segments = path.replace("\\", "/").split("/")
    if ".." in segments:
        raise ValidationError("Path traversal detected")
    if not path.startswith(CONTENT_PREFIX) or not segments[-1]:
        raise ValidationError(f"Path must start with {CONTENT_PREFIX}")
    return path


def _required_str(raw: dict[str, Any], key: str, label: str) -> str:
    value = raw.get(key)
    if not isinstance(value, str) or not value:
        raise ValidationError(f"{label}: missing or invalid {key}")
    return value


def _optional_str(raw: dict[str, Any], key: str, label: str) -> str | None:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{label}: invalid {key}")
    return value


def parse_pack_index(data: object) -> list[PackEntry]:
    """Validate a decoded content index."""
    if not isinstance(data, list):
        raise ValidationError("Pack index must be an array")

    entries: list[PackEntry] = []
    seen: set[str] = set()
    for idx, raw in enumerate(data):
        label = f"Pack {idx}"
        if not isinstance(raw, dict):
            raise ValidationError(f"{label}: entry must be an object")
        pack_id = _required_str(raw, "id", label)
        if pack_id in seen:
            raise ValidationError(f"Duplicate pack id: {pack_id}")
        seen.add(pack_id)
        entries.append(
            PackEntry(
                id=pack_id,
                title=_required_str(raw, "title", label),
                script_file=_required_str(raw, "scriptFile", label),
                category=_optional_str(raw, "category", label),
                level=_optional_str(raw, "level", label),
            )
        )
    return entries


def parse_script(data: object) -> Script:
    """Validate a decoded script."""
    if not isinstance(data, list):
        raise ValidationError("Script must be an array")
    if len(data) > MAX_LINES:
        raise ValidationError(f"Too many lines (max {MAX_LINES})")

    lines: list[Line] = []
    for idx, raw in enumerate(data):
        label = f"Line {idx}"
        if not isinstance(raw, dict):
            raise ValidationError(f"{label}: entry must be an object")
        role = _required_str(raw, "role", label)
        text = _required_str(raw, "text", label)
        if len(text) > MAX_LINE_LENGTH:
            raise ValidationError(f"{label}: text too long (max {MAX_LINE_LENGTH} chars)")
        lines.append(Line(role=role, text=text))
    return Script(lines=tuple(lines))


def decode_document(text: str, max_bytes: int, source: str) -> object:
    """Enforce the size cap, then decode JSON."""
    size = len(text.encode("utf-8"))
    if size > max_bytes:
        raise ValidationError(f"File too large (max {max_bytes} bytes)", source=source)
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Invalid JSON: {exc.msg}", source=source) from exc


def _read_document(root: ContentRoot, relative: str, max_bytes: int) -> object:
    resource = root.joinpath(*relative.split("/"))
    try:
        text = resource.read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError) as exc:
        raise ValidationError(f"Could not read file: {exc}", source=relative) from exc
    return decode_document(text, max_bytes, relative)


def load_pack_index(root: ContentRoot | None = None) -> list[PackEntry]:
    """Load `packs/index.json` under a content root (bundled content by default)."""
    base = root if root is not None else default_content_root()
    data = _read_document(base, INDEX_FILE, MAX_INDEX_BYTES)
    try:
        entries = parse_pack_index(data)
    except ValidationError as exc:
        raise ValidationError(str(exc), source=INDEX_FILE) from exc
    logger.info("Loaded %d packs from index", len(entries))
    return entries


def load_script(entry: PackEntry, root: ContentRoot | None = None) -> Script:
    """Load and validate the script referenced by a pack entry."""
    base = root if root is not None else default_content_root()
    script_path = validate_script_path(entry.script_file)
    data = _read_document(base, script_path, MAX_PACK_BYTES)
    try:
        script = parse_script(data)
    except ValidationError as exc:
        raise ValidationError(str(exc), source=script_path) from exc
    logger.info("Loaded pack '%s' with %d lines", entry.id, len(script))
    return script
