"""Word-level alignment between a typed transcript and a target line."""

from __future__ import annotations

import re
from collections.abc import Sequence

from .models import AlignmentOp, OpKind

_WHITESPACE = re.compile(r"\s+")
_APOSTROPHES = str.maketrans({"’": "'", "‘": "'"})


def normalize_text(text: str) -> str:
    """Lower-case, trim and collapse whitespace; fold curly apostrophes."""
    return _WHITESPACE.sub(" ", text.lower().strip()).translate(_APOSTROPHES)


def tokenize(text: str) -> list[str]:
    """Normalize text and split it into words."""
    normalized = normalize_text(text)
    if not normalized:
        return []
    return normalized.split(" ")


def align(input_words: Sequence[str], target_words: Sequence[str]) -> tuple[AlignmentOp, ...]:
    """Align typed words against target words in one greedy pass.

    On a mismatch, the next occurrence of each current word in the other
    sequence decides the outcome: the input word is extra when the target word
    reappears strictly sooner in the input, the target word is missing when the
    input word reappears in the target, and otherwise the pair is a
    substitution (delete then insert).

    Dropping `DELETE` ops from the result yields `target_words`; dropping
    `INSERT` ops yields `input_words`.
    """
    ops: list[AlignmentOp] = []
    i = 0
    j = 0
    while i < len(input_words) or j < len(target_words):
        if i >= len(input_words):
            ops.append(AlignmentOp(OpKind.INSERT, target_words[j]))
            j += 1
        elif j >= len(target_words):
            ops.append(AlignmentOp(OpKind.DELETE, input_words[i]))
            i += 1
        elif input_words[i] == target_words[j]:
            ops.append(AlignmentOp(OpKind.EQUAL, target_words[j]))
            i += 1
            j += 1
        else:
            next_input_match = _find(input_words, target_words[j], i + 1)
            next_target_match = _find(target_words, input_words[i], j + 1)
            if next_input_match is not None and (next_target_match is None or next_input_match < next_target_match):
                ops.append(AlignmentOp(OpKind.DELETE, input_words[i]))
                i += 1
            elif next_target_match is not None:
                ops.append(AlignmentOp(OpKind.INSERT, target_words[j]))
                j += 1
            else:
                ops.append(AlignmentOp(OpKind.DELETE, input_words[i]))
                ops.append(AlignmentOp(OpKind.INSERT, target_words[j]))
                i += 1
                j += 1
    return tuple(ops)


def _find(words: Sequence[str], word: str, start: int) -> int | None:
    for index in range(start, len(words)):
        if words[index] == word:
            return index
    return None


def input_words_of(ops: Sequence[AlignmentOp]) -> list[str]:
    """Return the typed words reconstructed from an alignment."""
    return [op.word for op in ops if op.kind is not OpKind.INSERT]


def target_words_of(ops: Sequence[AlignmentOp]) -> list[str]:
    """Return the target words reconstructed from an alignment."""
    return [op.word for op in ops if op.kind is not OpKind.DELETE]


def render_diff(ops: Sequence[AlignmentOp]) -> str:
    """Render an alignment as plain text: `[-extra]` and `[+missing]` markers."""
    parts: list[str] = []
    for op in ops:
        if op.kind is OpKind.DELETE:
            parts.append(f"[-{op.word}]")
        elif op.kind is OpKind.INSERT:
            parts.append(f"[+{op.word}]")
        else:
            parts.append(op.word)
    return " ".join(parts)
