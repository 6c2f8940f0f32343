"""Escape-aware greedy line wrapping."""

from __future__ import annotations

import re

from .ansi import split_token, visible_width

_WORD_SEP = re.compile(r"[ \t]+")


def wrap_text(text: str, width: int) -> list[str]:
    """Wrap ``text`` into display lines no wider than ``width`` visible columns.

    Explicit newlines are honored first; each segment is then packed word by
    word. A trailing newline adds no line, and an empty input yields ``[""]``.
    """
    if width < 1:
        raise ValueError(f"width must be positive, got {width}")

    segments = text.replace("\r", "").split("\n")
    if len(segments) > 1 and segments[-1] == "":
        segments.pop()

    lines: list[str] = []
    for segment in segments:
        lines.extend(_wrap_segment(segment, width))
    return lines


def _wrap_segment(segment: str, width: int) -> list[str]:
    lines: list[str] = []
    current = ""
    columns = 0

    for word in _WORD_SEP.split(segment):
        if not word:
            continue
        word_width = visible_width(word)

        if word_width == 0:
            # Escape-only token: keep it with the text it decorates
            current += word
            continue

        if columns == 0 and word_width <= width:
            current += word
            columns = word_width
        elif columns > 0 and columns + 1 + word_width <= width:
            current += " " + word
            columns += 1 + word_width
        elif word_width <= width:
            lines.append(current)
            current = word
            columns = word_width
        else:
            if columns > 0:
                lines.append(current)
                current = ""
            chunks = split_token(current + word, width)
            lines.extend(chunks[:-1])
            current = chunks[-1]
            columns = visible_width(current)

    lines.append(current)
    return lines
