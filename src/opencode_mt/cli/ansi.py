"""Terminal escape sequences and escape-aware width helpers.

Only SGR color sequences (``ESC [ ... m``) are treated as embedded markup.
They occupy zero columns; every other character counts as one column.
"""

from __future__ import annotations

import re

ESCAPE_PATTERN = re.compile(r"\x1b\[[0-9;]*m")

RESET = "\x1b[0m"
BOLD = "\x1b[1m"
RED = "\x1b[31m"
GREEN = "\x1b[32m"
YELLOW = "\x1b[33m"
BLUE = "\x1b[34m"
CYAN = "\x1b[36m"
BRIGHT_BLACK = "\x1b[90m"
BRIGHT_WHITE = "\x1b[97m"
BOLD_BLACK = "\x1b[1;30m"
BOLD_BRIGHT_BLACK = "\x1b[1;90m"
BOLD_MAGENTA = "\x1b[1;35m"
BOLD_CYAN = "\x1b[1;36m"
WHITE_BACKGROUND = "\x1b[47m"
STRIKETHROUGH = "\x1b[9m"

CLEAR_TO_END = "\x1b[J"
CLEAR_LINE = "\x1b[K"
CURSOR_COLUMN_0 = "\x1b[0G"
CURSOR_HIDE = "\x1b[?25l"
CURSOR_SHOW = "\x1b[?25h"


def cursor_up(lines: int) -> str:
    return f"\x1b[{lines}A"


def match_escape(text: str, pos: int) -> str | None:
    """Return the escape token starting at ``pos``, or None."""
    if not text.startswith("\x1b[", pos):
        return None
    m = ESCAPE_PATTERN.match(text, pos)
    return m.group(0) if m else None


def strip_escapes(text: str) -> str:
    return ESCAPE_PATTERN.sub("", text)


def visible_width(text: str) -> int:
    """Column count of ``text`` with escape tokens and carriage returns removed."""
    return len(strip_escapes(text).replace("\r", ""))


def split_token(token: str, width: int) -> list[str]:
    """Hard-split a whitespace-free token into chunks of at most ``width`` columns.

    Escape tokens are never cut. One that starts exactly at a chunk boundary
    opens the following chunk. A trailing chunk with no visible characters is
    merged into the chunk before it.
    """
    if width < 1:
        raise ValueError(f"width must be positive, got {width}")

    chunks: list[str] = []
    current: list[str] = []
    columns = 0
    i = 0
    while i < len(token):
        if columns == width:
            chunks.append("".join(current))
            current = []
            columns = 0
        esc = match_escape(token, i)
        if esc is not None:
            current.append(esc)
            i += len(esc)
            continue
        current.append(token[i])
        columns += 1
        i += 1

    if current:
        if columns == 0 and chunks:
            chunks[-1] += "".join(current)
        else:
            chunks.append("".join(current))
    return chunks
