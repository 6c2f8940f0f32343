"""Line-level rendering of a session's file changes."""

from __future__ import annotations

import difflib

from ..models import FileDiff
from . import ansi


def _split(text: str) -> list[str]:
    return text.split("\n")


def _numbered(index: int, sign: str, line: str, color: str) -> str:
    return f"{ansi.BRIGHT_BLACK}{index + 1}{ansi.RESET} {color}{sign} {line}{ansi.RESET}"


def diff_lines(before: str, after: str) -> list[str]:
    """Added and removed lines between two versions, numbered by their own side."""
    old = _split(before)
    new = _split(after)
    out: list[str] = []
    matcher = difflib.SequenceMatcher(a=old, b=new, autojunk=False)
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            continue
        for i in range(i1, i2):
            out.append(_numbered(i, "-", old[i], ansi.RED))
        for j in range(j1, j2):
            out.append(_numbered(j, "+", new[j], ansi.GREEN))
    return out


def format_file_diff(diff: FileDiff) -> list[str]:
    lines = [f"{ansi.BOLD_CYAN}{diff.file}{ansi.RESET}"]
    if not diff.before and diff.after:
        lines.append(f"{ansi.GREEN}+ new file{ansi.RESET}")
        lines.append("")
        lines.extend(_numbered(i, "+", line, ansi.GREEN) for i, line in enumerate(_split(diff.after)))
    elif diff.before and not diff.after:
        lines.append(f"{ansi.RED}- deleted file{ansi.RESET}")
        lines.append("")
        lines.extend(_numbered(i, "-", line, ansi.RED) for i, line in enumerate(_split(diff.before)))
    elif diff.before and diff.after:
        lines.extend(diff_lines(diff.before, diff.after))
    lines.append("")
    return lines


def format_session_diff(diffs: list[FileDiff]) -> str:
    out: list[str] = []
    for diff in diffs:
        out.extend(format_file_diff(diff))
    return "\n".join(out)
