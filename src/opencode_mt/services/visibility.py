"""Recency policy deciding which parts of a turn are shown."""

from __future__ import annotations

from .turn import PartKind, TurnState


def compute_active(turn: TurnState, detailed: bool = False) -> None:
    """Set ``active`` on every part of ``turn``.

    Walking newest to oldest, only the most recent thinking part and the most
    recent tool part of each run are shown. A non-empty answer or file
    summary closes the run, so the thinking or tool part that preceded it is
    shown again. ``detailed`` shows everything.
    """
    seen_thinking = False
    seen_tool = False
    for part in reversed(turn.parts):
        if detailed:
            part.active = True
            continue
        kind = part.kind
        if kind is PartKind.THINKING:
            part.active = not seen_thinking
            seen_thinking = True
        elif kind is PartKind.TOOL:
            part.active = not seen_tool
            seen_tool = True
        elif kind is PartKind.ANSWER or kind is PartKind.FILE_SUMMARY:
            part.active = bool(part.text.strip())
            if part.active:
                seen_thinking = False
                seen_tool = False
        else:
            raise TypeError(f"Unknown part kind: {kind!r}")
