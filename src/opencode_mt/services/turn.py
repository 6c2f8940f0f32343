"""In-memory state for one request/response cycle."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Union


class PartKind(Enum):
    THINKING = "thinking"
    ANSWER = "answer"
    TOOL = "tool"
    FILE_SUMMARY = "file_summary"


@dataclass
class ThinkingPart:
    key: str
    text: str = ""
    active: bool = True
    duration_ms: float | None = None
    started_ms: float | None = None
    opened_at: float = field(default_factory=time.monotonic)

    kind: ClassVar[PartKind] = PartKind.THINKING


@dataclass
class AnswerPart:
    key: str
    text: str = ""
    active: bool = True
    started_ms: float | None = None

    kind: ClassVar[PartKind] = PartKind.ANSWER


@dataclass
class ToolPart:
    key: str
    text: str = ""
    active: bool = True
    tool: str = ""
    status: str = ""
    step: int = 0

    kind: ClassVar[PartKind] = PartKind.TOOL


@dataclass
class FileSummaryPart:
    key: str
    text: str = ""
    active: bool = True
    files: list[str] = field(default_factory=list)

    kind: ClassVar[PartKind] = PartKind.FILE_SUMMARY


Part = Union[ThinkingPart, AnswerPart, ToolPart, FileSummaryPart]

_PART_TYPES: dict[PartKind, type] = {
    PartKind.THINKING: ThinkingPart,
    PartKind.ANSWER: AnswerPart,
    PartKind.TOOL: ToolPart,
    PartKind.FILE_SUMMARY: FileSummaryPart,
}


def new_part(kind: PartKind, key: str, text: str = "") -> Part:
    """Construct an empty part of the given kind."""
    try:
        part_type = _PART_TYPES[kind]
    except KeyError:
        raise TypeError(f"Unknown part kind: {kind!r}") from None
    return part_type(key=key, text=text)


@dataclass
class TurnState:
    """Everything accumulated for the request currently on screen.

    ``parts`` keeps arrival order and holds at most one part per key.
    ``painted_lines`` is the number of terminal rows the last render wrote;
    the renderer moves the cursor up by exactly that much before repainting.
    ``step`` counts step-start markers; tool calls only coalesce within a step.
    """

    parts: list[Part] = field(default_factory=list)
    events: list[dict[str, Any]] = field(default_factory=list)
    painted_lines: int = 0
    step_active: bool = False
    step: int = 0
    status_line: str = ""
    retired_keys: set[str] = field(default_factory=set)
    message_roles: dict[str, str] = field(default_factory=dict)

    def find(self, key: str) -> Part | None:
        for part in self.parts:
            if part.key == key:
                return part
        return None

    def last_of(self, kind: PartKind) -> Part | None:
        for part in reversed(self.parts):
            if part.kind is kind:
                return part
        return None
