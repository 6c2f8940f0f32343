"""Fold decoded feed events into a TurnState."""

from __future__ import annotations

import logging
import os
import time
from typing import Any

from ..cli import ansi
from ..models import (
    DiffEvent,
    Event,
    MessageUpdatedEvent,
    PartDeltaEvent,
    PartUpdatedEvent,
    WirePart,
)
from .turn import (
    AnswerPart,
    FileSummaryPart,
    Part,
    PartKind,
    ThinkingPart,
    ToolPart,
    TurnState,
    new_part,
)

logger = logging.getLogger(__name__)

# Wire part.type -> local part kind. Types missing here are ignored.
PART_TYPE_KINDS: dict[str, PartKind] = {
    "reasoning": PartKind.THINKING,
    "text": PartKind.ANSWER,
    "tool": PartKind.TOOL,
}

STEP_START = "step-start"
STEP_FINISH = "step-finish"


def _short_path(path: str) -> str:
    """Shorten absolute path using ~ for home and cwd-relative."""
    if not path:
        return path
    home = os.path.expanduser("~")
    try:
        rel = os.path.relpath(path, os.getcwd())
        if not rel.startswith(".."):
            return rel
    except ValueError:
        pass
    if path.startswith(home):
        return "~" + path[len(home) :]
    return path


def humanize_tool(tool_name: str, arguments: dict[str, Any]) -> str:
    """Convert tool_name + input into a human-readable breadcrumb."""
    name_lower = tool_name.lower()

    if name_lower == "bash":
        cmd = str(arguments.get("command", ""))
        if len(cmd) > 100:
            cmd = cmd[:97] + "..."
        return cmd
    elif name_lower == "read":
        return f"Reading {_short_path(str(arguments.get('filePath', '')))}"
    elif name_lower == "write":
        return f"Writing {_short_path(str(arguments.get('filePath', '')))}"
    elif name_lower in ("edit", "patch", "multiedit"):
        return f"Editing {_short_path(str(arguments.get('filePath', '')))}"
    elif name_lower == "grep":
        return f"Searching for '{arguments.get('pattern', '')}'"
    elif name_lower == "glob":
        return f"Finding {arguments.get('pattern', '')}"
    elif name_lower == "list":
        return f"Listing {_short_path(str(arguments.get('path', '.')))}"
    elif name_lower == "webfetch":
        return f"Fetching {arguments.get('url', '')}"
    elif name_lower == "task":
        prompt = str(arguments.get("description") or arguments.get("prompt", ""))
        if len(prompt) > 60:
            prompt = prompt[:57] + "..."
        return f"Sub-agent: {prompt}"

    # MCP / unknown tools: first string arg
    for v in arguments.values():
        if isinstance(v, str) and v:
            return v if len(v) <= 40 else v[:37] + "..."
    return ""


def tool_text(part: WirePart) -> str:
    """One-line ``name: detail`` summary of a tool call."""
    name = part.tool or "tool"
    state = part.state
    if state is None:
        return f"{name}:"
    detail = state.title or humanize_tool(name, state.input)
    text = f"{name}: {detail}" if detail else f"{name}:"
    if state.status == "error":
        err = (state.error or "failed").split("\n")[0]
        if len(err) > 80:
            err = err[:77] + "..."
        text += f" {ansi.RED}({err}){ansi.RESET}"
    return text


def _format_file_change(file: str, additions: int, deletions: int) -> str:
    return f"{file} {ansi.GREEN}+{additions}{ansi.RESET} {ansi.RED}-{deletions}{ansi.RESET}"


class PartAccumulator:
    """Applies feed events to the active turn.

    File contents seen in diff events are remembered for the lifetime of the
    accumulator, so a diff that repeats the same post-change content for a
    file does not produce a second summary.
    """

    def __init__(self) -> None:
        self._last_file_after: dict[str, str | None] = {}
        self._diff_count = 0

    def reset_files(self) -> None:
        self._last_file_after.clear()

    def apply(self, turn: TurnState, event: Event) -> bool:
        """Apply one event. Returns True when visible turn content changed."""
        turn.events.append(event.model_dump(mode="json", by_alias=True, exclude_none=True))

        if isinstance(event, MessageUpdatedEvent):
            info = event.properties.info
            turn.message_roles[info.id] = info.role
            return False
        if isinstance(event, PartUpdatedEvent):
            return self._apply_part_update(turn, event)
        if isinstance(event, PartDeltaEvent):
            props = event.properties
            if props.field != "text":
                return False
            return self._append_delta(turn, props.part_id, props.delta, None, props.message_id)
        if isinstance(event, DiffEvent):
            return self._apply_diff(turn, event)
        return False

    # -- part updates ------------------------------------------------------

    def _apply_part_update(self, turn: TurnState, event: PartUpdatedEvent) -> bool:
        wire = event.properties.part
        delta = event.properties.delta

        if wire.type == STEP_START:
            turn.step_active = True
            turn.step += 1
            return False
        if wire.type == STEP_FINISH:
            turn.step_active = False
            return self._close_thinking(turn, None)

        kind = PART_TYPE_KINDS.get(wire.type)
        if kind is None:
            logger.debug("Ignoring part type %s", wire.type)
            return False
        if wire.id in turn.retired_keys:
            return False
        if self._is_user_echo(turn, wire.message_id):
            return False

        if kind is PartKind.TOOL:
            return self._apply_tool(turn, wire)

        if delta is not None:
            changed = self._append_delta(turn, wire.id, delta, kind, wire.message_id)
            part = turn.find(wire.id)
        else:
            part = turn.find(wire.id)
            if part is None:
                part = new_part(kind, wire.id)
                turn.parts.append(part)
            changed = part.text != wire.text
            part.text = wire.text

        if part is not None:
            self._stamp_times(turn, part, wire)
        return changed

    def _append_delta(
        self,
        turn: TurnState,
        key: str,
        delta: str,
        kind: PartKind | None,
        message_id: str | None,
    ) -> bool:
        if key in turn.retired_keys or self._is_user_echo(turn, message_id):
            return False
        part = turn.find(key)
        if part is None:
            part = new_part(kind or PartKind.ANSWER, key)
            turn.parts.append(part)
            if kind is None and isinstance(part, AnswerPart) and turn.step_active:
                # Bare deltas carry no timestamps
                self._close_thinking(turn, None)
        part.text += delta
        return bool(delta)

    def _apply_tool(self, turn: TurnState, wire: WirePart) -> bool:
        text = tool_text(wire)
        status = wire.state.status if wire.state else ""
        part = turn.find(wire.id)
        if part is None:
            last = turn.parts[-1] if turn.parts else None
            if isinstance(last, ToolPart) and last.step == turn.step:
                # Coalesce consecutive tool calls of one step into one line
                turn.retired_keys.add(last.key)
                last.key = wire.id
                part = last
            else:
                part = ToolPart(key=wire.id, step=turn.step)
                turn.parts.append(part)
        if not isinstance(part, ToolPart):
            logger.debug("Part %s already exists as %s", wire.id, part.kind.value)
            return False
        changed = part.text != text or part.status != status
        part.text = text
        part.tool = wire.tool or ""
        part.status = status
        return changed

    @staticmethod
    def _is_user_echo(turn: TurnState, message_id: str | None) -> bool:
        return message_id is not None and turn.message_roles.get(message_id) == "user"

    # -- thinking duration -------------------------------------------------

    def _stamp_times(self, turn: TurnState, part: Part, wire: WirePart) -> None:
        start = wire.time.start if wire.time else None
        end = wire.time.end if wire.time else None
        if isinstance(part, ThinkingPart):
            if start is not None:
                part.started_ms = start
            if end is not None and start is not None and part.duration_ms is None:
                part.duration_ms = max(0.0, end - start)
        elif isinstance(part, AnswerPart):
            if start is not None and part.started_ms is None:
                part.started_ms = start
            self._close_thinking(turn, part.started_ms)

    @staticmethod
    def _close_thinking(turn: TurnState, answer_started_ms: float | None) -> bool:
        thinking = turn.last_of(PartKind.THINKING)
        if not isinstance(thinking, ThinkingPart) or thinking.duration_ms is not None:
            return False
        if answer_started_ms is not None and thinking.started_ms is not None:
            thinking.duration_ms = max(0.0, answer_started_ms - thinking.started_ms)
        else:
            thinking.duration_ms = (time.monotonic() - thinking.opened_at) * 1000
        return True

    # -- file summaries ----------------------------------------------------

    def _apply_diff(self, turn: TurnState, event: DiffEvent) -> bool:
        files: list[str] = []
        lines: list[str] = []
        for entry in event.properties.diff:
            if entry.file in self._last_file_after and self._last_file_after[entry.file] == entry.after:
                continue
            self._last_file_after[entry.file] = entry.after
            files.append(entry.file)
            lines.append(_format_file_change(entry.file, entry.additions, entry.deletions))
        if not files:
            return False
        self._diff_count += 1
        summary = FileSummaryPart(key=f"diff-{self._diff_count}", text="\n".join(lines), files=files)
        turn.parts.append(summary)
        return True
