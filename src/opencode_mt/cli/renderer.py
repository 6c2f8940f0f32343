"""Terminal output for the CLI: the live turn block and rich notices."""

from __future__ import annotations

import os
import sys
from typing import Any, Callable

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..models import AgentInfo, ProviderInfo, SessionInfo
from ..services.turn import Part, PartKind, ThinkingPart, TurnState
from ..services.visibility import compute_active
from . import ansi
from .wrap import wrap_text

console = Console(stderr=True)

# ---------------------------------------------------------------------------
# Color palette for rich notices
# ---------------------------------------------------------------------------

GOLD = "#C5A059"  # accents, prompt marker
SLATE = "#94A3B8"  # labels, session titles
MUTED = "#8b8b8b"  # secondary text
CHROME = "#6b7280"  # status messages, hints
ERROR_RED = "#CD6B6B"  # pale red for inline errors

DEFAULT_WIDTH = 80
SPINNER_FRAMES = ("⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇")

PROMPT = f"{ansi.BOLD_MAGENTA}# {ansi.RESET}"


def _stdout_write(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


# ---------------------------------------------------------------------------
# Live turn block
# ---------------------------------------------------------------------------


class TurnRenderer:
    """Paints a TurnState as one block at the bottom of the terminal.

    Each call erases the rows painted by the previous call and writes the
    whole block again, so rendering the same state twice leaves the screen
    unchanged. ``commit`` leaves the block in scrollback.
    """

    def __init__(
        self,
        write: Callable[[str], Any] | None = None,
        *,
        thinking_tail_lines: int = 10,
        default_width: int = DEFAULT_WIDTH,
    ) -> None:
        self._write = write or _stdout_write
        self.thinking_tail_lines = thinking_tail_lines
        self.default_width = default_width

    def terminal_width(self) -> int:
        try:
            columns = os.get_terminal_size(sys.stdout.fileno()).columns
        except (OSError, ValueError, AttributeError):
            return self.default_width
        return columns if columns > 0 else self.default_width

    def render(self, turn: TurnState, width: int | None = None, detailed: bool = False) -> int:
        """Repaint ``turn`` in place and return the number of rows written."""
        assert turn.painted_lines >= 0, f"painted_lines is negative: {turn.painted_lines}"
        if turn.painted_lines > 0:
            self._write(ansi.cursor_up(turn.painted_lines) + ansi.CLEAR_TO_END)
            self._write(ansi.CURSOR_COLUMN_0)
            turn.painted_lines = 0

        width = width or self.terminal_width()
        block = self.format_block(turn, width, detailed)
        if not block:
            return 0

        lines = wrap_text(block, width)
        for line in lines:
            self._write(line + "\n")
        turn.painted_lines = len(lines)
        return turn.painted_lines

    def commit(self, turn: TurnState) -> None:
        """Leave the current block in scrollback; the next render starts below it."""
        turn.painted_lines = 0

    def format_block(self, turn: TurnState, width: int, detailed: bool = False) -> str:
        compute_active(turn, detailed)

        shown = [part for part in turn.parts if part.active and part.text.strip()]
        out: list[str] = []
        if detailed and shown:
            out.append(f"{ansi.BOLD}Detailed output from the last run:{ansi.RESET}\n\n")
        for part in shown:
            out.append(self.format_part(part, width, detailed))
            out.append("\n\n")

        if turn.status_line:
            out.append(turn.status_line + "\n")
        return "".join(out)

    def format_part(self, part: Part, width: int, detailed: bool = False) -> str:
        kind = part.kind
        if kind is PartKind.THINKING:
            return self._format_thinking(part, width, detailed)
        if kind is PartKind.ANSWER:
            return f"{ansi.WHITE_BACKGROUND}{ansi.BOLD_BLACK}*{ansi.RESET} {part.text.lstrip()}"
        if kind is PartKind.TOOL:
            return _format_tool(part.text)
        if kind is PartKind.FILE_SUMMARY:
            return part.text
        raise TypeError(f"Unknown part kind: {kind!r}")

    def _format_thinking(self, part: ThinkingPart, width: int, detailed: bool) -> str:
        text = part.text.lstrip()
        if not detailed:
            text = "\n".join(wrap_text(text, width)[-self.thinking_tail_lines :])
        marker = f"{ansi.BOLD_BRIGHT_BLACK}~{ansi.RESET}"
        body = f"{ansi.BRIGHT_BLACK}{text}{ansi.RESET}"
        if part.duration_ms is not None:
            header = f"{marker} {ansi.BRIGHT_BLACK}thought for {part.duration_ms / 1000:.1f}s{ansi.RESET}"
            return f"{header}\n{body}"
        return f"{marker} {body}"

    # -- spinner -----------------------------------------------------------

    def spinner_frame(self, index: int) -> None:
        """Draw one spinner frame on the row under the block, cursor back at column 0."""
        frame = SPINNER_FRAMES[index % len(SPINNER_FRAMES)]
        self._write(f"\r{ansi.BOLD_MAGENTA}{frame}{ansi.RESET}\r")

    def clear_spinner(self) -> None:
        self._write(f"\r{ansi.CLEAR_LINE}")


def _format_tool(text: str) -> str:
    name, sep, detail = text.partition(":")
    if not sep:
        return text
    return f"{name}: {ansi.BRIGHT_BLACK}{detail.lstrip()}{ansi.RESET}"


def format_retry_status(message: str | None, seconds: int) -> str:
    label = message or "Request failed"
    return f"{ansi.RED}{label}{ansi.RESET} {ansi.BRIGHT_BLACK}· retrying in {seconds}s{ansi.RESET}"


# ---------------------------------------------------------------------------
# Notices
# ---------------------------------------------------------------------------


def render_error(message: str) -> None:
    console.print(f"[{ERROR_RED}]Error:[/] {escape(message)}\n")


def render_cancelled() -> None:
    console.print(f"[{MUTED}]Request cancelled[/{MUTED}]\n")


def render_connection_error(message: str) -> None:
    console.print(f"[{ERROR_RED}]Connection error:[/] {escape(message)}")
    console.print(f"[{MUTED}]The event stream will reconnect on the next message.[/{MUTED}]\n")


def render_info(message: str) -> None:
    console.print(f"[{CHROME}]{escape(message)}[/{CHROME}]")


def render_welcome(url: str, model: str, agent: str | None, session_id: str | None, version: str = "") -> None:
    console.print()
    title = f"[bold]opencode-mt[/bold] [{MUTED}]v{version}[/{MUTED}]" if version else "[bold]opencode-mt[/bold]"
    console.print(title)
    parts = [escape(model)]
    if agent:
        parts.append(escape(agent))
    console.print(f"  [{SLATE}]{escape(url)}[/]  [{MUTED}]{' · '.join(parts)}[/{MUTED}]")
    if session_id:
        console.print(f"  [{MUTED}]session {escape(session_id)}[/{MUTED}]")
    console.print(f"  [{MUTED}]Type /help for commands, Esc to cancel a request[/{MUTED}]\n")


def render_help(commands: list[tuple[str, str]]) -> None:
    console.print()
    for name, description in commands:
        console.print(f"  [bold]{escape(name):<10}[/bold] [{MUTED}]{escape(description)}[/{MUTED}]")
    console.print()


def render_sessions(sessions: list[SessionInfo], current_id: str | None) -> None:
    if not sessions:
        console.print(f"\n[{CHROME}]No sessions found.[/{CHROME}]\n")
        return
    table = Table(title="Sessions", show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    for i, session in enumerate(sessions, 1):
        marker = " *" if session.id == current_id else ""
        table.add_row(str(i), session.id + marker, escape(session.title or "(untitled)"))
    console.print(table)
    console.print()


def render_models(providers: list[ProviderInfo], current: str) -> None:
    if not providers:
        console.print(f"\n[{CHROME}]No providers configured.[/{CHROME}]\n")
        return
    table = Table(title="Models", show_header=True, header_style="bold")
    table.add_column("Model", style="cyan")
    table.add_column("Name")
    table.add_column("Provider")
    for provider in providers:
        for model in provider.models.values():
            ref = f"{provider.id}/{model.id}"
            label = f"{ref} *" if ref == current else ref
            table.add_row(label, escape(model.name or model.id), escape(provider.name or provider.id))
    console.print(table)
    console.print()


def render_agents(agents: list[AgentInfo], current: str | None) -> None:
    if not agents:
        console.print(f"\n[{CHROME}]No agents available.[/{CHROME}]\n")
        return
    console.print()
    for agent in agents:
        marker = f"[{GOLD}]*[/]" if agent.name == current else " "
        desc = f"  [{MUTED}]{escape(agent.description)}[/{MUTED}]" if agent.description else ""
        console.print(f"  {marker} [cyan]{escape(agent.name)}[/cyan]{desc}")
    console.print()
