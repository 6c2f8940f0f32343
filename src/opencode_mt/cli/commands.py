"""Slash commands available at the REPL prompt."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable

from rich.text import Text

from ..config import AppConfig, save_log_parts, save_model_choice, save_session_id, split_model_ref
from ..models import SessionInfo
from ..services.client import ApiError, OpencodeClient
from ..services.stream import StreamSession, set_parts_logging
from ..services.turn import TurnState
from . import renderer
from .diff import format_session_diff
from .pager import NO_PAGES, PartPager, build_pages, run_pager

logger = logging.getLogger(__name__)

_DEBUG_MAX_STRING = 255


@dataclass
class ReplState:
    """Mutable state shared between the prompt loop and the commands."""

    config: AppConfig
    client: OpencodeClient
    stream: StreamSession
    session_id: str | None = None
    last_turn: TurnState | None = None
    session_list: list[SessionInfo] = field(default_factory=list)
    cwd: str = field(default_factory=os.getcwd)
    config_path: Path | None = None
    should_exit: bool = False

    @property
    def data_dir(self) -> Path:
        return self.config.app.data_dir

    @property
    def model(self) -> tuple[str, str]:
        return self.config.model.provider_id, self.config.model.model_id

    def use_session(self, session_id: str) -> None:
        self.session_id = session_id
        self.stream.session_id = session_id
        self.stream.accumulator.reset_files()
        save_session_id(session_id, cwd=self.cwd, data_dir=self.data_dir)


Handler = Callable[[ReplState, str], Awaitable[None]]


@dataclass
class Command:
    name: str
    description: str
    handler: Handler
    usage: str = ""


COMMANDS: dict[str, Command] = {}


def command(name: str, description: str, usage: str = "") -> Callable[[Handler], Handler]:
    def _register(fn: Handler) -> Handler:
        COMMANDS[name] = Command(name=name, description=description, handler=fn, usage=usage)
        return fn

    return _register


def command_names() -> list[str]:
    return sorted(COMMANDS)


async def dispatch(state: ReplState, line: str) -> bool:
    """Run a slash command. Returns False if ``line`` is not a command."""
    text = line.strip()
    if not text.startswith("/"):
        return False
    name, _, arg = text.partition(" ")
    cmd = COMMANDS.get(name.lower())
    if cmd is None:
        renderer.render_info(f"Unknown command {name}. Type /help for a list of commands.")
        return True
    try:
        await cmd.handler(state, arg.strip())
    except ApiError as e:
        logger.warning("%s failed: %s", cmd.name, e)
        renderer.render_error(str(e))
    return True


def _require_session(state: ReplState) -> str | None:
    if not state.session_id:
        renderer.render_info("No active session. Use /new to create one.")
        return None
    return state.session_id


def strip_long_strings(value: Any) -> Any:
    """Copy of ``value`` with long strings shortened, leaving text and delta fields whole."""
    if isinstance(value, dict):
        out: dict[str, Any] = {}
        for k, v in value.items():
            out[k] = v if k in ("text", "delta") else strip_long_strings(v)
        return out
    if isinstance(value, list):
        return [strip_long_strings(v) for v in value]
    if isinstance(value, str) and len(value) > _DEBUG_MAX_STRING:
        return value[: _DEBUG_MAX_STRING - 3] + "..."
    return value


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@command("/help", "Show available commands")
async def _help(state: ReplState, arg: str) -> None:
    entries = []
    for name in command_names():
        cmd = COMMANDS[name]
        label = f"{name} {cmd.usage}".strip()
        entries.append((label, cmd.description))
    renderer.render_help(entries)


@command("/new", "Create a new session")
async def _new(state: ReplState, arg: str) -> None:
    session = await state.client.create_session()
    state.use_session(session.id)
    state.last_turn = None
    renderer.render_info(f"Created new session {session.id}\n")


@command("/sessions", "List sessions")
async def _sessions(state: ReplState, arg: str) -> None:
    state.session_list = await state.client.list_sessions()
    renderer.render_sessions(state.session_list, state.session_id)


@command("/session", "Switch to a session by list number or id", usage="<N|id>")
async def _session(state: ReplState, arg: str) -> None:
    if not arg:
        renderer.render_info("Usage: /session <N|id>")
        return
    if arg.isdigit():
        if not state.session_list:
            state.session_list = await state.client.list_sessions()
        index = int(arg) - 1
        if not 0 <= index < len(state.session_list):
            renderer.render_info(f"No session #{arg}. Use /sessions to list them.")
            return
        session = state.session_list[index]
    else:
        session = await state.client.get_session(arg)
    state.use_session(session.id)
    state.last_turn = None
    title = f" ({session.title})" if session.title else ""
    renderer.render_info(f"Switched to session {session.id}{title}\n")


@command("/models", "List available models")
async def _models(state: ReplState, arg: str) -> None:
    providers = await state.client.list_providers()
    renderer.render_models(providers, state.config.model.ref)


@command("/model", "Select a model", usage="<provider/model>")
async def _model(state: ReplState, arg: str) -> None:
    if not arg:
        renderer.render_info(f"Current model: {state.config.model.ref}")
        return
    try:
        provider_id, model_id = split_model_ref(arg)
    except ValueError as e:
        renderer.render_error(str(e))
        return
    state.config.model.provider_id = provider_id
    state.config.model.model_id = model_id
    save_model_choice(provider_id=provider_id, model_id=model_id, config_path=state.config_path)
    renderer.render_info(f"Model set to {state.config.model.ref}\n")


@command("/agents", "List available agents")
async def _agents(state: ReplState, arg: str) -> None:
    agents = await state.client.list_agents()
    renderer.render_agents(agents, state.config.model.agent)


@command("/agent", "Select an agent", usage="<name>")
async def _agent(state: ReplState, arg: str) -> None:
    if not arg:
        renderer.render_info(f"Current agent: {state.config.model.agent or '(server default)'}")
        return
    state.config.model.agent = arg
    save_model_choice(agent=arg, config_path=state.config_path)
    renderer.render_info(f"Agent set to {arg}\n")


@command("/details", "Show all output from the last request")
async def _details(state: ReplState, arg: str) -> None:
    turn = state.last_turn
    if turn is None or not turn.parts:
        renderer.render_info("No output from a previous request.")
        return
    state.stream.renderer.render(turn, detailed=True)
    state.stream.renderer.commit(turn)


@command("/page", "Page through the last request's output one part at a time")
async def _page(state: ReplState, arg: str) -> None:
    turn = state.last_turn
    width = state.stream.renderer.terminal_width()
    pages = build_pages(turn, state.stream.renderer, width) if turn is not None else []
    if not pages:
        renderer.render_info(NO_PAGES)
        return
    await run_pager(PartPager(pages, width))


@command("/debug", "Show raw events from the last request")
async def _debug(state: ReplState, arg: str) -> None:
    turn = state.last_turn
    if turn is None or not turn.events:
        renderer.render_info("No events stored yet. Send a message first.")
        return
    renderer.console.rule("Events from the most recent request")
    renderer.console.print_json(data=strip_long_strings(turn.events))
    renderer.console.rule()


@command("/diff", "Show file additions and deletions in this session")
async def _diff(state: ReplState, arg: str) -> None:
    session_id = _require_session(state)
    if session_id is None:
        return
    diffs = await state.client.session_diff(session_id)
    if not diffs:
        renderer.render_info("No file changes found.\n")
        return
    renderer.console.print(Text.from_ansi(format_session_diff(diffs)))


@command("/undo", "Revert the last assistant response")
async def _undo(state: ReplState, arg: str) -> None:
    session_id = _require_session(state)
    if session_id is None:
        return
    messages = await state.client.session_messages(session_id)
    if not messages:
        renderer.render_info("No messages to undo.\n")
        return
    last = messages[-1]
    if last.info.role != "assistant":
        renderer.render_info("Last message is not an AI response, nothing to undo.\n")
        return
    await state.client.revert_message(session_id, last.info.id)
    renderer.render_info(f"Reverted message {last.info.id}\n")


@command("/kill", "Abort a session", usage="<session_id>")
async def _kill(state: ReplState, arg: str) -> None:
    if not arg:
        renderer.render_info("Usage: /kill <session_id>")
        return
    await state.client.abort_session(arg)
    renderer.render_info(f"Session {arg} aborted\n")


@command("/init", "Analyze the project and create or update AGENTS.md")
async def _init(state: ReplState, arg: str) -> None:
    session_id = _require_session(state)
    if session_id is None:
        return
    renderer.render_info("Analyzing project and writing AGENTS.md...")
    changed = await state.client.init_session(session_id, state.model)
    renderer.render_info("AGENTS.md created/updated.\n" if changed else "No changes made to AGENTS.md.\n")


@command("/run", "Run a shell command", usage="<cmd>")
async def _run(state: ReplState, arg: str) -> None:
    if not arg:
        renderer.render_info("Usage: /run <cmd>")
        return
    try:
        proc = await asyncio.create_subprocess_shell(
            arg,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=state.cwd,
        )
    except OSError as e:
        renderer.render_error(str(e))
        return
    assert proc.stdout is not None
    async for chunk in proc.stdout:
        sys.stdout.write(chunk.decode("utf-8", errors="replace"))
        sys.stdout.flush()
    code = await proc.wait()
    if code != 0:
        renderer.render_info(f"Command exited with code {code}")
    renderer.console.print()


@command("/log", "Toggle logging of raw events to parts.log")
async def _log(state: ReplState, arg: str) -> None:
    enabled = not state.config.cli.log_parts
    state.config.cli.log_parts = enabled
    set_parts_logging(enabled, state.data_dir / "parts.log")
    save_log_parts(enabled, config_path=state.config_path)
    renderer.render_info(f"Event logging {'enabled' if enabled else 'disabled'}\n")


@command("/quit", "Exit")
async def _quit(state: ReplState, arg: str) -> None:
    state.should_exit = True
