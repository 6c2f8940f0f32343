"""REPL loop and one-shot mode for the opencode-mt CLI."""

from __future__ import annotations

import asyncio
import logging
import os
import platform
import signal
import sys
import time
from typing import Any

from .. import __version__
from ..config import AppConfig, _get_config_path, load_session_id
from ..services.client import ApiError, OpencodeClient, RequestCancelledError, StreamDisconnectedError
from ..services.server import ServerLaunchError, ServerProcess
from ..services.stream import StreamSession, set_parts_logging
from . import commands, renderer
from .commands import ReplState
from .renderer import TurnRenderer

logger = logging.getLogger(__name__)

_IS_WINDOWS = platform.system() == "Windows"


def _add_signal_handler(loop: asyncio.AbstractEventLoop, sig: int, callback: Any) -> bool:
    """Add a signal handler, returning False on Windows where it's unsupported."""
    if _IS_WINDOWS:
        return False
    try:
        loop.add_signal_handler(sig, callback)
        return True
    except NotImplementedError:
        return False


def _remove_signal_handler(loop: asyncio.AbstractEventLoop, sig: int) -> None:
    """Remove a signal handler, no-op on Windows."""
    if _IS_WINDOWS:
        return
    try:
        loop.remove_signal_handler(sig)
    except NotImplementedError:
        pass


async def _watch_for_escape(cancel_event: asyncio.Event) -> None:
    """Watch for Escape key press while a request streams, and cancel it."""
    loop = asyncio.get_running_loop()

    def _cancel() -> None:
        loop.call_soon_threadsafe(cancel_event.set)

    if _IS_WINDOWS:
        import msvcrt

        def _poll() -> None:
            while not cancel_event.is_set():
                if msvcrt.kbhit():
                    ch = msvcrt.getch()
                    if ch == b"\x1b":
                        # Bare Escape, not the start of an arrow-key sequence
                        time.sleep(0.05)
                        if not msvcrt.kbhit():
                            _cancel()
                            return
                        while msvcrt.kbhit():
                            msvcrt.getch()
                time.sleep(0.05)
    else:
        import select
        import termios
        import tty

        def _poll() -> None:
            try:
                fd = sys.stdin.fileno()
            except (OSError, ValueError):
                return
            if not os.isatty(fd):
                return
            old_settings = termios.tcgetattr(fd)
            try:
                tty.setcbreak(fd)
                while not cancel_event.is_set():
                    ready, _, _ = select.select([sys.stdin], [], [], 0.1)
                    if ready:
                        ch = sys.stdin.read(1)
                        if ch == "\x1b":
                            more, _, _ = select.select([sys.stdin], [], [], 0.05)
                            if not more:
                                _cancel()
                                return
                            while True:
                                more, _, _ = select.select([sys.stdin], [], [], 0.01)
                                if more:
                                    sys.stdin.read(1)
                                else:
                                    break
            finally:
                termios.tcsetattr(fd, termios.TCSADRAIN, old_settings)

    try:
        await loop.run_in_executor(None, _poll)
    except asyncio.CancelledError:
        pass


async def _run_turn(state: ReplState, text: str) -> bool:
    """Send one message and stream the reply. Returns True on success."""
    if state.session_id is None:
        renderer.render_info("No active session. Use /new to create one.")
        return False

    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    original_handler = signal.getsignal(signal.SIGINT)
    _add_signal_handler(loop, signal.SIGINT, cancel_event.set)
    escape_task = asyncio.create_task(_watch_for_escape(cancel_event))

    ok = False
    try:
        await state.stream.submit(
            state.session_id,
            text,
            cancel_event,
            model=state.model,
            agent=state.config.model.agent,
        )
        ok = True
    except RequestCancelledError:
        renderer.render_cancelled()
    except StreamDisconnectedError as e:
        renderer.render_connection_error(str(e))
    except ApiError as e:
        logger.error("Request failed: %s", e)
        renderer.render_error(str(e))
    finally:
        state.last_turn = state.stream.turn
        cancel_event.set()
        escape_task.cancel()
        try:
            await escape_task
        except asyncio.CancelledError:
            pass
        _remove_signal_handler(loop, signal.SIGINT)
        if not _IS_WINDOWS:
            signal.signal(signal.SIGINT, original_handler)
    return ok


async def _resolve_session(state: ReplState, new_session: bool) -> None:
    session_id = None if new_session else load_session_id(state.cwd, state.data_dir)
    if session_id:
        try:
            session = await state.client.get_session(session_id)
            state.use_session(session.id)
            return
        except ApiError as e:
            logger.info("Stored session %s unavailable: %s", session_id, e)
    session = await state.client.create_session()
    state.use_session(session.id)


async def _run_repl(state: ReplState) -> None:
    """Run the interactive REPL."""
    from prompt_toolkit import PromptSession
    from prompt_toolkit.completion import Completer, Completion
    from prompt_toolkit.document import Document
    from prompt_toolkit.formatted_text import ANSI
    from prompt_toolkit.history import FileHistory
    from prompt_toolkit.key_binding import KeyBindings

    class SlashCompleter(Completer):
        """Tab completer for / commands."""

        def __init__(self, names: list[str]) -> None:
            self._names = names

        def get_completions(self, document: Document, complete_event: Any) -> Any:
            text = document.text_before_cursor
            if not text.lstrip().startswith("/") or " " in text.strip():
                return
            word = document.get_word_before_cursor(WORD=True)
            for name in self._names:
                if name.startswith(word):
                    yield Completion(name, start_position=-len(word))

    kb = KeyBindings()

    # Ctrl+C: clear buffer if text present, exit if empty
    _exit_flag: list[bool] = [False]

    @kb.add("c-c")
    def _handle_ctrl_c(event: Any) -> None:
        buf = event.current_buffer
        if buf.text:
            buf.reset()
        else:
            _exit_flag[0] = True
            buf.validate_and_handle()

    state.data_dir.mkdir(parents=True, exist_ok=True)
    session: PromptSession[str] = PromptSession(
        history=FileHistory(str(state.data_dir / "history")),
        key_bindings=kb,
        completer=SlashCompleter(commands.command_names()),
    )

    renderer.render_welcome(
        state.config.server.url,
        state.config.model.ref,
        state.config.model.agent,
        state.session_id,
        version=__version__,
    )

    while not state.should_exit:
        _exit_flag[0] = False
        try:
            raw = await session.prompt_async(ANSI(renderer.PROMPT))
        except EOFError:
            break
        except KeyboardInterrupt:
            continue
        if _exit_flag[0]:
            break

        text = raw.strip()
        if not text:
            continue
        if await commands.dispatch(state, text):
            continue
        await _run_turn(state, text)


async def run_cli(config: AppConfig, prompt: str | None = None, new_session: bool = False) -> int:
    """Connect to the server and run either the REPL or a single prompt.

    Returns the process exit code.
    """
    client = OpencodeClient(config.server)
    server: ServerProcess | None = None
    turn_renderer = TurnRenderer(
        thinking_tail_lines=config.cli.thinking_tail_lines,
        default_width=config.cli.default_width,
    )
    stream = StreamSession(
        client,
        turn_renderer,
        retry_tick=config.cli.retry_tick,
        idle_grace=config.cli.idle_grace,
        connect_timeout=config.server.connect_timeout,
    )
    state = ReplState(
        config=config,
        client=client,
        stream=stream,
        config_path=_get_config_path(config.app.data_dir),
    )
    set_parts_logging(config.cli.log_parts, config.app.data_dir / "parts.log")

    try:
        if config.server.autostart and not await client.health():
            server = ServerProcess(config.server.url)
            with renderer.console.status(f"[{renderer.MUTED}]Starting opencode server...[/{renderer.MUTED}]"):
                await server.start(client)

        await _resolve_session(state, new_session)

        if prompt is not None:
            return 0 if await _run_turn(state, prompt) else 1
        await _run_repl(state)
        return 0
    except ServerLaunchError as e:
        renderer.render_error(str(e))
        return 1
    except ApiError as e:
        logger.error("Startup failed: %s", e)
        renderer.render_error(str(e))
        return 1
    finally:
        await stream.stop()
        await client.aclose()
        if server is not None:
            await server.stop()
        set_parts_logging(False)
