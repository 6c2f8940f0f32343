"""Event feed consumer driving the accumulator and the live turn block."""

from __future__ import annotations

import asyncio
import json
import logging
import math
import time
from enum import Enum
from pathlib import Path
from typing import Any, AsyncGenerator, AsyncIterable, Callable

from ..cli.renderer import TurnRenderer, format_retry_status, render_connection_error
from ..models import IdleEvent, SessionErrorEvent, StatusEvent, parse_event
from .accumulator import PartAccumulator
from .client import ApiError, OpencodeClient, RequestCancelledError, StreamDisconnectedError
from .turn import TurnState

logger = logging.getLogger(__name__)

PARTS_LOGGER_NAME = "opencode_mt.parts"
parts_logger = logging.getLogger(PARTS_LOGGER_NAME)
parts_logger.propagate = False


def set_parts_logging(enabled: bool, path: Path | None = None) -> None:
    """Attach or detach the JSON-lines file handler of the raw event log."""
    for handler in list(parts_logger.handlers):
        parts_logger.removeHandler(handler)
        handler.close()
    if not enabled or path is None:
        parts_logger.setLevel(logging.CRITICAL + 1)
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(message)s"))
    parts_logger.addHandler(handler)
    parts_logger.setLevel(logging.INFO)


async def decode_events(lines: AsyncIterable[str]) -> AsyncGenerator[dict[str, Any], None]:
    """Turn server-sent-event lines into decoded JSON objects, one per message.

    Messages whose data is not a JSON object are logged and skipped.
    """
    data_lines: list[str] = []

    def _flush() -> dict[str, Any] | None:
        if not data_lines:
            return None
        payload = "\n".join(data_lines)
        data_lines.clear()
        try:
            raw = json.loads(payload)
        except json.JSONDecodeError:
            logger.debug("Dropping malformed event: %.200s", payload)
            return None
        if not isinstance(raw, dict):
            logger.debug("Dropping non-object event: %.200s", payload)
            return None
        return raw

    async for line in lines:
        line = line.rstrip("\r")
        if not line:
            raw = _flush()
            if raw is not None:
                yield raw
            continue
        if line.startswith(":"):
            continue
        if line.startswith("data:"):
            data = line[5:]
            data_lines.append(data[1:] if data.startswith(" ") else data)
    raw = _flush()
    if raw is not None:
        yield raw


class StreamState(Enum):
    CONNECTING = "connecting"
    STREAMING = "streaming"
    DISCONNECTED = "disconnected"


class StreamSession:
    """Owns the event feed connection and the turn it feeds.

    One instance lives for the whole REPL. ``run`` consumes the feed until it
    ends; ``submit`` sends one message and returns once the server reports the
    session idle. The spinner and retry countdown timers belong to this object.
    """

    def __init__(
        self,
        client: OpencodeClient,
        renderer: TurnRenderer,
        accumulator: PartAccumulator | None = None,
        *,
        retry_tick: float = 1.0,
        idle_grace: float = 2.0,
        connect_timeout: float = 10.0,
        spinner_interval: float = 0.1,
        on_disconnect: Callable[[str], None] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.renderer = renderer
        self.accumulator = accumulator or PartAccumulator()
        self.retry_tick = retry_tick
        self.idle_grace = idle_grace
        self.connect_timeout = connect_timeout
        self.spinner_interval = spinner_interval
        self._on_disconnect = on_disconnect or render_connection_error
        self._clock = clock

        self.state = StreamState.CONNECTING
        self.turn = TurnState()
        self.session_id: str | None = None
        self.processing = False
        self.last_error: str | None = None
        self.disconnect_reason: str | None = None
        self._live = False

        self._idle = asyncio.Event()
        self._idle.set()
        self._connected = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._spinner_task: asyncio.Task[None] | None = None
        self._retry_task: asyncio.Task[None] | None = None

    # -- connection --------------------------------------------------------

    def start(self) -> asyncio.Task[None]:
        self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    async def stop(self) -> None:
        self.stop_spinner()
        self.stop_retry_countdown()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def run(self) -> None:
        self.state = StreamState.CONNECTING
        self._connected.clear()
        reason = "Event stream closed by server"
        try:
            async for raw in decode_events(self.client.stream_lines()):
                if self.state is StreamState.CONNECTING:
                    self.state = StreamState.STREAMING
                    self._connected.set()
                    logger.debug("Event stream connected")
                if parts_logger.isEnabledFor(logging.INFO):
                    parts_logger.info(json.dumps(raw, ensure_ascii=False))
                self.dispatch(raw)
        except (StreamDisconnectedError, ApiError) as e:
            reason = str(e)
        except Exception as e:
            logger.exception("Event stream handler failed")
            reason = f"Event stream failed: {e}"
        self._disconnected(reason)

    def _disconnected(self, reason: str) -> None:
        self.state = StreamState.DISCONNECTED
        self.disconnect_reason = reason
        self.stop_spinner()
        self.stop_retry_countdown()
        self.processing = False
        self._idle.set()
        logger.warning("Event stream disconnected: %s", reason)
        self._on_disconnect(reason)

    async def ensure_connected(self) -> None:
        """Start (or restart) the feed and wait until its first message arrives."""
        if self._task is None or self._task.done():
            self.start()
        if self.state is StreamState.STREAMING:
            return
        assert self._task is not None
        connected = asyncio.ensure_future(self._connected.wait())
        done, _pending = await asyncio.wait(
            [connected, self._task],
            timeout=self.connect_timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )
        if connected not in done:
            connected.cancel()
            raise StreamDisconnectedError(self.disconnect_reason or "Timed out connecting to event stream")

    # -- dispatch ----------------------------------------------------------

    def dispatch(self, raw: dict[str, Any]) -> None:
        event = parse_event(raw)
        if event is None:
            return
        session_id = event.session_id
        if session_id and self.session_id and session_id != self.session_id:
            return

        is_retry = isinstance(event, StatusEvent) and event.properties.status.type == "retry"
        repaint = False
        if not is_retry:
            repaint = self.stop_retry_countdown()

        if self.accumulator.apply(self.turn, event):
            repaint = True

        if isinstance(event, StatusEvent):
            status = event.properties.status
            if status.type == "idle":
                self._finish()
            elif status.type == "retry" and self._live:
                self.start_retry_countdown(status.message, status.next)
        elif isinstance(event, IdleEvent):
            self._finish()
        elif isinstance(event, SessionErrorEvent):
            self.last_error = event.message
            logger.warning("Session error: %s", event.message)

        if repaint:
            self.render()

    def render(self) -> None:
        """Repaint the live block. A committed turn is never repainted."""
        if self._live:
            self.renderer.render(self.turn)

    # -- turn lifecycle ----------------------------------------------------

    def begin_turn(self, turn: TurnState) -> None:
        self.turn = turn
        self._live = True
        self.processing = True
        self.last_error = None
        self._idle.clear()
        self.start_spinner()

    def end_turn(self) -> None:
        self.stop_spinner()
        self.stop_retry_countdown()
        self.render()
        self.processing = False
        self._live = False
        self.renderer.commit(self.turn)

    def _finish(self) -> None:
        self.processing = False
        self.stop_retry_countdown()
        self.stop_spinner()
        self._idle.set()

    async def submit(
        self,
        session_id: str,
        text: str,
        cancel_event: asyncio.Event,
        model: tuple[str, str],
        agent: str | None = None,
    ) -> TurnState:
        """Send ``text`` and stream the reply into a fresh turn.

        Raises RequestCancelledError when ``cancel_event`` fires first; the
        parts accumulated so far stay on the returned turn for inspection.
        """
        await self.ensure_connected()
        self.session_id = session_id
        turn = TurnState()
        self.begin_turn(turn)
        try:
            await self.client.send_message(session_id, text, model=model, agent=agent, cancel_event=cancel_event)
            await self._wait_for_idle(cancel_event)
        except RequestCancelledError:
            logger.info("Request cancelled by user")
            await self._abort(session_id)
            raise
        finally:
            self.end_turn()
        if self.last_error:
            raise ApiError("Session error", detail=self.last_error)
        return turn

    async def _wait_for_idle(self, cancel_event: asyncio.Event) -> None:
        idle = asyncio.ensure_future(self._idle.wait())
        cancelled = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _pending = await asyncio.wait(
                [idle, cancelled],
                timeout=self.idle_grace,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            idle.cancel()
            cancelled.cancel()
        if idle in done:
            return
        if cancelled in done:
            raise RequestCancelledError()
        logger.debug("No idle status within %.1fs of send completing", self.idle_grace)
        self._finish()

    async def _abort(self, session_id: str) -> None:
        try:
            await self.client.abort_session(session_id)
        except ApiError as e:
            logger.warning("Failed to abort session %s: %s", session_id, e)

    # -- timers ------------------------------------------------------------

    def start_spinner(self) -> None:
        if self._spinner_task is not None and not self._spinner_task.done():
            return
        self._spinner_task = asyncio.get_running_loop().create_task(self._spin())

    def stop_spinner(self) -> None:
        if self._spinner_task is None:
            return
        self._spinner_task.cancel()
        self._spinner_task = None
        self.renderer.clear_spinner()

    async def _spin(self) -> None:
        index = 0
        while True:
            self.renderer.spinner_frame(index)
            index += 1
            await asyncio.sleep(self.spinner_interval)

    def start_retry_countdown(self, message: str | None, next_ms: float | None) -> None:
        self.stop_retry_countdown()
        self._retry_task = asyncio.get_running_loop().create_task(self._retry_countdown(message, next_ms))

    def stop_retry_countdown(self) -> bool:
        """Cancel a running countdown. Returns True if the status line was cleared."""
        if self._retry_task is not None:
            self._retry_task.cancel()
            self._retry_task = None
        if self.turn.status_line:
            self.turn.status_line = ""
            return True
        return False

    def _seconds_until(self, next_ms: float | None) -> int:
        if next_ms is None:
            return 0
        return max(0, math.ceil((next_ms - self._clock() * 1000) / 1000))

    async def _retry_countdown(self, message: str | None, next_ms: float | None) -> None:
        remaining = self._seconds_until(next_ms)
        while remaining > 0:
            self.turn.status_line = format_retry_status(message, remaining)
            self.render()
            await asyncio.sleep(self.retry_tick)
            remaining = self._seconds_until(next_ms)
        self._retry_task = None
        if self.turn.status_line:
            self.turn.status_line = ""
            self.render()
