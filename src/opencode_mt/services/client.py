"""Async HTTP client for the opencode server REST API and event feed."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncGenerator

import httpx

from ..config import ServerConfig
from ..models import AgentInfo, FileDiff, MessageEntry, ProviderInfo, SessionInfo

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Raised when the server rejects a request or cannot be reached."""

    def __init__(self, message: str, status: int | None = None, detail: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.detail = detail

    def __str__(self) -> str:
        base = super().__str__()
        if self.status is not None:
            base = f"{base} ({self.status})"
        if self.detail:
            base = f"{base}: {self.detail}"
        return base


class RequestCancelledError(Exception):
    """Raised when the user cancels an in-flight request."""


class StreamDisconnectedError(Exception):
    """Raised when the event feed ends or fails."""


def _detail(response: httpx.Response) -> str:
    text = response.text.strip()
    if len(text) > 500:
        text = text[:497] + "..."
    return text


class OpencodeClient:
    """Thin wrapper over ``httpx.AsyncClient``.

    Usage::

        async with OpencodeClient(config.server) as client:
            session = await client.create_session()
            await client.send_message(session.id, "hello", model=("opencode", "big-pickle"))
    """

    def __init__(self, config: ServerConfig, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.config = config
        auth = httpx.BasicAuth(config.username, config.password) if config.password else None
        timeout = httpx.Timeout(
            connect=float(config.connect_timeout),
            read=float(config.request_timeout),
            write=float(config.connect_timeout),
            pool=float(config.connect_timeout),
        )
        self._http = httpx.AsyncClient(
            base_url=config.url,
            auth=auth,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def __aenter__(self) -> "OpencodeClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, action: str, **kwargs: Any) -> Any:
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise ApiError(f"Failed to {action}: request timed out") from e
        except httpx.HTTPError as e:
            raise ApiError(f"Failed to {action}: {e}") from e
        if response.is_error:
            raise ApiError(f"Failed to {action}", status=response.status_code, detail=_detail(response))
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    # -- event feed --------------------------------------------------------

    async def stream_lines(self) -> AsyncGenerator[str, None]:
        """Yield raw lines from the server-sent event feed until it closes."""
        timeout = httpx.Timeout(connect=float(self.config.connect_timeout), read=None, write=None, pool=None)
        try:
            async with self._http.stream(
                "GET", "/event", timeout=timeout, headers={"Accept": "text/event-stream"}
            ) as response:
                if response.is_error:
                    await response.aread()
                    raise ApiError("Failed to open event stream", status=response.status_code, detail=_detail(response))
                async for line in response.aiter_lines():
                    yield line
        except httpx.HTTPError as e:
            raise StreamDisconnectedError(str(e) or type(e).__name__) from e

    # -- sessions ----------------------------------------------------------

    async def create_session(self, title: str | None = None) -> SessionInfo:
        body: dict[str, Any] = {"title": title} if title else {}
        data = await self._request("POST", "/session", "create session", json=body)
        return SessionInfo.model_validate(data)

    async def list_sessions(self) -> list[SessionInfo]:
        data = await self._request("GET", "/session", "list sessions") or []
        sessions = [SessionInfo.model_validate(s) for s in data]
        sessions.sort(key=lambda s: s.time.updated, reverse=True)
        return sessions

    async def get_session(self, session_id: str) -> SessionInfo:
        data = await self._request("GET", f"/session/{session_id}", "fetch session")
        return SessionInfo.model_validate(data)

    async def send_message(
        self,
        session_id: str,
        text: str,
        model: tuple[str, str],
        agent: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> Any:
        """Post a user message and wait for the server to finish the reply.

        The request is raced against ``cancel_event``; when it fires first the
        request is abandoned and RequestCancelledError is raised.
        """
        provider_id, model_id = model
        body: dict[str, Any] = {
            "model": {"providerID": provider_id, "modelID": model_id},
            "parts": [{"type": "text", "text": text}],
        }
        if agent:
            body["agent"] = agent

        send_task = asyncio.ensure_future(
            self._request("POST", f"/session/{session_id}/message", "send message", json=body)
        )
        if cancel_event is None:
            return await send_task

        cancel_wait = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _pending = await asyncio.wait(
                [send_task, cancel_wait],
                return_when=asyncio.FIRST_COMPLETED,
            )
        except BaseException:
            send_task.cancel()
            cancel_wait.cancel()
            raise

        if send_task in done:
            cancel_wait.cancel()
            return send_task.result()

        send_task.cancel()
        logger.info("Send cancelled for session %s", session_id)
        raise RequestCancelledError()

    async def abort_session(self, session_id: str) -> bool:
        data = await self._request("POST", f"/session/{session_id}/abort", "abort session")
        return bool(data)

    async def session_diff(self, session_id: str) -> list[FileDiff]:
        data = await self._request("GET", f"/session/{session_id}/diff", "fetch diff") or []
        return [FileDiff.model_validate(d) for d in data]

    async def session_messages(self, session_id: str) -> list[MessageEntry]:
        data = await self._request("GET", f"/session/{session_id}/message", "fetch messages") or []
        return [MessageEntry.model_validate(m) for m in data]

    async def revert_message(self, session_id: str, message_id: str) -> Any:
        return await self._request(
            "POST", f"/session/{session_id}/revert", "revert message", json={"messageID": message_id}
        )

    async def init_session(self, session_id: str, model: tuple[str, str], message_id: str | None = None) -> bool:
        provider_id, model_id = model
        body: dict[str, Any] = {"providerID": provider_id, "modelID": model_id}
        if message_id:
            body["messageID"] = message_id
        data = await self._request("POST", f"/session/{session_id}/init", "run /init", json=body)
        return bool(data)

    # -- catalog -----------------------------------------------------------

    async def list_providers(self) -> list[ProviderInfo]:
        data = await self._request("GET", "/config/providers", "fetch providers") or {}
        return [ProviderInfo.model_validate(p) for p in data.get("providers", [])]

    async def list_agents(self) -> list[AgentInfo]:
        data = await self._request("GET", "/agent", "fetch agents") or []
        return [AgentInfo.model_validate(a) for a in data]

    async def health(self) -> bool:
        """Return True when the server answers an authenticated request."""
        try:
            await self._request("GET", "/config", "reach server")
        except ApiError as e:
            logger.debug("Health check failed: %s", e)
            return False
        return True
