"""Tests for the REPL turn runner and session resolution."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from opencode_mt.cli.commands import ReplState
from opencode_mt.cli.repl import _resolve_session, _run_turn
from opencode_mt.config import AppConfig, AppSettings, load_session_id, save_session_id
from opencode_mt.models import SessionInfo
from opencode_mt.services.client import ApiError, RequestCancelledError, StreamDisconnectedError
from opencode_mt.services.turn import AnswerPart, TurnState


@pytest.fixture()
def state(tmp_path: Path) -> ReplState:
    client = MagicMock()
    client.get_session = AsyncMock()
    client.create_session = AsyncMock(return_value=SessionInfo(id="ses_created"))
    stream = MagicMock()
    stream.submit = AsyncMock()
    stream.turn = TurnState(parts=[AnswerPart("a1", "reply")])
    return ReplState(
        config=AppConfig(app=AppSettings(data_dir=tmp_path)),
        client=client,
        stream=stream,
        session_id="ses_1",
        cwd=str(tmp_path),
    )


class TestRunTurn:
    @pytest.mark.asyncio
    async def test_success(self, state):
        assert await _run_turn(state, "hello") is True
        args, kwargs = state.stream.submit.call_args
        assert args[:2] == ("ses_1", "hello")
        assert kwargs["model"] == ("opencode", "big-pickle")
        assert state.last_turn is state.stream.turn

    @pytest.mark.asyncio
    async def test_cancelled(self, state):
        state.stream.submit.side_effect = RequestCancelledError()
        with patch("opencode_mt.cli.renderer.render_cancelled") as render_cancelled:
            assert await _run_turn(state, "hello") is False
        render_cancelled.assert_called_once()
        assert state.last_turn.parts[0].text == "reply"

    @pytest.mark.asyncio
    async def test_api_error(self, state):
        state.stream.submit.side_effect = ApiError("Failed to send message", status=400, detail="bad model")
        with patch("opencode_mt.cli.renderer.render_error") as render_error:
            assert await _run_turn(state, "hello") is False
        render_error.assert_called_once_with("Failed to send message (400): bad model")

    @pytest.mark.asyncio
    async def test_disconnected(self, state):
        state.stream.submit.side_effect = StreamDisconnectedError("refused")
        with patch("opencode_mt.cli.renderer.render_connection_error") as render_connection_error:
            assert await _run_turn(state, "hello") is False
        render_connection_error.assert_called_once_with("refused")

    @pytest.mark.asyncio
    async def test_no_session(self, state):
        state.session_id = None
        with patch("opencode_mt.cli.renderer.render_info"):
            assert await _run_turn(state, "hello") is False
        state.stream.submit.assert_not_awaited()


class TestResolveSession:
    @pytest.mark.asyncio
    async def test_reuses_stored_session(self, state, tmp_path):
        save_session_id("ses_stored", cwd=state.cwd, data_dir=tmp_path)
        state.client.get_session.return_value = SessionInfo(id="ses_stored")
        await _resolve_session(state, new_session=False)
        assert state.session_id == "ses_stored"
        state.client.create_session.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stale_session_replaced(self, state, tmp_path):
        save_session_id("ses_gone", cwd=state.cwd, data_dir=tmp_path)
        state.client.get_session.side_effect = ApiError("Failed to fetch session", status=404)
        await _resolve_session(state, new_session=False)
        assert state.session_id == "ses_created"
        assert load_session_id(state.cwd, data_dir=tmp_path) == "ses_created"

    @pytest.mark.asyncio
    async def test_new_session_flag(self, state, tmp_path):
        save_session_id("ses_stored", cwd=state.cwd, data_dir=tmp_path)
        await _resolve_session(state, new_session=True)
        state.client.get_session.assert_not_awaited()
        assert state.session_id == "ses_created"
