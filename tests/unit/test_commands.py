"""Tests for REPL slash commands."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import yaml

from opencode_mt.cli import ansi
from opencode_mt.cli.commands import COMMANDS, ReplState, dispatch, strip_long_strings
from opencode_mt.cli.renderer import TurnRenderer
from opencode_mt.config import AppConfig, AppSettings, load_config, load_session_id
from opencode_mt.models import FileDiff, MessageEntry, SessionInfo
from opencode_mt.services.client import ApiError
from opencode_mt.services.turn import AnswerPart, ThinkingPart, ToolPart, TurnState


@pytest.fixture()
def state(tmp_path: Path) -> ReplState:
    client = MagicMock()
    for name in (
        "create_session",
        "list_sessions",
        "get_session",
        "session_diff",
        "session_messages",
        "revert_message",
        "abort_session",
        "init_session",
        "list_providers",
        "list_agents",
    ):
        setattr(client, name, AsyncMock())
    return ReplState(
        config=AppConfig(app=AppSettings(data_dir=tmp_path)),
        client=client,
        stream=MagicMock(),
        session_id="ses_1",
        cwd=str(tmp_path),
        config_path=tmp_path / "config.yaml",
    )


@pytest.fixture()
def info():
    with patch("opencode_mt.cli.renderer.render_info") as mock:
        yield mock


@pytest.fixture()
def error():
    with patch("opencode_mt.cli.renderer.render_error") as mock:
        yield mock


def _messages(info) -> str:
    return "\n".join(str(call.args[0]) for call in info.call_args_list)


class TestDispatch:
    @pytest.mark.asyncio
    async def test_plain_text_is_not_a_command(self, state):
        assert await dispatch(state, "hello there") is False

    @pytest.mark.asyncio
    async def test_unknown_command(self, state, info):
        assert await dispatch(state, "/bogus") is True
        assert "Unknown command /bogus" in _messages(info)

    @pytest.mark.asyncio
    async def test_case_insensitive(self, state):
        await dispatch(state, "/QUIT")
        assert state.should_exit

    @pytest.mark.asyncio
    async def test_api_error_reported(self, state, error):
        state.client.list_sessions.side_effect = ApiError("Failed to list sessions", status=500)
        assert await dispatch(state, "/sessions") is True
        error.assert_called_once_with("Failed to list sessions (500)")

    @pytest.mark.asyncio
    async def test_help_lists_every_command(self, state):
        with patch("opencode_mt.cli.renderer.render_help") as render_help:
            await dispatch(state, "/help")
        labels = [label for label, _desc in render_help.call_args.args[0]]
        assert len(labels) == len(COMMANDS)
        assert "/session <N|id>" in labels


class TestSessionCommands:
    @pytest.mark.asyncio
    async def test_new_switches_and_persists(self, state, info, tmp_path):
        state.client.create_session.return_value = SessionInfo(id="ses_new")
        state.last_turn = TurnState()
        await dispatch(state, "/new")
        assert state.session_id == "ses_new"
        assert state.stream.session_id == "ses_new"
        assert state.last_turn is None
        state.stream.accumulator.reset_files.assert_called_once()
        assert load_session_id(str(tmp_path), data_dir=tmp_path) == "ses_new"

    @pytest.mark.asyncio
    async def test_session_by_number(self, state, info):
        state.session_list = [SessionInfo(id="ses_a"), SessionInfo(id="ses_b", title="Refactor")]
        await dispatch(state, "/session 2")
        assert state.session_id == "ses_b"
        assert "Refactor" in _messages(info)

    @pytest.mark.asyncio
    async def test_session_number_fetches_list(self, state, info):
        state.client.list_sessions.return_value = [SessionInfo(id="ses_x")]
        await dispatch(state, "/session 1")
        assert state.session_id == "ses_x"

    @pytest.mark.asyncio
    async def test_session_out_of_range(self, state, info):
        state.session_list = [SessionInfo(id="ses_a")]
        await dispatch(state, "/session 5")
        assert state.session_id == "ses_1"
        assert "No session #5" in _messages(info)

    @pytest.mark.asyncio
    async def test_session_by_id(self, state, info):
        state.client.get_session.return_value = SessionInfo(id="ses_z")
        await dispatch(state, "/session ses_z")
        state.client.get_session.assert_awaited_once_with("ses_z")
        assert state.session_id == "ses_z"

    @pytest.mark.asyncio
    async def test_kill(self, state, info):
        await dispatch(state, "/kill ses_9")
        state.client.abort_session.assert_awaited_once_with("ses_9")

    @pytest.mark.asyncio
    async def test_undo_reverts_last_assistant_message(self, state, info):
        state.client.session_messages.return_value = [
            MessageEntry.model_validate({"info": {"id": "m1", "role": "user"}}),
            MessageEntry.model_validate({"info": {"id": "m2", "role": "assistant"}}),
        ]
        await dispatch(state, "/undo")
        state.client.revert_message.assert_awaited_once_with("ses_1", "m2")

    @pytest.mark.asyncio
    async def test_undo_skips_user_message(self, state, info):
        state.client.session_messages.return_value = [
            MessageEntry.model_validate({"info": {"id": "m1", "role": "user"}}),
        ]
        await dispatch(state, "/undo")
        state.client.revert_message.assert_not_awaited()
        assert "nothing to undo" in _messages(info)

    @pytest.mark.asyncio
    async def test_diff_requires_session(self, state, info):
        state.session_id = None
        await dispatch(state, "/diff")
        state.client.session_diff.assert_not_awaited()
        assert "No active session" in _messages(info)

    @pytest.mark.asyncio
    async def test_diff_prints_changes(self, state):
        state.client.session_diff.return_value = [FileDiff(file="a.py", before="1", after="2")]
        with patch("opencode_mt.cli.renderer.console") as console:
            await dispatch(state, "/diff")
        printed = console.print.call_args.args[0]
        assert "a.py" in printed.plain

    @pytest.mark.asyncio
    async def test_init_uses_current_model(self, state, info):
        state.client.init_session.return_value = True
        await dispatch(state, "/init")
        state.client.init_session.assert_awaited_once_with("ses_1", state.model)
        assert "AGENTS.md created/updated." in _messages(info)


class TestModelCommands:
    @pytest.mark.asyncio
    async def test_model_sets_and_persists(self, state, info):
        await dispatch(state, "/model anthropic/claude-sonnet")
        assert state.model == ("anthropic", "claude-sonnet")
        saved = load_config(state.config_path)
        assert saved.model.ref == "anthropic/claude-sonnet"

    @pytest.mark.asyncio
    async def test_model_rejects_bad_ref(self, state, error):
        await dispatch(state, "/model nonsense")
        error.assert_called_once()
        assert not state.config_path.exists()

    @pytest.mark.asyncio
    async def test_model_without_argument_shows_current(self, state, info):
        await dispatch(state, "/model")
        assert "Current model: opencode/big-pickle" in _messages(info)

    @pytest.mark.asyncio
    async def test_agent_sets_and_persists(self, state, info):
        await dispatch(state, "/agent plan")
        assert state.config.model.agent == "plan"
        raw = yaml.safe_load(state.config_path.read_text(encoding="utf-8"))
        assert raw["model"]["agent"] == "plan"


class TestOutputCommands:
    @pytest.mark.asyncio
    async def test_details_without_turn(self, state, info):
        await dispatch(state, "/details")
        assert "No output" in _messages(info)

    @pytest.mark.asyncio
    async def test_details_renders_everything(self, state):
        turn = TurnState(parts=[AnswerPart("a1", "done")])
        state.last_turn = turn
        await dispatch(state, "/details")
        state.stream.renderer.render.assert_called_once_with(turn, detailed=True)
        state.stream.renderer.commit.assert_called_once_with(turn)

    @pytest.mark.asyncio
    async def test_page_without_output(self, state, info):
        state.last_turn = TurnState(parts=[AnswerPart("a1", "  ")])
        await dispatch(state, "/page")
        assert "No parts to display yet." in _messages(info)

    @pytest.mark.asyncio
    async def test_page_without_turn(self, state, info):
        await dispatch(state, "/page")
        assert "No parts to display yet." in _messages(info)

    @pytest.mark.asyncio
    async def test_page_one_part_per_page(self, state):
        state.stream.renderer = TurnRenderer(default_width=40)
        state.last_turn = TurnState(
            parts=[ThinkingPart("t1", "hmm"), AnswerPart("a1", "done"), ToolPart("c1", "")]
        )
        with patch("opencode_mt.cli.commands.run_pager", new=AsyncMock()) as run_pager:
            await dispatch(state, "/page")
        pager = run_pager.await_args.args[0]
        assert [ansi.strip_escapes(page) for page in pager.pages] == ["~ hmm", "* done"]

    @pytest.mark.asyncio
    async def test_debug_prints_truncated_events(self, state):
        state.last_turn = TurnState(events=[{"type": "x", "properties": {"blob": "b" * 400}}])
        with patch("opencode_mt.cli.renderer.console") as console:
            await dispatch(state, "/debug")
        data = console.print_json.call_args.kwargs["data"]
        assert len(data[0]["properties"]["blob"]) == 255

    @pytest.mark.asyncio
    async def test_log_toggles_and_persists(self, state, info):
        with patch("opencode_mt.cli.commands.set_parts_logging") as set_logging:
            await dispatch(state, "/log")
            assert state.config.cli.log_parts is True
            set_logging.assert_called_with(True, state.data_dir / "parts.log")
            assert load_config(state.config_path).cli.log_parts is True

            await dispatch(state, "/log")
            assert state.config.cli.log_parts is False
            set_logging.assert_called_with(False, state.data_dir / "parts.log")

    @pytest.mark.asyncio
    async def test_run_streams_output(self, state, capsys):
        await dispatch(state, "/run echo hello")
        assert "hello" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_run_reports_exit_code(self, state, info):
        await dispatch(state, "/run exit 3")
        assert "Command exited with code 3" in _messages(info)


class TestStripLongStrings:
    def test_short_values_unchanged(self):
        value = {"a": "short", "b": [1, "two"], "c": None}
        assert strip_long_strings(value) == value

    def test_long_string_truncated(self):
        result = strip_long_strings({"input": "x" * 300})
        assert result["input"] == "x" * 252 + "..."

    def test_text_and_delta_kept(self):
        value = {"text": "t" * 300, "delta": "d" * 300}
        assert strip_long_strings(value) == value

    def test_nested(self):
        result = strip_long_strings([{"state": {"output": "o" * 256}}])
        assert result[0]["state"]["output"].endswith("...")
