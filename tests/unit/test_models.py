"""Tests for feed event validation."""

from __future__ import annotations

import pytest

from opencode_mt.models import (
    DiffEvent,
    IdleEvent,
    MessageUpdatedEvent,
    PartDeltaEvent,
    PartUpdatedEvent,
    SessionErrorEvent,
    StatusEvent,
    parse_event,
)


class TestParseEvent:
    @pytest.mark.parametrize("event_type", ["message.part.updated", "part.updated"])
    def test_part_updated_aliases(self, event_type):
        event = parse_event(
            {
                "type": event_type,
                "properties": {
                    "part": {"id": "p1", "type": "text", "text": "hi", "sessionID": "s1", "messageID": "m1"},
                    "delta": "hi",
                },
            }
        )
        assert isinstance(event, PartUpdatedEvent)
        assert event.properties.part.message_id == "m1"
        assert event.properties.delta == "hi"
        assert event.session_id == "s1"

    def test_part_delta(self):
        event = parse_event(
            {"type": "message.part.delta", "properties": {"partID": "p1", "delta": "x", "sessionID": "s1"}}
        )
        assert isinstance(event, PartDeltaEvent)
        assert event.properties.part_id == "p1"
        assert event.properties.field == "text"

    def test_tool_state(self):
        event = parse_event(
            {
                "type": "message.part.updated",
                "properties": {
                    "part": {
                        "id": "t1",
                        "type": "tool",
                        "tool": "bash",
                        "state": {"status": "running", "input": {"command": "ls"}, "metadata": {"x": 1}},
                    }
                },
            }
        )
        assert event.properties.part.state.input == {"command": "ls"}

    def test_diff(self):
        event = parse_event(
            {"type": "session.diff", "properties": {"sessionID": "s1", "diff": [{"file": "a.py", "additions": 3}]}}
        )
        assert isinstance(event, DiffEvent)
        assert event.properties.diff[0].additions == 3
        assert event.properties.diff[0].deletions == 0

    def test_status_retry(self):
        event = parse_event(
            {
                "type": "session.status",
                "properties": {
                    "sessionID": "s1",
                    "status": {"type": "retry", "attempt": 2, "message": "Overloaded", "next": 1700000000000},
                },
            }
        )
        assert isinstance(event, StatusEvent)
        assert event.properties.status.next == 1700000000000
        assert event.properties.status.attempt == 2

    def test_idle_without_properties(self):
        event = parse_event({"type": "session.idle"})
        assert isinstance(event, IdleEvent)
        assert event.session_id is None

    def test_message_updated(self):
        event = parse_event(
            {"type": "message.updated", "properties": {"info": {"id": "m1", "role": "user", "sessionID": "s1"}}}
        )
        assert isinstance(event, MessageUpdatedEvent)
        assert event.session_id == "s1"

    def test_session_error_message(self):
        event = parse_event(
            {
                "type": "session.error",
                "properties": {"error": {"name": "ProviderAuthError", "data": {"message": "Invalid API key"}}},
            }
        )
        assert isinstance(event, SessionErrorEvent)
        assert event.message == "Invalid API key"

    def test_session_error_without_details(self):
        event = parse_event({"type": "session.error", "properties": {}})
        assert event.message == "Unknown session error"

    def test_unknown_type(self):
        assert parse_event({"type": "lsp.updated", "properties": {}}) is None

    def test_invalid_payload(self):
        assert parse_event({"type": "message.part.updated", "properties": {"part": {"type": "text"}}}) is None

    def test_not_a_dict(self):
        assert parse_event(["message.part.updated"]) is None

    def test_dump_uses_wire_names(self):
        event = parse_event({"type": "message.part.delta", "properties": {"partID": "p1", "delta": "x"}})
        dumped = event.model_dump(mode="json", by_alias=True, exclude_none=True)
        assert dumped == {"type": "message.part.delta", "properties": {"partID": "p1", "delta": "x", "field": "text"}}
