"""Pydantic models for the opencode server's event feed and REST payloads."""

from __future__ import annotations

import logging
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

logger = logging.getLogger(__name__)


class _Wire(BaseModel):
    # Server payloads grow new fields over time; keep only what we read.
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# ---------------------------------------------------------------------------
# Part payloads
# ---------------------------------------------------------------------------


class PartTime(_Wire):
    start: float | None = None
    end: float | None = None


class ToolState(_Wire):
    status: str = ""
    title: str | None = None
    input: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None


class WirePart(_Wire):
    id: str
    type: str
    text: str = ""
    session_id: str | None = Field(default=None, alias="sessionID")
    message_id: str | None = Field(default=None, alias="messageID")
    tool: str | None = None
    state: ToolState | None = None
    time: PartTime | None = None


class FileDiff(_Wire):
    file: str
    before: str | None = None
    after: str | None = None
    additions: int = 0
    deletions: int = 0


class StatusInfo(_Wire):
    type: str
    message: str | None = None
    next: float | None = None  # epoch milliseconds
    attempt: int | None = None


class MessageInfo(_Wire):
    id: str
    role: str = ""
    session_id: str | None = Field(default=None, alias="sessionID")


# ---------------------------------------------------------------------------
# Event envelopes
# ---------------------------------------------------------------------------


class PartUpdatedProperties(_Wire):
    part: WirePart
    delta: str | None = None


class PartDeltaProperties(_Wire):
    part_id: str = Field(alias="partID")
    delta: str = ""
    field: str = "text"
    session_id: str | None = Field(default=None, alias="sessionID")
    message_id: str | None = Field(default=None, alias="messageID")


class DiffProperties(_Wire):
    diff: list[FileDiff] = Field(default_factory=list)
    session_id: str | None = Field(default=None, alias="sessionID")


class StatusProperties(_Wire):
    status: StatusInfo
    session_id: str | None = Field(default=None, alias="sessionID")


class SessionProperties(_Wire):
    session_id: str | None = Field(default=None, alias="sessionID")


class MessageUpdatedProperties(_Wire):
    info: MessageInfo


class SessionErrorProperties(_Wire):
    session_id: str | None = Field(default=None, alias="sessionID")
    error: dict[str, Any] | None = None


class PartUpdatedEvent(_Wire):
    type: Literal["part.updated", "message.part.updated"]
    properties: PartUpdatedProperties

    @property
    def session_id(self) -> str | None:
        return self.properties.part.session_id


class PartDeltaEvent(_Wire):
    type: Literal["part.delta", "message.part.delta"]
    properties: PartDeltaProperties

    @property
    def session_id(self) -> str | None:
        return self.properties.session_id


class DiffEvent(_Wire):
    type: Literal["diff", "session.diff"]
    properties: DiffProperties

    @property
    def session_id(self) -> str | None:
        return self.properties.session_id


class StatusEvent(_Wire):
    type: Literal["status", "session.status"]
    properties: StatusProperties

    @property
    def session_id(self) -> str | None:
        return self.properties.session_id


class IdleEvent(_Wire):
    type: Literal["session.idle"]
    properties: SessionProperties = Field(default_factory=SessionProperties)

    @property
    def session_id(self) -> str | None:
        return self.properties.session_id


class MessageUpdatedEvent(_Wire):
    type: Literal["message.updated"]
    properties: MessageUpdatedProperties

    @property
    def session_id(self) -> str | None:
        return self.properties.info.session_id


class SessionErrorEvent(_Wire):
    type: Literal["session.error"]
    properties: SessionErrorProperties = Field(default_factory=SessionErrorProperties)

    @property
    def session_id(self) -> str | None:
        return self.properties.session_id

    @property
    def message(self) -> str:
        error = self.properties.error or {}
        data = error.get("data")
        if isinstance(data, dict) and data.get("message"):
            return str(data["message"])
        return str(error.get("name") or "Unknown session error")


Event = Annotated[
    Union[
        PartUpdatedEvent,
        PartDeltaEvent,
        DiffEvent,
        StatusEvent,
        IdleEvent,
        MessageUpdatedEvent,
        SessionErrorEvent,
    ],
    Field(discriminator="type"),
]

_EVENT_ADAPTER: TypeAdapter[Any] = TypeAdapter(Event)

EVENT_TYPES = frozenset(
    {
        "part.updated",
        "message.part.updated",
        "part.delta",
        "message.part.delta",
        "diff",
        "session.diff",
        "status",
        "session.status",
        "session.idle",
        "message.updated",
        "session.error",
    }
)


def parse_event(raw: Any) -> Event | None:
    """Validate one decoded feed message.

    Returns None for event types this client does not handle and for payloads
    that fail validation; neither should stop the stream.
    """
    if not isinstance(raw, dict) or raw.get("type") not in EVENT_TYPES:
        return None
    try:
        return _EVENT_ADAPTER.validate_python(raw)
    except ValidationError as e:
        logger.debug("Dropping invalid %s event: %s", raw.get("type"), e)
        return None


# ---------------------------------------------------------------------------
# REST payloads
# ---------------------------------------------------------------------------


class SessionTime(_Wire):
    created: float = 0
    updated: float = 0


class SessionInfo(_Wire):
    id: str
    title: str = ""
    directory: str = ""
    time: SessionTime = Field(default_factory=SessionTime)


class ModelInfo(_Wire):
    id: str
    name: str = ""


class ProviderInfo(_Wire):
    id: str
    name: str = ""
    models: dict[str, ModelInfo] = Field(default_factory=dict)


class AgentInfo(_Wire):
    name: str
    description: str | None = None
    mode: str = ""


class MessageEntry(_Wire):
    info: MessageInfo
    parts: list[dict[str, Any]] = Field(default_factory=list)
