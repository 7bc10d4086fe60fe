"""Event types for streamed agent output.

``session/update`` notifications are validated against the ACP schema and
converted into the small event types below, each tagged with the host
request and logical session that caused it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import singledispatch
from typing import Union

from acp.schema import (
    AgentMessageChunk,
    AgentPlanUpdate,
    AgentThoughtChunk,
    SessionNotification,
    TextContentBlock,
    ToolCallProgress as ACPToolCallProgress,
    ToolCallStart as ACPToolCallStart,
)
from pydantic import ValidationError

from .connection import SessionUpdate

log = logging.getLogger(__name__)

# JSON type for raw update payloads
JSON = Union[dict[str, "JSON"], list["JSON"], str, int, float, bool, None]


@dataclass
class MessageChunk:
    """A chunk of assistant message text."""

    text: str
    request_id: str | None = None
    session_id: str | None = None


@dataclass
class ThoughtChunk:
    """A chunk of thinking/reasoning text."""

    text: str
    request_id: str | None = None
    session_id: str | None = None


@dataclass
class PlanChunk:
    """The agent's current plan."""

    entries: list[dict[str, JSON]] = field(default_factory=list)
    request_id: str | None = None
    session_id: str | None = None


@dataclass
class ToolCallStart:
    """Tool call is starting."""

    id: str
    name: str
    status: str = ""
    request_id: str | None = None
    session_id: str | None = None


@dataclass
class ToolCallProgress:
    """Tool call progress update."""

    id: str
    status: str
    name: str = ""
    request_id: str | None = None
    session_id: str | None = None


@dataclass
class UnknownUpdate:
    """Anything else the agent sends (mode changes, command lists, ...)."""

    kind: str | None
    raw: dict[str, JSON]
    request_id: str | None = None
    session_id: str | None = None


StreamEvent = MessageChunk | ThoughtChunk | PlanChunk | ToolCallStart | ToolCallProgress | UnknownUpdate


@singledispatch
def _convert(update: object, raw: dict[str, JSON]) -> StreamEvent:
    kind = raw.get("sessionUpdate")
    return UnknownUpdate(kind=kind if isinstance(kind, str) else None, raw=raw)


@_convert.register
def _agent_message(update: AgentMessageChunk, raw: dict[str, JSON]) -> StreamEvent:
    content = update.content
    if isinstance(content, TextContentBlock):
        return MessageChunk(content.text)
    return UnknownUpdate(kind="agent_message_chunk", raw=raw)


@_convert.register
def _agent_thought(update: AgentThoughtChunk, raw: dict[str, JSON]) -> StreamEvent:
    content = update.content
    if isinstance(content, TextContentBlock):
        return ThoughtChunk(content.text)
    return UnknownUpdate(kind="agent_thought_chunk", raw=raw)


@_convert.register
def _agent_plan(update: AgentPlanUpdate, raw: dict[str, JSON]) -> StreamEvent:
    entries: list[dict[str, JSON]] = [
        {
            "content": entry.content,
            "status": entry.status,
            "priority": entry.priority,
        }
        for entry in update.entries
    ]
    return PlanChunk(entries=entries)


@_convert.register
def _tool_call_start(update: ACPToolCallStart, raw: dict[str, JSON]) -> StreamEvent:
    return ToolCallStart(id=update.tool_call_id or "", name=update.title or "", status=update.status or "")


@_convert.register
def _tool_call_progress(update: ACPToolCallProgress, raw: dict[str, JSON]) -> StreamEvent:
    return ToolCallProgress(id=update.tool_call_id or "", status=update.status or "", name=update.title or "")


def _from_raw(raw: dict[str, JSON]) -> StreamEvent:
    """Best effort conversion when the payload doesn't match the schema."""
    kind = raw.get("sessionUpdate")
    content = raw.get("content")
    text = content.get("text") if isinstance(content, dict) else None
    if kind == "agent_message_chunk" and isinstance(text, str):
        return MessageChunk(text)
    if kind == "agent_thought_chunk" and isinstance(text, str):
        return ThoughtChunk(text)
    return UnknownUpdate(kind=kind if isinstance(kind, str) else None, raw=raw)


def parse_update(params: dict[str, JSON]) -> StreamEvent:
    """Convert ``session/update`` params into a stream event (untagged)."""
    update = params.get("update")
    raw: dict[str, JSON] = update if isinstance(update, dict) else params
    try:
        notification = SessionNotification.model_validate(params)
    except ValidationError as e:
        log.debug(f"Update didn't match the ACP schema ({e.error_count()} errors); using raw payload")
        return _from_raw(raw)
    return _convert(notification.update, raw)


def to_event(update: SessionUpdate) -> StreamEvent:
    """Parse a connection update and tag it with its request and session."""
    event = parse_update(update.params)
    event.request_id = update.request_id
    event.session_id = update.session_key
    return event


class ResponseAccumulator:
    """Collects streamed message text per request."""

    def __init__(self) -> None:
        self._parts: dict[str, list[str]] = {}

    def add(self, event: StreamEvent) -> None:
        if isinstance(event, MessageChunk) and event.request_id is not None:
            self._parts.setdefault(event.request_id, []).append(event.text)

    def text(self, request_id: str) -> str:
        return "".join(self._parts.get(request_id, []))

    def pop(self, request_id: str) -> str:
        return "".join(self._parts.pop(request_id, []))

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._parts
