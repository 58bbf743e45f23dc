"""Normalized stream events and the client-facing event records."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from .models import ToolExecutionResult, ToolInvocation


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolCallStart:
    id: str
    name: str


@dataclass(frozen=True)
class ToolCallArgDelta:
    id: str
    fragment: str


@dataclass(frozen=True)
class ToolCallEnd:
    id: str


StreamEvent = Union[TextDelta, ToolCallStart, ToolCallArgDelta, ToolCallEnd]


class ClientEventType(str, Enum):
    DELTA = "delta"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"
    DONE = "done"
    ERROR = "error"
    STATUS = "status"
    CONVERSATION = "conversation"


TERMINAL_EVENT_TYPES = {ClientEventType.DONE, ClientEventType.ERROR}


@dataclass(frozen=True)
class ClientEvent:
    type: ClientEventType
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def terminal(self) -> bool:
        return self.type in TERMINAL_EVENT_TYPES

    def to_record(self) -> dict[str, Any]:
        return {"type": self.type.value, **self.data}

    def to_sse(self) -> str:
        return f"event: {self.type.value}\ndata: {json.dumps(self.to_record(), ensure_ascii=False)}\n\n"


def delta(text: str) -> ClientEvent:
    return ClientEvent(ClientEventType.DELTA, {"text": text})


def tool_use(invocation: ToolInvocation) -> ClientEvent:
    return ClientEvent(
        ClientEventType.TOOL_USE,
        {"id": invocation.id, "toolName": invocation.name, "input": invocation.input},
    )


def tool_result(invocation_id: str, name: str, result: ToolExecutionResult) -> ClientEvent:
    return ClientEvent(
        ClientEventType.TOOL_RESULT,
        {"id": invocation_id, "toolName": name, "result": result.as_envelope()},
    )


def done(full_response: str, **extra: Any) -> ClientEvent:
    return ClientEvent(ClientEventType.DONE, {"fullResponse": full_response, **extra})


def error(message: str) -> ClientEvent:
    return ClientEvent(ClientEventType.ERROR, {"message": message})


def status(value: str, **extra: Any) -> ClientEvent:
    return ClientEvent(ClientEventType.STATUS, {"status": value, **extra})


def conversation(conversation_id: str) -> ClientEvent:
    return ClientEvent(ClientEventType.CONVERSATION, {"conversationId": conversation_id})
