from __future__ import annotations

import json
from typing import Any, AsyncIterator, Callable, Union

from carecompanion_agent_core import BackendRequest, ClientEvent, ExecutionContext

Turn = list[dict[str, Any]]


def text_block(index: int, text: str, *, chunk_size: int = 4) -> Turn:
    events: Turn = [{"type": "block_start", "index": index, "kind": "text"}]
    for start in range(0, len(text), chunk_size):
        events.append({"type": "block_delta", "index": index, "text": text[start : start + chunk_size]})
    events.append({"type": "block_stop", "index": index})
    return events


def tool_block(
    index: int,
    invocation_id: str,
    name: str,
    arguments: Union[str, dict[str, Any]] = "",
    *,
    chunk_size: int = 5,
) -> Turn:
    raw = arguments if isinstance(arguments, str) else json.dumps(arguments)
    events: Turn = [{"type": "block_start", "index": index, "kind": "tool_use", "id": invocation_id, "name": name}]
    for start in range(0, len(raw), chunk_size):
        events.append({"type": "block_delta", "index": index, "json_fragment": raw[start : start + chunk_size]})
    events.append({"type": "block_stop", "index": index})
    return events


class ScriptedBackend:
    """Replays one scripted turn per request; the last turn repeats once the script runs out."""

    def __init__(self, turns: Union[list[Turn], Callable[[int, BackendRequest], Turn]]) -> None:
        self._turns = turns
        self.requests: list[BackendRequest] = []

    async def stream(self, request: BackendRequest) -> AsyncIterator[dict[str, Any]]:
        self.requests.append(request)
        position = len(self.requests) - 1
        if callable(self._turns):
            turn = self._turns(position, request)
        else:
            turn = self._turns[min(position, len(self._turns) - 1)]
        for event in turn:
            yield event


class RecordingSink:
    def __init__(self, fail_after: int | None = None) -> None:
        self.events: list[ClientEvent] = []
        self.fail_after = fail_after
        self.attempts = 0

    def __call__(self, event: ClientEvent) -> None:
        self.attempts += 1
        if self.fail_after is not None and len(self.events) >= self.fail_after:
            raise ConnectionError("client went away")
        self.events.append(event)

    def types(self) -> list[str]:
        return [event.type.value for event in self.events]

    def of_type(self, kind: str) -> list[dict[str, Any]]:
        return [event.data for event in self.events if event.type.value == kind]


def make_ctx(**overrides: Any) -> ExecutionContext:
    values: dict[str, Any] = {
        "user_id": "user-a",
        "family_id": "family-a",
        "patient_id": "patient-a",
        "request_id": "req-1",
    }
    values.update(overrides)
    return ExecutionContext(**values)
