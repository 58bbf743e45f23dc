"""Normalizes the abstract backend event stream.

Backend events are plain mappings::

    {"type": "block_start", "index": 0, "kind": "tool_use", "id": "...", "name": "..."}
    {"type": "block_delta", "index": 0, "json_fragment": "{\\"a\\": 1"}
    {"type": "block_stop", "index": 0}
    {"type": "error", "message": "..."}

Anything with another ``type`` is ignored.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, AsyncIterator, Mapping

from .errors import BackendError, DecodeError
from .events import StreamEvent, TextDelta, ToolCallArgDelta, ToolCallEnd, ToolCallStart

BLOCK_KINDS = {"text", "tool_use"}


@dataclass
class _Block:
    kind: str
    invocation_id: str | None = None


class EventStreamDecoder:
    def __init__(self) -> None:
        self._open: dict[int, _Block] = {}
        self._closed: dict[int, _Block] = {}

    async def decode(self, events: AsyncIterator[Any]) -> AsyncIterator[StreamEvent]:
        async for raw in events:
            for event in self.feed(raw):
                yield event

    def feed(self, raw: Any) -> list[StreamEvent]:
        if not isinstance(raw, Mapping):
            raise DecodeError(f"Backend event is not a mapping: {type(raw).__name__}")

        event_type = raw.get("type")
        if event_type == "error":
            raise BackendError(str(raw.get("message") or "Model backend reported an error"))
        if event_type == "block_start":
            return self._start(raw)
        if event_type == "block_delta":
            return self._delta(raw)
        if event_type == "block_stop":
            return self._stop(raw)
        return []

    @staticmethod
    def _index(raw: Mapping[str, Any]) -> int:
        index = raw.get("index")
        if not isinstance(index, int) or isinstance(index, bool):
            raise DecodeError(f"Block event without an integer index: {raw.get('type')}")
        return index

    def _start(self, raw: Mapping[str, Any]) -> list[StreamEvent]:
        index = self._index(raw)
        if index in self._open:
            raise DecodeError(f"Block {index} started twice")
        kind = raw.get("kind")
        if kind not in BLOCK_KINDS:
            raise DecodeError(f"Unsupported block kind: {kind!r}")

        if kind == "text":
            self._open[index] = _Block(kind="text")
            return []

        invocation_id = raw.get("id")
        name = raw.get("name")
        if not isinstance(invocation_id, str) or not invocation_id:
            raise DecodeError(f"Tool block {index} has no id")
        if not isinstance(name, str) or not name:
            raise DecodeError(f"Tool block {index} has no name")
        self._open[index] = _Block(kind="tool_use", invocation_id=invocation_id)
        return [ToolCallStart(id=invocation_id, name=name)]

    def _delta(self, raw: Mapping[str, Any]) -> list[StreamEvent]:
        index = self._index(raw)
        block = self._open.get(index)
        if block is None:
            raise DecodeError(f"Delta for block {index} which was never started")

        if block.kind == "text":
            if "json_fragment" in raw:
                raise DecodeError(f"JSON fragment on text block {index}")
            text = raw.get("text") or ""
            return [TextDelta(text=str(text))] if text else []

        if "text" in raw:
            raise DecodeError(f"Text delta on tool block {index}")
        fragment = raw.get("json_fragment") or ""
        if not fragment:
            return []
        return [ToolCallArgDelta(id=block.invocation_id or "", fragment=str(fragment))]

    def _stop(self, raw: Mapping[str, Any]) -> list[StreamEvent]:
        index = self._index(raw)
        block = self._open.pop(index, None)
        if block is None:
            block = self._closed.get(index)
            if block is None:
                raise DecodeError(f"Stop for block {index} which was never started")
        self._closed[index] = block
        if block.kind == "tool_use":
            return [ToolCallEnd(id=block.invocation_id or "")]
        return []
