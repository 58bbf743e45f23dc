from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from .errors import AssemblyError, DecodeError
from .events import ToolCallArgDelta, ToolCallEnd, ToolCallStart
from .logger import engine_logger
from .models import ToolExecutionResult, ToolInvocation
from .registry import ToolRegistry


@dataclass(frozen=True)
class AssembledCall:
    invocation: ToolInvocation
    rejection: ToolExecutionResult | None = None

    @property
    def accepted(self) -> bool:
        return self.rejection is None


def parse_arguments(raw: str) -> dict[str, Any]:
    if not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise AssemblyError(f"Tool input is not valid JSON: {exc.msg}") from exc
    if not isinstance(parsed, dict):
        raise AssemblyError("Tool input must be a JSON object")
    return parsed


class ToolCallAssembler:
    """Per-turn map of invocation id to argument buffer.

    Calls that fail to parse or validate are finalized with the best input
    available and returned with a rejection; their handler is never run.
    """

    def __init__(self, registry: ToolRegistry) -> None:
        self._registry = registry
        self._invocations: dict[str, ToolInvocation] = {}

    def __len__(self) -> int:
        return len(self._invocations)

    def start(self, event: ToolCallStart) -> ToolInvocation:
        if event.id in self._invocations:
            raise DecodeError(f"Duplicate tool invocation id: {event.id}")
        invocation = ToolInvocation(event.id, event.name)
        self._invocations[event.id] = invocation
        return invocation

    def append(self, event: ToolCallArgDelta) -> None:
        invocation = self._invocations.get(event.id)
        if invocation is None:
            raise DecodeError(f"Arguments for unknown tool invocation: {event.id}")
        if invocation.finalized:
            raise DecodeError(f"Arguments after end of tool invocation: {event.id}")
        invocation.append(event.fragment)

    def finish(self, event: ToolCallEnd) -> AssembledCall | None:
        invocation = self._invocations.get(event.id)
        if invocation is None:
            raise DecodeError(f"End of unknown tool invocation: {event.id}")
        if invocation.finalized:
            return None

        try:
            parsed = parse_arguments(invocation.raw_arguments)
        except AssemblyError as exc:
            invocation.finalize({})
            engine_logger.warning("Tool input rejected", tool=invocation.name, invocation_id=invocation.id, error=str(exc))
            return AssembledCall(invocation, ToolExecutionResult.failure(f"Invalid input for {invocation.name}: {exc}"))

        invocation.finalize(parsed)
        tool = self._registry.get(invocation.name)
        if tool is not None:
            try:
                tool.validate_input(parsed)
            except AssemblyError as exc:
                engine_logger.warning("Tool input rejected", tool=invocation.name, invocation_id=invocation.id, error=str(exc))
                return AssembledCall(invocation, ToolExecutionResult.failure(str(exc)))
        return AssembledCall(invocation)

    def clear(self) -> None:
        self._invocations.clear()
