from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

DEFAULT_MAX_LOOPS = 5
ROLES = {"user", "assistant"}


@dataclass
class ExecutionContext:
    user_id: str
    family_id: str
    patient_id: str
    request_id: str
    user_name: str = ""
    patient_name: str = ""
    timezone: str = "America/New_York"


@dataclass(frozen=True)
class ToolExecutionResult:
    success: bool
    message: str
    resource_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(cls, message: str, **payload: Any) -> "ToolExecutionResult":
        return cls(success=False, message=message, payload=payload)

    def as_envelope(self) -> dict[str, Any]:
        envelope: dict[str, Any] = dict(self.payload)
        envelope["success"] = self.success
        envelope["message"] = self.message
        if self.resource_id is not None:
            envelope["id"] = self.resource_id
        return envelope


class ToolInvocation:
    """One tool call requested by the model.

    The argument buffer grows while fragments arrive; ``finalize`` freezes the
    parsed input, after which the invocation no longer accepts fragments.
    """

    def __init__(self, invocation_id: str, name: str) -> None:
        self.id = invocation_id
        self.name = name
        self._fragments: list[str] = []
        self._input: dict[str, Any] | None = None

    def __repr__(self) -> str:
        return f"ToolInvocation(id={self.id!r}, name={self.name!r}, finalized={self.finalized})"

    @property
    def raw_arguments(self) -> str:
        return "".join(self._fragments)

    @property
    def finalized(self) -> bool:
        return self._input is not None

    @property
    def input(self) -> dict[str, Any]:
        if self._input is None:
            raise RuntimeError(f"Tool invocation {self.id} is not finalized")
        return dict(self._input)

    def append(self, fragment: str) -> None:
        if self.finalized:
            raise RuntimeError(f"Tool invocation {self.id} is already finalized")
        self._fragments.append(fragment)

    def finalize(self, parsed_input: dict[str, Any]) -> None:
        if self.finalized:
            raise RuntimeError(f"Tool invocation {self.id} is already finalized")
        self._input = dict(parsed_input)


@dataclass(frozen=True)
class TextSegment:
    text: str

    def to_block(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True)
class ToolUseSegment:
    id: str
    name: str
    input: dict[str, Any]

    def to_block(self) -> dict[str, Any]:
        return {"type": "tool_use", "id": self.id, "name": self.name, "input": dict(self.input)}


@dataclass(frozen=True)
class ToolResultSegment:
    tool_use_id: str
    result: ToolExecutionResult

    def to_block(self) -> dict[str, Any]:
        block: dict[str, Any] = {
            "type": "tool_result",
            "tool_use_id": self.tool_use_id,
            "content": json.dumps(self.result.as_envelope(), ensure_ascii=False),
        }
        if not self.result.success:
            block["is_error"] = True
        return block


Segment = Union[TextSegment, ToolUseSegment, ToolResultSegment]


@dataclass(frozen=True)
class ConversationTurn:
    role: str
    segments: tuple[Segment, ...]

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"Invalid turn role: {self.role}")

    @property
    def text(self) -> str:
        return "".join(segment.text for segment in self.segments if isinstance(segment, TextSegment))

    def to_message(self) -> dict[str, Any]:
        return {"role": self.role, "content": [segment.to_block() for segment in self.segments]}


class ConversationContext:
    """Ordered turns for one chat invocation. Append-only."""

    def __init__(self, turns: list[ConversationTurn] | None = None) -> None:
        self._turns: list[ConversationTurn] = []
        self._tool_use_ids: set[str] = set()
        for turn in turns or []:
            self.append(turn)

    @classmethod
    def from_history(cls, history: list[dict[str, Any]], message: str) -> "ConversationContext":
        context = cls()
        for item in history:
            role = str(item.get("role") or "").strip().lower()
            content = str(item.get("content") or "")
            if role not in ROLES or not content.strip():
                continue
            context.append(ConversationTurn(role, (TextSegment(content),)))
        context.append(ConversationTurn("user", (TextSegment(message),)))
        return context

    def __len__(self) -> int:
        return len(self._turns)

    @property
    def turns(self) -> tuple[ConversationTurn, ...]:
        return tuple(self._turns)

    def append(self, turn: ConversationTurn) -> None:
        for segment in turn.segments:
            if isinstance(segment, ToolResultSegment) and segment.tool_use_id not in self._tool_use_ids:
                raise ValueError(f"tool_result for {segment.tool_use_id} has no preceding tool_use")
        for segment in turn.segments:
            if isinstance(segment, ToolUseSegment):
                self._tool_use_ids.add(segment.id)
        self._turns.append(turn)

    def append_tool_exchange(
        self,
        text: str,
        invocations: list[ToolInvocation],
        results: dict[str, ToolExecutionResult],
    ) -> None:
        assistant_segments: list[Segment] = []
        if text:
            assistant_segments.append(TextSegment(text))
        assistant_segments.extend(ToolUseSegment(inv.id, inv.name, inv.input) for inv in invocations)
        self.append(ConversationTurn("assistant", tuple(assistant_segments)))
        self.append(
            ConversationTurn(
                "user",
                tuple(ToolResultSegment(inv.id, results[inv.id]) for inv in invocations),
            )
        )

    def to_messages(self) -> list[dict[str, Any]]:
        return [turn.to_message() for turn in self._turns]


class LoopPhase(str, Enum):
    STREAMING = "streaming"
    ASSEMBLING = "assembling"
    DISPATCHING = "dispatching"
    DECIDE = "decide"
    FINISHED = "finished"


@dataclass
class LoopState:
    max_loops: int = DEFAULT_MAX_LOOPS
    iteration: int = 0
    tool_calls_this_turn: bool = False
    phase: LoopPhase = LoopPhase.STREAMING

    def __post_init__(self) -> None:
        if self.max_loops < 1:
            raise ValueError("max_loops must be at least 1")

    @property
    def exhausted(self) -> bool:
        return self.iteration >= self.max_loops
