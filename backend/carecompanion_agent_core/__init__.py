from .assembler import AssembledCall, ToolCallAssembler
from .backend import AnthropicStreamingBackend, BackendRequest, ModelBackend
from .decoder import EventStreamDecoder
from .dispatcher import ToolDispatcher
from .errors import AssemblyError, BackendError, DecodeError, DispatchError, EngineError
from .events import ClientEvent, ClientEventType
from .hooks import HookDecision, HookRunner
from .loop import ConversationLoop, LoopOutcome
from .models import (
    DEFAULT_MAX_LOOPS,
    ConversationContext,
    ConversationTurn,
    ExecutionContext,
    LoopPhase,
    LoopState,
    ToolExecutionResult,
    ToolInvocation,
)
from .publisher import ClientEventPublisher
from .registry import ToolDefinition, ToolField, ToolRegistry
from .strategy import ToolStrategy

__all__ = [
    "DEFAULT_MAX_LOOPS",
    "AnthropicStreamingBackend",
    "AssembledCall",
    "AssemblyError",
    "BackendError",
    "BackendRequest",
    "ClientEvent",
    "ClientEventPublisher",
    "ClientEventType",
    "ConversationContext",
    "ConversationLoop",
    "ConversationTurn",
    "DecodeError",
    "DispatchError",
    "EngineError",
    "EventStreamDecoder",
    "ExecutionContext",
    "HookDecision",
    "HookRunner",
    "LoopOutcome",
    "LoopPhase",
    "LoopState",
    "ModelBackend",
    "ToolCallAssembler",
    "ToolDefinition",
    "ToolDispatcher",
    "ToolExecutionResult",
    "ToolField",
    "ToolInvocation",
    "ToolRegistry",
    "ToolStrategy",
]
