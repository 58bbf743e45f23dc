from __future__ import annotations

from dataclasses import dataclass, field

from . import events
from .assembler import AssembledCall, ToolCallAssembler
from .backend import BackendRequest, ModelBackend
from .decoder import EventStreamDecoder
from .dispatcher import ToolDispatcher
from .errors import BackendError, DecodeError
from .events import TextDelta, ToolCallArgDelta, ToolCallEnd, ToolCallStart
from .hooks import HookRunner
from .logger import engine_logger
from .models import (
    DEFAULT_MAX_LOOPS,
    ConversationContext,
    ExecutionContext,
    LoopPhase,
    LoopState,
    ToolExecutionResult,
    ToolInvocation,
)
from .publisher import ClientEventPublisher
from .strategy import ToolStrategy

GENERIC_FAILURE_MESSAGE = "Chat failed"


@dataclass
class TurnOutcome:
    text: str = ""
    invocations: list[ToolInvocation] = field(default_factory=list)
    results: dict[str, ToolExecutionResult] = field(default_factory=dict)


@dataclass
class LoopOutcome:
    full_response: str
    round_trips: int
    state: LoopState
    cancelled: bool = False
    error: str | None = None


class ConversationLoop:
    """Drives model round-trips until a plain-text turn, cancellation or the loop bound."""

    def __init__(
        self,
        backend: ModelBackend,
        strategy: ToolStrategy,
        *,
        max_loops: int = DEFAULT_MAX_LOOPS,
        hooks: HookRunner | None = None,
    ) -> None:
        self.backend = backend
        self.strategy = strategy
        self.max_loops = max_loops
        self.hooks = hooks or HookRunner()

    async def run(
        self,
        ctx: ExecutionContext,
        context: ConversationContext,
        publisher: ClientEventPublisher,
    ) -> LoopOutcome:
        state = LoopState(max_loops=self.max_loops)
        dispatcher = ToolDispatcher(self.strategy.registry, ctx, self.hooks)
        narrative: list[str] = []
        round_trips = 0
        cancelled = False

        try:
            while True:
                if not publisher.cancel_event.is_set():
                    await publisher.publish(events.status("thinking", loop=round_trips + 1))
                # A failed status write sets the cancel event too.
                if publisher.cancel_event.is_set():
                    cancelled = True
                    engine_logger.info("Conversation cancelled", request_id=ctx.request_id, iteration=state.iteration)
                    break

                round_trips += 1
                state.phase = LoopPhase.STREAMING
                state.tool_calls_this_turn = False
                engine_logger.info(
                    "Round-trip started",
                    request_id=ctx.request_id,
                    strategy=self.strategy.name,
                    loop=round_trips,
                )

                turn = await self._run_turn(context, state, dispatcher, publisher)
                narrative.append(turn.text)

                state.phase = LoopPhase.DECIDE
                if not turn.invocations:
                    break

                context.append_tool_exchange(turn.text, turn.invocations, turn.results)
                state.iteration += 1
                if state.exhausted:
                    engine_logger.info("Loop bound reached", request_id=ctx.request_id, max_loops=state.max_loops)
                    break
        except (DecodeError, BackendError) as exc:
            state.phase = LoopPhase.FINISHED
            engine_logger.error("Conversation aborted", request_id=ctx.request_id, error=str(exc))
            await publisher.publish(events.error(str(exc)))
            return LoopOutcome("".join(narrative), round_trips, state, error=str(exc))
        except Exception:
            state.phase = LoopPhase.FINISHED
            engine_logger.exception("Conversation failed", request_id=ctx.request_id)
            await publisher.publish(events.error(GENERIC_FAILURE_MESSAGE))
            return LoopOutcome("".join(narrative), round_trips, state, error=GENERIC_FAILURE_MESSAGE)

        state.phase = LoopPhase.FINISHED
        full_response = "".join(narrative)
        extra = self.strategy.done_payload()
        if cancelled:
            extra["cancelled"] = True
        await publisher.publish(events.done(full_response, **extra))
        engine_logger.info(
            "Conversation complete",
            request_id=ctx.request_id,
            round_trips=round_trips,
            tool_turns=state.iteration,
        )
        return LoopOutcome(full_response, round_trips, state, cancelled=cancelled)

    async def _run_turn(
        self,
        context: ConversationContext,
        state: LoopState,
        dispatcher: ToolDispatcher,
        publisher: ClientEventPublisher,
    ) -> TurnOutcome:
        registry = self.strategy.registry
        assembler = ToolCallAssembler(registry)
        dispatcher.reset()
        decoder = EventStreamDecoder()
        request = BackendRequest(
            system_prompt=self.strategy.system_prompt,
            tools=registry.declarations(),
            messages=context.to_messages(),
        )

        text_parts: list[str] = []
        closed: list[AssembledCall] = []
        async for event in decoder.decode(self.backend.stream(request)):
            if isinstance(event, TextDelta):
                text_parts.append(event.text)
                await publisher.publish(events.delta(event.text))
            elif isinstance(event, ToolCallStart):
                state.phase = LoopPhase.ASSEMBLING
                state.tool_calls_this_turn = True
                assembler.start(event)
            elif isinstance(event, ToolCallArgDelta):
                assembler.append(event)
            elif isinstance(event, ToolCallEnd):
                call = assembler.finish(event)
                if call is None:
                    continue
                closed.append(call)
                await publisher.publish(events.tool_use(call.invocation))

        if len(closed) < len(assembler):
            engine_logger.warning("Stream ended with unfinished tool calls", unfinished=len(assembler) - len(closed))

        state.phase = LoopPhase.DISPATCHING
        turn = TurnOutcome(text="".join(text_parts))
        for call in closed:
            result = await dispatcher.dispatch(call.invocation, call.rejection)
            if result is None:
                continue
            turn.invocations.append(call.invocation)
            turn.results[call.invocation.id] = result
            await publisher.publish(events.tool_result(call.invocation.id, call.invocation.name, result))
        assembler.clear()
        return turn
