from __future__ import annotations

import inspect
from typing import Any, Mapping

from .errors import DispatchError
from .hooks import HookRunner
from .logger import engine_logger
from .models import ExecutionContext, ToolExecutionResult, ToolInvocation
from .registry import ToolRegistry

INVALID_RESULT_MESSAGE = "Tool returned an invalid result"


def result_from_output(output: Any) -> ToolExecutionResult:
    if not isinstance(output, Mapping):
        raise DispatchError(INVALID_RESULT_MESSAGE)
    payload = {key: value for key, value in output.items() if key not in {"success", "message", "id"}}
    resource_id = output.get("id")
    return ToolExecutionResult(
        success=bool(output.get("success", False)),
        message=str(output.get("message") or ""),
        resource_id=str(resource_id) if resource_id is not None else None,
        payload=payload,
    )


class ToolDispatcher:
    """Runs each finalized invocation against its handler at most once per turn."""

    def __init__(self, registry: ToolRegistry, ctx: ExecutionContext, hooks: HookRunner | None = None) -> None:
        self.registry = registry
        self.ctx = ctx
        self.hooks = hooks or HookRunner()
        self._results: dict[str, ToolExecutionResult] = {}

    @property
    def results(self) -> dict[str, ToolExecutionResult]:
        return dict(self._results)

    def reset(self) -> None:
        self._results.clear()

    async def dispatch(
        self,
        invocation: ToolInvocation,
        rejection: ToolExecutionResult | None = None,
    ) -> ToolExecutionResult | None:
        if invocation.id in self._results:
            engine_logger.debug("Duplicate tool call ignored", tool=invocation.name, invocation_id=invocation.id)
            return None

        result = rejection if rejection is not None else await self._execute(invocation)
        self._results[invocation.id] = result
        engine_logger.info(
            "Tool executed",
            tool=invocation.name,
            invocation_id=invocation.id,
            success=result.success,
            request_id=self.ctx.request_id,
        )
        return result

    async def _execute(self, invocation: ToolInvocation) -> ToolExecutionResult:
        tool = self.registry.get(invocation.name)
        if tool is None:
            return ToolExecutionResult.failure(f"Unknown tool: {invocation.name}")

        payload = invocation.input
        decision = self.hooks.run_before(self.ctx, tool, payload)
        if not decision.allowed:
            result = ToolExecutionResult.failure(decision.message, code=decision.code)
            self.hooks.run_after(self.ctx, tool, invocation.id, payload, result)
            return result

        try:
            output = tool.handler(self.ctx, payload)
            if inspect.isawaitable(output):
                output = await output
            result = result_from_output(output)
        except DispatchError as exc:
            engine_logger.warning("Tool returned invalid output", tool=tool.name, invocation_id=invocation.id)
            result = ToolExecutionResult.failure(str(exc))
        except Exception as exc:
            engine_logger.exception("Tool handler failed", tool=tool.name, invocation_id=invocation.id)
            result = ToolExecutionResult.failure(str(exc) or type(exc).__name__)

        self.hooks.run_after(self.ctx, tool, invocation.id, payload, result)
        return result
