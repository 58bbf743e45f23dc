from __future__ import annotations

import asyncio
import hashlib
import re
import uuid
from typing import Any, AsyncIterator, Callable

import httpx
from fastapi import FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from care_store import CareStore, SQLiteCareDB
from carecompanion_agent_core import (
    AnthropicStreamingBackend,
    ClientEvent,
    ClientEventPublisher,
    ConversationContext,
    ConversationLoop,
    ExecutionContext,
    HookRunner,
    ModelBackend,
    ToolExecutionResult,
    ToolStrategy,
)
from carecompanion_agent_core import events
from carecompanion_agent_core.logger import api_logger, configure_structlog
from carecompanion_tools import (
    CHAT_STRATEGY,
    ONBOARDING_STRATEGY,
    OnboardingCollectedData,
    OnboardingToolset,
    build_chat_registry,
    build_chat_strategy,
    build_onboarding_registry,
    build_onboarding_strategy,
)
from settings import bootstrap_local_env, load_settings

bootstrap_local_env()
configure_structlog(force=True)

BackendFactory = Callable[[httpx.AsyncClient], ModelBackend]


def _stable_id(prefix: str, value: str) -> str:
    return f"{prefix}_{hashlib.sha1(value.strip().lower().encode('utf-8')).hexdigest()[:20]}"


class HistoryMessage(BaseModel):
    role: str
    content: str


class ChatRequest(BaseModel):
    message: str = Field(min_length=1)
    history: list[HistoryMessage] = Field(default_factory=list)
    conversation_id: str | None = None
    family_id: str | None = None
    patient_id: str | None = None
    patient_name: str | None = None
    user_name: str | None = None
    timezone: str = "America/New_York"


class OnboardingChatRequest(BaseModel):
    message: str = Field(min_length=1)
    history: list[HistoryMessage] = Field(default_factory=list)
    collected_data: dict[str, Any] | None = None
    timezone: str = "America/New_York"


class CareCompanionApp:
    def __init__(self) -> None:
        self.settings = load_settings()
        self.db = SQLiteCareDB(self.settings.db_path)
        self.store = CareStore(self.db)
        self.backend_factory: BackendFactory = self._anthropic_backend

        self.hooks = HookRunner()
        self.hooks.add_after(self._after_tool_call)

    def _anthropic_backend(self, client: httpx.AsyncClient) -> ModelBackend:
        return AnthropicStreamingBackend(
            client,
            api_key=self.settings.anthropic_api_key,
            model=self.settings.anthropic_model,
            base_url=self.settings.anthropic_base_url,
            api_version=self.settings.anthropic_api_version,
            max_tokens=self.settings.max_tokens,
        )

    def _after_tool_call(
        self,
        ctx: ExecutionContext,
        tool,
        invocation_id: str,
        payload: dict[str, Any],
        result: ToolExecutionResult,
    ) -> None:
        self.store.append_tool_audit(
            user_id=ctx.user_id,
            request_id=ctx.request_id,
            tool_name=tool.name,
            invocation_id=invocation_id,
            success=result.success,
            message=result.message,
            resource_id=result.resource_id,
        )


container = CareCompanionApp()
app = FastAPI(title="CareCompanion Assistant Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(container.settings.allowed_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


_TRUSTED_USER_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:@-]{1,63}$")
_background_tasks: set[asyncio.Task] = set()


def _validated_trusted_user_id(x_user_id: str) -> str:
    candidate = x_user_id.strip()
    if not candidate or not _TRUSTED_USER_ID_RE.fullmatch(candidate):
        raise HTTPException(status_code=400, detail="Invalid X-User-Id")
    return candidate


def get_user_id(auth_header: str | None) -> str:
    raw = (auth_header or "").replace("Bearer", "", 1).strip()
    if not raw:
        if container.settings.allow_anon:
            return "demo-user"
        raise HTTPException(status_code=401, detail="Missing Authorization")
    # Bearer tokens are opaque here; identity claims are not verified.
    if len(raw) > 96:
        return f"token_{hashlib.sha256(raw.encode('utf-8')).hexdigest()[:24]}"
    return raw


def resolve_user_id(authorization: str | None, x_user_id: str | None) -> str:
    if x_user_id is not None:
        return _validated_trusted_user_id(x_user_id)
    return get_user_id(authorization)


def _build_ctx(
    *,
    user_id: str,
    family_id: str | None = None,
    patient_id: str | None = None,
    user_name: str | None = None,
    patient_name: str | None = None,
    timezone: str = "America/New_York",
) -> ExecutionContext:
    family = family_id or _stable_id("family", user_id)
    return ExecutionContext(
        user_id=user_id,
        family_id=family,
        patient_id=patient_id or _stable_id("patient", family),
        request_id=uuid.uuid4().hex,
        user_name=user_name or "",
        patient_name=patient_name or "",
        timezone=timezone,
    )


def _history_dicts(history: list[HistoryMessage]) -> list[dict[str, Any]]:
    return [item.model_dump() for item in history]


def _spawn(coro) -> asyncio.Task:
    task = asyncio.create_task(coro)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def _stream_conversation(
    ctx: ExecutionContext,
    strategy: ToolStrategy,
    context: ConversationContext,
    *,
    conversation_id: str | None = None,
) -> AsyncIterator[str]:
    queue: asyncio.Queue[ClientEvent | None] = asyncio.Queue()
    stream_open = True

    def sink(event: ClientEvent) -> None:
        if not stream_open:
            raise ConnectionError("Client stream closed")
        queue.put_nowait(event)

    publisher = ClientEventPublisher(sink)

    async def pump() -> None:
        try:
            if conversation_id:
                await publisher.publish(events.conversation(conversation_id))
            timeout = httpx.Timeout(container.settings.chat_timeout_seconds, connect=8.0)
            async with httpx.AsyncClient(timeout=timeout) as client:
                loop = ConversationLoop(
                    container.backend_factory(client),
                    strategy,
                    max_loops=container.settings.max_loops,
                    hooks=container.hooks,
                )
                await loop.run(ctx, context, publisher)
        except Exception:
            api_logger.exception("Conversation pump failed", request_id=ctx.request_id)
            await publisher.publish(events.error("Chat failed"))
        finally:
            queue.put_nowait(None)

    api_logger.info("Chat stream opened", request_id=ctx.request_id, strategy=strategy.name, user_id=ctx.user_id)
    task = _spawn(pump())
    try:
        while True:
            item = await queue.get()
            if item is None:
                break
            yield item.to_sse()
    finally:
        # The running turn finishes; the loop stops before its next round-trip.
        stream_open = False
        if not task.done():
            publisher.cancel_event.set()
            api_logger.info("Chat stream closed by client", request_id=ctx.request_id)


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "model": container.settings.anthropic_model,
        "max_loops": container.settings.max_loops,
        "backend_configured": bool(container.settings.anthropic_api_key),
    }


@app.get("/tools")
def list_tools(strategy: str = CHAT_STRATEGY) -> dict[str, Any]:
    if strategy == CHAT_STRATEGY:
        registry = build_chat_registry(container.store)
    elif strategy == ONBOARDING_STRATEGY:
        registry = build_onboarding_registry(OnboardingToolset())
    else:
        raise HTTPException(status_code=400, detail=f"Unknown strategy: {strategy}")
    return {"strategy": strategy, "tools": registry.declarations()}


@app.get("/tools/audit")
def tool_audit(
    limit: int = 50,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
) -> dict[str, Any]:
    user_id = resolve_user_id(authorization, x_user_id)
    return {"user_id": user_id, "entries": container.store.get_tool_audit(user_id, limit=limit)}


@app.post("/chat/stream")
async def chat_stream(
    payload: ChatRequest,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    ctx = _build_ctx(
        user_id=user_id,
        family_id=payload.family_id,
        patient_id=payload.patient_id,
        user_name=payload.user_name,
        patient_name=payload.patient_name,
        timezone=payload.timezone,
    )
    strategy = build_chat_strategy(ctx, container.store)
    context = ConversationContext.from_history(_history_dicts(payload.history), payload.message)
    conversation_id = payload.conversation_id or uuid.uuid4().hex
    return StreamingResponse(
        _stream_conversation(ctx, strategy, context, conversation_id=conversation_id),
        media_type="text/event-stream",
    )


@app.post("/onboarding/chat")
async def onboarding_chat(
    payload: OnboardingChatRequest,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    ctx = _build_ctx(user_id=user_id, timezone=payload.timezone)
    strategy = build_onboarding_strategy(OnboardingCollectedData.from_payload(payload.collected_data))
    context = ConversationContext.from_history(_history_dicts(payload.history), payload.message)
    return StreamingResponse(_stream_conversation(ctx, strategy, context), media_type="text/event-stream")
