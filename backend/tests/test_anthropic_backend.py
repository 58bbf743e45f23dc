from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from carecompanion_agent_core import AnthropicStreamingBackend, BackendError, BackendRequest, DecodeError


def _sse(*payloads: dict) -> bytes:
    chunks = []
    for payload in payloads:
        chunks.append(f"event: {payload['type']}\ndata: {json.dumps(payload)}\n\n")
    return "".join(chunks).encode("utf-8")


ANTHROPIC_STREAM = _sse(
    {"type": "message_start", "message": {"id": "msg_1", "content": []}},
    {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
    {"type": "ping"},
    {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Adding it now."}},
    {"type": "content_block_stop", "index": 0},
    {"type": "content_block_start", "index": 1, "content_block": {"type": "thinking", "thinking": ""}},
    {"type": "content_block_delta", "index": 1, "delta": {"type": "thinking_delta", "thinking": "hmm"}},
    {"type": "content_block_stop", "index": 1},
    {
        "type": "content_block_start",
        "index": 2,
        "content_block": {"type": "tool_use", "id": "toolu_9", "name": "create_journal_entry", "input": {}},
    },
    {"type": "content_block_delta", "index": 2, "delta": {"type": "input_json_delta", "partial_json": '{"content": '}},
    {"type": "content_block_delta", "index": 2, "delta": {"type": "input_json_delta", "partial_json": '"ok"}'}},
    {"type": "content_block_stop", "index": 2},
    {"type": "message_delta", "delta": {"stop_reason": "tool_use"}},
    {"type": "message_stop"},
)


def _collect(handler, *, api_key: str | None = "sk-test", request: BackendRequest | None = None):
    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            backend = AnthropicStreamingBackend(client, api_key=api_key, model="claude-haiku-4-5", max_tokens=256)
            return [event async for event in backend.stream(request or BackendRequest(system_prompt="sys"))]

    return asyncio.run(go())


def test_stream_is_translated_to_abstract_events():
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, content=ANTHROPIC_STREAM, headers={"content-type": "text/event-stream"})

    tools = [{"name": "create_journal_entry", "description": "", "input_schema": {"type": "object"}}]
    messages = [{"role": "user", "content": [{"type": "text", "text": "hi"}]}]
    events = _collect(handler, request=BackendRequest(system_prompt="sys", tools=tools, messages=messages))

    assert events == [
        {"type": "block_start", "index": 0, "kind": "text"},
        {"type": "block_delta", "index": 0, "text": "Adding it now."},
        {"type": "block_stop", "index": 0},
        {"type": "block_start", "index": 2, "kind": "tool_use", "id": "toolu_9", "name": "create_journal_entry"},
        {"type": "block_delta", "index": 2, "json_fragment": '{"content": '},
        {"type": "block_delta", "index": 2, "json_fragment": '"ok"}'},
        {"type": "block_stop", "index": 2},
    ]
    assert seen["url"] == "https://api.anthropic.com/v1/messages"
    assert seen["headers"]["x-api-key"] == "sk-test"
    assert seen["headers"]["anthropic-version"] == "2023-06-01"
    assert seen["body"]["stream"] is True
    assert seen["body"]["model"] == "claude-haiku-4-5"
    assert seen["body"]["max_tokens"] == 256
    assert seen["body"]["system"] == "sys"
    assert seen["body"]["tools"] == tools
    assert seen["body"]["messages"] == messages


def test_tools_are_omitted_when_none_declared():
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, content=b"")

    assert _collect(handler) == []
    assert "tools" not in seen["body"]


def test_http_error_status_raises_backend_error_with_provider_message():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"type": "error", "error": {"type": "authentication_error", "message": "invalid x-api-key"}})

    with pytest.raises(BackendError, match="invalid x-api-key") as excinfo:
        _collect(handler)
    assert excinfo.value.status_code == 401


def test_stream_error_event_is_passed_through():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=_sse({"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}}))

    assert _collect(handler) == [{"type": "error", "message": "Overloaded"}]


def test_malformed_data_line_raises_decode_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"event: content_block_delta\ndata: {not json\n\n")

    with pytest.raises(DecodeError):
        _collect(handler)


def test_transport_failure_raises_backend_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(BackendError, match="request failed"):
        _collect(handler)


def test_missing_api_key_fails_before_any_request():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, content=b"")

    with pytest.raises(BackendError, match="ANTHROPIC_API_KEY"):
        _collect(handler, api_key=None)
    assert calls == []
