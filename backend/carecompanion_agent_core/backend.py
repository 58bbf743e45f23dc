"""Model backend seam and the Anthropic messages-stream adapter."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Protocol

import httpx

from .errors import BackendError, DecodeError
from .logger import engine_logger


@dataclass(frozen=True)
class BackendRequest:
    system_prompt: str
    tools: list[dict[str, Any]] = field(default_factory=list)
    messages: list[dict[str, Any]] = field(default_factory=list)


class ModelBackend(Protocol):
    def stream(self, request: BackendRequest) -> AsyncIterator[dict[str, Any]]:
        """Yield abstract backend events for one streamed model response."""
        ...


def _provider_error_message(response: httpx.Response) -> str:
    message = response.text.strip()
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict):
            msg = err.get("message")
            if isinstance(msg, str) and msg.strip():
                return msg.strip()
        msg = payload.get("message")
        if isinstance(msg, str) and msg.strip():
            return msg.strip()
    return message or f"HTTP {response.status_code}"


class AnthropicEventTranslator:
    """Maps Anthropic stream payloads onto block_start/block_delta/block_stop.

    Content blocks other than text and tool_use (e.g. thinking) are skipped
    together with their deltas.
    """

    def __init__(self) -> None:
        self._skipped: set[int] = set()

    def translate(self, payload: dict[str, Any]) -> dict[str, Any] | None:
        kind = payload.get("type")
        index = payload.get("index")

        if kind == "content_block_start":
            block = payload.get("content_block") or {}
            block_type = block.get("type")
            if block_type == "text":
                return {"type": "block_start", "index": index, "kind": "text"}
            if block_type == "tool_use":
                return {
                    "type": "block_start",
                    "index": index,
                    "kind": "tool_use",
                    "id": block.get("id"),
                    "name": block.get("name"),
                }
            if isinstance(index, int):
                self._skipped.add(index)
            return None

        if kind == "content_block_delta":
            if index in self._skipped:
                return None
            delta = payload.get("delta") or {}
            if delta.get("type") == "text_delta":
                return {"type": "block_delta", "index": index, "text": delta.get("text") or ""}
            if delta.get("type") == "input_json_delta":
                return {"type": "block_delta", "index": index, "json_fragment": delta.get("partial_json") or ""}
            return None

        if kind == "content_block_stop":
            if index in self._skipped:
                return None
            return {"type": "block_stop", "index": index}

        if kind == "error":
            err = payload.get("error") or {}
            return {"type": "error", "message": err.get("message") or "Model backend stream error"}

        return None


class AnthropicStreamingBackend:
    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_key: str | None,
        model: str,
        base_url: str = "https://api.anthropic.com/v1",
        api_version: str = "2023-06-01",
        max_tokens: int = 2048,
    ) -> None:
        self.client = client
        self.api_key = (api_key or "").strip()
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version
        self.max_tokens = max_tokens

    def _request_body(self, request: BackendRequest) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": request.system_prompt,
            "messages": request.messages,
            "stream": True,
        }
        if request.tools:
            body["tools"] = request.tools
        return body

    async def stream(self, request: BackendRequest) -> AsyncIterator[dict[str, Any]]:
        if not self.api_key:
            raise BackendError("ANTHROPIC_API_KEY is not configured")

        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": self.api_version,
            "Content-Type": "application/json",
        }
        translator = AnthropicEventTranslator()
        try:
            async with self.client.stream(
                "POST",
                f"{self.base_url}/messages",
                headers=headers,
                json=self._request_body(request),
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    engine_logger.warning("Model backend rejected request", status_code=response.status_code)
                    raise BackendError(_provider_error_message(response), status_code=response.status_code)
                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:") :].strip()
                    if not data:
                        continue
                    try:
                        payload = json.loads(data)
                    except json.JSONDecodeError as exc:
                        raise DecodeError(f"Malformed stream payload: {exc.msg}") from exc
                    if not isinstance(payload, dict):
                        raise DecodeError("Stream payload is not a JSON object")
                    event = translator.translate(payload)
                    if event is not None:
                        yield event
        except httpx.TimeoutException as exc:
            raise BackendError("Model backend timed out") from exc
        except httpx.HTTPError as exc:
            raise BackendError(f"Model backend request failed: {exc}") from exc
