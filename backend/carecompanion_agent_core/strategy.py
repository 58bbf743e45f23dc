from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from .registry import ToolRegistry


@dataclass
class ToolStrategy:
    """A handler set plus the prompt that tells the model how to use it."""

    name: str
    registry: ToolRegistry
    system_prompt: str
    final_payload: Callable[[], dict[str, Any]] | None = None

    def done_payload(self) -> dict[str, Any]:
        if self.final_payload is None:
            return {}
        return dict(self.final_payload())
