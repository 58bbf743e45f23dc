from __future__ import annotations

from dataclasses import dataclass, field
from functools import cached_property
from typing import Any, Awaitable, Callable, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError, create_model

from .errors import AssemblyError
from .models import ExecutionContext

ToolHandler = Callable[[ExecutionContext, dict[str, Any]], Union[Awaitable[dict[str, Any]], dict[str, Any]]]

_SCALAR_TYPES: dict[str, Any] = {
    "string": str,
    "number": float,
    "integer": int,
    "boolean": bool,
    "object": dict[str, Any],
}


@dataclass(frozen=True)
class ToolField:
    type: str
    description: str = ""
    required: bool = False
    enum: tuple[str, ...] | None = None
    items: str | None = None

    def __post_init__(self) -> None:
        if self.type not in _SCALAR_TYPES and self.type != "array":
            raise ValueError(f"Unsupported field type: {self.type}")

    def annotation(self) -> Any:
        if self.enum:
            return Literal[tuple(self.enum)]
        if self.type == "array":
            return list[_SCALAR_TYPES.get(self.items or "", Any)]
        return _SCALAR_TYPES[self.type]

    def json_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": self.type}
        if self.description:
            schema["description"] = self.description
        if self.enum:
            schema["enum"] = list(self.enum)
        if self.type == "array":
            schema["items"] = {"type": self.items} if self.items else {}
        return schema


@dataclass
class ToolDefinition:
    name: str
    description: str
    handler: ToolHandler
    fields: dict[str, ToolField] = field(default_factory=dict)

    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {key: spec.json_schema() for key, spec in self.fields.items()},
            "required": [key for key, spec in self.fields.items() if spec.required],
        }

    def declaration(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "input_schema": self.input_schema()}

    @cached_property
    def input_model(self) -> type[BaseModel]:
        model_fields: dict[str, Any] = {}
        for key, spec in self.fields.items():
            annotation = spec.annotation()
            if spec.required:
                model_fields[key] = (annotation, ...)
            else:
                model_fields[key] = (Optional[annotation], None)
        model_name = "".join(part.capitalize() for part in self.name.split("_")) + "Input"
        return create_model(model_name, __config__=ConfigDict(extra="allow", strict=True), **model_fields)

    def validate_input(self, payload: dict[str, Any]) -> None:
        try:
            self.input_model.model_validate(payload)
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(part) for part in err['loc']) or 'input'}: {err['msg']}" for err in exc.errors()
            )
            raise AssemblyError(f"Invalid input for {self.name}: {problems}") from exc


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: dict[str, ToolDefinition] = {}
        self._aliases: dict[str, str] = {}

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None

    def __len__(self) -> int:
        return len(self._tools)

    def register(self, tool: ToolDefinition) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def add_alias(self, alias: str, target: str) -> None:
        if target not in self._tools:
            raise KeyError(f"Tool not found: {target}")
        self._aliases[alias] = target

    def get(self, name: str) -> ToolDefinition | None:
        canonical = self._aliases.get(name, name)
        return self._tools.get(canonical)

    def resolve(self, name: str) -> ToolDefinition:
        tool = self.get(name)
        if not tool:
            raise KeyError(f"Tool not found: {name}")
        return tool

    def list_names(self) -> list[str]:
        return sorted(self._tools.keys())

    def declarations(self) -> list[dict[str, Any]]:
        return [tool.declaration() for tool in self._tools.values()]
