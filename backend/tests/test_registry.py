from __future__ import annotations

import pytest

from carecompanion_agent_core import AssemblyError, ToolDefinition, ToolField, ToolRegistry


def _handler(ctx, payload):
    return {"success": True, "message": "ok"}


def test_register_resolve_and_alias():
    registry = ToolRegistry()
    registry.register(ToolDefinition("create_journal_entry", "Journal", _handler))
    registry.add_alias("journal", "create_journal_entry")

    assert registry.resolve("journal").name == "create_journal_entry"
    assert "journal" in registry
    assert registry.get("missing") is None
    assert registry.list_names() == ["create_journal_entry"]
    with pytest.raises(KeyError, match="Tool not found: missing"):
        registry.resolve("missing")


def test_duplicate_registration_is_rejected():
    registry = ToolRegistry()
    registry.register(ToolDefinition("ping", "", _handler))
    with pytest.raises(ValueError, match="already registered"):
        registry.register(ToolDefinition("ping", "", _handler))


def test_alias_to_unknown_tool_is_rejected():
    with pytest.raises(KeyError):
        ToolRegistry().add_alias("a", "b")


def test_declarations_render_json_schema():
    registry = ToolRegistry()
    registry.register(
        ToolDefinition(
            "create_care_task",
            "Create a task",
            _handler,
            {
                "title": ToolField("string", "Title", required=True),
                "priority": ToolField("string", enum=("high", "medium", "low")),
                "tags": ToolField("array", items="string"),
            },
        )
    )
    [declaration] = registry.declarations()

    assert declaration["name"] == "create_care_task"
    schema = declaration["input_schema"]
    assert schema["type"] == "object"
    assert schema["required"] == ["title"]
    assert schema["properties"]["title"] == {"type": "string", "description": "Title"}
    assert schema["properties"]["priority"]["enum"] == ["high", "medium", "low"]
    assert schema["properties"]["tags"] == {"type": "array", "items": {"type": "string"}}


def test_validate_input_accepts_optional_omissions_and_rejects_bad_types():
    tool = ToolDefinition(
        "collect_patient_info",
        "",
        _handler,
        {
            "firstName": ToolField("string", required=True),
            "age": ToolField("integer"),
            "active": ToolField("boolean"),
        },
    )
    tool.validate_input({"firstName": "Sue"})
    tool.validate_input({"firstName": "Sue", "age": 67, "active": True})

    with pytest.raises(AssemblyError, match="firstName"):
        tool.validate_input({"age": 67})
    with pytest.raises(AssemblyError, match="age"):
        tool.validate_input({"firstName": "Sue", "age": "sixty"})


def test_unsupported_field_type_is_rejected():
    with pytest.raises(ValueError):
        ToolField("date")


@pytest.mark.parametrize(
    "payload, field",
    [
        ({"firstName": "Sue", "active": "false"}, "active"),
        ({"firstName": "Sue", "age": "5"}, "age"),
        ({"firstName": "Sue", "age": True}, "age"),
        ({"firstName": 42}, "firstName"),
    ],
)
def test_validate_input_does_not_coerce_json_types(payload, field):
    tool = ToolDefinition(
        "collect_patient_info",
        "",
        _handler,
        {
            "firstName": ToolField("string", required=True),
            "age": ToolField("integer"),
            "active": ToolField("boolean"),
        },
    )
    with pytest.raises(AssemblyError, match=field):
        tool.validate_input(payload)
