from __future__ import annotations

from fakes import ScriptedBackend, text_block, tool_block
from sse_utils import parse_sse_events, parse_sse_records

EVENT_TYPES = {"delta", "tool_use", "tool_result", "done", "error", "status", "conversation"}


def _use_backend(backend_module, backend):
    backend_module.container.backend_factory = lambda client: backend
    return backend


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["max_loops"] == 5
    assert body["backend_configured"] is False


def test_chat_stream_requires_identity(client):
    response = client.post("/chat/stream", json={"message": "hi"})
    assert response.status_code == 401


def test_chat_stream_rejects_malformed_trusted_user_id(client):
    response = client.post("/chat/stream", headers={"X-User-Id": "bad id!"}, json={"message": "hi"})
    assert response.status_code == 400


def test_chat_stream_rejects_empty_message(client, auth_headers):
    response = client.post("/chat/stream", headers=auth_headers("user-a"), json={"message": ""})
    assert response.status_code == 422


def test_chat_stream_executes_tools_and_streams_sse(client, auth_headers, backend_module):
    backend = _use_backend(
        backend_module,
        ScriptedBackend(
            [
                text_block(0, "Noting that. ")
                + tool_block(1, "toolu_1", "create_journal_entry", {"content": "Mom ate a full breakfast", "sentiment": "positive"}),
                text_block(0, "I added it to the journal."),
            ]
        ),
    )
    response = client.post(
        "/chat/stream",
        headers=auth_headers("user-a"),
        json={
            "message": "Mom ate a full breakfast today!",
            "family_id": "family-a",
            "patient_id": "patient-a",
            "conversation_id": "conv-1",
            "history": [{"role": "assistant", "content": "Good morning!"}],
        },
    )
    assert response.status_code == 200
    assert "text/event-stream" in response.headers.get("content-type", "")

    events = parse_sse_events(response.text)
    records = parse_sse_records(response.text)
    assert [event["event"] for event in events] == [record["type"] for record in records]
    assert {record["type"] for record in records} <= EVENT_TYPES

    assert records[0] == {"type": "conversation", "conversationId": "conv-1"}
    assert records[-1]["type"] == "done"
    assert records[-1]["fullResponse"] == "Noting that. I added it to the journal."
    tool_result = next(record for record in records if record["type"] == "tool_result")
    assert tool_result["toolName"] == "create_journal_entry"
    assert tool_result["result"]["success"] is True

    [entry] = backend_module.container.store.list_journal_entries("family-a")
    assert entry["content"] == "Mom ate a full breakfast"
    assert entry["id"] == tool_result["result"]["id"]

    first_request = backend.requests[0]
    assert first_request.messages[0]["role"] == "assistant"
    assert "create_medication" in [tool["name"] for tool in first_request.tools]

    audit = client.get("/tools/audit", headers=auth_headers("user-a")).json()
    assert [(item["tool_name"], item["invocation_id"], item["success"]) for item in audit["entries"]] == [
        ("create_journal_entry", "toolu_1", True)
    ]


def test_chat_stream_reports_missing_api_key_as_error(client, auth_headers):
    response = client.post("/chat/stream", headers=auth_headers("user-a"), json={"message": "hello"})
    records = parse_sse_records(response.text)

    assert records[-1] == {"type": "error", "message": "ANTHROPIC_API_KEY is not configured"}
    assert "done" not in [record["type"] for record in records]


def test_chat_stream_decode_error_is_single_error(client, auth_headers, backend_module):
    _use_backend(backend_module, ScriptedBackend([[{"type": "block_stop", "index": 4}]]))
    response = client.post("/chat/stream", headers=auth_headers("user-a"), json={"message": "hello"})
    types = [record["type"] for record in parse_sse_records(response.text)]

    assert types.count("error") == 1
    assert types[-1] == "error"
    assert "done" not in types


def test_onboarding_chat_returns_collected_data(client, auth_headers, backend_module):
    _use_backend(
        backend_module,
        ScriptedBackend(
            [
                tool_block(0, "t1", "collect_patient_info", {"firstName": "Sue", "lastName": "Johnson", "relationship": "mother"}),
                text_block(0, "How old is Sue?"),
            ]
        ),
    )
    response = client.post(
        "/onboarding/chat",
        headers=auth_headers("user-a"),
        json={"message": "I care for my mom Sue Johnson", "collected_data": {"userName": "Sarah"}},
    )
    records = parse_sse_records(response.text)
    done = records[-1]

    assert done["type"] == "done"
    assert done["collectedData"]["userName"] == "Sarah"
    assert done["collectedData"]["patient"]["firstName"] == "Sue"
    assert done["collectedData"]["familyName"] == "Johnson Family"
    assert "conversation" not in [record["type"] for record in records]


def test_tools_endpoint_lists_both_strategies(client):
    chat = client.get("/tools").json()
    collect = client.get("/tools", params={"strategy": "collect"}).json()

    assert chat["strategy"] == "chat"
    assert {tool["name"] for tool in chat["tools"]} >= {"create_journal_entry", "add_family_member"}
    assert [tool["name"] for tool in collect["tools"]][0] == "collect_user_name"
    assert all(tool["input_schema"]["type"] == "object" for tool in collect["tools"])
    assert client.get("/tools", params={"strategy": "nope"}).status_code == 400
