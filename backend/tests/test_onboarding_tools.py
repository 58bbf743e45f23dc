from __future__ import annotations

import asyncio
import json

from care_store.time_utils import utc_now
from carecompanion_agent_core import ClientEventPublisher, ConversationContext, ConversationLoop
from carecompanion_tools import ONBOARDING_STRATEGY, OnboardingCollectedData, OnboardingToolset, build_onboarding_strategy
from fakes import RecordingSink, ScriptedBackend, make_ctx, text_block, tool_block


def _call(coro):
    return asyncio.run(coro)


def test_patient_info_estimates_dob_and_family_name():
    toolset = OnboardingToolset()
    ctx = make_ctx()
    _call(toolset.collect_user_name(ctx, {"name": "Sarah"}))
    result = _call(
        toolset.collect_patient_info(
            ctx, {"firstName": "Sue", "lastName": "Johnson", "age": 67, "relationship": "mother"}
        )
    )

    patient = toolset.data.patient
    assert patient["dateOfBirth"] == f"{utc_now().year - 67}-01-01"
    assert patient["gender"] == "other"
    assert toolset.data.family_name == "Johnson Family"
    assert result["collectedSoFar"]["patient"] == "Sue Johnson"


def test_family_name_falls_back_to_caregiver():
    toolset = OnboardingToolset(OnboardingCollectedData(user_name="Sarah"))
    _call(toolset.collect_patient_info(make_ctx(), {"firstName": "Sue", "lastName": "", "relationship": "mother"}))
    assert toolset.data.family_name == "Sarah's Family"


def test_duplicates_are_ignored_case_insensitively():
    toolset = OnboardingToolset()
    ctx = make_ctx()
    med = {"name": "Aricept", "dosage": "10mg", "frequency": "daily", "scheduleTimes": ["08:00"]}
    _call(toolset.collect_medication(ctx, med))
    _call(toolset.collect_medication(ctx, {**med, "name": "ARICEPT"}))
    _call(toolset.collect_care_task(ctx, {"title": "Daily walk"}))
    _call(toolset.collect_care_task(ctx, {"title": "daily walk"}))
    member = {"email": "tom@example.com", "role": "caregiver", "relationship": "son"}
    _call(toolset.collect_family_member(ctx, member))
    result = _call(toolset.collect_family_member(ctx, {**member, "email": "Tom@Example.com"}))

    assert result["success"] is True
    assert result["collectedSoFar"] == {
        "patient": None,
        "medications": ["Aricept"],
        "careTasks": ["Daily walk"],
        "familyMembers": ["tom@example.com"],
    }
    assert toolset.data.care_tasks[0]["priority"] == "medium"


def test_ready_for_dashboard_records_summary():
    toolset = OnboardingToolset()
    _call(
        toolset.ready_for_dashboard(
            make_ctx(), {"conversationSummary": "Caring for mom with early dementia.", "dashboardWelcome": "Welcome!"}
        )
    )
    payload = toolset.data.to_payload()
    assert payload["readyForDashboard"] is True
    assert payload["conversationSummary"] == "Caring for mom with early dementia."
    assert payload["dashboardWelcome"] == "Welcome!"


def test_collected_data_round_trips_through_payload():
    data = OnboardingCollectedData.from_payload(
        {"userName": "Sarah", "medications": [{"name": "Aricept"}], "careTasks": [], "familyMembers": []}
    )
    assert data.user_name == "Sarah"
    assert data.has_medication("aricept")
    assert OnboardingCollectedData.from_payload(data.to_payload()) == data


def test_onboarding_conversation_returns_collected_data_in_done():
    backend = ScriptedBackend(
        [
            text_block(0, "Nice to meet you! ")
            + tool_block(1, "t1", "collect_user_name", {"name": "Sarah"})
            + tool_block(2, "t2", "collect_medication", {"name": "Aricept", "dosage": "10mg", "frequency": "daily", "scheduleTimes": ["08:00"]}),
            text_block(0, "What brings you to CareCompanion?"),
        ]
    )
    strategy = build_onboarding_strategy()
    sink = RecordingSink()

    async def go():
        loop = ConversationLoop(backend, strategy)
        return await loop.run(make_ctx(), ConversationContext.from_history([], "Hi, I'm Sarah"), ClientEventPublisher(sink))

    asyncio.run(go())

    assert strategy.name == ONBOARDING_STRATEGY
    done = sink.of_type("done")[0]
    assert done["collectedData"]["userName"] == "Sarah"
    assert [med["name"] for med in done["collectedData"]["medications"]] == ["Aricept"]
    tool_result_block = backend.requests[1].messages[-1]["content"][1]
    assert json.loads(tool_result_block["content"])["collectedSoFar"]["medications"] == ["Aricept"]


def test_seeded_data_is_visible_to_handlers():
    strategy = build_onboarding_strategy(OnboardingCollectedData(medications=[{"name": "Aricept"}]))
    handler = strategy.registry.resolve("collect_medication").handler
    result = _call(handler(make_ctx(), {"name": "aricept", "dosage": "5mg", "frequency": "daily", "scheduleTimes": []}))
    assert result["message"] == "aricept is already on the list"
    assert strategy.done_payload()["collectedData"]["medications"] == [{"name": "Aricept"}]


def test_partial_seeded_items_do_not_break_collection():
    toolset = OnboardingToolset(
        OnboardingCollectedData.from_payload(
            {"medications": [{"dosage": "5mg"}], "careTasks": [{"priority": "high"}], "familyMembers": [{}]}
        )
    )
    result = _call(toolset.collect_user_name(make_ctx(), {"name": "Sarah"}))

    assert result["success"] is True
    assert result["collectedSoFar"] == {"patient": None, "medications": [], "careTasks": [], "familyMembers": []}
    assert toolset.data.user_name == "Sarah"
