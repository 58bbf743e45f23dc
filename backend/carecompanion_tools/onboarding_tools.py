from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from care_store.time_utils import utc_now
from carecompanion_agent_core.logger import tools_logger
from carecompanion_agent_core.models import ExecutionContext
from carecompanion_agent_core.registry import ToolDefinition, ToolField, ToolRegistry
from carecompanion_agent_core.strategy import ToolStrategy

from .schemas import CARE_TASK_FIELDS, FAMILY_MEMBER_FIELDS, GENDERS, MEDICATION_FIELDS

ONBOARDING_STRATEGY = "collect"

ONBOARDING_SYSTEM_PROMPT = """You are CeeCee, a warm, empathetic care companion helping a new caregiver get set up.
Ask only one question per message and keep replies to one or two sentences plus that question.

Work through these in order, one question at a time:
1. Their name (collect_user_name).
2. What brings them to CareCompanion.
3. Who they care for, with full first and last name, relationship and age (collect_patient_info).
4. Medications, one at a time, asking "Any others?" until they say no (collect_medication).
5. Regular appointments and care routines, the same way (collect_care_task).
6. Anyone else to invite to the care team, the same way (collect_family_member).

Estimate a date of birth from age as January 1st of the birth year. Convert times of day to 24-hour
HH:MM ("morning" is 08:00, "noon" 12:00, "evening" 18:00, "night" 21:00). Appointments have a fixed
time and place and use taskType "appointment"; routines and errands use "task".

Tool results list what has been collected so far. Check them and never add the same item twice.
Only after asking about medications, tasks and family members, offer to set up the dashboard.
When they agree, call ready_for_dashboard with a short summary and welcome message."""


def _casefold(value: Any) -> str:
    return str(value or "").strip().lower()


@dataclass
class OnboardingCollectedData:
    user_name: str | None = None
    patient: dict[str, Any] | None = None
    medications: list[dict[str, Any]] = field(default_factory=list)
    care_tasks: list[dict[str, Any]] = field(default_factory=list)
    family_members: list[dict[str, Any]] = field(default_factory=list)
    family_name: str | None = None
    conversation_summary: str | None = None
    dashboard_welcome: str | None = None
    ready_for_dashboard: bool = False

    @classmethod
    def from_payload(cls, payload: dict[str, Any] | None) -> "OnboardingCollectedData":
        payload = payload or {}
        patient = payload.get("patient")
        return cls(
            user_name=payload.get("userName"),
            patient=dict(patient) if isinstance(patient, dict) else None,
            medications=[dict(item) for item in payload.get("medications") or [] if isinstance(item, dict)],
            care_tasks=[dict(item) for item in payload.get("careTasks") or [] if isinstance(item, dict)],
            family_members=[dict(item) for item in payload.get("familyMembers") or [] if isinstance(item, dict)],
            family_name=payload.get("familyName"),
            conversation_summary=payload.get("conversationSummary"),
            dashboard_welcome=payload.get("dashboardWelcome"),
            ready_for_dashboard=bool(payload.get("readyForDashboard", False)),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "userName": self.user_name,
            "patient": dict(self.patient) if self.patient else None,
            "medications": [dict(item) for item in self.medications],
            "careTasks": [dict(item) for item in self.care_tasks],
            "familyMembers": [dict(item) for item in self.family_members],
            "familyName": self.family_name,
            "conversationSummary": self.conversation_summary,
            "dashboardWelcome": self.dashboard_welcome,
            "readyForDashboard": self.ready_for_dashboard,
        }

    def collected_so_far(self) -> dict[str, Any]:
        patient = None
        if self.patient:
            patient = f"{self.patient.get('firstName', '')} {self.patient.get('lastName', '')}".strip()
        return {
            "patient": patient,
            "medications": [item["name"] for item in self.medications if item.get("name")],
            "careTasks": [item["title"] for item in self.care_tasks if item.get("title")],
            "familyMembers": [item["email"] for item in self.family_members if item.get("email")],
        }

    def has_medication(self, name: str) -> bool:
        return any(_casefold(item.get("name")) == _casefold(name) for item in self.medications)

    def has_care_task(self, title: str) -> bool:
        return any(_casefold(item.get("title")) == _casefold(title) for item in self.care_tasks)

    def has_family_member(self, email: str) -> bool:
        return any(_casefold(item.get("email")) == _casefold(email) for item in self.family_members)


class OnboardingToolset:
    """Onboarding handlers. Nothing is persisted; the caller confirms the collected data later."""

    def __init__(self, data: OnboardingCollectedData | None = None) -> None:
        self.data = data or OnboardingCollectedData()

    def _result(self, message: str) -> dict[str, Any]:
        return {"success": True, "message": message, "collectedSoFar": self.data.collected_so_far()}

    async def collect_user_name(self, ctx: ExecutionContext, payload: dict[str, Any]) -> dict[str, Any]:
        self.data.user_name = payload["name"]
        return self._result(f"Noted name: {payload['name']}")

    async def collect_patient_info(self, ctx: ExecutionContext, payload: dict[str, Any]) -> dict[str, Any]:
        date_of_birth = payload.get("dateOfBirth")
        if not date_of_birth and payload.get("age"):
            date_of_birth = f"{utc_now().year - int(payload['age'])}-01-01"

        last_name = payload.get("lastName") or ""
        self.data.patient = {
            "firstName": payload["firstName"],
            "lastName": last_name,
            "dateOfBirth": date_of_birth or "",
            "gender": payload.get("gender") or "other",
            "relationship": payload["relationship"],
        }
        if last_name:
            self.data.family_name = f"{last_name} Family"
        elif self.data.user_name:
            self.data.family_name = f"{self.data.user_name}'s Family"
        return self._result(f"Noted patient: {payload['firstName']} {last_name}".strip())

    async def collect_medication(self, ctx: ExecutionContext, payload: dict[str, Any]) -> dict[str, Any]:
        name = payload["name"]
        if self.data.has_medication(name):
            tools_logger.info("Duplicate medication ignored", name=name, request_id=ctx.request_id)
            return self._result(f"{name} is already on the list")
        self.data.medications.append(
            {
                "name": name,
                "dosage": payload.get("dosage") or "",
                "frequency": payload.get("frequency") or "as directed",
                "scheduleTimes": list(payload.get("scheduleTimes") or ["08:00"]),
                "instructions": payload.get("instructions"),
            }
        )
        return self._result(f"Collected medication: {name}")

    async def collect_care_task(self, ctx: ExecutionContext, payload: dict[str, Any]) -> dict[str, Any]:
        title = payload["title"]
        if self.data.has_care_task(title):
            tools_logger.info("Duplicate care task ignored", title=title, request_id=ctx.request_id)
            return self._result(f"{title} is already on the list")
        self.data.care_tasks.append(
            {
                "title": title,
                "description": payload.get("description"),
                "taskType": payload.get("taskType"),
                "dueDate": payload.get("dueDate"),
                "scheduledTime": payload.get("scheduledTime"),
                "recurrenceType": payload.get("recurrenceType"),
                "priority": payload.get("priority") or "medium",
            }
        )
        return self._result(f"Collected care task: {title}")

    async def collect_family_member(self, ctx: ExecutionContext, payload: dict[str, Any]) -> dict[str, Any]:
        email = payload["email"]
        if self.data.has_family_member(email):
            tools_logger.info("Duplicate family member ignored", request_id=ctx.request_id)
            return self._result(f"{email} is already on the list")
        self.data.family_members.append(
            {
                "email": email,
                "name": payload.get("name"),
                "role": payload["role"],
                "relationship": payload["relationship"],
            }
        )
        return self._result(f"Collected family member: {payload.get('name') or email}")

    async def ready_for_dashboard(self, ctx: ExecutionContext, payload: dict[str, Any]) -> dict[str, Any]:
        self.data.conversation_summary = payload["conversationSummary"]
        self.data.dashboard_welcome = payload["dashboardWelcome"]
        self.data.ready_for_dashboard = True
        return self._result("Ready for dashboard")


def register_tools(registry: ToolRegistry, toolset: OnboardingToolset) -> None:
    registry.register(
        ToolDefinition(
            "collect_user_name",
            "Collect the caregiver's name as soon as they introduce themselves.",
            toolset.collect_user_name,
            {"name": ToolField("string", "The caregiver's first name", required=True)},
        )
    )
    registry.register(
        ToolDefinition(
            "collect_patient_info",
            "Collect details about the person being cared for. May be called again to update.",
            toolset.collect_patient_info,
            {
                "firstName": ToolField("string", "Patient's first name", required=True),
                "lastName": ToolField("string", "Patient's last name", required=True),
                "dateOfBirth": ToolField("string", "Date of birth in YYYY-MM-DD format"),
                "age": ToolField("integer", "Patient's age when the date of birth is unknown"),
                "gender": ToolField("string", "Patient's gender", enum=GENDERS),
                "relationship": ToolField(
                    "string",
                    'Who the patient is to the caregiver (e.g., "mother" when they say "my mom")',
                    required=True,
                ),
            },
        )
    )
    registry.register(
        ToolDefinition(
            "collect_medication",
            "Add a medication to the patient's list each time the user mentions one.",
            toolset.collect_medication,
            MEDICATION_FIELDS,
        )
    )
    registry.register(
        ToolDefinition(
            "collect_care_task",
            "Add a recurring care task or appointment such as doctor visits, therapy or daily routines.",
            toolset.collect_care_task,
            CARE_TASK_FIELDS,
        )
    )
    registry.register(
        ToolDefinition(
            "collect_family_member",
            "Add someone to invite to the care team.",
            toolset.collect_family_member,
            FAMILY_MEMBER_FIELDS,
        )
    )
    registry.register(
        ToolDefinition(
            "ready_for_dashboard",
            "Finish onboarding once medications, tasks and family members have all been asked about.",
            toolset.ready_for_dashboard,
            {
                "conversationSummary": ToolField("string", "Brief summary of the conversation for the journal", required=True),
                "dashboardWelcome": ToolField("string", "Short welcome shown when the dashboard opens", required=True),
            },
        )
    )


def build_onboarding_registry(toolset: OnboardingToolset) -> ToolRegistry:
    registry = ToolRegistry()
    register_tools(registry, toolset)
    return registry


def build_onboarding_strategy(data: OnboardingCollectedData | None = None) -> ToolStrategy:
    toolset = OnboardingToolset(data)
    registry = build_onboarding_registry(toolset)
    return ToolStrategy(
        ONBOARDING_STRATEGY,
        registry,
        ONBOARDING_SYSTEM_PROMPT,
        final_payload=lambda: {"collectedData": toolset.data.to_payload()},
    )
