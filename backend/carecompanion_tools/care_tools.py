from __future__ import annotations

from datetime import date, datetime, time
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from care_store import CareStore, CareStoreError
from care_store.time_utils import to_iso
from carecompanion_agent_core.logger import tools_logger
from carecompanion_agent_core.models import ExecutionContext
from carecompanion_agent_core.registry import ToolDefinition, ToolField, ToolRegistry
from carecompanion_agent_core.strategy import ToolStrategy

from .schemas import (
    CARE_TASK_FIELDS,
    FAMILY_MEMBER_FIELDS,
    JOURNAL_FIELDS,
    MEDICATION_FIELDS,
    recurrence_to_rrule,
)

CHAT_STRATEGY = "chat"

CHAT_SYSTEM_PROMPT = """You are CeeCee, a warm and practical care companion inside CareCompanion.
You help a family caregiver keep the care plan current while you talk with them.

Use the tools whenever the caregiver shares something that belongs in the record:
- notes, observations and updates go in the journal (create_journal_entry);
- new prescriptions go through create_medication, changes or stops through update_medication;
- appointments, errands and routines go through create_care_task, finished ones through complete_care_task;
- people who should join the care team go through add_family_member.

Only use ids that appear in the context below. Keep replies short and kind, and confirm what you recorded."""


def _zone(tz_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def combine_due_at(date_str: str | None, time_str: str | None, tz_name: str) -> str:
    tz = _zone(tz_name)
    try:
        day = date.fromisoformat(date_str) if date_str else datetime.now(tz).date()
    except ValueError as exc:
        raise ValueError(f"Invalid due date: {date_str}") from exc
    at = time(0, 0)
    if time_str:
        try:
            hours, minutes = (int(part) for part in time_str.split(":")[:2])
            at = time(hours, minutes)
        except ValueError as exc:
            raise ValueError(f"Invalid scheduled time: {time_str}") from exc
    return to_iso(datetime.combine(day, at, tzinfo=tz))


def build_chat_system_prompt(ctx: ExecutionContext, store: CareStore) -> str:
    today = datetime.now(_zone(ctx.timezone)).date().isoformat()
    lines = [CHAT_SYSTEM_PROMPT, "", f"Today is {today} ({ctx.timezone})."]
    if ctx.user_name:
        lines.append(f"You are talking with {ctx.user_name}.")
    if ctx.patient_name:
        lines.append(f"The patient is {ctx.patient_name}.")

    medications = store.list_medications(ctx.patient_id)
    if medications:
        lines.append("Active medications:")
        for med in medications:
            times = ", ".join(med["schedule_times"]) or "unscheduled"
            lines.append(f"- [{med['id']}] {med['name']} {med['dosage']}, {med['frequency']} ({times})")

    tasks = store.list_care_tasks(ctx.family_id, status="pending")
    if tasks:
        lines.append("Pending care tasks:")
        for task in tasks:
            due = f" due {task['due_at']}" if task.get("due_at") else ""
            lines.append(f"- [{task['id']}] {task['title']}{due}")
    return "\n".join(lines)


class CareToolset:
    """Chat handlers. Every call writes to the care store immediately."""

    def __init__(self, store: CareStore) -> None:
        self.store = store

    def _log_activity(self, ctx: ExecutionContext, content: str, sentiment: str = "neutral") -> None:
        self.store.create_journal_entry(
            family_id=ctx.family_id,
            patient_id=ctx.patient_id,
            author_id=ctx.user_id,
            content=content,
            sentiment=sentiment,
        )

    async def create_journal_entry(self, ctx: ExecutionContext, payload: dict[str, Any]) -> dict[str, Any]:
        entry = self.store.create_journal_entry(
            family_id=ctx.family_id,
            patient_id=ctx.patient_id,
            author_id=ctx.user_id,
            content=payload["content"],
            sentiment=payload.get("sentiment") or "neutral",
        )
        return {"success": True, "message": "Created journal entry", "id": entry["id"]}

    async def create_medication(self, ctx: ExecutionContext, payload: dict[str, Any]) -> dict[str, Any]:
        name = payload["name"]
        existing = self.store.find_active_medication(ctx.patient_id, name)
        if existing:
            return {
                "success": False,
                "message": f'Medication "{name}" already exists. Use update_medication to modify it.',
                "id": existing["id"],
            }

        medication = self.store.create_medication(
            patient_id=ctx.patient_id,
            name=name,
            dosage=payload["dosage"],
            frequency=payload["frequency"],
            schedule_times=payload["scheduleTimes"],
            instructions=payload.get("instructions"),
            start_date=payload.get("startDate"),
        )
        self._log_activity(ctx, f"Added medication: {name} ({payload['dosage']}, {payload['frequency']})")
        return {
            "success": True,
            "message": f"Added medication: {name} {payload['dosage']}",
            "id": medication["id"],
        }

    async def update_medication(self, ctx: ExecutionContext, payload: dict[str, Any]) -> dict[str, Any]:
        medication = self.store.get_medication(payload["medicationId"], ctx.patient_id)
        if not medication:
            return {"success": False, "message": "Medication not found"}

        changes: dict[str, Any] = {}
        if payload.get("isActive") is not None:
            changes["is_active"] = payload["isActive"]
        if payload.get("dosage"):
            changes["dosage"] = payload["dosage"]
        if payload.get("frequency"):
            changes["frequency"] = payload["frequency"]
        if payload.get("scheduleTimes"):
            changes["schedule_times"] = payload["scheduleTimes"]
        if payload.get("instructions"):
            changes["instructions"] = payload["instructions"]

        try:
            self.store.update_medication(medication["id"], ctx.patient_id, changes)
        except CareStoreError:
            return {"success": False, "message": "Medication not found"}

        action = "Stopped" if payload.get("isActive") is False else "Updated"
        self._log_activity(ctx, f"{action} medication: {medication['name']}")
        return {"success": True, "message": f"{action} medication: {medication['name']}", "id": medication["id"]}

    async def create_care_task(self, ctx: ExecutionContext, payload: dict[str, Any]) -> dict[str, Any]:
        title = payload["title"]
        due_date = payload.get("dueDate")
        scheduled_time = payload.get("scheduledTime")
        task = self.store.create_care_task(
            family_id=ctx.family_id,
            patient_id=ctx.patient_id,
            created_by=ctx.user_id,
            title=title,
            description=payload.get("description"),
            task_type=payload.get("taskType") or "task",
            due_at=combine_due_at(due_date, scheduled_time, ctx.timezone),
            priority=payload.get("priority") or "medium",
            recurrence_rule=recurrence_to_rrule(payload.get("recurrenceType")),
        )
        date_info = f" for {due_date}" if due_date else " for today"
        time_info = f" at {scheduled_time}" if scheduled_time else ""
        self._log_activity(ctx, f"Scheduled: {title}{date_info}{time_info}")
        return {"success": True, "message": f"Created task: {title}{date_info}{time_info}", "id": task["id"]}

    async def complete_care_task(self, ctx: ExecutionContext, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            task = self.store.complete_care_task(payload["taskId"], ctx.family_id, payload.get("notes"))
        except CareStoreError:
            return {"success": False, "message": "Task not found"}
        self._log_activity(ctx, f"Completed: {task['title']}", "positive")
        return {"success": True, "message": f'Marked "{task["title"]}" as completed', "id": task["id"]}

    async def add_family_member(self, ctx: ExecutionContext, payload: dict[str, Any]) -> dict[str, Any]:
        email = payload["email"]
        existing = self.store.find_pending_invitation(ctx.family_id, email)
        if existing:
            return {
                "success": False,
                "message": f"An invitation has already been sent to {email}.",
                "id": existing["id"],
            }

        invitation = self.store.create_invitation(
            family_id=ctx.family_id,
            invited_by=ctx.user_id,
            email=email,
            role=payload["role"],
            relationship=payload["relationship"],
            name=payload.get("name"),
        )
        tools_logger.info("Family member invitation created", invitation_id=invitation["id"], family_id=ctx.family_id)
        who = payload.get("name") or email
        self._log_activity(ctx, f"Invited {who} ({payload['relationship']}) to the care team", "positive")
        return {
            "success": True,
            "message": f"Invitation sent to {who} ({payload['relationship']}) to join the care team.",
            "id": invitation["id"],
        }


def register_tools(registry: ToolRegistry, toolset: CareToolset) -> None:
    registry.register(
        ToolDefinition(
            "create_journal_entry",
            "Record care notes, observations, or updates about the patient in the care journal.",
            toolset.create_journal_entry,
            JOURNAL_FIELDS,
        )
    )
    registry.register(
        ToolDefinition(
            "create_medication",
            "Add a new medication to the patient's medication list.",
            toolset.create_medication,
            {
                **MEDICATION_FIELDS,
                "startDate": ToolField("string", "Start date in YYYY-MM-DD format; defaults to today"),
            },
        )
    )
    registry.register(
        ToolDefinition(
            "update_medication",
            "Change an existing medication's dosage, schedule or instructions, or stop it.",
            toolset.update_medication,
            {
                "medicationId": ToolField("string", "The medication id from the context", required=True),
                "isActive": ToolField("boolean", "Set to false to stop the medication"),
                "dosage": ToolField("string", "New dosage if changed"),
                "frequency": ToolField("string", "New frequency if changed"),
                "scheduleTimes": ToolField("array", "New schedule times if changed", items="string"),
                "instructions": ToolField("string", "New instructions if changed"),
            },
        )
    )
    registry.register(
        ToolDefinition(
            "create_care_task",
            "Create a care task, appointment, or to-do item.",
            toolset.create_care_task,
            CARE_TASK_FIELDS,
        )
    )
    registry.register(
        ToolDefinition(
            "complete_care_task",
            "Mark a care task as completed.",
            toolset.complete_care_task,
            {
                "taskId": ToolField("string", "The task id from the context", required=True),
                "notes": ToolField("string", "Optional notes about the completion"),
            },
        )
    )
    registry.register(
        ToolDefinition(
            "add_family_member",
            "Invite a family member to join the care team.",
            toolset.add_family_member,
            FAMILY_MEMBER_FIELDS,
        )
    )
    registry.add_alias("log_journal_entry", "create_journal_entry")


def build_chat_registry(store: CareStore) -> ToolRegistry:
    registry = ToolRegistry()
    register_tools(registry, CareToolset(store))
    return registry


def build_chat_strategy(ctx: ExecutionContext, store: CareStore) -> ToolStrategy:
    return ToolStrategy(CHAT_STRATEGY, build_chat_registry(store), build_chat_system_prompt(ctx, store))
