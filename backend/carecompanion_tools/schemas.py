"""Field declarations shared by the chat and onboarding tool sets."""

from __future__ import annotations

from carecompanion_agent_core.registry import ToolField

SENTIMENTS = ("positive", "neutral", "concerned", "urgent")
PRIORITIES = ("high", "medium", "low")
RECURRENCE_TYPES = ("daily", "weekly", "biweekly", "monthly", "once")
TASK_TYPES = ("task", "appointment")
MEMBER_ROLES = ("caregiver", "family_member", "read_only")
GENDERS = ("male", "female", "other")

_RECURRENCE_RULES = {
    "daily": "FREQ=DAILY",
    "weekly": "FREQ=WEEKLY",
    "biweekly": "FREQ=WEEKLY;INTERVAL=2",
    "monthly": "FREQ=MONTHLY",
}


def recurrence_to_rrule(recurrence_type: str | None) -> str | None:
    if not recurrence_type or recurrence_type == "once":
        return None
    return _RECURRENCE_RULES.get(recurrence_type)


JOURNAL_FIELDS = {
    "content": ToolField(
        "string",
        "The journal entry content, written from the caregiver's perspective. Concise, with the key details.",
        required=True,
    ),
    "sentiment": ToolField(
        "string",
        'Overall sentiment: "urgent" for emergencies, "concerned" for worrying observations, '
        '"positive" for good news, "neutral" for routine updates.',
        enum=SENTIMENTS,
    ),
}

MEDICATION_FIELDS = {
    "name": ToolField("string", 'Medication name (e.g., "Aricept", "Metformin")', required=True),
    "dosage": ToolField("string", 'Dosage amount and unit (e.g., "10mg", "500mg")', required=True),
    "frequency": ToolField("string", 'How often it is taken (e.g., "twice daily", "as needed")', required=True),
    "scheduleTimes": ToolField(
        "array",
        'Times to take it in 24-hour format (e.g., ["08:00", "20:00"]). '
        'Morning is "08:00", evening "18:00", night "21:00".',
        required=True,
        items="string",
    ),
    "instructions": ToolField("string", 'Special instructions (e.g., "take with food")'),
}

CARE_TASK_FIELDS = {
    "title": ToolField("string", 'Short title (e.g., "Pick up prescription", "Doctor appointment")', required=True),
    "description": ToolField("string", "Additional details about the task"),
    "taskType": ToolField(
        "string",
        '"appointment" for visits at a fixed time and place, "task" for to-do items and routines',
        enum=TASK_TYPES,
    ),
    "dueDate": ToolField("string", "Due date in YYYY-MM-DD format"),
    "scheduledTime": ToolField(
        "string",
        'Time in HH:MM 24-hour format (e.g., "14:30"). Always include for appointments.',
    ),
    "priority": ToolField("string", "Task priority", enum=PRIORITIES),
    "recurrenceType": ToolField("string", 'How often it recurs; "once" for one-time tasks', enum=RECURRENCE_TYPES),
}

FAMILY_MEMBER_FIELDS = {
    "email": ToolField("string", "Family member's email address", required=True),
    "name": ToolField("string", "Family member's name"),
    "role": ToolField(
        "string",
        "Access level: caregiver (full access), family_member (view and add entries), read_only (view only)",
        required=True,
        enum=MEMBER_ROLES,
    ),
    "relationship": ToolField(
        "string",
        "Their relationship to the patient (e.g., daughter, son, sibling)",
        required=True,
    ),
}
