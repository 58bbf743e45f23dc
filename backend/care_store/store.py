from __future__ import annotations

import json
import secrets
import sqlite3
import uuid
from datetime import timedelta
from typing import Any

from .database import SQLiteCareDB
from .time_utils import to_iso, utc_now

_INVITATION_TTL = timedelta(days=7)


class CareStoreError(Exception):
    pass


def _json_dumps(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


def _medication_row(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "id": row["id"],
        "patient_id": row["patient_id"],
        "name": row["name"],
        "dosage": row["dosage"],
        "frequency": row["frequency"],
        "schedule_times": json.loads(row["schedule_times_json"]),
        "instructions": row["instructions"],
        "start_date": row["start_date"],
        "is_active": bool(row["is_active"]),
    }


class CareStore:
    def __init__(self, db: SQLiteCareDB) -> None:
        self._db = db

    def create_journal_entry(
        self,
        *,
        family_id: str,
        patient_id: str,
        author_id: str,
        content: str,
        sentiment: str = "neutral",
    ) -> dict[str, Any]:
        entry = {
            "id": uuid.uuid4().hex,
            "family_id": family_id,
            "patient_id": patient_id,
            "author_id": author_id,
            "content": content,
            "sentiment": sentiment,
            "created_at": to_iso(utc_now()),
        }
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO journal_entries (id, family_id, patient_id, author_id, content, sentiment, created_at)
                VALUES (:id, :family_id, :patient_id, :author_id, :content, :sentiment, :created_at)
                """,
                entry,
            )
        return entry

    def list_journal_entries(self, family_id: str, limit: int = 20) -> list[dict[str, Any]]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT id, family_id, patient_id, author_id, content, sentiment, created_at
                FROM journal_entries
                WHERE family_id = ?
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
                """,
                (family_id, max(1, limit)),
            ).fetchall()
        return [dict(row) for row in rows]

    def find_active_medication(self, patient_id: str, name: str) -> dict[str, Any] | None:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT *
                FROM medications
                WHERE patient_id = ? AND lower(name) = lower(?) AND is_active = 1
                LIMIT 1
                """,
                (patient_id, name.strip()),
            ).fetchone()
        return _medication_row(row) if row else None

    def get_medication(self, medication_id: str, patient_id: str) -> dict[str, Any] | None:
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM medications WHERE id = ? AND patient_id = ?",
                (medication_id, patient_id),
            ).fetchone()
        return _medication_row(row) if row else None

    def list_medications(self, patient_id: str, *, active_only: bool = True) -> list[dict[str, Any]]:
        sql = "SELECT * FROM medications WHERE patient_id = ?"
        if active_only:
            sql += " AND is_active = 1"
        sql += " ORDER BY created_at ASC, rowid ASC"
        with self._db.connection() as conn:
            rows = conn.execute(sql, (patient_id,)).fetchall()
        return [_medication_row(row) for row in rows]

    def create_medication(
        self,
        *,
        patient_id: str,
        name: str,
        dosage: str,
        frequency: str,
        schedule_times: list[str],
        instructions: str | None = None,
        start_date: str | None = None,
    ) -> dict[str, Any]:
        now = to_iso(utc_now())
        medication_id = uuid.uuid4().hex
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO medications (
                  id, patient_id, name, dosage, frequency, schedule_times_json,
                  instructions, start_date, is_active, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, 1, ?, ?)
                """,
                (
                    medication_id,
                    patient_id,
                    name.strip(),
                    dosage,
                    frequency,
                    _json_dumps(list(schedule_times)),
                    instructions,
                    start_date or now[:10],
                    now,
                    now,
                ),
            )
            row = conn.execute("SELECT * FROM medications WHERE id = ?", (medication_id,)).fetchone()
        return _medication_row(row)

    def update_medication(self, medication_id: str, patient_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        columns = {
            "dosage": "dosage",
            "frequency": "frequency",
            "instructions": "instructions",
            "is_active": "is_active",
            "schedule_times": "schedule_times_json",
        }
        assignments: list[str] = []
        params: list[Any] = []
        for key, column in columns.items():
            if key not in changes:
                continue
            value = changes[key]
            if key == "schedule_times":
                value = _json_dumps(list(value))
            elif key == "is_active":
                value = 1 if value else 0
            assignments.append(f"{column} = ?")
            params.append(value)
        with self._db.connection() as conn:
            existing = conn.execute(
                "SELECT id FROM medications WHERE id = ? AND patient_id = ?",
                (medication_id, patient_id),
            ).fetchone()
            if not existing:
                raise CareStoreError(f"Medication not found: {medication_id}")
            assignments.append("updated_at = ?")
            params.append(to_iso(utc_now()))
            conn.execute(
                f"UPDATE medications SET {', '.join(assignments)} WHERE id = ?",
                (*params, medication_id),
            )
            row = conn.execute("SELECT * FROM medications WHERE id = ?", (medication_id,)).fetchone()
        return _medication_row(row)

    def create_care_task(
        self,
        *,
        family_id: str,
        patient_id: str,
        created_by: str,
        title: str,
        description: str | None = None,
        task_type: str = "task",
        due_at: str | None = None,
        priority: str = "medium",
        recurrence_rule: str | None = None,
    ) -> dict[str, Any]:
        now = to_iso(utc_now())
        task = {
            "id": uuid.uuid4().hex,
            "family_id": family_id,
            "patient_id": patient_id,
            "created_by": created_by,
            "title": title.strip(),
            "description": description,
            "task_type": task_type,
            "due_at": due_at,
            "priority": priority,
            "recurrence_rule": recurrence_rule,
            "status": "pending",
            "created_at": now,
            "updated_at": now,
        }
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO care_tasks (
                  id, family_id, patient_id, created_by, title, description, task_type,
                  due_at, priority, recurrence_rule, status, created_at, updated_at
                )
                VALUES (
                  :id, :family_id, :patient_id, :created_by, :title, :description, :task_type,
                  :due_at, :priority, :recurrence_rule, :status, :created_at, :updated_at
                )
                """,
                task,
            )
        return task

    def get_care_task(self, task_id: str, family_id: str) -> dict[str, Any] | None:
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM care_tasks WHERE id = ? AND family_id = ?",
                (task_id, family_id),
            ).fetchone()
        return dict(row) if row else None

    def list_care_tasks(self, family_id: str, status: str | None = None) -> list[dict[str, Any]]:
        sql = "SELECT * FROM care_tasks WHERE family_id = ?"
        params: list[Any] = [family_id]
        if status:
            sql += " AND status = ?"
            params.append(status)
        sql += " ORDER BY created_at ASC, rowid ASC"
        with self._db.connection() as conn:
            rows = conn.execute(sql, tuple(params)).fetchall()
        return [dict(row) for row in rows]

    def complete_care_task(self, task_id: str, family_id: str, notes: str | None = None) -> dict[str, Any]:
        now = to_iso(utc_now())
        with self._db.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE care_tasks
                SET status = 'completed',
                    completion_notes = COALESCE(?, completion_notes),
                    completed_at = ?,
                    updated_at = ?
                WHERE id = ? AND family_id = ?
                """,
                (notes, now, now, task_id, family_id),
            )
            if cursor.rowcount == 0:
                raise CareStoreError(f"Task not found: {task_id}")
            row = conn.execute("SELECT * FROM care_tasks WHERE id = ?", (task_id,)).fetchone()
        return dict(row)

    def find_pending_invitation(self, family_id: str, email: str) -> dict[str, Any] | None:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT id, family_id, email, name, role, relationship, status, expires_at, created_at
                FROM family_invitations
                WHERE family_id = ? AND email = ? AND status = 'pending'
                LIMIT 1
                """,
                (family_id, email.strip().lower()),
            ).fetchone()
        return dict(row) if row else None

    def create_invitation(
        self,
        *,
        family_id: str,
        invited_by: str,
        email: str,
        role: str,
        relationship: str,
        name: str | None = None,
    ) -> dict[str, Any]:
        now = utc_now()
        invitation = {
            "id": uuid.uuid4().hex,
            "family_id": family_id,
            "invited_by": invited_by,
            "email": email.strip().lower(),
            "name": name,
            "role": role,
            "relationship": relationship,
            "token": secrets.token_hex(32),
            "status": "pending",
            "expires_at": to_iso(now + _INVITATION_TTL),
            "created_at": to_iso(now),
        }
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO family_invitations (
                  id, family_id, invited_by, email, name, role, relationship, token, status, expires_at, created_at
                )
                VALUES (
                  :id, :family_id, :invited_by, :email, :name, :role, :relationship, :token, :status,
                  :expires_at, :created_at
                )
                """,
                invitation,
            )
        return invitation

    def append_tool_audit(
        self,
        *,
        user_id: str,
        request_id: str,
        tool_name: str,
        invocation_id: str | None,
        success: bool,
        message: str,
        resource_id: str | None = None,
    ) -> None:
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO tool_audit (
                  id, user_id, request_id, tool_name, invocation_id, success, message, resource_id, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    uuid.uuid4().hex,
                    user_id,
                    request_id,
                    tool_name,
                    invocation_id,
                    1 if success else 0,
                    message[:500],
                    resource_id,
                    to_iso(utc_now()),
                ),
            )

    def get_tool_audit(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT tool_name, invocation_id, success, message, resource_id, request_id, created_at
                FROM tool_audit
                WHERE user_id = ?
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
                """,
                (user_id, max(1, limit)),
            ).fetchall()
        return [dict(row) | {"success": bool(row["success"])} for row in reversed(rows)]
