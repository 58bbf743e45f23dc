from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator


class SQLiteCareDB:
    def __init__(self, db_path: str) -> None:
        self._path = Path(db_path).expanduser().resolve()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._init_schema()

    @property
    def path(self) -> str:
        return str(self._path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._path), timeout=30.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._lock, self.connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS journal_entries (
                  id TEXT PRIMARY KEY,
                  family_id TEXT NOT NULL,
                  patient_id TEXT NOT NULL,
                  author_id TEXT NOT NULL,
                  content TEXT NOT NULL,
                  sentiment TEXT NOT NULL DEFAULT 'neutral',
                  created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS medications (
                  id TEXT PRIMARY KEY,
                  patient_id TEXT NOT NULL,
                  name TEXT NOT NULL,
                  dosage TEXT NOT NULL,
                  frequency TEXT NOT NULL,
                  schedule_times_json TEXT NOT NULL,
                  instructions TEXT,
                  start_date TEXT,
                  is_active INTEGER NOT NULL DEFAULT 1,
                  created_at TEXT NOT NULL,
                  updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS care_tasks (
                  id TEXT PRIMARY KEY,
                  family_id TEXT NOT NULL,
                  patient_id TEXT NOT NULL,
                  created_by TEXT NOT NULL,
                  title TEXT NOT NULL,
                  description TEXT,
                  task_type TEXT NOT NULL DEFAULT 'task',
                  due_at TEXT,
                  priority TEXT NOT NULL DEFAULT 'medium',
                  recurrence_rule TEXT,
                  status TEXT NOT NULL DEFAULT 'pending',
                  completion_notes TEXT,
                  completed_at TEXT,
                  created_at TEXT NOT NULL,
                  updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS family_invitations (
                  id TEXT PRIMARY KEY,
                  family_id TEXT NOT NULL,
                  invited_by TEXT NOT NULL,
                  email TEXT NOT NULL,
                  name TEXT,
                  role TEXT NOT NULL,
                  relationship TEXT NOT NULL,
                  token TEXT NOT NULL,
                  status TEXT NOT NULL DEFAULT 'pending',
                  expires_at TEXT NOT NULL,
                  created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS tool_audit (
                  id TEXT PRIMARY KEY,
                  user_id TEXT NOT NULL,
                  request_id TEXT NOT NULL,
                  tool_name TEXT NOT NULL,
                  invocation_id TEXT,
                  success INTEGER NOT NULL,
                  message TEXT NOT NULL,
                  resource_id TEXT,
                  created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_journal_family_created
                  ON journal_entries(family_id, created_at);
                CREATE INDEX IF NOT EXISTS idx_medications_patient_active
                  ON medications(patient_id, is_active);
                CREATE INDEX IF NOT EXISTS idx_care_tasks_family_status
                  ON care_tasks(family_id, status);
                CREATE INDEX IF NOT EXISTS idx_invitations_family_email
                  ON family_invitations(family_id, email);
                CREATE INDEX IF NOT EXISTS idx_tool_audit_user_created
                  ON tool_audit(user_id, created_at);
                """
            )
