from __future__ import annotations

import importlib
import sys
from pathlib import Path
from typing import Callable

import pytest
from fastapi.testclient import TestClient

BACKEND_DIR = Path(__file__).resolve().parents[1]
TESTS_DIR = Path(__file__).resolve().parent
for path in (BACKEND_DIR, TESTS_DIR):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from care_store import CareStore, SQLiteCareDB  # noqa: E402
from carecompanion_agent_core import ExecutionContext  # noqa: E402


@pytest.fixture
def backend_module(tmp_path, monkeypatch):
    db_path = tmp_path / "carecompanion-test.sqlite"
    monkeypatch.setenv("CARECOMPANION_DB_PATH", str(db_path))
    monkeypatch.setenv("ALLOW_ANON", "false")
    monkeypatch.setenv("CARECOMPANION_MAX_LOOPS", "5")
    # Tests swap in scripted backends; never reach the real API.
    monkeypatch.setenv("ANTHROPIC_API_KEY", "")

    if "main" in sys.modules:
        module = importlib.reload(sys.modules["main"])
    else:
        module = importlib.import_module("main")
    return module


@pytest.fixture
def client(backend_module):
    with TestClient(backend_module.app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers() -> Callable[[str], dict[str, str]]:
    def _make(user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {user_id}"}

    return _make


@pytest.fixture
def store(tmp_path) -> CareStore:
    return CareStore(SQLiteCareDB(str(tmp_path / "care-store.sqlite")))


@pytest.fixture
def ctx() -> ExecutionContext:
    return ExecutionContext(
        user_id="user-a",
        family_id="family-a",
        patient_id="patient-a",
        request_id="req-1",
        user_name="Sarah",
        patient_name="Sue Johnson",
        timezone="America/New_York",
    )
