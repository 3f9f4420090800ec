"""Tests for the engine error hierarchy and settings."""

import pytest

from plan_engine.core.config import Settings
from plan_engine.core.exceptions import (
    ActivePlanConflictError,
    DuplicatePlanNameError,
    InvalidTransitionError,
    NotFoundError,
    PlanEngineError,
    SchemaError,
    SessionMismatchError,
    StorageError,
    ValidationError,
)

pytestmark = pytest.mark.unit


def test_every_error_has_a_distinct_kind():
    kinds = {
        NotFoundError(1).kind,
        InvalidTransitionError("plan", "archived", "active").kind,
        SessionMismatchError("s1", 1).kind,
        ActivePlanConflictError("s1", 2).kind,
        DuplicatePlanNameError("s1", "Launch", 3).kind,
        ValidationError("bad").kind,
        StorageError("create_plan", "boom").kind,
        SchemaError("boom").kind,
    }
    assert kinds == {
        "not_found",
        "invalid_transition",
        "session_mismatch",
        "active_plan_conflict",
        "duplicate_plan_name",
        "validation",
        "storage",
        "schema",
    }


def test_not_found_messages_name_the_missing_ids():
    assert NotFoundError(7).message == "Plan 7 not found"
    assert NotFoundError(7, 3).message == "Task 3 in plan 7 not found"
    assert NotFoundError(None, 3).details == {"plan_id": None, "task_id": 3}

    by_name = NotFoundError(project_id="proj-1", name="Launch")
    assert "Launch" in by_name.message
    assert by_name.details["project_id"] == "proj-1"


def test_schema_error_is_a_storage_error():
    err = SchemaError("permission denied")
    assert isinstance(err, StorageError)
    assert isinstance(err, PlanEngineError)
    assert err.details == {"operation": "ensure_schema"}


def test_active_plan_conflict_carries_the_existing_plan():
    err = ActivePlanConflictError("sess-a", 42)
    assert err.details == {"session_id": "sess-a", "active_plan_id": 42}
    assert "42" in str(err)


def test_settings_defaults(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("OPERATION_TIMEOUT_SECONDS", raising=False)
    settings = Settings(_env_file=None)
    assert settings.default_task_priority == "normal"
    assert settings.database_url.startswith("postgresql+asyncpg://")
    assert settings.operation_timeout_seconds > 0
    assert "system_actor" not in Settings.model_fields


def test_settings_read_from_environment(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///plans.db")
    monkeypatch.setenv("OPERATION_TIMEOUT_SECONDS", "2.5")
    settings = Settings(_env_file=None)
    assert settings.database_url == "sqlite+aiosqlite:///plans.db"
    assert settings.operation_timeout_seconds == 2.5


def test_duplicate_plan_name_carries_the_existing_plan():
    err = DuplicatePlanNameError("sess-a", "Launch", 7)
    assert err.details == {"session_id": "sess-a", "name": "Launch", "existing_plan_id": 7}
    assert "Launch" in err.message
