# SPDX-License-Identifier: Apache-2.0
"""Table creation, constraints, and bulk reset."""
import pytest
from sqlalchemy import DateTime, inspect
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, SQLModel, select

from studyledger.database import create_db_and_tables, drop_session_state
from studyledger.models import Study, StudySession
from studyledger.services.orchestrator import CommitEvent

from conftest import REPO_URL, kst


def test_tables_created(engine):
    names = set(inspect(engine).get_table_names())
    assert {
        "studies",
        "study_repositories",
        "participants",
        "study_memberships",
        "study_sessions",
        "attendance_records",
        "audit_log",
    } <= names


def test_create_is_idempotent(engine):
    create_db_and_tables(engine)
    columns = {c["name"] for c in inspect(engine).get_columns("study_sessions")}
    assert {"ledger_started", "closure_attempts", "last_error"} <= columns


def test_session_unique_per_study_and_date(engine, study_setup):
    with Session(engine) as db:
        db.add(StudySession(study_id=study_setup.study.id, calendar_date="2024-05-01", midnight_utc=1))
        db.commit()
        db.add(StudySession(study_id=study_setup.study.id, calendar_date="2024-05-01", midnight_utc=1))
        with pytest.raises(IntegrityError):
            db.commit()


def test_drop_session_state(engine, orchestrator, study_setup):
    orchestrator.handle_commit(CommitEvent("alice@example.com", REPO_URL, kst(2024, 5, 1, 23, 0), "c1"))
    orchestrator.handle_commit(CommitEvent("bob@example.com", REPO_URL, kst(2024, 5, 1, 23, 5), "c2"))
    counts = drop_session_state(engine)
    assert counts == {"audit_log": 3, "attendance_records": 2, "study_sessions": 1}
    with Session(engine) as db:
        assert db.exec(select(StudySession)).all() == []
        assert db.exec(select(Study)).one().ledger_ref == "0xstudynight"


def test_datetime_columns_are_timezone_aware():
    columns = [
        column
        for table in SQLModel.metadata.sorted_tables
        for column in table.columns
        if isinstance(column.type, DateTime)
    ]
    assert columns
    assert all(column.type.timezone for column in columns), [str(c) for c in columns if not c.type.timezone]


def test_closing_and_attempt_columns_exist(engine):
    inspector = inspect(engine)
    assert "closing_at" in {c["name"] for c in inspector.get_columns("study_sessions")}
    assert "ledger_attempted_at" in {c["name"] for c in inspector.get_columns("attendance_records")}
