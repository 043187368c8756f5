# SPDX-License-Identifier: Apache-2.0
"""DB connection and session management."""
from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import delete, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, SQLModel, create_engine

from studyledger.config import SQLITE_URL
from studyledger.models import (  # noqa: F401 – register all models with SQLModel.metadata
    AttendanceRecord,
    AuditLog,
    Participant,
    Study,
    StudyMembership,
    StudyRepository,
    StudySession,
)


def make_engine(url: str) -> Engine:
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


engine = make_engine(SQLITE_URL)


def get_session():
    """Yield a DB session (for FastAPI Depends)."""
    with Session(engine) as session:
        yield session


@contextmanager
def session_scope(bind: Engine | None = None):
    """Context manager for use outside request handlers."""
    with Session(bind or engine) as session:
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise


def create_db_and_tables(bind: Engine | None = None):
    """Create all tables and add ledger bookkeeping columns missing from older databases."""
    bind = bind or engine
    SQLModel.metadata.create_all(bind)
    with bind.connect() as conn:
        for table, col, typ, default in [
            ("study_sessions", "ledger_started", "BOOLEAN", "0"),
            ("study_sessions", "closure_attempts", "INTEGER", "0"),
            ("study_sessions", "last_error", "TEXT", "NULL"),
            ("study_sessions", "closing_at", "TIMESTAMP", "NULL"),
            ("attendance_records", "ledger_acknowledged", "BOOLEAN", "0"),
            ("attendance_records", "ledger_attempted_at", "TIMESTAMP", "NULL"),
        ]:
            try:
                conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {col} {typ} DEFAULT {default}"))
                conn.commit()
            except OperationalError:
                # Column already present.
                conn.rollback()


def drop_session_state(bind: Engine | None = None) -> dict[str, int]:
    """Administrative bulk reset: delete all attendance, sessions and their audit entries."""
    counts = {}
    with session_scope(bind) as session:
        for stmt, table in [
            (delete(AuditLog).where(AuditLog.session_id.is_not(None)), AuditLog.__tablename__),
            (delete(AttendanceRecord), AttendanceRecord.__tablename__),
            (delete(StudySession), StudySession.__tablename__),
        ]:
            counts[table] = session.exec(stmt).rowcount
    return counts
