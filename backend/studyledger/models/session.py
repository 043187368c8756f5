# SPDX-License-Identifier: Apache-2.0
"""StudySession and AttendanceRecord models."""
from datetime import datetime

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from studyledger.core.clock import utcnow
from studyledger.core.lifecycle import SessionStatus


class StudySession(SQLModel, table=True):
    """One occurrence of a study's daily window, keyed by (study, local date)."""

    __tablename__ = "study_sessions"
    __table_args__ = (UniqueConstraint("study_id", "calendar_date", name="uq_session_study_date"),)
    id: int | None = Field(default=None, primary_key=True)
    study_id: int = Field(foreign_key="studies.id", index=True)
    calendar_date: str
    # Unix seconds of local midnight for calendar_date; the ledger's session key.
    midnight_utc: int
    status: str = Field(default=SessionStatus.ACTIVE.value, index=True)
    started_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
    # Set once a closure pass has claimed the session; later commits are refused.
    closing_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
    closed_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
    external_ref: str | None = None
    ledger_started: bool = False
    closure_attempts: int = 0
    last_error: str | None = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class AttendanceRecord(SQLModel, table=True):
    """First creditable commit of a participant within a session."""

    __tablename__ = "attendance_records"
    __table_args__ = (UniqueConstraint("session_id", "participant_id", name="uq_attendance_session_participant"),)
    id: int | None = Field(default=None, primary_key=True)
    session_id: int = Field(foreign_key="study_sessions.id", index=True)
    participant_id: int = Field(foreign_key="participants.id")
    wallet_address: str
    commit_timestamp: datetime = Field(sa_type=DateTime(timezone=True))
    commit_id: str
    commit_message: str = ""
    ledger_acknowledged: bool = False
    # When a record_attendance call was last issued; cleared when that call fails.
    ledger_attempted_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
