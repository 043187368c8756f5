# SPDX-License-Identifier: Apache-2.0
"""Audit log model."""
from datetime import datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from studyledger.config import INITIAL_HASH
from studyledger.core.clock import utcnow


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_log"
    id: int | None = Field(default=None, primary_key=True)
    study_id: int | None = Field(default=None, foreign_key="studies.id")
    session_id: int | None = Field(default=None, foreign_key="study_sessions.id")
    action_type: str = ""
    actor: str = ""
    details: str = "{}"
    previous_hash: str = INITIAL_HASH
    entry_hash: str = ""
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
