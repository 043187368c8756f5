# SPDX-License-Identifier: Apache-2.0
"""Participant and study membership models."""
from datetime import datetime

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from studyledger.core.clock import utcnow


class Participant(SQLModel, table=True):
    __tablename__ = "participants"
    id: int | None = Field(default=None, primary_key=True)
    github_email: str = Field(unique=True, index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class StudyMembership(SQLModel, table=True):
    __tablename__ = "study_memberships"
    __table_args__ = (UniqueConstraint("study_id", "participant_id", name="uq_membership_study_participant"),)
    id: int | None = Field(default=None, primary_key=True)
    study_id: int = Field(foreign_key="studies.id", index=True)
    participant_id: int = Field(foreign_key="participants.id", index=True)
    wallet_address: str
    registered_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
