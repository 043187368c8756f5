# SPDX-License-Identifier: Apache-2.0
"""Study and StudyRepository models."""
from datetime import datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from studyledger.core.clock import utcnow
from studyledger.core.window import WindowConfig


class Study(SQLModel, table=True):
    __tablename__ = "studies"
    id: int | None = Field(default=None, primary_key=True)
    name: str
    ledger_ref: str = Field(unique=True, index=True)
    start_offset_seconds: int
    end_offset_seconds: int
    deposit_amount: str = "0"
    penalty_amount: str = "0"
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))

    @property
    def window(self) -> WindowConfig:
        return WindowConfig(self.start_offset_seconds, self.end_offset_seconds)


class StudyRepository(SQLModel, table=True):
    __tablename__ = "study_repositories"
    id: int | None = Field(default=None, primary_key=True)
    study_id: int = Field(foreign_key="studies.id", index=True)
    participant_id: int = Field(foreign_key="participants.id")
    repo_url: str = Field(index=True)
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
