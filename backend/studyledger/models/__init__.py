# SPDX-License-Identifier: Apache-2.0
"""SQLModel table definitions."""
from studyledger.models.audit import AuditLog
from studyledger.models.participant import Participant, StudyMembership
from studyledger.models.session import AttendanceRecord, StudySession
from studyledger.models.study import Study, StudyRepository

__all__ = [
    "AttendanceRecord",
    "AuditLog",
    "Participant",
    "Study",
    "StudyMembership",
    "StudyRepository",
    "StudySession",
]
