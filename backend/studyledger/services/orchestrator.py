# SPDX-License-Identifier: Apache-2.0
"""Commit handling: membership -> window -> local attendance -> remote ledger."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from sqlalchemy.engine import Engine
from sqlmodel import Session

from studyledger.core.clock import to_timestamp
from studyledger.core.exceptions import LedgerError
from studyledger.core.window import Accepted, resolve_window
from studyledger.models import Study
from studyledger.services.attendance_service import AttendanceLedger, SessionKey
from studyledger.services.directory_service import ParticipantDirectory
from studyledger.services.ledger_client import LedgerStatus, RemoteLedger

logger = logging.getLogger("studyledger")


@dataclass(frozen=True)
class CommitEvent:
    participant_email: str
    repository_url: str
    commit_utc: datetime
    commit_id: str
    message: str = ""


class CommitOutcome(str, Enum):
    NO_MEMBERSHIP = "no_membership"
    OUT_OF_WINDOW = "out_of_window"
    DUPLICATE = "duplicate"
    SESSION_CLOSED = "session_closed"
    RECORDED = "recorded"


class SessionOrchestrator:
    """Turns commit events into attendance records and ledger calls.

    The local attendance record is authoritative: a failed ledger call is
    raised as LedgerError but never rolls the record back. Unacknowledged
    ledger work is retried by the closure scheduler's reconciliation.
    """

    def __init__(
        self,
        engine: Engine,
        directory: ParticipantDirectory,
        attendance: AttendanceLedger,
        ledger: RemoteLedger,
        local_offset_seconds: int,
    ):
        self._engine = engine
        self._directory = directory
        self._attendance = attendance
        self._ledger = ledger
        self._local_offset = local_offset_seconds

    def handle_commit(self, event: CommitEvent) -> CommitOutcome:
        membership = self._directory.find_study_membership(event.participant_email, event.repository_url)
        if membership is None:
            logger.info(
                "No study membership for %s in %s; discarding commit %s",
                event.participant_email,
                event.repository_url,
                event.commit_id,
            )
            return CommitOutcome.NO_MEMBERSHIP

        with Session(self._engine) as db:
            study = db.get(Study, membership.study_id)
            study_ref, window = study.ledger_ref, study.window

        resolution = resolve_window(event.commit_utc, window, self._local_offset)
        if not isinstance(resolution, Accepted):
            logger.info(
                "Commit %s at %s is outside window %s of study %s (%s)",
                event.commit_id,
                event.commit_utc.isoformat(),
                window.describe(),
                study_ref,
                resolution.reason,
            )
            return CommitOutcome.OUT_OF_WINDOW

        key = SessionKey(membership.study_id, resolution.calendar_date.isoformat(), resolution.midnight_timestamp)
        result = self._attendance.record_first_commit(
            key,
            membership.participant_id,
            membership.wallet_address,
            event.commit_utc,
            event.commit_id,
            event.message,
        )
        if not result.created:
            if result.session_closing:
                return CommitOutcome.SESSION_CLOSED
            logger.info(
                "Commit %s: %s already attended session %s; skipping ledger",
                event.commit_id,
                membership.wallet_address,
                key.calendar_date,
            )
            return CommitOutcome.DUPLICATE

        try:
            if result.is_first_of_session:
                self.start_session(result.session_id, study_ref, key.midnight_utc)
            self.record_attendance(
                result.attendance_id,
                study_ref,
                key.midnight_utc,
                membership.wallet_address,
                to_timestamp(event.commit_utc),
            )
        except LedgerError:
            self._attendance.release_attendance(result.attendance_id)
            raise
        logger.info(
            "Recorded first commit %s of %s in study %s session %s",
            event.commit_id,
            membership.wallet_address,
            study_ref,
            key.calendar_date,
        )
        return CommitOutcome.RECORDED

    def start_session(self, session_id: int, study_ref: str, midnight_utc: int) -> None:
        result = self._ledger.start_session(study_ref, midnight_utc)
        if result.status == LedgerStatus.ALREADY_STARTED:
            logger.info("Ledger session %s/%s already started; continuing", study_ref, midnight_utc)
        elif not result.succeeded:
            logger.error("Ledger start_session failed for %s/%s: %s", study_ref, midnight_utc, result.error)
            raise LedgerError("start_session", result.error or "unknown error")
        self._attendance.mark_session_started(session_id)

    def record_attendance(
        self, attendance_id: int, study_ref: str, midnight_utc: int, wallet_address: str, commit_timestamp: int
    ) -> None:
        result = self._ledger.record_attendance(study_ref, midnight_utc, wallet_address, commit_timestamp)
        if not result.succeeded:
            logger.error(
                "Ledger record_attendance failed for %s in %s/%s: %s",
                wallet_address,
                study_ref,
                midnight_utc,
                result.error,
            )
            raise LedgerError("record_attendance", result.error or "unknown error")
        self._attendance.mark_attendance_acknowledged(attendance_id)
