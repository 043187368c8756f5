# SPDX-License-Identifier: Apache-2.0
"""Local attendance ledger: idempotent session creation and first-commit recording.

Uniqueness is enforced by the database constraints on
(study_id, calendar_date) and (session_id, participant_id). Writes are
attempted and an IntegrityError means another writer got there first;
nothing is decided by a read followed by a write.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import or_, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from studyledger.core.clock import as_utc, isoformat_utc, utcnow
from studyledger.core.lifecycle import SessionStatus, is_terminal
from studyledger.models import AttendanceRecord, StudySession
from studyledger.services.audit_service import ATTENDANCE_RECORDED, SESSION_STARTED, write_audit_log

logger = logging.getLogger("studyledger")

MAX_COMMIT_MESSAGE = 2000


@dataclass(frozen=True)
class SessionKey:
    study_id: int
    calendar_date: str
    midnight_utc: int


@dataclass(frozen=True)
class RecordResult:
    created: bool
    is_first_of_session: bool
    session_id: int
    attendance_id: int | None = None
    session_status: str = SessionStatus.ACTIVE.value
    # The session was closed, or claimed by a closure pass, before this commit landed.
    session_closing: bool = False


class AttendanceLedger:
    def __init__(self, engine: Engine):
        self._engine = engine

    def _find_session(self, db: Session, key: SessionKey) -> StudySession | None:
        return db.exec(
            select(StudySession).where(
                StudySession.study_id == key.study_id,
                StudySession.calendar_date == key.calendar_date,
            )
        ).first()

    def get_or_create_session(self, key: SessionKey) -> tuple[int, str]:
        """Return (session_id, status); concurrent creators collapse to one row."""
        with Session(self._engine) as db:
            found = self._find_session(db, key)
            if found:
                return found.id, found.status
            row = StudySession(
                study_id=key.study_id,
                calendar_date=key.calendar_date,
                midnight_utc=key.midnight_utc,
            )
            db.add(row)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                found = self._find_session(db, key)
                return found.id, found.status
            logger.info("Created session %s for study %s on %s", row.id, key.study_id, key.calendar_date)
            return row.id, row.status

    def record_first_commit(
        self,
        key: SessionKey,
        participant_id: int,
        wallet_address: str,
        commit_utc: datetime,
        commit_id: str,
        message: str = "",
    ) -> RecordResult:
        """Insert the participant's attendance for the session unless one exists.

        The transaction opens with a conditional update that only matches an
        ACTIVE session no closure pass has claimed. It takes the session's
        row lock, so a concurrent closure claim either waits for this insert
        (and then sees it as pending ledger work) or wins and makes this
        call refuse.

        ``is_first_of_session`` is claimed by a conditional update on
        ``started_at`` in the same transaction, so exactly one caller per
        session sees it. The record is created with ``ledger_attempted_at``
        set: the caller is expected to issue record_attendance right away.
        """
        session_id, status = self.get_or_create_session(key)
        if is_terminal(status):
            logger.info("Session %s is %s; not recording commit %s", session_id, status, commit_id)
            return RecordResult(False, False, session_id, session_status=status, session_closing=True)

        commit_at = as_utc(commit_utc)
        with Session(self._engine) as db:
            open_session = db.exec(
                update(StudySession)
                .where(
                    StudySession.id == session_id,
                    StudySession.status == SessionStatus.ACTIVE.value,
                    StudySession.closing_at.is_(None),
                )
                .values(status=SessionStatus.ACTIVE.value)
            )
            if open_session.rowcount != 1:
                db.rollback()
                current = db.get(StudySession, session_id)
                logger.info("Session %s is closing; not recording commit %s", session_id, commit_id)
                return RecordResult(False, False, session_id, session_status=current.status, session_closing=True)

            record = AttendanceRecord(
                session_id=session_id,
                participant_id=participant_id,
                wallet_address=wallet_address,
                commit_timestamp=commit_at,
                commit_id=commit_id,
                commit_message=(message or "")[:MAX_COMMIT_MESSAGE],
                ledger_attempted_at=utcnow(),
            )
            db.add(record)
            try:
                db.flush()
            except IntegrityError:
                db.rollback()
                existing = db.exec(
                    select(AttendanceRecord).where(
                        AttendanceRecord.session_id == session_id,
                        AttendanceRecord.participant_id == participant_id,
                    )
                ).first()
                return RecordResult(False, False, session_id, existing.id if existing else None, status)

            claim = db.exec(
                update(StudySession)
                .where(StudySession.id == session_id, StudySession.started_at.is_(None))
                .values(started_at=commit_at)
            )
            is_first = claim.rowcount == 1
            if is_first:
                write_audit_log(
                    db,
                    key.study_id,
                    SESSION_STARTED,
                    wallet_address,
                    {"calendar_date": key.calendar_date, "midnight_utc": key.midnight_utc},
                    session_id=session_id,
                )
            write_audit_log(
                db,
                key.study_id,
                ATTENDANCE_RECORDED,
                wallet_address,
                {"commit_id": commit_id, "commit_timestamp": isoformat_utc(commit_at)},
                session_id=session_id,
            )
            db.commit()
            return RecordResult(True, is_first, session_id, record.id, status)

    def mark_session_started(self, session_id: int) -> None:
        with Session(self._engine) as db:
            db.exec(update(StudySession).where(StudySession.id == session_id).values(ledger_started=True))
            db.commit()

    def mark_attendance_acknowledged(self, attendance_id: int) -> None:
        with Session(self._engine) as db:
            db.exec(
                update(AttendanceRecord).where(AttendanceRecord.id == attendance_id).values(ledger_acknowledged=True)
            )
            db.commit()

    def claim_attendance(self, attendance_id: int, stale_before: datetime) -> bool:
        """Take the right to issue record_attendance for an unacknowledged record.

        Fails while another call is in flight, i.e. one was issued at or after
        ``stale_before`` and has not yet been acknowledged or released.
        """
        with Session(self._engine) as db:
            claimed = db.exec(
                update(AttendanceRecord)
                .where(
                    AttendanceRecord.id == attendance_id,
                    AttendanceRecord.ledger_acknowledged == False,  # noqa: E712
                    or_(
                        AttendanceRecord.ledger_attempted_at.is_(None),
                        AttendanceRecord.ledger_attempted_at < stale_before,
                    ),
                )
                .values(ledger_attempted_at=utcnow())
            )
            db.commit()
            return claimed.rowcount == 1

    def release_attendance(self, attendance_id: int) -> None:
        """Forget a failed record_attendance attempt so reconciliation retries it at once."""
        with Session(self._engine) as db:
            db.exec(
                update(AttendanceRecord)
                .where(
                    AttendanceRecord.id == attendance_id,
                    AttendanceRecord.ledger_acknowledged == False,  # noqa: E712
                )
                .values(ledger_attempted_at=None)
            )
            db.commit()

    def list_attendance(self, session_id: int) -> list[AttendanceRecord]:
        with Session(self._engine) as db:
            stmt = (
                select(AttendanceRecord)
                .where(AttendanceRecord.session_id == session_id)
                .order_by(AttendanceRecord.commit_timestamp)
            )
            return list(db.exec(stmt).all())
