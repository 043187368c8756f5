# SPDX-License-Identifier: Apache-2.0
"""Closure scheduler: reconcile pending ledger work, then close sessions past their window end."""
from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy import func, update
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from studyledger.core.clock import Clock, as_utc, to_timestamp, utcnow
from studyledger.core.exceptions import NotFoundError
from studyledger.core.lifecycle import SessionStatus, ensure_transition
from studyledger.core.window import window_end_timestamp
from studyledger.models import AttendanceRecord, Study, StudySession
from studyledger.services.attendance_service import AttendanceLedger
from studyledger.services.audit_service import SESSION_CLOSED, SESSION_FAILED, write_audit_log
from studyledger.services.ledger_client import LedgerResult, RemoteLedger

logger = logging.getLogger("studyledger")

CLOSED = "closed"
FAILED = "failed"
DEFERRED = "deferred"

JOB_ID = "close-study-sessions"


@dataclass(frozen=True)
class ClosureOutcome:
    session_id: int
    study_id: int
    study_ref: str
    calendar_date: str
    status: str
    tx_ref: str | None = None
    error: str | None = None

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class ReconcileReport:
    sessions_started: int = 0
    attendance_acknowledged: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class _DueSession:
    session_id: int
    study_id: int
    study_ref: str
    calendar_date: str
    midnight_utc: int

    def outcome(self, status: str, **kwargs) -> ClosureOutcome:
        return ClosureOutcome(
            session_id=self.session_id,
            study_id=self.study_id,
            study_ref=self.study_ref,
            calendar_date=self.calendar_date,
            status=status,
            **kwargs,
        )


def call_ledger(operation: str, call: Callable[..., LedgerResult], *args) -> LedgerResult:
    """Run a ledger call; an exception from the client becomes an ERROR result."""
    try:
        return call(*args)
    except Exception as e:
        logger.exception("Ledger %s raised", operation)
        return LedgerResult.failed(f"{type(e).__name__}: {e}")


class ClosureScheduler:
    """Drives ACTIVE sessions to CLOSED once ``now > midnight + end_offset``.

    Each session is handled in isolation: a ledger failure or an error
    raised while handling it leaves it ACTIVE for the next pass and never
    stops the scan. Passes are serialized within the process so a manual
    trigger cannot overlap the background job.

    Before calling the ledger, a pass claims the session by setting
    ``closing_at``, in a transaction that also checks there is no pending
    ledger work. From then on new attendance for the session is refused.
    """

    def __init__(
        self,
        engine: Engine,
        ledger: RemoteLedger,
        *,
        overdue_attempts: int = 3,
        in_flight_seconds: float = 10.0,
        clock: Clock = utcnow,
    ):
        self._engine = engine
        self._ledger = ledger
        self._attendance = AttendanceLedger(engine)
        self._overdue_attempts = overdue_attempts
        self._in_flight = timedelta(seconds=in_flight_seconds)
        self._clock = clock
        self._pass_lock = threading.Lock()
        self._scheduler: BackgroundScheduler | None = None

    # -- reconciliation -------------------------------------------------

    def reconcile_pending(self) -> ReconcileReport:
        """Retry ledger calls whose local record exists but was never acknowledged.

        Attendance whose record_attendance call was issued less than
        ``in_flight_seconds`` ago (wall clock) is left to that call.
        """
        report = ReconcileReport()
        stale_before = utcnow() - self._in_flight
        with Session(self._engine) as db:
            unstarted = db.exec(
                select(StudySession, Study)
                .join(Study, StudySession.study_id == Study.id)
                .where(
                    StudySession.status == SessionStatus.ACTIVE.value,
                    StudySession.started_at.is_not(None),
                    StudySession.ledger_started == False,  # noqa: E712
                )
            ).all()
            pending_starts = [(s.id, study.ledger_ref, s.midnight_utc) for s, study in unstarted]

        for session_id, study_ref, midnight in pending_starts:
            try:
                result = call_ledger("start_session", self._ledger.start_session, study_ref, midnight)
                if result.succeeded:
                    self._attendance.mark_session_started(session_id)
                    report.sessions_started += 1
                    continue
                error = result.error
            except Exception as e:
                logger.exception("Reconcile of session %s failed", session_id)
                error = str(e)
            logger.error("Reconcile start_session %s/%s failed: %s", study_ref, midnight, error)
            report.errors.append(f"session {session_id}: {error}")

        with Session(self._engine) as db:
            unacked = db.exec(
                select(AttendanceRecord, StudySession, Study)
                .join(StudySession, AttendanceRecord.session_id == StudySession.id)
                .join(Study, StudySession.study_id == Study.id)
                .where(
                    StudySession.status == SessionStatus.ACTIVE.value,
                    StudySession.ledger_started == True,  # noqa: E712
                    AttendanceRecord.ledger_acknowledged == False,  # noqa: E712
                )
                .order_by(AttendanceRecord.id)
            ).all()
            pending_records = [
                (r.id, study.ledger_ref, s.midnight_utc, r.wallet_address, to_timestamp(r.commit_timestamp))
                for r, s, study in unacked
            ]

        for attendance_id, study_ref, midnight, wallet, commit_ts in pending_records:
            try:
                if not self._attendance.claim_attendance(attendance_id, stale_before):
                    continue
                result = call_ledger(
                    "record_attendance", self._ledger.record_attendance, study_ref, midnight, wallet, commit_ts
                )
                if result.succeeded:
                    self._attendance.mark_attendance_acknowledged(attendance_id)
                    report.attendance_acknowledged += 1
                    continue
                self._attendance.release_attendance(attendance_id)
                error = result.error
            except Exception as e:
                logger.exception("Reconcile of attendance %s failed", attendance_id)
                error = str(e)
            logger.error("Reconcile record_attendance %s in %s/%s failed: %s", wallet, study_ref, midnight, error)
            report.errors.append(f"attendance {attendance_id}: {error}")
        return report

    # -- closure --------------------------------------------------------

    def _claim_closure(self, db: Session, due: _DueSession, now: datetime) -> bool:
        """Set ``closing_at`` unless the session has unacknowledged ledger work.

        The update comes first so the row lock is held while pending work is
        checked; a racing attendance insert either committed before (and is
        seen here) or is refused afterwards.
        """
        claimed = db.exec(
            update(StudySession)
            .where(StudySession.id == due.session_id, StudySession.status == SessionStatus.ACTIVE.value)
            .values(closing_at=func.coalesce(StudySession.closing_at, now))
        )
        if claimed.rowcount != 1:
            db.rollback()
            return False
        started_at, ledger_started = db.exec(
            select(StudySession.started_at, StudySession.ledger_started).where(StudySession.id == due.session_id)
        ).one()
        unacked = db.exec(
            select(AttendanceRecord.id).where(
                AttendanceRecord.session_id == due.session_id,
                AttendanceRecord.ledger_acknowledged == False,  # noqa: E712
            )
        ).first()
        if (started_at is not None and not ledger_started) or unacked is not None:
            db.rollback()
            return False
        db.commit()
        return True

    def close_due_sessions(self, now: datetime | None = None) -> list[ClosureOutcome]:
        now = as_utc(now or self._clock())
        now_ts = to_timestamp(now)
        with Session(self._engine) as db:
            rows = db.exec(
                select(StudySession, Study)
                .join(Study, StudySession.study_id == Study.id)
                .where(StudySession.status == SessionStatus.ACTIVE.value)
                .order_by(StudySession.midnight_utc, StudySession.id)
            ).all()
            due = [
                _DueSession(row.id, study.id, study.ledger_ref, row.calendar_date, row.midnight_utc)
                for row, study in rows
                if now_ts > window_end_timestamp(row.midnight_utc, study.end_offset_seconds)
            ]

        outcomes: list[ClosureOutcome] = []
        for item in due:
            with Session(self._engine) as db:
                try:
                    outcomes.append(self._close_one(db, item, now))
                except Exception as e:
                    db.rollback()
                    logger.exception(
                        "Closing session %s (%s %s) failed", item.session_id, item.study_ref, item.calendar_date
                    )
                    outcomes.append(item.outcome(FAILED, error=f"{type(e).__name__}: {e}"))
        return outcomes

    def _close_one(self, db: Session, due: _DueSession, now: datetime) -> ClosureOutcome:
        if not self._claim_closure(db, due, now):
            logger.warning("Session %s (%s %s) has unacknowledged ledger work; deferring closure",
                           due.session_id, due.study_ref, due.calendar_date)
            return due.outcome(DEFERRED, error="pending ledger acknowledgements")

        row = db.get(StudySession, due.session_id)
        tx_ref = None
        if row.started_at is not None:
            result = call_ledger("close_session", self._ledger.close_session, due.study_ref, due.midnight_utc)
            if not result.succeeded:
                attempts = row.closure_attempts + 1
                db.exec(
                    update(StudySession)
                    .where(StudySession.id == due.session_id)
                    .values(closure_attempts=attempts, last_error=result.error)
                )
                db.commit()
                logger.error("Failed to close session %s (%s %s): %s",
                             due.session_id, due.study_ref, due.calendar_date, result.error)
                if attempts >= self._overdue_attempts:
                    logger.warning("Session %s is overdue: %d failed closure attempts", due.session_id, attempts)
                return due.outcome(FAILED, error=result.error)
            tx_ref = result.tx_ref

        target = ensure_transition(row.status, SessionStatus.CLOSED)
        closed = db.exec(
            update(StudySession)
            .where(StudySession.id == due.session_id, StudySession.status == SessionStatus.ACTIVE.value)
            .values(status=target.value, closed_at=now, external_ref=tx_ref, last_error=None)
        )
        if closed.rowcount == 1:
            write_audit_log(
                db,
                due.study_id,
                SESSION_CLOSED,
                "scheduler",
                {"calendar_date": due.calendar_date, "tx_ref": tx_ref},
                session_id=due.session_id,
            )
        db.commit()
        logger.info("Closed session %s (%s %s) tx=%s", due.session_id, due.study_ref, due.calendar_date, tx_ref)
        return due.outcome(CLOSED, tx_ref=tx_ref)

    def run_pass(self, now: datetime | None = None) -> list[ClosureOutcome]:
        """One reconciliation + closure pass; returns per-session outcomes."""
        with self._pass_lock:
            report = self.reconcile_pending()
            if report.sessions_started or report.attendance_acknowledged:
                logger.info(
                    "Reconciled %d session starts and %d attendance records",
                    report.sessions_started,
                    report.attendance_acknowledged,
                )
            outcomes = self.close_due_sessions(now)
        closed = sum(1 for o in outcomes if o.status == CLOSED)
        logger.info("Session closure pass completed: %d due, %d closed", len(outcomes), closed)
        return outcomes

    def tick(self) -> None:
        """Background entry point; a failing pass must not kill the job."""
        try:
            self.run_pass()
        except Exception:
            logger.exception("Session closure pass failed")

    # -- administration -------------------------------------------------

    def mark_failed(self, session_id: int, reason: str) -> StudySession:
        """Administrative ACTIVE -> FAILED."""
        with Session(self._engine) as db:
            row = db.get(StudySession, session_id)
            if row is None:
                raise NotFoundError(f"Session {session_id} not found")
            row.status = ensure_transition(row.status, SessionStatus.FAILED).value
            row.last_error = reason
            db.add(row)
            write_audit_log(db, row.study_id, SESSION_FAILED, "admin", {"reason": reason}, session_id=row.id)
            db.commit()
            db.refresh(row)
            logger.warning("Session %s marked FAILED: %s", session_id, reason)
            return row

    def overdue_sessions(self) -> list[StudySession]:
        with Session(self._engine) as db:
            stmt = (
                select(StudySession)
                .where(
                    StudySession.status == SessionStatus.ACTIVE.value,
                    StudySession.closure_attempts >= self._overdue_attempts,
                )
                .order_by(StudySession.midnight_utc)
            )
            return list(db.exec(stmt).all())

    # -- background job -------------------------------------------------

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self, interval_minutes: int) -> None:
        if self._scheduler is not None and self._scheduler.running:
            return
        self._scheduler = BackgroundScheduler(
            timezone=timezone.utc,
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 3600},
        )
        self._scheduler.add_job(self.tick, "interval", minutes=interval_minutes, id=JOB_ID, replace_existing=True)
        self._scheduler.start()
        logger.info("Session closure job scheduled every %d minutes", interval_minutes)

    def shutdown(self) -> None:
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
