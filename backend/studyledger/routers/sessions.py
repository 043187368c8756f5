# SPDX-License-Identifier: Apache-2.0
"""Read projections over sessions and attendance, plus the administrative FAILED transition."""
from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session, select

from studyledger.container import Container, get_container
from studyledger.core.clock import isoformat_utc
from studyledger.core.lifecycle import SessionStatus
from studyledger.core.window import window_end_timestamp
from studyledger.models import Study, StudySession
from studyledger.schemas import SessionFail

router = APIRouter(tags=["sessions"])


def _utc_iso(ts: int) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def session_dict(row: StudySession, study: Study) -> dict:
    return {
        "id": row.id,
        "study_id": row.study_id,
        "study_ref": study.ledger_ref,
        "calendar_date": row.calendar_date,
        "midnight_utc": row.midnight_utc,
        "window_end_utc": _utc_iso(window_end_timestamp(row.midnight_utc, study.end_offset_seconds)),
        "status": row.status,
        "started_at": isoformat_utc(row.started_at),
        "closing_at": isoformat_utc(row.closing_at),
        "closed_at": isoformat_utc(row.closed_at),
        "external_ref": row.external_ref,
        "ledger_started": row.ledger_started,
        "closure_attempts": row.closure_attempts,
        "last_error": row.last_error,
    }


@router.get("")
def sessions_list(
    study_id: int | None = None,
    status: SessionStatus | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
    container: Container = Depends(get_container),
):
    with Session(container.engine) as session:
        stmt = select(StudySession, Study).join(Study, StudySession.study_id == Study.id)
        if study_id is not None:
            stmt = stmt.where(StudySession.study_id == study_id)
        if status is not None:
            stmt = stmt.where(StudySession.status == status.value)
        rows = session.exec(stmt.order_by(StudySession.midnight_utc.desc()).limit(limit)).all()
        return [session_dict(row, study) for row, study in rows]


@router.get("/overdue")
def sessions_overdue(container: Container = Depends(get_container)):
    """ACTIVE sessions whose closure has failed repeatedly."""
    rows = container.closure_scheduler.overdue_sessions()
    with Session(container.engine) as session:
        return [session_dict(row, session.get(Study, row.study_id)) for row in rows]


@router.get("/{session_id}")
def sessions_get(session_id: int, container: Container = Depends(get_container)):
    with Session(container.engine) as session:
        row = session.get(StudySession, session_id)
        if not row:
            raise HTTPException(status_code=404, detail="Session not found")
        return session_dict(row, session.get(Study, row.study_id))


@router.get("/{session_id}/attendance")
def sessions_attendance(session_id: int, container: Container = Depends(get_container)):
    with Session(container.engine) as session:
        if session.get(StudySession, session_id) is None:
            raise HTTPException(status_code=404, detail="Session not found")
    return [
        {
            "id": r.id,
            "participant_id": r.participant_id,
            "wallet_address": r.wallet_address,
            "commit_timestamp": isoformat_utc(r.commit_timestamp),
            "commit_id": r.commit_id,
            "commit_message": r.commit_message,
            "ledger_acknowledged": r.ledger_acknowledged,
        }
        for r in container.attendance.list_attendance(session_id)
    ]


@router.post("/{session_id}/fail")
def sessions_fail(session_id: int, body: SessionFail, container: Container = Depends(get_container)):
    """Administrative ACTIVE -> FAILED. 409 if the session is already terminal."""
    row = container.closure_scheduler.mark_failed(session_id, body.reason)
    return {"id": row.id, "status": row.status, "last_error": row.last_error}
