# SPDX-License-Identifier: Apache-2.0
"""Append-only audit trail of session lifecycle events with chained hashes."""
from __future__ import annotations

import json

from sqlmodel import Session, select

from studyledger.config import INITIAL_HASH
from studyledger.core.clock import isoformat_utc, utcnow
from studyledger.core.security import sha3_256_hex
from studyledger.models import AuditLog, Study

SESSION_STARTED = "session_started"
ATTENDANCE_RECORDED = "attendance_recorded"
SESSION_CLOSED = "session_closed"
SESSION_FAILED = "session_failed"


def study_lock_statement(study_id: int):
    """Row lock on the study; serializes appends to its chain (no-op on SQLite)."""
    return select(Study.id).where(Study.id == study_id).with_for_update()


def write_audit_log(
    session: Session,
    study_id: int | None,
    action_type: str,
    actor: str,
    details: dict,
    session_id: int | None = None,
) -> AuditLog:
    """Append an entry: entry_hash = SHA3-256(action, actor, details, timestamp, previous_hash).

    The chain is per study. The caller commits.
    """
    last = None
    if study_id is not None:
        session.exec(study_lock_statement(study_id)).first()
        last = session.exec(
            select(AuditLog).where(AuditLog.study_id == study_id).order_by(AuditLog.id.desc()).limit(1)
        ).first()
    previous_hash = last.entry_hash if last else INITIAL_HASH
    now = utcnow()
    details_json = json.dumps(details, sort_keys=True, default=str)
    payload = f"{action_type}{actor}{details_json}{isoformat_utc(now)}{previous_hash}"
    entry = AuditLog(
        study_id=study_id,
        session_id=session_id,
        action_type=action_type,
        actor=actor,
        details=details_json,
        previous_hash=previous_hash,
        entry_hash=sha3_256_hex(payload),
        created_at=now,
    )
    session.add(entry)
    return entry


def verify_chain(session: Session, study_id: int) -> bool:
    """Recompute every entry hash of a study's chain."""
    entries = session.exec(select(AuditLog).where(AuditLog.study_id == study_id).order_by(AuditLog.id)).all()
    previous_hash = INITIAL_HASH
    for entry in entries:
        payload = f"{entry.action_type}{entry.actor}{entry.details}{isoformat_utc(entry.created_at)}{previous_hash}"
        if entry.previous_hash != previous_hash or entry.entry_hash != sha3_256_hex(payload):
            return False
        previous_hash = entry.entry_hash
    return True
