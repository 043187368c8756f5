# SPDX-License-Identifier: Apache-2.0
"""Attendance ledger: idempotent sessions, first-commit-only records, first-of-session claim."""
import threading
from datetime import timedelta

from sqlmodel import Session, select

from studyledger.core.clock import as_utc
from studyledger.models import AttendanceRecord, AuditLog, StudySession
from studyledger.services.attendance_service import MAX_COMMIT_MESSAGE, SessionKey
from studyledger.services.audit_service import verify_chain

from conftest import kst


def _key(study_setup, day=1):
    midnight = int(kst(2024, 5, day).timestamp())
    return SessionKey(study_setup.study.id, f"2024-05-{day:02d}", midnight)


def test_get_or_create_session_is_idempotent(attendance, study_setup):
    key = _key(study_setup)
    first_id, status = attendance.get_or_create_session(key)
    second_id, _ = attendance.get_or_create_session(key)
    assert first_id == second_id
    assert status == "ACTIVE"


def test_first_commit_of_session(engine, attendance, study_setup):
    key = _key(study_setup)
    result = attendance.record_first_commit(
        key, study_setup.alice.participant_id, "0xaaa", kst(2024, 5, 1, 22, 30), "c1", "first"
    )
    assert result.created is True
    assert result.is_first_of_session is True
    assert result.attendance_id is not None
    with Session(engine) as db:
        row = db.get(StudySession, result.session_id)
        assert as_utc(row.started_at) == kst(2024, 5, 1, 22, 30)
        assert row.ledger_started is False


def test_second_participant_is_not_first(attendance, study_setup):
    key = _key(study_setup)
    attendance.record_first_commit(key, study_setup.alice.participant_id, "0xaaa", kst(2024, 5, 1, 22, 30), "c1")
    result = attendance.record_first_commit(
        key, study_setup.bob.participant_id, "0xbbb", kst(2024, 5, 1, 22, 45), "c2"
    )
    assert result.created is True
    assert result.is_first_of_session is False


def test_later_commit_from_same_participant_is_not_recorded(engine, attendance, study_setup):
    key = _key(study_setup)
    first = attendance.record_first_commit(
        key, study_setup.alice.participant_id, "0xaaa", kst(2024, 5, 1, 22, 30), "c1"
    )
    again = attendance.record_first_commit(
        key, study_setup.alice.participant_id, "0xaaa", kst(2024, 5, 2, 1, 0), "c2"
    )
    assert again.created is False
    assert again.is_first_of_session is False
    assert again.attendance_id == first.attendance_id
    records = attendance.list_attendance(first.session_id)
    assert [r.commit_id for r in records] == ["c1"]


def test_terminal_session_rejects_new_attendance(engine, attendance, study_setup):
    key = _key(study_setup)
    session_id, _ = attendance.get_or_create_session(key)
    with Session(engine) as db:
        row = db.get(StudySession, session_id)
        row.status = "CLOSED"
        db.add(row)
        db.commit()
    result = attendance.record_first_commit(
        key, study_setup.alice.participant_id, "0xaaa", kst(2024, 5, 1, 23, 0), "late"
    )
    assert result.created is False
    assert result.session_status == "CLOSED"
    assert result.session_closing is True
    assert attendance.list_attendance(session_id) == []


def test_commit_message_is_truncated(attendance, study_setup):
    result = attendance.record_first_commit(
        _key(study_setup), study_setup.alice.participant_id, "0xaaa", kst(2024, 5, 1, 23, 0), "c1", "x" * 5000
    )
    (record,) = attendance.list_attendance(result.session_id)
    assert len(record.commit_message) == MAX_COMMIT_MESSAGE


def test_ack_flags(engine, attendance, study_setup):
    result = attendance.record_first_commit(
        _key(study_setup), study_setup.alice.participant_id, "0xaaa", kst(2024, 5, 1, 23, 0), "c1"
    )
    attendance.mark_session_started(result.session_id)
    attendance.mark_attendance_acknowledged(result.attendance_id)
    with Session(engine) as db:
        assert db.get(StudySession, result.session_id).ledger_started is True
        assert db.get(AttendanceRecord, result.attendance_id).ledger_acknowledged is True


def test_audit_entries_written(engine, attendance, study_setup):
    key = _key(study_setup)
    attendance.record_first_commit(key, study_setup.alice.participant_id, "0xaaa", kst(2024, 5, 1, 22, 30), "c1")
    attendance.record_first_commit(key, study_setup.bob.participant_id, "0xbbb", kst(2024, 5, 1, 22, 31), "c2")
    with Session(engine) as db:
        actions = [a.action_type for a in db.exec(select(AuditLog).order_by(AuditLog.id)).all()]
        assert actions == ["session_started", "attendance_recorded", "attendance_recorded"]
        assert verify_chain(db, study_setup.study.id)


def test_concurrent_first_commits_claim_one_start(engine, directory, attendance, study_setup):
    participants = [study_setup.alice.participant_id, study_setup.bob.participant_id]
    for i in range(4):
        membership, _ = directory.join_study(study_setup.study.id, f"user{i}@example.com", f"0x{i:03d}")
        participants.append(membership.participant_id)

    key = _key(study_setup)
    barrier = threading.Barrier(len(participants))
    results, errors = [], []

    def worker(pid):
        barrier.wait()
        try:
            results.append(attendance.record_first_commit(key, pid, f"0xw{pid}", kst(2024, 5, 1, 23, 0), f"c{pid}"))
        except Exception as e:  # surfaced by the assertion below
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(pid,)) for pid in participants]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert all(r.created for r in results)
    assert sum(r.is_first_of_session for r in results) == 1
    assert len({r.session_id for r in results}) == 1
    with Session(engine) as db:
        assert len(db.exec(select(AuditLog)).all()) == len(participants) + 1
        assert verify_chain(db, study_setup.study.id)


def test_concurrent_duplicates_record_once(attendance, study_setup):
    key = _key(study_setup)
    barrier = threading.Barrier(5)
    results, errors = [], []

    def worker(n):
        barrier.wait()
        try:
            results.append(
                attendance.record_first_commit(
                    key, study_setup.alice.participant_id, "0xaaa", kst(2024, 5, 1, 23, n), f"c{n}"
                )
            )
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert sum(r.created for r in results) == 1
    assert len(attendance.list_attendance(results[0].session_id)) == 1


def test_session_claimed_for_closing_rejects_new_attendance(engine, attendance, study_setup):
    key = _key(study_setup)
    attendance.record_first_commit(key, study_setup.alice.participant_id, "0xaaa", kst(2024, 5, 1, 22, 30), "c1")
    session_id, _ = attendance.get_or_create_session(key)
    with Session(engine) as db:
        row = db.get(StudySession, session_id)
        row.closing_at = kst(2024, 5, 2, 2, 5)
        db.add(row)
        db.commit()
    result = attendance.record_first_commit(
        key, study_setup.bob.participant_id, "0xbbb", kst(2024, 5, 2, 1, 59), "c2"
    )
    assert result.created is False
    assert result.session_closing is True
    assert result.session_status == "ACTIVE"
    assert [r.wallet_address for r in attendance.list_attendance(session_id)] == ["0xaaa"]


def test_new_record_is_claimed_for_its_ledger_call(engine, attendance, study_setup):
    result = attendance.record_first_commit(
        _key(study_setup), study_setup.alice.participant_id, "0xaaa", kst(2024, 5, 1, 23, 0), "c1"
    )
    (record,) = attendance.list_attendance(result.session_id)
    assert record.ledger_attempted_at is not None
    issued = as_utc(record.ledger_attempted_at)

    # In flight: a claim with an older cutoff fails.
    assert attendance.claim_attendance(result.attendance_id, issued - timedelta(seconds=1)) is False
    # Stale: the attempt is older than the cutoff.
    assert attendance.claim_attendance(result.attendance_id, issued + timedelta(seconds=1)) is True
    assert attendance.claim_attendance(result.attendance_id, issued - timedelta(seconds=1)) is False

    attendance.release_attendance(result.attendance_id)
    (record,) = attendance.list_attendance(result.session_id)
    assert record.ledger_attempted_at is None
    assert attendance.claim_attendance(result.attendance_id, issued - timedelta(hours=1)) is True

    attendance.mark_attendance_acknowledged(result.attendance_id)
    attendance.release_attendance(result.attendance_id)
    assert attendance.claim_attendance(result.attendance_id, issued + timedelta(hours=1)) is False
