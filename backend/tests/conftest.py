# SPDX-License-Identifier: Apache-2.0
"""pytest fixtures for backend tests."""
import threading
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from studyledger.config import Settings
from studyledger.database import create_db_and_tables, make_engine
from studyledger.main import create_app
from studyledger.services.attendance_service import AttendanceLedger
from studyledger.services.directory_service import ParticipantDirectory
from studyledger.services.ledger_client import LedgerResult
from studyledger.services.orchestrator import SessionOrchestrator

KST_OFFSET = 9 * 3600
KST = timezone(timedelta(seconds=KST_OFFSET))
REPO_URL = "https://github.com/study-org/daily-commits"


def kst(*args) -> datetime:
    """Aware datetime in local (KST) time, converted to UTC."""
    return datetime(*args, tzinfo=KST).astimezone(timezone.utc)


class FakeLedger:
    """In-process ledger double. Records every call; failures are scripted per operation.

    ``on_record`` and ``on_close`` run at the start of the matching call,
    outside the lock, to interleave other work with an in-flight request.
    """

    def __init__(self):
        self.calls = []
        self.started = set()
        self.fail_ops = set()
        self.fail_close_refs = set()
        self.raise_close_refs = set()
        self.on_record = None
        self.on_close = None
        self._lock = threading.Lock()

    def start_session(self, study_ref, midnight_utc):
        with self._lock:
            self.calls.append(("start_session", study_ref, midnight_utc))
            if "start_session" in self.fail_ops:
                return LedgerResult.failed("ledger unavailable")
            if (study_ref, midnight_utc) in self.started:
                return LedgerResult.already_started()
            self.started.add((study_ref, midnight_utc))
            return LedgerResult.ok(f"0xstart{midnight_utc}")

    def record_attendance(self, study_ref, midnight_utc, wallet_address, commit_timestamp):
        if self.on_record is not None:
            self.on_record(study_ref, midnight_utc, wallet_address, commit_timestamp)
        with self._lock:
            self.calls.append(("record_attendance", study_ref, midnight_utc, wallet_address, commit_timestamp))
            if "record_attendance" in self.fail_ops:
                return LedgerResult.failed("ledger unavailable")
            return LedgerResult.ok(f"0xrecord{commit_timestamp}")

    def close_session(self, study_ref, midnight_utc):
        if self.on_close is not None:
            self.on_close(study_ref, midnight_utc)
        with self._lock:
            self.calls.append(("close_session", study_ref, midnight_utc))
            if study_ref in self.raise_close_refs:
                raise ConnectionResetError("connection reset by peer")
            if "close_session" in self.fail_ops or study_ref in self.fail_close_refs:
                return LedgerResult.failed("close reverted")
            return LedgerResult.ok(f"0xclose{midnight_utc}")

    def count(self, operation):
        return sum(1 for c in self.calls if c[0] == operation)


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'studyledger-test.db'}")
    create_db_and_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def test_settings():
    return Settings(scheduler_enabled=False, local_utc_offset_seconds=KST_OFFSET, github_webhook_secret=None)


@pytest.fixture
def directory(engine):
    return ParticipantDirectory(engine)


@pytest.fixture
def attendance(engine):
    return AttendanceLedger(engine)


@pytest.fixture
def orchestrator(engine, directory, attendance, ledger):
    return SessionOrchestrator(engine, directory, attendance, ledger, local_offset_seconds=KST_OFFSET)


@pytest.fixture
def study_setup(directory):
    """Overnight study 22:00 ~ 02:00 KST with two members sharing one repository."""
    study, _ = directory.create_study(
        name="Night Owls",
        ledger_ref="0xStudyNight",
        start_offset_seconds=79200,
        end_offset_seconds=93600,
    )
    alice, _ = directory.join_study(study.id, "Alice@Example.com", "0xAAA")
    bob, _ = directory.join_study(study.id, "bob@example.com", "0xBBB")
    directory.register_repository(study.id, "alice@example.com", REPO_URL)
    return SimpleNamespace(study=study, alice=alice, bob=bob, repo_url=REPO_URL)


@pytest.fixture
def app(engine, ledger, test_settings):
    return create_app(test_settings, bind=engine, ledger=ledger)


@pytest.fixture
def client(app):
    """FastAPI test client."""
    return TestClient(app)
