# SPDX-License-Identifier: Apache-2.0
"""Process-wide service wiring. Built once at startup and passed explicitly."""
from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request
from sqlalchemy.engine import Engine

from studyledger.config import Settings
from studyledger.services.attendance_service import AttendanceLedger
from studyledger.services.closure_scheduler import ClosureScheduler
from studyledger.services.directory_service import ParticipantDirectory
from studyledger.services.ledger_client import HttpRemoteLedger, RemoteLedger
from studyledger.services.orchestrator import SessionOrchestrator


@dataclass(frozen=True)
class Container:
    settings: Settings
    engine: Engine
    ledger: RemoteLedger
    directory: ParticipantDirectory
    attendance: AttendanceLedger
    orchestrator: SessionOrchestrator
    closure_scheduler: ClosureScheduler


def build_ledger(settings: Settings) -> HttpRemoteLedger:
    return HttpRemoteLedger(
        settings.ledger_url,
        timeout_seconds=settings.ledger_timeout_seconds,
        api_key=settings.ledger_api_key,
    )


def build_container(*, settings: Settings, engine: Engine, ledger: RemoteLedger | None = None) -> Container:
    ledger = ledger or build_ledger(settings)
    directory = ParticipantDirectory(engine)
    attendance = AttendanceLedger(engine)
    orchestrator = SessionOrchestrator(
        engine,
        directory,
        attendance,
        ledger,
        local_offset_seconds=settings.local_utc_offset_seconds,
    )
    closure_scheduler = ClosureScheduler(
        engine,
        ledger,
        overdue_attempts=settings.closure_overdue_attempts,
        in_flight_seconds=settings.ledger_timeout_seconds,
    )
    return Container(
        settings=settings,
        engine=engine,
        ledger=ledger,
        directory=directory,
        attendance=attendance,
        orchestrator=orchestrator,
        closure_scheduler=closure_scheduler,
    )


def get_container(request: Request) -> Container:
    """FastAPI dependency: the container built by create_app."""
    return request.app.state.container
