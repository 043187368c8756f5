# SPDX-License-Identifier: Apache-2.0
"""FastAPI app factory. Thin layer: security middleware, service container, routers."""
from __future__ import annotations

from fastapi import FastAPI
from sqlalchemy.engine import Engine

from studyledger import __version__
from studyledger.config import Settings, settings
from studyledger.container import build_container
from studyledger.core.security import add_security_middleware, get_limiter
from studyledger.database import create_db_and_tables, engine
from studyledger.routers import github, participants, scheduler, sessions, studies, system
from studyledger.services.ledger_client import HttpRemoteLedger, RemoteLedger


def create_app(
    app_settings: Settings | None = None,
    *,
    bind: Engine | None = None,
    ledger: RemoteLedger | None = None,
) -> FastAPI:
    app_settings = app_settings or settings
    bind = bind or engine
    container = build_container(settings=app_settings, engine=bind, ledger=ledger)

    app = FastAPI(title="StudyLedger API", version=__version__)
    app.state.limiter = get_limiter()
    app.state.container = container

    add_security_middleware(app, app_settings.allowed_origins)

    @app.on_event("startup")
    def on_startup():
        create_db_and_tables(bind)
        if app_settings.scheduler_enabled:
            container.closure_scheduler.start(app_settings.closure_interval_minutes)

    @app.on_event("shutdown")
    def on_shutdown():
        container.closure_scheduler.shutdown()
        if isinstance(container.ledger, HttpRemoteLedger):
            container.ledger.close()

    app.include_router(studies.router, prefix="/studies")
    app.include_router(participants.router, prefix="/participants")
    app.include_router(github.router, prefix="/github")
    app.include_router(sessions.router, prefix="/sessions")
    app.include_router(scheduler.router, prefix="/scheduler")
    app.include_router(system.router, prefix="/system")

    return app


app = create_app()
