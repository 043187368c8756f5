# SPDX-License-Identifier: Apache-2.0
"""Click CLI for operators: create tables, run a closure pass, list sessions, reset."""
from __future__ import annotations

import json
import logging

import click
from sqlmodel import Session, select

from studyledger.config import settings
from studyledger.container import build_ledger
from studyledger.core.lifecycle import SessionStatus
from studyledger.database import create_db_and_tables, drop_session_state, make_engine
from studyledger.models import StudySession
from studyledger.services.closure_scheduler import ClosureScheduler


@click.group()
@click.option("--database-url", default=settings.database_url, show_default=True, help="Database URL")
@click.option("--log-level", default=settings.log_level, show_default=True)
@click.pass_context
def cli(ctx, database_url, log_level):
    """StudyLedger operational commands."""
    logging.basicConfig(level=log_level.upper(), format="%(asctime)s %(levelname)s %(name)s %(message)s")
    ctx.ensure_object(dict)
    if "engine" not in ctx.obj:
        ctx.obj["engine"] = make_engine(database_url)


@cli.command("init-db")
@click.pass_context
def init_db(ctx):
    """Create tables (and add missing bookkeeping columns)."""
    create_db_and_tables(ctx.obj["engine"])
    click.echo("Database ready.")


@cli.command("close-sessions")
@click.option("--json", "as_json", is_flag=True, help="Print outcomes as JSON")
@click.pass_context
def close_sessions(ctx, as_json):
    """Run one reconciliation + closure pass now."""
    engine = ctx.obj["engine"]
    ledger = ctx.obj.get("ledger") or build_ledger(settings)
    scheduler = ClosureScheduler(engine, ledger, overdue_attempts=settings.closure_overdue_attempts)
    outcomes = scheduler.run_pass()
    if as_json:
        click.echo(json.dumps([o.as_dict() for o in outcomes], indent=2))
        return
    if not outcomes:
        click.echo("No sessions to close at this time.")
        return
    for o in outcomes:
        line = f"{o.session_id}\t{o.study_ref}\t{o.calendar_date}\t{o.status}"
        if o.error:
            line += f"\t{o.error}"
        click.echo(line)


@cli.command("sessions")
@click.option("--status", type=click.Choice([s.value for s in SessionStatus]), default=None)
@click.pass_context
def list_sessions(ctx, status):
    """List sessions, newest first."""
    with Session(ctx.obj["engine"]) as session:
        stmt = select(StudySession)
        if status:
            stmt = stmt.where(StudySession.status == status)
        for row in session.exec(stmt.order_by(StudySession.midnight_utc.desc())).all():
            click.echo(f"{row.id}\tstudy={row.study_id}\t{row.calendar_date}\t{row.status}\t{row.external_ref or '-'}")


@cli.command("reset")
@click.option("--yes", is_flag=True, help="Confirm deletion of all sessions and attendance")
@click.pass_context
def reset(ctx, yes):
    """Administrative bulk reset of sessions, attendance and their audit entries."""
    if not yes:
        raise click.UsageError("Refusing to reset without --yes")
    counts = drop_session_state(ctx.obj["engine"])
    for table, n in counts.items():
        click.echo(f"{table}: {n} deleted")


def main():
    """Entry point for console_scripts."""
    cli(obj={})


if __name__ == "__main__":
    main()
