# SPDX-License-Identifier: Apache-2.0
"""GitHub push webhook: the commit event source."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PayloadValidationError

from studyledger.container import Container, get_container
from studyledger.core.exceptions import LedgerError
from studyledger.core.security import rate_limit, verify_webhook_signature
from studyledger.schemas import GitHubPushPayload
from studyledger.services.orchestrator import CommitEvent

router = APIRouter(tags=["github"])
logger = logging.getLogger("studyledger")


def process_commits(container: Container, payload: GitHubPushPayload) -> tuple[list[dict], bool]:
    """Handle every commit in order. A ledger failure on one commit does not skip the rest."""
    repo_url = payload.repository.html_url if payload.repository else ""
    results = []
    ledger_failed = False
    for commit in payload.commits:
        event = CommitEvent(
            participant_email=commit.author.email,
            repository_url=repo_url,
            commit_utc=commit.timestamp,
            commit_id=commit.id,
            message=commit.message,
        )
        try:
            outcome = container.orchestrator.handle_commit(event)
        except LedgerError as e:
            ledger_failed = True
            results.append({"commit_id": commit.id, "outcome": "ledger_error", "error": str(e)})
            continue
        results.append({"commit_id": commit.id, "outcome": outcome.value})
    return results, ledger_failed


@router.post("/webhook")
@rate_limit("600/minute")
async def github_webhook(
    request: Request,
    x_github_event: str = Header(default="push"),
    x_hub_signature_256: str | None = Header(default=None),
    container: Container = Depends(get_container),
):
    body = await request.body()
    if not verify_webhook_signature(container.settings.github_webhook_secret, body, x_hub_signature_256):
        logger.error("Invalid webhook signature")
        raise HTTPException(status_code=401, detail="Invalid signature")
    try:
        payload = GitHubPushPayload.model_validate_json(body or b"{}")
    except PayloadValidationError:
        raise HTTPException(status_code=422, detail="Invalid push payload")

    if payload.zen:
        logger.info("GitHub ping event received")
        return {"success": True, "message": "Ping received successfully", "results": []}
    if x_github_event != "push":
        logger.info("Ignoring %s event", x_github_event)
        return {"success": True, "message": f"{x_github_event} event ignored", "results": []}
    if not payload.commits:
        return {"success": True, "message": "No commits to process", "results": []}

    logger.info("Processing %d commits from %s", len(payload.commits), payload.repository.html_url if payload.repository else "unknown")
    results, ledger_failed = await run_in_threadpool(process_commits, container, payload)
    content = {
        "success": not ledger_failed,
        "message": f"Processed {len(results)} commits",
        "results": results,
    }
    if ledger_failed:
        # Redelivery is deduplicated locally; the failed ledger calls are retried by reconciliation.
        return JSONResponse(status_code=502, content=content)
    return content
