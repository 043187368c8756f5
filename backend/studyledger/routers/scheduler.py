# SPDX-License-Identifier: Apache-2.0
"""Manual trigger for one closure pass (operational intervention)."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from studyledger.container import Container, get_container
from studyledger.core.security import rate_limit
from studyledger.services.closure_scheduler import CLOSED

router = APIRouter(tags=["scheduler"])
logger = logging.getLogger("studyledger")


@router.post("/trigger-close-sessions")
@rate_limit("60/hour")
def trigger_close_sessions(request: Request, container: Container = Depends(get_container)):
    logger.info("Manual trigger for session closures")
    outcomes = container.closure_scheduler.run_pass()
    if not outcomes:
        return {"success": True, "message": "No sessions to close at this time", "outcomes": []}
    closed = sum(1 for o in outcomes if o.status == CLOSED)
    return {
        "success": True,
        "message": f"Processed {len(outcomes)} sessions, closed {closed}",
        "outcomes": [o.as_dict() for o in outcomes],
    }
