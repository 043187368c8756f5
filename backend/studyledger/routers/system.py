# SPDX-License-Identifier: Apache-2.0
"""Health and deployment info endpoints."""
import sys

from fastapi import APIRouter, Depends

from studyledger import __version__
from studyledger.container import Container, get_container

router = APIRouter(tags=["system"])


@router.get("/health")
def health():
    """Liveness/readiness."""
    return {"status": "ok"}


@router.get("/info")
def system_info(container: Container = Depends(get_container)):
    """Versions and the time basis used for window resolution."""
    import fastapi
    import sqlmodel

    settings = container.settings
    return {
        "version": __version__,
        "local_utc_offset_seconds": settings.local_utc_offset_seconds,
        "scheduler_enabled": settings.scheduler_enabled,
        "closure_interval_minutes": settings.closure_interval_minutes,
        "fastapi_version": getattr(fastapi, "__version__", "unknown"),
        "sqlmodel_version": getattr(sqlmodel, "__version__", "unknown"),
        "python_version": f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
    }
