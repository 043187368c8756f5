# SPDX-License-Identifier: Apache-2.0
"""Wall-clock helpers. Datetimes are written as timezone-aware UTC."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Aware UTC. Naive values (as read back from SQLite) are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat_utc(value: datetime | None) -> str | None:
    return as_utc(value).isoformat() if value else None


def to_timestamp(value: datetime) -> int:
    """Unix seconds; naive values are UTC."""
    return int(as_utc(value).timestamp())
