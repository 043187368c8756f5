# SPDX-License-Identifier: Apache-2.0
"""Daily study window resolution.

A study window is a pair of offsets (seconds) from local midnight in the
deployment's single civil timezone. The end offset may exceed one day, in
which case the window runs past the following midnight and the session
belongs to the date on which the window started.

Resolution compares absolute timestamps: for the local date of the commit
and the date before it, the window is materialized as
``[midnight + start, midnight + end]`` and the commit is matched against
both. There is no time-of-day branching on whether the window wraps.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from studyledger.config import SECONDS_PER_DAY
from studyledger.core.clock import as_utc
from studyledger.core.exceptions import ValidationError

# Today and yesterday. Valid windows are shorter than a day, so no other
# local date can own a commit.
CANDIDATE_DAYS = 2


@dataclass(frozen=True)
class WindowConfig:
    start_offset_seconds: int
    end_offset_seconds: int

    def validate(self) -> "WindowConfig":
        """Raise ValidationError unless 0 <= start < 86400 and 0 < end - start < 86400."""
        if not 0 <= self.start_offset_seconds < SECONDS_PER_DAY:
            raise ValidationError(
                f"start_offset_seconds must be in [0, {SECONDS_PER_DAY}), got {self.start_offset_seconds}"
            )
        if self.end_offset_seconds <= self.start_offset_seconds:
            raise ValidationError("end_offset_seconds must be greater than start_offset_seconds")
        if self.end_offset_seconds - self.start_offset_seconds >= SECONDS_PER_DAY:
            raise ValidationError("Study window must be shorter than 24 hours")
        return self

    @property
    def overnight(self) -> bool:
        """True when the window reaches into the next calendar day, midnight included."""
        return self.end_offset_seconds >= SECONDS_PER_DAY

    def describe(self) -> str:
        """Human-readable ``HH:MM ~ HH:MM`` with a ``(+1d)`` marker for overnight windows."""
        def hhmm(offset: int) -> str:
            offset %= SECONDS_PER_DAY
            return f"{offset // 3600:02d}:{(offset % 3600) // 60:02d}"

        suffix = " (+1d)" if self.overnight else ""
        return f"{hhmm(self.start_offset_seconds)} ~ {hhmm(self.end_offset_seconds)}{suffix}"


@dataclass(frozen=True)
class Accepted:
    calendar_date: date
    midnight_utc: datetime
    window_start_utc: datetime
    window_end_utc: datetime

    accepted = True

    @property
    def midnight_timestamp(self) -> int:
        return int(self.midnight_utc.timestamp())


@dataclass(frozen=True)
class Rejected:
    commit_utc: datetime
    reason: str = "outside study window"

    accepted = False


WindowResolution = Accepted | Rejected


def local_timezone(local_offset_seconds: int) -> timezone:
    return timezone(timedelta(seconds=local_offset_seconds))


def midnight_utc(calendar_date: date, local_offset_seconds: int) -> datetime:
    """UTC instant of ``calendar_date`` 00:00 local time."""
    local_midnight = datetime(
        calendar_date.year,
        calendar_date.month,
        calendar_date.day,
        tzinfo=local_timezone(local_offset_seconds),
    )
    return local_midnight.astimezone(timezone.utc)


def window_bounds(midnight: datetime, config: WindowConfig) -> tuple[datetime, datetime]:
    """Absolute ``(start, end)`` of the window opening on the date whose midnight is given."""
    return (
        midnight + timedelta(seconds=config.start_offset_seconds),
        midnight + timedelta(seconds=config.end_offset_seconds),
    )


def window_end_timestamp(midnight_timestamp: int, end_offset_seconds: int) -> int:
    """Window end as Unix seconds, from a stored session midnight."""
    return midnight_timestamp + end_offset_seconds


def resolve_window(
    commit_utc: datetime,
    config: WindowConfig,
    local_offset_seconds: int,
) -> WindowResolution:
    """Map a commit instant onto the session (local date) whose window contains it.

    Both window ends are inclusive. Returns Rejected when no candidate date
    matches, or when more than one does (only possible for a window that
    failed validation).
    """
    commit_utc = as_utc(commit_utc)
    local_date = commit_utc.astimezone(local_timezone(local_offset_seconds)).date()
    matches = []
    for days_back in range(CANDIDATE_DAYS):
        candidate = local_date - timedelta(days=days_back)
        midnight = midnight_utc(candidate, local_offset_seconds)
        start, end = window_bounds(midnight, config)
        if start <= commit_utc <= end:
            matches.append(Accepted(candidate, midnight, start, end))
    if len(matches) != 1:
        reason = "outside study window" if not matches else "ambiguous study window"
        return Rejected(commit_utc, reason)
    return matches[0]
