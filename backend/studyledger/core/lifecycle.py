# SPDX-License-Identifier: Apache-2.0
"""Session lifecycle: ACTIVE -> CLOSED | FAILED. Terminal states never change."""
from __future__ import annotations

from enum import Enum

from studyledger.core.exceptions import InvalidTransitionError


class SessionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"
    FAILED = "FAILED"


ALLOWED_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.ACTIVE: frozenset({SessionStatus.CLOSED, SessionStatus.FAILED}),
    SessionStatus.CLOSED: frozenset(),
    SessionStatus.FAILED: frozenset(),
}


def can_transition(current: SessionStatus | str, target: SessionStatus | str) -> bool:
    return SessionStatus(target) in ALLOWED_TRANSITIONS[SessionStatus(current)]


def ensure_transition(current: SessionStatus | str, target: SessionStatus | str) -> SessionStatus:
    """Return the target status, or raise InvalidTransitionError."""
    if not can_transition(current, target):
        raise InvalidTransitionError(SessionStatus(current).value, SessionStatus(target).value)
    return SessionStatus(target)


def is_terminal(status: SessionStatus | str) -> bool:
    return not ALLOWED_TRANSITIONS[SessionStatus(status)]
