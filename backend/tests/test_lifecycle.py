# SPDX-License-Identifier: Apache-2.0
"""Session lifecycle transitions."""
import pytest

from studyledger.core.exceptions import InvalidTransitionError
from studyledger.core.lifecycle import SessionStatus, can_transition, ensure_transition, is_terminal


def test_active_can_close_or_fail():
    assert ensure_transition("ACTIVE", SessionStatus.CLOSED) is SessionStatus.CLOSED
    assert ensure_transition(SessionStatus.ACTIVE, "FAILED") is SessionStatus.FAILED


@pytest.mark.parametrize("terminal", [SessionStatus.CLOSED, SessionStatus.FAILED])
@pytest.mark.parametrize("target", list(SessionStatus))
def test_terminal_states_never_change(terminal, target):
    assert not can_transition(terminal, target)
    with pytest.raises(InvalidTransitionError):
        ensure_transition(terminal, target)


def test_active_to_active_is_not_a_transition():
    assert not can_transition("ACTIVE", "ACTIVE")


def test_is_terminal():
    assert not is_terminal("ACTIVE")
    assert is_terminal("CLOSED")
    assert is_terminal(SessionStatus.FAILED)


def test_unknown_status_rejected():
    with pytest.raises(ValueError):
        can_transition("PAUSED", "CLOSED")
