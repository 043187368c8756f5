# SPDX-License-Identifier: Apache-2.0
"""Custom exception classes."""
from __future__ import annotations


class StudyLedgerError(Exception):
    """Base exception for StudyLedger."""


class ValidationError(StudyLedgerError):
    """Input or window configuration validation failed."""


class NotFoundError(StudyLedgerError):
    """Resource not found."""


class InvalidTransitionError(StudyLedgerError):
    """Session lifecycle transition not allowed from the current status."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot transition session from {current} to {target}")
        self.current = current
        self.target = target


class LedgerError(StudyLedgerError):
    """Remote ledger call failed; the local record stands."""

    def __init__(self, operation: str, detail: str):
        super().__init__(f"Ledger {operation} failed: {detail}")
        self.operation = operation
        self.detail = detail
