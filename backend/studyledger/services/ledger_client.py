# SPDX-License-Identifier: Apache-2.0
"""Remote ledger capability: session start, attendance, session close.

Every call returns a tagged LedgerResult instead of raising, so callers
decide which outcomes are failures. ``ALREADY_STARTED`` is the idempotent
collision of start_session (another commit or a retry got there first).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

import httpx

logger = logging.getLogger("studyledger")


class LedgerStatus(str, Enum):
    OK = "ok"
    ALREADY_STARTED = "already_started"
    ERROR = "error"


@dataclass(frozen=True)
class LedgerResult:
    status: LedgerStatus
    tx_ref: str | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status in (LedgerStatus.OK, LedgerStatus.ALREADY_STARTED)

    @classmethod
    def ok(cls, tx_ref: str | None = None) -> "LedgerResult":
        return cls(LedgerStatus.OK, tx_ref=tx_ref)

    @classmethod
    def already_started(cls) -> "LedgerResult":
        return cls(LedgerStatus.ALREADY_STARTED)

    @classmethod
    def failed(cls, error: str) -> "LedgerResult":
        return cls(LedgerStatus.ERROR, error=error)


class RemoteLedger(Protocol):
    def start_session(self, study_ref: str, midnight_utc: int) -> LedgerResult:
        ...

    def record_attendance(
        self, study_ref: str, midnight_utc: int, wallet_address: str, commit_timestamp: int
    ) -> LedgerResult:
        ...

    def close_session(self, study_ref: str, midnight_utc: int) -> LedgerResult:
        ...


class HttpRemoteLedger:
    """Ledger gateway over HTTP. Each call is bounded by ``timeout_seconds``."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 10.0,
        api_key: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds),
            headers=headers,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def _post(self, operation: str, path: str, payload: dict | None = None) -> httpx.Response | LedgerResult:
        try:
            return self._client.post(path, json=payload or {})
        except httpx.TimeoutException as e:
            logger.warning("Ledger %s timed out: %s", operation, e)
            return LedgerResult.failed(f"timeout: {e}")
        except httpx.HTTPError as e:
            logger.warning("Ledger %s transport error: %s", operation, e)
            return LedgerResult.failed(f"transport error: {e}")

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return f"HTTP {response.status_code}: {response.text[:200]}"
        if isinstance(body, dict):
            detail = body.get("error") or body.get("detail") or body
        else:
            detail = body
        return f"HTTP {response.status_code}: {detail}"

    def start_session(self, study_ref: str, midnight_utc: int) -> LedgerResult:
        response = self._post("start_session", f"/studies/{study_ref}/sessions", {"session_midnight": midnight_utc})
        if isinstance(response, LedgerResult):
            return response
        if response.status_code == httpx.codes.CONFLICT:
            return LedgerResult.already_started()
        if response.is_success:
            return LedgerResult.ok(self._tx_ref(response))
        return LedgerResult.failed(self._error_detail(response))

    def record_attendance(
        self, study_ref: str, midnight_utc: int, wallet_address: str, commit_timestamp: int
    ) -> LedgerResult:
        response = self._post(
            "record_attendance",
            f"/studies/{study_ref}/sessions/{midnight_utc}/attendance",
            {"participant": wallet_address, "commit_timestamp": commit_timestamp},
        )
        if isinstance(response, LedgerResult):
            return response
        if response.is_success:
            return LedgerResult.ok(self._tx_ref(response))
        return LedgerResult.failed(self._error_detail(response))

    def close_session(self, study_ref: str, midnight_utc: int) -> LedgerResult:
        response = self._post("close_session", f"/studies/{study_ref}/sessions/{midnight_utc}/close")
        if isinstance(response, LedgerResult):
            return response
        if response.is_success:
            return LedgerResult.ok(self._tx_ref(response))
        return LedgerResult.failed(self._error_detail(response))

    @staticmethod
    def _tx_ref(response: httpx.Response) -> str | None:
        try:
            body = response.json()
        except ValueError:
            return None
        return body.get("tx_ref") if isinstance(body, dict) else None
