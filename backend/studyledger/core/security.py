# SPDX-License-Identifier: Apache-2.0
"""Rate limiting helpers, webhook signatures, sanitization, security middleware."""
from __future__ import annotations

import hashlib
import hmac
import logging
import re
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from studyledger.core.exceptions import (
    InvalidTransitionError,
    LedgerError,
    NotFoundError,
    ValidationError,
)

_limiter = Limiter(key_func=get_remote_address)
_logger = logging.getLogger("studyledger")

SIGNATURE_PREFIX = "sha256="


def get_limiter() -> Limiter:
    return _limiter


def rate_limit(s: str):
    return _limiter.limit(s)


def add_security_middleware(app: FastAPI, allowed_origins: list[str]) -> None:
    """Register exception handlers, security headers, and CORS. No business logic."""
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        error_id = str(uuid.uuid4())
        _logger.error("Unhandled exception %s: %s", error_id, exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "error_id": error_id},
        )

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        return JSONResponse(status_code=429, content={"error": f"Rate limit exceeded: {exc.detail}"})

    @app.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"error": str(exc)})

    @app.exception_handler(InvalidTransitionError)
    async def transition_handler(request: Request, exc: InvalidTransitionError):
        return JSONResponse(status_code=409, content={"error": str(exc)})

    @app.exception_handler(LedgerError)
    async def ledger_handler(request: Request, exc: LedgerError):
        return JSONResponse(status_code=502, content={"error": str(exc), "operation": exc.operation})

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Content-Security-Policy"] = "default-src 'self'"
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


def sign_payload(secret: str, body: bytes) -> str:
    """GitHub-style ``sha256=<hex>`` HMAC of the raw request body."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return SIGNATURE_PREFIX + digest


def verify_webhook_signature(secret: str | None, body: bytes, signature: str | None) -> bool:
    """Constant-time check of X-Hub-Signature-256. No secret configured means no check."""
    if not secret:
        return True
    if not signature or not signature.startswith(SIGNATURE_PREFIX):
        return False
    return hmac.compare_digest(sign_payload(secret, body), signature)


def sanitize_text(value: str, max_len: int = 2000) -> str:
    """Strip HTML/script tags and enforce max length."""
    if not value:
        return ""
    value = re.sub(r"<[^>]+>", "", value)
    value = re.sub(r"javascript:", "", value, flags=re.IGNORECASE)
    return value.strip()[:max_len]


def sha3_256_hex(*parts: bytes | str) -> str:
    """SHA3-256 hash of concatenated parts, hex-encoded."""
    h = hashlib.sha3_256()
    for p in parts:
        h.update(p.encode("utf-8") if isinstance(p, str) else p)
    return h.hexdigest()
