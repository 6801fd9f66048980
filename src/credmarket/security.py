"""
credmarket.security — HTTP plumbing shared by the API: JSON logs stamped with
the request context, admin auth, rate limiting and domain error mapping.
"""

import hmac
import logging
import os
import time
import uuid
from contextvars import ContextVar

from fastapi import HTTPException, Request, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import APIKeyHeader
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from .config import Settings
from .errors import (
    CredMarketError, DuplicateId, EmptyCredential, MalformedProof,
    NotFound, UnknownProgram, UpstreamUnavailable,
)

ADMIN_KEY_HEADER = "X-Admin-Key"
REQUEST_ID_HEADER = "X-Request-ID"

# id of the request being served; engine modules log without knowing about HTTP
request_id_var: ContextVar[str] = ContextVar("request_id", default="")


# ─── Structured logging ────────────────────────────────────────────

class RequestContextFilter(logging.Filter):
    """Stamps every ``credmarket.*`` record with the current request id."""

    def filter(self, record):
        record.request_id = request_id_var.get()
        return True


def setup_structured_logging(level: str = "INFO") -> logging.Logger:
    """Route the ``credmarket`` logger tree to a single JSON handler."""
    from pythonjsonlogger.json import JsonFormatter

    root = logging.getLogger("credmarket")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s",
            rename_fields={"asctime": "timestamp", "levelname": "level"},
        ))
        handler.addFilter(RequestContextFilter())
        root.addHandler(handler)
    return root


logger = setup_structured_logging(os.environ.get("CREDMARKET_LOG_LEVEL", "INFO"))


# ─── Rate limiting ─────────────────────────────────────────────────

limiter = Limiter(
    key_func=get_remote_address,
    enabled=os.environ.get("RATELIMIT_ENABLED", "true").lower() not in ("0", "false", "no"),
)


# ─── Access log ────────────────────────────────────────────────────

class AccessLogMiddleware(BaseHTTPMiddleware):
    """One JSON access line per request, keyed by route template and path ids.

    ``/progression/0xabc/sale`` logs as route ``/progression/{user}/sale``
    with ``user=0xabc``, so a user's or credential's requests can be grepped
    without parsing raw paths.
    """

    async def dispatch(self, request: Request, call_next):
        rid = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:8]
        token = request_id_var.set(rid)
        started = time.perf_counter()
        try:
            response = await call_next(request)
            route = request.scope.get("route")
            logger.info("request", extra={
                "method": request.method,
                "route": getattr(route, "path", request.url.path),
                "status": response.status_code,
                "duration_ms": round((time.perf_counter() - started) * 1000, 1),
                **request.scope.get("path_params", {}),
            })
        finally:
            request_id_var.reset(token)

        response.headers[REQUEST_ID_HEADER] = rid
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        return response


# ─── Admin auth ────────────────────────────────────────────────────

_admin_key_header = APIKeyHeader(name=ADMIN_KEY_HEADER, auto_error=False)


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


async def require_admin_key(request: Request, key: str = Security(_admin_key_header)):
    """Guards credential insertion and revocation; the key is read per request."""
    admin_key = os.environ.get("ADMIN_API_KEY", "")
    if not admin_key:
        raise HTTPException(status_code=503, detail="Admin access not configured")
    if key and hmac.compare_digest(key, admin_key):
        return True

    reason = "invalid admin key" if key else "missing admin key"
    logger.warning("Admin auth failed: %s", reason, extra={
        "event": "auth_failure", "ip": _client_ip(request), "route": request.url.path,
    })
    raise HTTPException(status_code=403 if key else 401, detail=reason.capitalize())


# ─── Domain errors → HTTP ─────────────────────────────────────────

_STATUS_FOR_ERROR = (
    (NotFound, 404),
    (UnknownProgram, 404),
    (DuplicateId, 409),
    (EmptyCredential, 422),
    (MalformedProof, 422),
    (UpstreamUnavailable, 503),
)


async def engine_error_handler(request: Request, exc: CredMarketError):
    status = next((code for cls, code in _STATUS_FOR_ERROR if isinstance(exc, cls)), 400)
    if status >= 500:
        logger.warning("Upstream failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=status, content={"detail": str(exc), "error": type(exc).__name__})


async def internal_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled %s on %s", type(exc).__name__, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def apply_security(app, settings: Settings):
    """CORS, rate limiting, access log and error handlers for the API app."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(CredMarketError, engine_error_handler)
    app.add_exception_handler(Exception, internal_error_handler)
    app.add_middleware(AccessLogMiddleware)
