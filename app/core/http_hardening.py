from __future__ import annotations

import logging
import re
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request

REQUEST_ID_HEADER = "X-Request-ID"
CORRELATION_ID_HEADER = "X-Correlation-ID"
RESPONSE_TIME_HEADER = "X-Response-Time-Ms"
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,128}$")
_LOG = logging.getLogger("app.http")

# Browsers of requesters and mechanics share their location, open live feeds
# over WebSocket and load map tiles; nothing else is granted.
_CSP_DIRECTIVES = (
    ("default-src", "'self'"),
    ("connect-src", "'self' ws: wss:"),
    ("img-src", "'self' data: https://*.tile.openstreetmap.org"),
    ("object-src", "'none'"),
    ("frame-ancestors", "'none'"),
    ("base-uri", "'self'"),
)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Permissions-Policy": "geolocation=(self), microphone=(), camera=(), payment=(), usb=()",
    "Content-Security-Policy": "; ".join(f"{name} {value}" for name, value in _CSP_DIRECTIVES),
}

# Static lookup tables; everything else carries per-user data.
CACHEABLE_PATHS = {"/api/meta/display": "public, max-age=300"}


def resolve_request_id(request: Request) -> str:
    for header in (REQUEST_ID_HEADER, CORRELATION_ID_HEADER):
        value = str(request.headers.get(header) or "").strip()
        if value and _REQUEST_ID_RE.fullmatch(value):
            return value
    return uuid4().hex


def cache_control_for(path: str) -> str:
    return CACHEABLE_PATHS.get(path, "no-store")


def _log_level(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code in (401, 403, 409):
        return logging.WARNING
    return logging.INFO


def install_http_hardening(app: FastAPI) -> None:
    @app.middleware("http")
    async def _http_hardening_middleware(request: Request, call_next):
        request_id = resolve_request_id(request)
        request.state.request_id = request_id
        started_at = perf_counter()

        response = await call_next(request)

        duration_ms = (perf_counter() - started_at) * 1000.0
        response.headers.update(SECURITY_HEADERS)
        response.headers["Cache-Control"] = cache_control_for(request.url.path)
        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers[RESPONSE_TIME_HEADER] = f"{duration_ms:.1f}"

        _LOG.log(
            _log_level(response.status_code),
            "%s %s status=%s duration_ms=%.2f request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            request_id,
        )
        return response
