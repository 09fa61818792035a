"""Middlewares personalizados del servicio."""

from __future__ import annotations

import logging
import time
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from chatdesk.core.config import settings
from chatdesk.core.logging import get_logger, resolve_log_level

logger = get_logger("chatdesk.request")


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Registra inicio, fin y fallos de cada request con un `request_id`."""

    def __init__(self, app, *, level: str | None = None, skip_prefixes: tuple[str, ...] = ()):
        super().__init__(app)
        self._level = resolve_log_level(level or settings.request_log_level)
        self._skip_prefixes = skip_prefixes or settings.request_log_skip_prefixes

    async def dispatch(self, request: Request, call_next):
        request_id = uuid4().hex
        path = request.url.path
        quiet = path.startswith(self._skip_prefixes)
        start = time.perf_counter()
        client_ip = _client_ip(request)

        if not quiet:
            logger.log(
                self._level,
                "request.started",
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": path,
                    "client_ip": client_ip,
                    "user_agent": request.headers.get("user-agent"),
                },
            )

        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.exception(
                "request.failed",
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": path,
                    "duration_ms": round(duration_ms, 2),
                    "client_ip": client_ip,
                },
            )
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["x-request-id"] = request_id

        if not quiet:
            level = logging.WARNING if response.status_code >= 500 else self._level
            logger.log(
                level,
                "request.completed",
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": path,
                    "status_code": response.status_code,
                    "duration_ms": round(duration_ms, 2),
                    "client_ip": client_ip,
                },
            )

        return response
