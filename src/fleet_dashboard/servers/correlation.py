"""Correlation ID middleware for request tracing.

Takes the caller's ``X-Correlation-ID`` or generates a fresh one per incoming
HTTP request, sets it in ``request.state.correlation_id`` for handlers (which
pass it to the credential engines for log context) and echoes it in the
response headers.

Secrets MUST NOT be logged. The correlation ID is a random UUID4 hex string.
"""

from __future__ import annotations

import logging
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

_HEADER_NAME = "X-Correlation-ID"
_logger = logging.getLogger("fleet-dashboard.correlation")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that attaches a per-request correlation ID."""

    def __init__(self, app: ASGIApp, header_name: str = _HEADER_NAME) -> None:
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = request.headers.get(self.header_name) or uuid.uuid4().hex
        request.state.correlation_id = correlation_id
        _logger.debug(
            "%s %s correlation_id=%s",
            request.method,
            request.url.path,
            correlation_id,
            extra={"correlation_id": correlation_id},
        )
        response = await call_next(request)
        response.headers[self.header_name] = correlation_id
        return response
