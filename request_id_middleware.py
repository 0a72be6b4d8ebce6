"""Request correlation middleware.

Every request gets a request_id (the caller's ``X-Request-ID`` when it sends
one, otherwise a fresh hex UUID4). It is bound into structlog contextvars
for the duration of the request, echoed back in the response header, and
one access line per request is logged with method, path, status and
duration.
"""
from __future__ import annotations

import re
import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from structlog.contextvars import bind_contextvars, clear_contextvars

logger = structlog.get_logger(__name__)

# Accept caller supplied ids only if they look like ids
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{8,64}$")


class RequestIdMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, header_name: str = "X-Request-ID") -> None:  # type: ignore[override]
        super().__init__(app)
        self.header_name = header_name

    def _request_id(self, request: Request) -> str:
        incoming = request.headers.get(self.header_name)
        if incoming and _VALID_REQUEST_ID.match(incoming):
            return incoming
        return uuid.uuid4().hex

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:  # type: ignore[override]
        request_id = self._request_id(request)
        clear_contextvars()
        bind_contextvars(request_id=request_id)
        request.state.request_id = request_id

        started = time.perf_counter()
        try:
            response: Response = await call_next(request)
            logger.info(
                "Request handled",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 1),
            )
        finally:
            clear_contextvars()

        response.headers[self.header_name] = request_id
        return response
