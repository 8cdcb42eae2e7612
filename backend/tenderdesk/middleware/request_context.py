from __future__ import annotations

import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from structlog.contextvars import bound_contextvars

REQUEST_ID_HEADER = "X-Request-Id"


def resolve_request_id(request: Request) -> str:
    inbound = str(request.headers.get(REQUEST_ID_HEADER) or "").strip()
    return inbound or str(uuid.uuid4())


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Correlates a request's tender logs and problem bodies with one id."""

    async def dispatch(self, request: Request, call_next):
        request_id = resolve_request_id(request)
        request.state.request_id = request_id
        with bound_contextvars(request_id=request_id, http_method=request.method.upper()):
            response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
