from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.responses import ORJSONResponse

from .settings import get_settings

PROBLEM_JSON = "application/problem+json"

_TITLES: dict[int, str] = {
    400: "Bad Request",
    404: "Not Found",
    405: "Method Not Allowed",
    409: "Conflict",
    412: "Precondition Failed",
    422: "Unprocessable Entity",
    502: "Bad Gateway",
    503: "Service Unavailable",
}


def default_title(status_code: int) -> str:
    if status_code in _TITLES:
        return _TITLES[status_code]
    return "Internal Server Error" if status_code >= 500 else "Error"


def _request_id(request: Request) -> str | None:
    rid = getattr(getattr(request, "state", None), "request_id", None)
    if rid:
        return str(rid)
    hdr = request.headers.get("x-request-id")
    return str(hdr) if hdr else None


def problem_payload(
    *,
    request: Request,
    status_code: int,
    title: str | None = None,
    detail: str | None = None,
    type: str = "about:blank",
    errors: list[dict[str, Any]] | None = None,
    extensions: dict[str, Any] | None = None,
) -> dict[str, Any]:
    code = int(status_code)
    payload: dict[str, Any] = {
        "type": type or "about:blank",
        "title": title or default_title(code),
        "status": code,
    }
    if detail:
        payload["detail"] = str(detail)

    path = str(getattr(request.url, "path", "") or "")
    if path:
        payload["instance"] = path

    rid = _request_id(request)
    if rid:
        payload["requestId"] = rid
    if errors:
        payload["errors"] = errors
    if extensions:
        # Extension members live under one key so they never shadow RFC7807 fields.
        payload["extensions"] = extensions
    return payload


def problem_response(
    *,
    request: Request,
    status_code: int,
    title: str | None = None,
    detail: str | None = None,
    type: str = "about:blank",
    errors: list[dict[str, Any]] | None = None,
    extensions: dict[str, Any] | None = None,
) -> ORJSONResponse:
    code = int(status_code)
    # No internal details for server errors in production.
    if code >= 500 and get_settings().is_production:
        detail = None

    return ORJSONResponse(
        status_code=code,
        content=problem_payload(
            request=request,
            status_code=code,
            title=title,
            detail=detail,
            type=type,
            errors=errors,
            extensions=extensions,
        ),
        media_type=PROBLEM_JSON,
    )
