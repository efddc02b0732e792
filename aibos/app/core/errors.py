"""Domain exceptions and problem-detail rendering.

Services raise subclasses of :class:`DomainError`. Each one is also a
``ValueError`` so callers that only care about "the request was rejected"
can keep catching ``ValueError``. The handlers registered by
:func:`register_exception_handlers` render every failure as an RFC 7807
``application/problem+json`` body::

    {"type": "about:blank", "title": "Conflict", "status": 409,
     "detail": "Period is already closed", "code": "PERIOD_ALREADY_CLOSED",
     "instance": "/api/v1/periods", "requestId": "..."}
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from aibos.app.core.logging_config import get_request_id

logger = logging.getLogger(__name__)

PROBLEM_MEDIA_TYPE = "application/problem+json"


class DomainError(ValueError):
    """Base class for business-rule failures raised by services."""

    code: str = "DOMAIN_ERROR"
    status_code: int = 400

    def __init__(
        self,
        detail: str,
        *,
        code: str | None = None,
        errors: list[Any] | None = None,
    ) -> None:
        super().__init__(detail)
        self.detail = detail
        if code is not None:
            self.code = code
        self.errors = errors


class ValidationFailed(DomainError):
    code = "VALIDATION_FAILED"
    status_code = 400


class NotFoundError(DomainError):
    code = "NOT_FOUND"
    status_code = 404


class ConflictError(DomainError):
    code = "CONFLICT"
    status_code = 409


class PermissionDenied(DomainError):
    code = "FORBIDDEN"
    status_code = 403


class LimitExceeded(DomainError):
    code = "LIMIT_EXCEEDED"
    status_code = 429


class AuthenticationFailed(DomainError):
    code = "INVALID_CREDENTIALS"
    status_code = 401


class AccountLocked(DomainError):
    code = "ACCOUNT_LOCKED"
    status_code = 423


class PostingError(ValidationFailed):
    """A journal failed GL validation."""

    code = "POSTING_ERROR"


def problem_response(
    request: Request,
    status_code: int,
    detail: str,
    *,
    code: str | None = None,
    errors: list[Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    try:
        title = HTTPStatus(status_code).phrase
    except ValueError:
        title = "Error"
    body: dict[str, Any] = {
        "type": "about:blank",
        "title": title,
        "status": status_code,
        "detail": detail,
        "code": code or title.upper().replace(" ", "_"),
        "instance": request.url.path,
        "requestId": get_request_id(),
    }
    if errors:
        body["errors"] = jsonable_encoder(errors)
    return JSONResponse(
        status_code=status_code,
        content=body,
        media_type=PROBLEM_MEDIA_TYPE,
        headers=headers,
    )


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Domain error %s: %s", exc.code, exc.detail)
    return problem_response(
        request, exc.status_code, exc.detail, code=exc.code, errors=exc.errors
    )


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    detail = exc.detail
    code: str | None = None
    if isinstance(detail, dict):
        code = detail.get("code")
        detail = detail.get("detail") or detail.get("message") or str(detail)
    return problem_response(
        request,
        exc.status_code,
        str(detail),
        code=code,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [
        {
            "loc": list(err.get("loc", ())),
            "msg": err.get("msg"),
            "type": err.get("type"),
        }
        for err in exc.errors()
    ]
    return problem_response(
        request,
        422,
        "Request body failed validation",
        code="VALIDATION_ERROR",
        errors=errors,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return problem_response(
        request, 500, "An unexpected error occurred", code="INTERNAL_ERROR"
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, domain_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
