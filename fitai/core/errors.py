"""Error taxonomy and FastAPI handlers.

Clients only ever see ``{"error": "<message>"}`` plus the HTTP status; the
code attribute is for logs.
"""

import logging
import builtins
from typing import Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request

from fitai.core.logging import get_request_id


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id


class AuthenticationMissingError(AppError):
    """No caller identity could be resolved."""
    code = "not_authenticated"
    status_code = 404


class InvalidInputError(AppError, ValueError):
    code = "invalid_input"
    status_code = 400


class NotFoundError(AppError, LookupError):
    code = "not_found"
    status_code = 404


class PermissionError(AppError, builtins.PermissionError):
    code = "forbidden"
    status_code = 403


class UpstreamFailureError(AppError):
    """A downstream API (completion service, Stripe, Clerk) failed or was unreachable."""
    code = "upstream_failure"
    status_code = 500


class UpstreamUnavailableError(UpstreamFailureError):
    pass


class MalformedUpstreamResponseError(AppError):
    code = "malformed_upstream_response"
    status_code = 500


class EmptyCompletionError(MalformedUpstreamResponseError):
    pass


class MalformedCompletionError(MalformedUpstreamResponseError):
    pass


class SignatureInvalidError(AppError):
    code = "signature_invalid"
    status_code = 400


class PersistenceFailureError(AppError):
    code = "persistence_failure"
    status_code = 500


class BillingDisabledError(AppError):
    code = "billing_disabled"
    status_code = 503


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _error_response(status_code: int, message: str, request_id: str) -> JSONResponse:
    response = JSONResponse(status_code=status_code, content={"error": message})
    response.headers["x-request-id"] = request_id
    return response


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    logger = logging.getLogger("fitai")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    return _error_response(exc.status_code, exc.message, rid)


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    message = exc.detail if isinstance(exc.detail, str) and exc.detail else "HTTP error"
    logger = logging.getLogger("fitai")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    return _error_response(exc.status_code, message, rid)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    rid = _extract_request_id(request)
    logger = logging.getLogger("fitai")
    logger.warning("request.invalid", extra={"request_id": rid, "error_code": "invalid_input", "status": 400})
    return _error_response(400, "Invalid request body.", rid)


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("fitai")
    logger.error("unhandled.exception", exc_info=True, extra={"request_id": rid, "error_code": "internal_error"})
    return _error_response(500, "Internal Server Error.", rid)
