"""Error normalization and handlers."""

import logging
from typing import Optional
from uuid import uuid4

from starlette.exceptions import HTTPException
from fastapi.responses import JSONResponse
from starlette.requests import Request

from subsync.core.logging import get_request_id


class AppError(Exception):
    code = "app_error"
    status_code = 500
    # None: error for 5xx, warning otherwise
    log_level: Optional[int] = None

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id


class NotFoundError(AppError, LookupError):
    code = "not_found"
    status_code = 404


class ConflictError(AppError):
    code = "conflict"
    status_code = 409


class PayloadTooLargeError(AppError):
    code = "payload_too_large"
    status_code = 413


def extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _error_payload(code: str, message: str, request_id: str) -> dict:
    return {
        "error": {"code": code, "message": message, "request_id": request_id},
        "detail": message,
    }


def error_response(code: str, message: str, status_code: int, request_id: str) -> JSONResponse:
    """JSON error envelope with the request id echoed in x-request-id."""
    response = JSONResponse(status_code=status_code, content=_error_payload(code, message, request_id))
    response.headers["x-request-id"] = request_id
    return response


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or extract_request_id(request)
    logger = logging.getLogger("subsync")
    log_level = exc.log_level
    if log_level is None:
        log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        f"app.error {exc.code}: {exc.message}",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    return error_response(exc.code, exc.message, exc.status_code, rid)


async def http_error_handler(request: Request, exc: HTTPException):
    rid = extract_request_id(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    message = exc.detail if exc.detail else "HTTP error"
    logger = logging.getLogger("subsync")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    return error_response(code, message, exc.status_code, rid)


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = extract_request_id(request)
    logger = logging.getLogger("subsync")
    logger.error("unhandled.exception", exc_info=True, extra={"request_id": rid, "error_code": "internal_error"})
    return error_response("internal_error", "Unexpected error", 500, rid)
