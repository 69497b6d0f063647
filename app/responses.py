"""
Envelope rendering and the closed set of response codes.

Every endpoint answers with ``{"code", "message", "data"}``.  Each
``ServiceError`` subclass maps to exactly one code, and the mapping is
checked to be total and injective at import time.
"""
import logging
from enum import Enum
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.errors import (
    AlreadyExistsError,
    InternalError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
    RequestCancelledError,
    ServiceError,
    TokenRevokedError,
    UnauthenticatedError,
    UnavailableError,
)

logger = logging.getLogger(__name__)


class ResponseCode(str, Enum):
    SUCCESS = "000"
    UNKNOWN = "002"
    INVALID_ARGUMENT = "003"
    NOT_FOUND = "005"
    ALREADY_EXISTS = "006"
    PERMISSION_DENIED = "007"
    INTERNAL = "013"
    UNAUTHENTICATED = "014"
    UNAVAILABLE = "015"
    UNAUTHORIZED = "016"


# error class -> (code, HTTP status)
_ERROR_CODES: dict[type[ServiceError], tuple[ResponseCode, int]] = {
    RequestCancelledError: (ResponseCode.UNKNOWN, 504),
    InvalidArgumentError: (ResponseCode.INVALID_ARGUMENT, 400),
    NotFoundError: (ResponseCode.NOT_FOUND, 404),
    AlreadyExistsError: (ResponseCode.ALREADY_EXISTS, 409),
    PermissionDeniedError: (ResponseCode.PERMISSION_DENIED, 403),
    InternalError: (ResponseCode.INTERNAL, 500),
    UnauthenticatedError: (ResponseCode.UNAUTHENTICATED, 401),
    UnavailableError: (ResponseCode.UNAVAILABLE, 503),
    TokenRevokedError: (ResponseCode.UNAUTHORIZED, 401),
}

_HINTS: dict[ResponseCode, str] = {
    ResponseCode.UNKNOWN: "Retry with a longer deadline.",
    ResponseCode.INVALID_ARGUMENT: "Check input parameters for validity.",
    ResponseCode.NOT_FOUND: "Verify the resource ID exists.",
    ResponseCode.ALREADY_EXISTS: "Use a different value or update the existing resource.",
    ResponseCode.PERMISSION_DENIED: "Ensure you have the required permissions.",
    ResponseCode.INTERNAL: "Contact support if the issue persists.",
    ResponseCode.UNAUTHENTICATED: "Provide valid authentication credentials.",
    ResponseCode.UNAVAILABLE: "Please try again later.",
    ResponseCode.UNAUTHORIZED: "Log in again to obtain a new token.",
}


def _check_mapping() -> None:
    codes = [code for code, _ in _ERROR_CODES.values()]
    if len(set(codes)) != len(codes):
        raise RuntimeError("two error classes share a response code")
    pending = list(ServiceError.__subclasses__())
    while pending:
        cls = pending.pop()
        if cls not in _ERROR_CODES:
            raise RuntimeError(f"{cls.__name__} has no response code")
        pending.extend(cls.__subclasses__())


_check_mapping()


# ---------------------------------------------------------------------------
# Mapping helpers
# ---------------------------------------------------------------------------

def code_for(exc: ServiceError) -> ResponseCode:
    """Return the response code for *exc*, resolving subclasses by MRO."""
    return _lookup(exc)[0]


def http_status_for(exc: ServiceError) -> int:
    return _lookup(exc)[1]


def _lookup(exc: ServiceError) -> tuple[ResponseCode, int]:
    for cls in type(exc).__mro__:
        if cls in _ERROR_CODES:
            return _ERROR_CODES[cls]
    return ResponseCode.UNKNOWN, 500


def with_hint(code: ResponseCode, message: str) -> str:
    hint = _HINTS.get(code)
    if not hint:
        return message
    return f"{message.rstrip('.')}. {hint}"


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------

def success(data: Any = None, message: str = "success") -> dict:
    return {
        "code": ResponseCode.SUCCESS.value,
        "message": message,
        "data": jsonable_encoder(data),
    }


def failure(code: ResponseCode, message: str) -> dict:
    return {"code": code.value, "message": with_hint(code, message), "data": None}


def error_response(exc: ServiceError) -> JSONResponse:
    code, status_code = _lookup(exc)
    return JSONResponse(status_code=status_code, content=failure(code, exc.message))


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

async def _service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    return error_response(exc)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = sorted(
        {".".join(str(part) for part in err.get("loc", ()) if part != "body") for err in exc.errors()}
        - {""}
    )
    message = "invalid request"
    if fields:
        message = f"invalid request fields: {', '.join(fields)}"
    return JSONResponse(
        status_code=400,
        content=failure(ResponseCode.INVALID_ARGUMENT, message),
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=failure(ResponseCode.INTERNAL, InternalError.default_message),
    )


def install_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, _service_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
