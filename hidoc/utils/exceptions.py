from typing import Any, Optional

from fastapi import Request, HTTPException, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from hidoc.middleware.tracing import TRACE_ID_CTX_VAR


class HidocError(Exception):
    """Base class for errors raised by the interpretation backend."""


class ConfigurationError(HidocError):
    """The model service is not configured (e.g. missing credential)."""


class TransientProviderError(HidocError):
    """Network, timeout or provider-side failure talking to the model."""


class SchemaValidationError(HidocError):
    """Model output is not JSON or does not satisfy the interpretation contract."""

    def __init__(self, message: str, raw: Optional[str] = None):
        super().__init__(message)
        self.raw = raw


class PersistenceContractViolation(HidocError):
    """A validated entry is missing a field the storage row requires."""

    def __init__(self, message: str, entry_type: Optional[str] = None):
        super().__init__(message)
        self.entry_type = entry_type


def status_to_code(status_code: int) -> str:
    mapping = {
        400: "BAD_REQUEST",
        401: "UNAUTHORIZED",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        413: "PAYLOAD_TOO_LARGE",
        415: "UNSUPPORTED_MEDIA_TYPE",
        422: "UNPROCESSABLE_ENTITY",
        429: "TOO_MANY_REQUESTS",
        500: "INTERNAL_SERVER_ERROR",
    }
    return mapping.get(status_code, f"HTTP_{status_code}")


def _envelope(status_code: int, code: str, message: str, details: Any = None) -> JSONResponse:
    body = {"code": code, "message": message, "trace_id": TRACE_ID_CTX_VAR.get()}
    if details is not None:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body)


async def handle_http_exception(request: Request, exc: HTTPException):
    detail: Any = exc.detail
    message = detail if isinstance(detail, str) else "HTTP error"
    return _envelope(exc.status_code, status_to_code(exc.status_code), message, detail)


async def handle_validation_exception(request: Request, exc: RequestValidationError):
    return _envelope(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "UNPROCESSABLE_ENTITY",
        "Request validation failed",
        jsonable_encoder(exc.errors()),
    )


async def handle_persistence_violation(request: Request, exc: PersistenceContractViolation):
    return _envelope(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "PERSISTENCE_CONTRACT_VIOLATION",
        "Entry could not be stored",
        {"error": str(exc), "entry_type": exc.entry_type},
    )


async def handle_unhandled_exception(request: Request, exc: Exception):
    return _envelope(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "INTERNAL_SERVER_ERROR",
        "An unexpected error occurred",
        str(exc),
    )
