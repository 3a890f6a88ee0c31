"""BidEval API error handling.

Provides BidEvalHttpError and the FastAPI exception handlers that turn every
failure into the error envelope with request_id tracing.

Global exception handlers:
- EvaluationError: Domain errors mapped to 400/403/404/409/422
- RfqDirectoryError: RFQ service failures mapped to 502
- BidEvalHttpError: Route-level errors with a structured envelope
- HTTPException: FastAPI/Starlette HTTP exceptions
- RequestValidationError: Pydantic validation errors
- Exception: Catch-all for unhandled exceptions (fail closed, no stack traces)
"""

import logging
from http import HTTPStatus
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from bideval.api.middleware.request_id import REQUEST_ID_HEADER, request_id_for
from bideval.engine.errors import (
    AuthorizationError,
    DeadlinePassedError,
    EvaluationError,
    NotFoundError,
    StateConflictError,
    ThresholdNotMetError,
    ValidationError,
)
from bideval.services.collaborators.rfq import RfqDirectoryError

logger = logging.getLogger(__name__)


class ErrorResponse(BaseModel):
    """Body of every non-2xx response."""

    code: str
    message: str
    details: dict[str, Any] | None = None
    request_id: str


def make_error_response(
    request: Request,
    *,
    code: str,
    message: str,
    http_status: int,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    """Render the error envelope, echoing the request id as a header."""
    body = ErrorResponse(
        code=code, message=message, details=details, request_id=request_id_for(request)
    )
    return JSONResponse(
        status_code=http_status,
        content=body.model_dump(),
        headers={REQUEST_ID_HEADER: body.request_id},
    )


def code_for_http_status(status_code: int) -> str:
    """Upper-case status name, e.g. 405 -> METHOD_NOT_ALLOWED."""
    if status_code == 500:
        return "INTERNAL_ERROR"
    try:
        return HTTPStatus(status_code).name
    except ValueError:
        return "ERROR"


class BidEvalHttpError(Exception):
    """Application-level HTTP error with structured error envelope.

    Attributes:
        status_code: HTTP status code (e.g., 401, 404, 500).
        code: Machine-readable error code (e.g., "UNAUTHORIZED").
        message: Human-readable error message.
        details: Optional dict with additional error context.
    """

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details


# Most specific first; StateConflictError covers ResultsNotAvailableError.
DOMAIN_ERROR_STATUS: tuple[tuple[type[EvaluationError], int], ...] = (
    (NotFoundError, 404),
    (ValidationError, 400),
    (AuthorizationError, 403),
    (ThresholdNotMetError, 422),
    (DeadlinePassedError, 409),
    (StateConflictError, 409),
)


def status_for_domain_error(exc: EvaluationError) -> int:
    """Return the HTTP status for a domain error (500 when unmapped)."""
    for error_type, status in DOMAIN_ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    return 500


async def bideval_http_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """FastAPI exception handler for BidEvalHttpError."""
    assert isinstance(exc, BidEvalHttpError)

    return make_error_response(
        request,
        code=exc.code,
        message=exc.message,
        http_status=exc.status_code,
        details=exc.details,
    )


async def evaluation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """FastAPI exception handler for domain errors.

    The domain error's code and structured details pass through unchanged.
    """
    assert isinstance(exc, EvaluationError)

    status = status_for_domain_error(exc)
    if status >= 500:
        return await generic_exception_handler(request, exc)

    return make_error_response(
        request,
        code=exc.code,
        message=exc.message,
        http_status=status,
        details=exc.to_details(),
    )


async def rfq_directory_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """FastAPI exception handler for RFQ directory failures."""
    assert isinstance(exc, RfqDirectoryError)

    logger.warning("RFQ directory request failed: %s", exc)
    return make_error_response(
        request,
        code="RFQ_SERVICE_UNAVAILABLE",
        message="The RFQ service could not be reached",
        http_status=502,
        details=None,
    )


async def http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """FastAPI exception handler for HTTPException."""
    assert isinstance(exc, HTTPException)

    code = code_for_http_status(exc.status_code)
    message = str(exc.detail) if exc.detail else f"HTTP {exc.status_code}"

    return make_error_response(
        request,
        code=code,
        message=message,
        http_status=exc.status_code,
        details=None,
    )


async def request_validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """FastAPI exception handler for RequestValidationError.

    Does not expose raw validation internals to avoid information leakage.
    """
    assert isinstance(exc, RequestValidationError)

    safe_details: list[dict[str, Any]] = []
    for error in exc.errors():
        loc = error.get("loc", ())
        safe_loc = [str(part) for part in loc if part not in ("body", "query", "path")]
        safe_details.append(
            {
                "field": ".".join(safe_loc) if safe_loc else "request",
                "message": error.get("msg", "Validation error"),
            }
        )

    return make_error_response(
        request,
        code="REQUEST_VALIDATION_FAILED",
        message="Request validation failed",
        http_status=422,
        details={"errors": safe_details} if safe_details else None,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler for unhandled exceptions.

    Fails closed: returns 500 with a safe generic message and logs the error.
    """
    request_id = getattr(request.state, "request_id", None)

    logger.exception(
        "Unhandled exception: %s",
        type(exc).__name__,
        extra={"request_id": request_id},
    )

    return make_error_response(
        request,
        code="INTERNAL_ERROR",
        message="An internal error occurred",
        http_status=500,
        details=None,
    )
