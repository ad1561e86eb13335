"""FastAPI middleware for request tracing, error handling, and CORS.

Every EscrowEngineError leaving a route becomes a JSON body of the shape
``{"error": <code>, "message": ..., "retryable": bool}``. Failed or TimedOut
transactions add the full ``outcome``; duplicate creates add the ``escrow_id``
that the first request produced.

Middleware order, outermost first: RequestID, ErrorHandler, CORS.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from secure_transfer.domain.enums import ErrorKind
from secure_transfer.domain.exceptions import (
    DuplicateOperationError,
    EscrowEngineError,
    InvalidStateTransitionError,
    TransactionFailedError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 422,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.NOT_RECEIVER: 403,
    ErrorKind.NOT_SENDER: 403,
    ErrorKind.EXPIRED: 409,
    ErrorKind.NOT_EXPIRED: 409,
    ErrorKind.ALREADY_SETTLED: 409,
    ErrorKind.OPERATION_IN_PROGRESS: 409,
    ErrorKind.SUBMISSION_FAILED: 502,
    ErrorKind.TIMED_OUT: 504,
    ErrorKind.UNKNOWN: 500,
}


def status_for(exc: EscrowEngineError) -> int:
    """HTTP status for a domain error."""
    if isinstance(exc, InvalidStateTransitionError):
        return 409
    return STATUS_BY_KIND.get(exc.kind, 500)


def error_body(exc: EscrowEngineError) -> dict:
    body = {
        "error": exc.code,
        "message": exc.message,
        "retryable": exc.kind.caller_may_retry,
    }
    if isinstance(exc, TransactionFailedError):
        body["outcome"] = exc.outcome.to_dict()
    elif isinstance(exc, DuplicateOperationError) and exc.escrow_id is not None:
        body["escrow_id"] = exc.escrow_id
    return body


def _log_domain_error(exc: EscrowEngineError, status: int) -> None:
    log = logger.error if status >= 500 else logger.warning
    if isinstance(exc, TransactionFailedError):
        outcome = exc.outcome
        log(
            "transaction.failed",
            operation=outcome.operation.value,
            final_state=outcome.final_state.value,
            error_kind=exc.kind.value,
            escrow_id=outcome.escrow_id,
            operation_id=outcome.operation_id,
        )
    elif isinstance(exc, InvalidStateTransitionError):
        log("state_machine.invalid_transition", current=exc.current_state, attempted=exc.attempted)
    else:
        log("domain.rejected", code=exc.code, error=exc.message)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Bind X-Request-ID (caller-supplied or fresh) to every log entry and response."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id, method=request.method, path=request.url.path
        )

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Render domain exceptions as structured JSON; anything else is a 500."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        try:
            return await call_next(request)
        except EscrowEngineError as exc:
            status = status_for(exc)
            _log_domain_error(exc, status)
            return JSONResponse(status_code=status, content=error_body(exc))
        except Exception as exc:
            logger.exception("unhandled.error", error=str(exc))
            return JSONResponse(
                status_code=500,
                content={
                    "error": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                    "retryable": False,
                },
            )


def setup_middleware(app: FastAPI) -> None:
    """Register middleware. The last one added wraps all the others."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Tighten in production
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(RequestIDMiddleware)
