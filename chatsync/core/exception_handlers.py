"""Maps domain errors to HTTP responses."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from chatsync.core.log_sanitizer import sanitize_for_logging
from chatsync.domain.errors import (
    AuthenticationError,
    DomainError,
    LLMError,
    LLMTimeoutError,
    MessageNotFoundError,
    RateLimitError,
    SessionCreateFailed,
    SessionNotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Checked in order; first match wins
_STATUS_BY_ERROR = (
    (ValidationError, 400),
    (AuthenticationError, 401),
    (SessionNotFoundError, 404),
    (MessageNotFoundError, 404),
    (RateLimitError, 429),
    (LLMTimeoutError, 504),
    (LLMError, 502),
    (SessionCreateFailed, 500),
)


def status_for_error(error: DomainError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status
    return 500


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    status = status_for_error(exc)
    log = logger.warning if status < 500 else logger.error
    log(
        "%s on %s %s: %s",
        type(exc).__name__,
        request.method,
        sanitize_for_logging(request.url.path),
        sanitize_for_logging(exc.message),
    )
    return JSONResponse(status_code=status, content={"error": exc.message, "code": exc.code})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, domain_error_handler)
