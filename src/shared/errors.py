"""
Unified Error Handling for the Migrant Help chat service

Standard error response model and exception classes. Every error leaving the
HTTP surface has the body ``{"error": <code>, "message": <optional text>}``.

Usage:
    from shared.errors import (
        register_exception_handlers,
        BadRequestError,
        RateLimitError,
    )

    # In FastAPI app setup
    register_exception_handlers(app)

    # In route handlers
    if not text:
        raise BadRequestError(ErrorCode.MISSING_USER_MESSAGE)

    if over_daily_cap:
        raise RateLimitError()
"""
from typing import Optional, Any, Dict
from pydantic import BaseModel
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from enum import Enum
import structlog

logger = structlog.get_logger()


class ErrorCode(str, Enum):
    """Error codes returned in the ``error`` field."""

    # Client errors (4xx)
    MISSING_USER_MESSAGE = "missing_user_message"
    MESSAGE_TOO_LONG = "message_too_long"
    INVALID_REQUEST = "invalid_request"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    METHOD_NOT_ALLOWED = "method_not_allowed"
    RATE_LIMITED = "rate_limited"

    # Server errors (5xx)
    CHAT_FAILED = "chat_failed"
    EMBEDDING_FAILED = "embedding_failed"
    GENERATION_FAILED = "generation_failed"
    CREATE_CHAT_FAILED = "create_chat_failed"


class ErrorResponse(BaseModel):
    """
    Error response format.

    Example response:
    {
        "error": "rate_limited",
        "message": "Daily request limit reached. Try again tomorrow."
    }
    """
    error: str
    message: Optional[str] = None


class ChatServiceError(Exception):
    """
    Base exception class for the chat service.

    Carries the wire code, the caller-facing (localized) message and the HTTP status.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: Optional[str] = None,
        status_code: int = 500,
        detail: Optional[str] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        # Logged only, never returned to the caller
        self.detail = detail
        super().__init__(message or code.value)


# ==============================================================================
# Client Errors (4xx)
# ==============================================================================

class BadRequestError(ChatServiceError):
    """400 Bad Request - Invalid input or request format."""
    def __init__(self, code: ErrorCode = ErrorCode.INVALID_REQUEST, message: Optional[str] = None,
                 detail: Optional[str] = None):
        super().__init__(code, message, 400, detail)


class UnauthorizedError(ChatServiceError):
    """401 Unauthorized - Missing or incorrect caller credential."""
    def __init__(self, message: Optional[str] = None, detail: Optional[str] = None):
        super().__init__(ErrorCode.UNAUTHORIZED, message, 401, detail)


class RateLimitError(ChatServiceError):
    """429 Too Many Requests - Daily per-IP ceiling reached."""
    def __init__(self, message: Optional[str] = None, detail: Optional[str] = None):
        super().__init__(ErrorCode.RATE_LIMITED, message, 429, detail)


# ==============================================================================
# Server Errors (5xx)
# ==============================================================================

class InternalError(ChatServiceError):
    """500 Internal Server Error - Unexpected error occurred."""
    def __init__(self, message: Optional[str] = None, detail: Optional[str] = None):
        super().__init__(ErrorCode.CHAT_FAILED, message, 500, detail)


class EmbeddingError(ChatServiceError):
    """500 Embedding Error - No query vector, so no context can be built."""
    def __init__(self, message: Optional[str] = None, detail: Optional[str] = None):
        super().__init__(ErrorCode.EMBEDDING_FAILED, message, 500, detail)


class GenerationError(ChatServiceError):
    """500 Generation Error - Generation backend failed with a non-quota error."""
    def __init__(self, message: Optional[str] = None, detail: Optional[str] = None):
        super().__init__(ErrorCode.GENERATION_FAILED, message, 500, detail)


class DatastoreError(ChatServiceError):
    """500 Datastore Error - A datastore write the request depends on failed."""
    def __init__(self, message: Optional[str] = None, detail: Optional[str] = None):
        super().__init__(ErrorCode.CREATE_CHAT_FAILED, message, 500, detail)


class QuotaExceededError(Exception):
    """
    Raised by a generation backend when it reports a rate-limit/quota signal.

    Not an HTTP error: the generation orchestrator consumes it to decide on
    the retry and the soft apology.
    """

    def __init__(self, message: str = "quota exceeded", retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(message)


# ==============================================================================
# Exception Handlers
# ==============================================================================

def create_error_response(code: ErrorCode, message: Optional[str] = None) -> Dict[str, Any]:
    """
    Create an error response dictionary.

    Usage:
        return JSONResponse(status_code=400, content=create_error_response(
            ErrorCode.MISSING_USER_MESSAGE, "Missing user message"
        ))
    """
    return ErrorResponse(
        error=code.value if isinstance(code, ErrorCode) else code,
        message=message,
    ).model_dump(exclude_none=True)


async def chat_service_exception_handler(request: Request, exc: ChatServiceError) -> JSONResponse:
    """
    FastAPI exception handler for ChatServiceError and subclasses.

    Logs the error and returns a standardized ErrorResponse.
    """
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "chat_service_error",
        code=exc.code.value,
        message=exc.message,
        status_code=exc.status_code,
        detail=exc.detail,
        request_id=getattr(request.state, "request_id", None),
        path=str(request.url.path)
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(exc.code, exc.message)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies are a 400 with a stable code, not FastAPI's 422."""
    logger.warning(
        "invalid_request_body",
        errors=len(exc.errors()),
        path=str(request.url.path)
    )
    return JSONResponse(
        status_code=400,
        content=create_error_response(ErrorCode.INVALID_REQUEST, "Request body is invalid")
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Routing errors (unknown path, wrong method) in the common error shape."""
    if exc.status_code == 405:
        code = ErrorCode.METHOD_NOT_ALLOWED
    elif exc.status_code == 404:
        code = ErrorCode.NOT_FOUND
    elif exc.status_code == 401:
        code = ErrorCode.UNAUTHORIZED
    else:
        code = ErrorCode.INVALID_REQUEST if exc.status_code < 500 else ErrorCode.CHAT_FAILED

    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(code, str(exc.detail) if exc.detail else None),
        headers=getattr(exc, "headers", None)
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Catch-all exception handler for unhandled exceptions.

    Logs the traceback; the caller only sees {"error": "chat_failed"}.
    Does not expose internal details to clients.
    """
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        request_id=getattr(request.state, "request_id", None),
        path=str(request.url.path),
        exc_info=exc
    )

    return JSONResponse(
        status_code=500,
        content=create_error_response(ErrorCode.CHAT_FAILED, "An unexpected error occurred")
    )


def register_exception_handlers(app) -> None:
    """
    Register exception handlers with a FastAPI application.

    Usage:
        from shared.errors import register_exception_handlers

        app = FastAPI()
        register_exception_handlers(app)
    """
    app.add_exception_handler(ChatServiceError, chat_service_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    logger.info("exception_handlers_registered")
