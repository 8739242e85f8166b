"""
tabulator/errors.py
Centralized error handling.

ERROR RESPONSE STRUCTURE:
{
    "success": false,
    "error": "ErrorType",
    "message": "Human-readable description",
    "code": "UNIQUE_ERROR_CODE",
    "details": {} (optional)
}

HTTP STATUS CODE DISCIPLINE:
- 400: Validation failure (incomplete scorecard, bad tie-breaker, ...)
- 401: Identity tuple missing or invalid
- 403: Role or event mismatch
- 404: Referenced record does not exist
- 409: Event not active / concurrent modification
- 422: Malformed request body (Pydantic)
- 429: Rate limit exceeded
- 500: Never caused by user input
"""
import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from tabulator.exceptions import TabulationError

logger = logging.getLogger(__name__)


class ErrorCode:
    """Unique error codes for machine-readable error handling"""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"

    AUTH_REQUIRED = "AUTH_REQUIRED"
    AUTH_INVALID = "AUTH_INVALID"

    FORBIDDEN = "FORBIDDEN"
    EVENT_MISMATCH = "EVENT_MISMATCH"

    NOT_FOUND = "NOT_FOUND"

    RATE_LIMITED = "RATE_LIMITED"

    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorResponse(BaseModel):
    """Standard error response model"""
    success: bool = False
    error: str
    message: str
    code: str
    details: Optional[Dict[str, Any]] = None


def error_content(
    error: str,
    message: str,
    code: str,
    details: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    content = {
        "success": False,
        "error": error,
        "message": message,
        "code": code
    }
    if details:
        content["details"] = details
    return content


def tabulation_error_response(exc: TabulationError) -> JSONResponse:
    """Convert a service exception to the standard JSON body."""
    return JSONResponse(
        status_code=exc.status_code,
        content=error_content(type(exc).__name__, exc.message, exc.code, exc.details)
    )


# =============================================================================
# Exception handlers
# =============================================================================

async def tabulation_error_handler(request: Request, exc: TabulationError):
    logger.warning(f"{exc.code} on {request.url.path}: {exc.message}")
    return tabulation_error_response(exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")

    error_details = []
    for error in exc.errors():
        error_details.append({
            "loc": error.get("loc"),
            "msg": error.get("msg"),
            "type": error.get("type")
        })

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_content(
            "Validation Error",
            "Request body failed validation",
            ErrorCode.VALIDATION_ERROR,
            {"errors": error_details}
        )
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.warning(f"HTTP exception on {request.url.path}: {exc.detail}")

    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content=exc.detail, headers=exc.headers)

    return JSONResponse(
        status_code=exc.status_code,
        content=error_content(
            "Error",
            str(exc.detail),
            ErrorCode.INTERNAL_ERROR if exc.status_code >= 500 else ErrorCode.INVALID_INPUT
        ),
        headers=exc.headers
    )


async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning(f"Rate limit exceeded on {request.url.path}: {exc.detail}")
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=error_content(
            "Rate Limited",
            f"Too many requests: {exc.detail}",
            ErrorCode.RATE_LIMITED
        )
    )


async def global_exception_handler(request: Request, exc: Exception):
    log_id = str(uuid.uuid4())[:8]
    logger.exception(f"[{log_id}] Unhandled exception on {request.url.path}: {type(exc).__name__}")

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_content(
            "Internal Error",
            "An unexpected error occurred. Please try again later.",
            ErrorCode.INTERNAL_ERROR,
            {"log_id": log_id}
        )
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TabulationError, tabulation_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(Exception, global_exception_handler)
