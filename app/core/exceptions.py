"""Application-level exceptions and FastAPI exception handlers."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, status_code: int = 500, code: str = "INTERNAL_ERROR"):
        self.message = message
        self.status_code = status_code
        self.code = code
        super().__init__(message)

class ValidationError(AppException):
    def __init__(self, message: str):
        super().__init__(message, status_code=400, code="VALIDATION_ERROR")

class InvalidTokenError(AppException):
    def __init__(self, message: str = "Invalid token"):
        super().__init__(message, status_code=404, code="INVALID_TOKEN")

class TokenExpiredError(AppException):
    def __init__(self, message: str = "Token expired"):
        super().__init__(message, status_code=403, code="TOKEN_EXPIRED")

class SubmissionLimitError(AppException):
    def __init__(self, max_submissions: int):
        self.max_submissions = max_submissions
        super().__init__(
            f"Submission limit reached (max {max_submissions}).",
            status_code=429,
            code="SUBMISSION_LIMIT",
        )

class UpstreamReadError(AppException):
    """The gift list could not be downloaded or parsed."""

    def __init__(self, message: str = "Failed to read gift list"):
        super().__init__(message, status_code=500, code="UPSTREAM_READ_ERROR")

class UpstreamWriteError(AppException):
    """The updated gift list could not be uploaded."""

    def __init__(self, message: str = "Failed to update gift list"):
        super().__init__(message, status_code=500, code="UPSTREAM_WRITE_ERROR")

class AuthError(AppException):
    """Raised when the Graph access token cannot be acquired."""

    def __init__(self, message: str = "Upstream authentication failed"):
        super().__init__(message, status_code=500, code="AUTH_ERROR")

class VersionConflictError(AppException):
    """The stored table changed between read and write."""

    def __init__(self, message: str = "Gift list changed during update"):
        super().__init__(message, status_code=409, code="VERSION_CONFLICT")

# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

_STATUS_MESSAGES: dict[int, str] = {
    404: "Not found",
    405: "Method not allowed",
}

def _error_body(message: str) -> dict:
    return {"error": message}

def register_exception_handlers(app: FastAPI) -> None:
    """Attach all custom exception handlers to the FastAPI app."""

    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.message),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        message = _STATUS_MESSAGES.get(exc.status_code) or str(exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(message),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=_error_body("Invalid request body"),
        )

    @app.exception_handler(Exception)
    async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content=_error_body("An unexpected error occurred"),
        )
