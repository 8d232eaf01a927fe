"""Error taxonomy and FastAPI exception handlers.

Every failure leaves the API as the common envelope
``{"success": false, "message": ..., "code": ...}``. Domain code raises one of
the ``AppError`` subclasses below; routers never build error responses by hand.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status

logger = logging.getLogger("goldmarket.errors")


class AppError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        *,
        extra: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.extra = extra or {}
        self.headers = headers

    def to_content(self) -> Dict[str, Any]:
        content: Dict[str, Any] = {
            "success": False,
            "message": self.message,
            "code": self.code,
        }
        content.update(self.extra)
        return content


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str = "Validation failed",
        code: Optional[str] = None,
        errors: Optional[List[Dict[str, str]]] = None,
    ):
        super().__init__(message, code, extra={"errors": errors} if errors else None)


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class AuthenticationError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "AUTH_REQUIRED"


class AuthorizationError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "INSUFFICIENT_PERMISSIONS"


class RateLimitError(AppError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, message: str, retry_after: int):
        super().__init__(
            message,
            extra={"retryAfter": retry_after},
            headers={"Retry-After": str(retry_after)},
        )
        self.retry_after = retry_after


class LockedError(AppError):
    status_code = status.HTTP_423_LOCKED
    code = "ACCOUNT_LOCKED"

    def __init__(self, remaining_seconds: int):
        super().__init__(
            f"Account locked. Try again in {remaining_seconds} seconds",
            extra={"locked": True, "remainingTime": remaining_seconds},
        )
        self.remaining_seconds = remaining_seconds


class PricingError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "INVALID_RATE"


class SecurityCheckError(AppError):
    """Unexpected failure inside one of the security stages."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "SECURITY_ERROR"


def _is_development(request: Request) -> bool:
    settings = getattr(request.app.state, "settings", None)
    return bool(settings is not None and settings.is_development)


def app_error_handler(request: Request, exc: AppError):  # type: ignore
    return JSONResponse(
        status_code=exc.status_code, content=exc.to_content(), headers=exc.headers
    )


_HTTP_CODES = {
    status.HTTP_404_NOT_FOUND: "NOT_FOUND",
    status.HTTP_405_METHOD_NOT_ALLOWED: "METHOD_NOT_ALLOWED",
}


def http_error_handler(request: Request, exc):  # type: ignore
    status_code = getattr(exc, "status_code", status.HTTP_404_NOT_FOUND)
    if status_code == status.HTTP_404_NOT_FOUND:
        message = f"No route for {request.method} {request.url.path}"
    else:
        message = str(getattr(exc, "detail", "")) or "Request failed"
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "message": message,
            "code": _HTTP_CODES.get(status_code, "HTTP_ERROR"),
        },
        headers=getattr(exc, "headers", None),
    )


def validation_error_handler(request: Request, exc: RequestValidationError):  # type: ignore
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append(
            {
                "field": ".".join(loc) or "request",
                "message": err.get("msg", "invalid value"),
                "code": str(err.get("type", "invalid")).upper(),
            }
        )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "success": False,
            "message": "Validation failed",
            "code": "VALIDATION_ERROR",
            "errors": errors,
        },
    )


def server_error_handler(request: Request, exc: Exception):  # type: ignore
    logger.error(
        "unhandled exception",
        exc_info=exc,
        extra={"context": {"method": request.method, "path": request.url.path}},
    )
    message = str(exc) if _is_development(request) else "Internal server error"
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "message": message,
            "code": "INTERNAL_ERROR",
        },
    )
