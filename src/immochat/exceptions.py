"""
Service error taxonomy and the handlers that render it
Every error body: {code, message, status_code, details?, request_id?}
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
from typing import Optional, Dict, Any, List

from .logging_config import get_request_id

logger = logging.getLogger(__name__)

GENERIC_AUTH_MESSAGE = "Invalid credentials"
GENERIC_CODE_MESSAGE = "Invalid or expired code"
GENERIC_SERVER_MESSAGE = "Something went wrong. Please try again later."


class ImmochatError(Exception):
    """Base class for errors that map onto an HTTP response"""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details
        super().__init__(message)


class ValidationFailed(ImmochatError):
    """Malformed or missing input; safe to expose field by field"""
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(message, {"errors": errors} if errors else None)


class AuthenticationFailed(ImmochatError):
    """
    Bad credentials, bad code, bad session

    The message must stay generic; the specific reason goes to the log only.
    """
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "AUTH_ERROR"

    def __init__(self, message: str = GENERIC_AUTH_MESSAGE, reason: Optional[str] = None):
        self.reason = reason
        super().__init__(message)


class PermissionDenied(ImmochatError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"


class NotFound(ImmochatError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class Conflict(ImmochatError):
    """Duplicate email, identity already linked elsewhere"""
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"


class DependencyFailure(ImmochatError):
    """Store, email or OAuth provider failed; retryable"""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "SERVICE_UNAVAILABLE"

    def __init__(self, message: str = GENERIC_SERVER_MESSAGE, reason: Optional[str] = None):
        self.reason = reason
        super().__init__(message)


class ErrorResponse:
    """Body of every error: {code, message, status_code, details?, request_id?}"""

    @staticmethod
    def create(
        message: str,
        code: str,
        status_code: int,
        request_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> dict:
        body = {"code": code, "message": message, "status_code": status_code}
        request_id = request_id or get_request_id()
        if request_id:
            body["request_id"] = request_id
        if details:
            body["details"] = details
        return body


HTTP_ERROR_CODES = {
    400: "BAD_REQUEST",
    401: "AUTH_ERROR",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def _respond(status_code: int, code: str, message: str, details=None, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse.create(message, code, status_code, details=details),
        headers=headers,
    )


async def immochat_exception_handler(request: Request, exc: ImmochatError) -> JSONResponse:
    path = request.url.path
    if isinstance(exc, DependencyFailure):
        logger.error(f"Dependency failure on {path}: {exc.reason or exc.message}")
    elif isinstance(exc, AuthenticationFailed):
        # The reason is only ever logged
        logger.info(f"Authentication failed on {path}: {exc.reason or 'unspecified'}")
    else:
        logger.warning(f"{exc.status_code} {exc.code} on {path}: {exc.message}")

    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationFailed) else None
    return _respond(exc.status_code, exc.code, exc.message, details=exc.details, headers=headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Framework-raised HTTP errors (unknown route, wrong method) in the same format"""
    logger.warning(f"HTTP {exc.status_code} on {request.url.path}: {exc.detail}")
    return _respond(
        exc.status_code,
        HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR"),
        str(exc.detail) if exc.detail else f"HTTP {exc.status_code} error",
        headers=getattr(exc, "headers", None),
    )


def _field_errors(errors: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    """pydantic error list -> [{field, message}]"""
    flattened = []
    for err in errors:
        field = ".".join(str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path"))
        message = err.get("msg", "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        flattened.append({"field": field or "body", "message": message})
    return flattened


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = _field_errors(exc.errors())
    logger.warning(f"Validation error on {request.url.path}: {[e['field'] for e in errors]}")
    return _respond(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "VALIDATION_ERROR",
        "Validation error",
        details={"errors": errors},
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Unclassified failures: full detail in the log, a generic message to the client"""
    logger.error(f"Unhandled {type(exc).__name__} on {request.url.path}: {exc}", exc_info=exc)
    return _respond(status.HTTP_500_INTERNAL_SERVER_ERROR, "INTERNAL_ERROR", GENERIC_SERVER_MESSAGE)
