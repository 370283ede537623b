"""
Error Handler Registration
Maps storage failures and the service error taxonomy onto sanitized responses
"""
import logging
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.exc import SQLAlchemyError, OperationalError

from ..exceptions import (
    ErrorResponse,
    ImmochatError,
    GENERIC_SERVER_MESSAGE,
    immochat_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    general_exception_handler,
)
from ..logging_config import get_request_id

logger = logging.getLogger(__name__)


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """
    Handle database errors with sanitization

    Prevents leakage of SQL statements, connection strings and schema
    details. The full error is logged server side.
    """
    request_id = get_request_id()

    logger.error(
        f"Database error (request_id: {request_id}): {type(exc).__name__}",
        exc_info=exc,
        extra={
            "request_id": request_id,
            "path": request.url.path,
            "method": request.method
        }
    )

    if isinstance(exc, OperationalError):
        # Connection issues, timeouts
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        error_code = "DATABASE_UNAVAILABLE"
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        error_code = "DATABASE_ERROR"

    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse.create(
            message=GENERIC_SERVER_MESSAGE,
            code=error_code,
            status_code=status_code,
            request_id=request_id,
        ),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install every handler so no exception leaves an endpoint unclassified"""
    app.add_exception_handler(ImmochatError, immochat_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
    app.add_exception_handler(Exception, general_exception_handler)
