"""
Error handlers

Centralized exception handlers for the FastAPI application.
"""
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.errors import DomainError
from app.utils.logger import get_correlation_id, get_logger

logger = get_logger(__name__)


def _headers() -> dict:
    return {"X-Correlation-Id": get_correlation_id() or ""}


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    """
    Handle domain errors: refusals, validation failures, missing resources.

    These are expected during normal operation and are logged at WARNING.
    """
    logger.warning(
        f"Domain error: {exc.error_code} - {exc.message}",
        extra={"error_code": exc.error_code},
    )
    return JSONResponse(
        status_code=exc.http_status,
        content=exc.to_dict(),
        headers=_headers(),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request bodies or parameters that do not match the schema."""
    errors = jsonable_encoder(exc.errors())
    fields = [".".join(str(part) for part in error.get("loc", [])[1:]) for error in errors]
    logger.warning(
        f"Validation error: path={request.url.path} method={request.method} fields={fields}",
        extra={"error_code": "VALIDATION_ERROR"},
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Request validation failed",
                "details": {"fields": fields, "errors": errors},
            }
        },
        headers=_headers(),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything unexpected. Logged with the stack trace."""
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
                "details": {},
            }
        },
        headers=_headers(),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, domain_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, general_exception_handler)
