# app/core/exceptions.py
# =============================================================================
# File: app/core/exceptions.py
# Description: Exception handlers for FastAPI application
# =============================================================================

import os
import logging
from typing import Dict, Type

from fastapi import Request
from app.core.fastapi_types import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette import status
from starlette.responses import JSONResponse

from app.common.exceptions.exceptions import (
    AuthorizationError,
    CampusChatException,
    ConflictError,
    NotFoundError,
    TransientError,
    UnavailableError,
    UploadError,
    ValidationError,
)

logger = logging.getLogger("campus.exceptions")

# Most specific first; the first isinstance match wins
STATUS_BY_ERROR: Dict[Type[CampusChatException], int] = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    AuthorizationError: status.HTTP_403_FORBIDDEN,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConflictError: status.HTTP_409_CONFLICT,
    UploadError: status.HTTP_502_BAD_GATEWAY,
    TransientError: status.HTTP_503_SERVICE_UNAVAILABLE,
    UnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for(exc: CampusChatException) -> int:
    for error_type, status_code in STATUS_BY_ERROR.items():
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application"""

    app.add_exception_handler(CampusChatException, campus_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    logger.info("Exception handlers registered")


async def campus_exception_handler(request: Request, exc: CampusChatException) -> JSONResponse:
    """Map domain errors onto HTTP status codes"""
    status_code = status_for(exc)
    if status_code >= 500:
        logger.warning(f"{type(exc).__name__} on path {request.url.path}: {exc}")
    else:
        logger.info(f"{type(exc).__name__} on path {request.url.path}: {exc}")

    return JSONResponse(
        status_code=status_code,
        content={
            "detail": str(exc),
            "type": type(exc).__name__,
            "retryable": exc.retryable,
        },
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors"""
    logger.warning(f"Validation error on path {request.url.path}: {exc.errors()}")

    errors = []
    for error in exc.errors():
        error_dict = {
            "loc": error["loc"],
            "msg": error["msg"],
            "type": error["type"],
        }

        if "ctx" in error:
            ctx = {}
            for key, value in error["ctx"].items():
                if isinstance(value, Exception):
                    ctx[key] = str(value)
                else:
                    ctx[key] = value
            error_dict["ctx"] = ctx

        errors.append(error_dict)

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": errors},
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle general unhandled exceptions"""
    logger.error(f"Unhandled exception on path {request.url.path}: {str(exc)}", exc_info=True)

    if os.getenv("ENVIRONMENT", "development") == "production":
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "An internal server error occurred."}
        )
    else:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": str(exc), "type": type(exc).__name__}
        )
