# app/core/middleware.py
# =============================================================================
# File: app/core/middleware.py
# Description: Middleware configuration for FastAPI application
# =============================================================================

import os
import time
import logging
from app.core.fastapi_types import FastAPI
from fastapi import Request
from fastapi.middleware.cors import CORSMiddleware

from app.utils.uuid_utils import generate_uuid_str

logger = logging.getLogger("campus.middleware")

REQUEST_ID_HEADER = "X-Request-Id"


def setup_middleware(app: FastAPI) -> None:
    """Configure all middleware for the FastAPI application"""
    setup_cors(app)
    setup_request_logging(app)


def setup_cors(app: FastAPI) -> None:
    """Configure CORS middleware"""

    cors_origins = os.getenv(
        "CORS_ALLOWED_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000,http://127.0.0.1:3000"
    )
    allowed_origins = [origin.strip() for origin in cors_origins.split(",")]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
        max_age=3600,
    )

    logger.info(f"CORS configured with allowed origins: {allowed_origins}")


def setup_request_logging(app: FastAPI) -> None:
    """Tag every request with an id and log slow ones"""

    slow_ms = float(os.getenv("SLOW_REQUEST_MS", "1000"))

    @app.middleware("http")
    async def request_logging(request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or generate_uuid_str()
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers[REQUEST_ID_HEADER] = request_id

        if elapsed_ms > slow_ms:
            logger.warning(
                f"[SLOW REQUEST] {request.method} {request.url.path} -> {response.status_code} "
                f"in {elapsed_ms:.1f}ms (request_id={request_id})"
            )
        else:
            logger.debug(
                f"{request.method} {request.url.path} -> {response.status_code} "
                f"in {elapsed_ms:.1f}ms (request_id={request_id})"
            )
        return response
