# app/server.py
# =============================================================================
# File: app/server.py
# Project: Campus Chat
# Description: Main FastAPI application entry point
# =============================================================================

from __future__ import annotations

import os
import logging

from fastapi.staticfiles import StaticFiles

from app.core.fastapi_types import FastAPI
from app.core import __version__
from app.core.lifespan import lifespan
from app.core.middleware import setup_middleware
from app.core.routes import setup_routes
from app.core.exceptions import setup_exception_handlers
from app.config.logging_config import setup_logging
from app.config.storage_config import get_storage_config

# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================
setup_logging(
    service_name="campus-chat",
    log_file=os.getenv("LOG_FILE") if os.getenv("LOG_FILE") else None,
    enable_json=os.getenv("ENVIRONMENT") == "production",
)

logger = logging.getLogger("campus.server")


# =============================================================================
# FASTAPI APP
# =============================================================================
def create_app() -> FastAPI:
    """Build the application; each call returns a fresh instance with its own state."""
    application = FastAPI(
        title=f"Campus Chat API v{__version__}",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json"
    )

    setup_middleware(application)
    setup_routes(application)
    setup_exception_handlers(application)

    # Local uploads are served by the app itself; MinIO serves its own URLs
    storage_config = get_storage_config()
    if storage_config.provider == "local":
        application.mount(
            storage_config.local_url,
            StaticFiles(directory=storage_config.local_path, check_dir=False),
            name="storage",
        )

    return application


app = create_app()

__all__ = ["app", "create_app", "__version__"]

# =============================================================================
# Development entry point
# =============================================================================
if __name__ == "__main__":
    import subprocess

    port = os.getenv("PORT", "5001")
    host = os.getenv("HOST", "0.0.0.0")
    reload = os.getenv("RELOAD", "true").lower() == "true"

    logger.info(f"Starting Campus Chat API on {host}:{port} (reload={reload})")

    cmd = [
        "granian",
        "--interface", "asgi",
        "app.server:app",
        "--host", host,
        "--port", str(port),
        "--http", "2"
    ]

    if reload:
        cmd.extend([
            "--reload",
            "--reload-paths", "app/",
            "--reload-tick", "100",
        ])

    subprocess.run(cmd)
