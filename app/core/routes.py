# app/core/routes.py
# =============================================================================
# File: app/core/routes.py
# Description: Route registration for FastAPI application
# =============================================================================

import logging
from app.core.fastapi_types import FastAPI

from app.api.routers.messages_router import router as messages_router
from app.api.routers.wse_router import router as wse_router
from app.api.routers.metrics_router import router as metrics_router

from app.core.health import register_health_endpoints

logger = logging.getLogger("campus.routes")


def setup_routes(app: FastAPI) -> None:
    """Register all routers with the FastAPI application"""

    app.include_router(messages_router, tags=["Messaging"])
    app.include_router(wse_router, tags=["WebSocket Events"])
    app.include_router(metrics_router, tags=["Monitoring"])

    register_health_endpoints(app)

    logger.info("Routers registered")
