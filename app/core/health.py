# app/core/health.py
# =============================================================================
# File: app/core/health.py
# Description: Health check endpoints for the application
# =============================================================================

import logging
from datetime import datetime, timezone
from typing import Dict, Any
from app.core.fastapi_types import FastAPI

from app.core import __version__, __description__
from app.core.app_state import get_start_time
from app.infra.persistence import pg_client, redis_client

logger = logging.getLogger("campus.health")


def register_health_endpoints(app: FastAPI) -> None:
    """Register health check endpoints directly on the app"""

    @app.get("/health", tags=["System"])
    async def health_check() -> Dict[str, Any]:
        """Health check with backend status"""
        return await get_health_status(app)

    @app.get("/", tags=["System"])
    async def root() -> Dict[str, Any]:
        """Root endpoint with API information"""
        return get_root_info(app)


async def get_health_status(app: FastAPI) -> Dict[str, Any]:
    """Get health status of the application and its backends"""
    state = app.state
    config = getattr(state, 'messaging_config', None)

    health_data: Dict[str, Any] = {
        "status": "healthy",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime_seconds": int((datetime.now(timezone.utc) - get_start_time()).total_seconds()),
        "backend": config.backend if config else "unknown",
        "messaging": {
            "store": bool(getattr(state, 'message_store', None)),
            "broadcaster": bool(getattr(state, 'broadcaster', None)),
            "missing": app.missing_components(),
        },
        "relay": {
            "enabled": bool(getattr(state, 'pubsub_bus', None)),
            "running": bool(getattr(state, 'pubsub_bus', None)) and state.pubsub_bus.is_running,
        },
    }

    if health_data["messaging"]["missing"]:
        health_data["status"] = "degraded"

    if getattr(state, 'postgres_enabled', False):
        health_data["postgres"] = await pg_client.health_check()
        if health_data["postgres"].get("status") != "healthy":
            health_data["status"] = "degraded"

    if getattr(state, 'redis_client', None) is not None:
        health_data["redis"] = await redis_client.health_check(state.redis_client)
        if health_data["redis"].get("status") != "healthy":
            health_data["status"] = "degraded"

    return health_data


def get_root_info(app: FastAPI) -> Dict[str, Any]:
    """Get root endpoint information"""
    return {
        "name": "Campus Chat",
        "description": __description__,
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics",
    }
