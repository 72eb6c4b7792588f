# app/api/routers/metrics_router.py
"""
Prometheus metrics endpoint for the messaging service
"""

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
import logging

# Registers the messaging collectors on import
from app.infra.metrics import messaging_metrics  # noqa: F401

log = logging.getLogger("campus.metrics")

router = APIRouter(tags=["monitoring"])


@router.get("/metrics")
async def prometheus_metrics():
    """
    Prometheus metrics endpoint

    Exposes:
    - Appends, rejections and idempotent replays
    - Broadcast fan-out, dropped events and relay traffic
    - Reaction toggles, uploads, pending-entry timeouts
    - WebSocket stream connections

    Prometheus scrape configuration:
        scrape_configs:
          - job_name: 'campus-chat'
            scrape_interval: 15s
            static_configs:
              - targets: ['localhost:5001']
    """
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
