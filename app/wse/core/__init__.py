# =============================================================================
# File: app/wse/core/__init__.py
# Description: WSE Core Module
# =============================================================================

"""
WSE Core - Redis Pub/Sub relay

Components:
- PubSubBus: Redis Pub/Sub for multi-instance scope fan-out
"""

from app.wse.core.pubsub_bus import PubSubBus

__all__ = [
    "PubSubBus",
]
