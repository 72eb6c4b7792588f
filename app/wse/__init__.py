# =============================================================================
# File: app/wse/__init__.py
# Description: WebSocket Event System (WSE) - realtime delivery of scope events
# =============================================================================

"""
WSE (WebSocket Event System)

Modules:
- core: PubSubBus relaying scope events between server instances
- websocket: per-connection stream of a scope's events
"""

from app.wse.core.pubsub_bus import PubSubBus

__all__ = [
    "PubSubBus",
]
