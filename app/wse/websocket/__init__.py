# =============================================================================
# File: app/wse/websocket/__init__.py
# =============================================================================

from app.wse.websocket.scope_stream import ScopeStreamConnection

__all__ = [
    "ScopeStreamConnection",
]
