# =============================================================================
# File: app/api/routers/wse_router.py
# Description: WebSocket router streaming scope events to clients
# =============================================================================

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Header, Query, Request, WebSocket
from starlette.websockets import WebSocketState

from app.common.exceptions.exceptions import CampusChatException
from app.messaging.enums import ScopeAction
from app.messaging.exceptions import ScopeNotFoundError
from app.wse.websocket.scope_stream import HEARTBEAT_INTERVAL, ScopeStreamConnection

log = logging.getLogger("campus.wse_router")
router = APIRouter()

# Application close codes (4000-4999)
CLOSE_AUTH_REQUIRED = 4401
CLOSE_FORBIDDEN = 4403
CLOSE_SCOPE_NOT_FOUND = 4404
CLOSE_SERVER_ERROR = 1011


@router.websocket("/scopes/{scope_id}/stream")
async def scope_stream(
        websocket: WebSocket,
        scope_id: str,
        user_id: Optional[str] = Query(None, description="Caller id when the header cannot be set"),
        x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
        heartbeat: float = Query(HEARTBEAT_INTERVAL, gt=0, le=300, description="Heartbeat interval, seconds"),
) -> None:
    """
    Push inserted/deleted/reacted events of one scope as JSON frames.

    The connection is accepted first so failures can be reported with a
    close code the client can act on.
    """
    await websocket.accept()
    client_ip = websocket.client.host if websocket.client else "unknown"

    caller = (x_user_id or user_id or "").strip()
    if not caller:
        log.warning(f"[WS] Rejected stream for {scope_id} from {client_ip}: no user id")
        await websocket.close(code=CLOSE_AUTH_REQUIRED, reason="Authentication required")
        return

    app = websocket.app
    missing = app.missing_components("message_store", "broadcaster", "authorization")
    if missing:
        log.error(f"[WS] Messaging core not initialized: missing {', '.join(missing)}")
        await websocket.close(code=CLOSE_SERVER_ERROR, reason="Server configuration error")
        return
    store = app.state.message_store
    broadcaster = app.state.broadcaster
    authorization = app.state.authorization

    try:
        await store.get_scope_kind(scope_id)
        allowed = await authorization.is_allowed(caller, scope_id, ScopeAction.READ)
    except ScopeNotFoundError:
        log.info(f"[WS] Stream refused: unknown scope {scope_id}")
        await websocket.close(code=CLOSE_SCOPE_NOT_FOUND, reason="Scope not found")
        return
    except CampusChatException as e:
        log.error(f"[WS] Stream setup failed for {scope_id}: {e}")
        await websocket.close(code=CLOSE_SERVER_ERROR, reason="Service unavailable")
        return

    if not allowed:
        log.warning(f"[WS] {caller} may not read {scope_id}")
        await websocket.close(code=CLOSE_FORBIDDEN, reason="Forbidden")
        return

    connection = ScopeStreamConnection(
        websocket=websocket,
        broadcaster=broadcaster,
        scope_id=scope_id,
        user_id=caller,
        heartbeat_interval=heartbeat,
    )
    await connection.run()

    if websocket.client_state != WebSocketState.DISCONNECTED:
        try:
            await websocket.close(code=1000, reason="Normal closure")
        except RuntimeError as e:
            log.debug(f"[WS] Close after disconnect: {e}")


@router.get("/ws/health")
async def websocket_health_check(request: Request):
    """Health check endpoint for the streaming service"""
    broadcaster = getattr(request.app.state, "broadcaster", None)
    pubsub_bus = getattr(request.app.state, "pubsub_bus", None)
    return {
        "status": "healthy" if broadcaster is not None else "unhealthy",
        "relay": pubsub_bus.get_metrics() if pubsub_bus is not None else None,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
