# =============================================================================
# File: app/wse/websocket/scope_stream.py
# Description: One WebSocket connection streaming a scope's events
# =============================================================================

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from app.infra.metrics import messaging_metrics as metrics
from app.messaging.broadcaster import ScopeBroadcaster, Subscription

log = logging.getLogger("campus.wse.scope_stream")

PROTOCOL_VERSION = 1
HEARTBEAT_INTERVAL = 15  # seconds


class ScopeStreamConnection:
    """
    Frames are JSON objects {"t": type, "p": payload}:

    - ready: sent once after subscribing
    - inserted / deleted / reacted: scope events (payload is the event)
    - resync_required: the server dropped events; client should refetch
    - heartbeat: sent when idle; clients may send {"t": "ping"} for a pong
    """

    def __init__(
            self,
            websocket: WebSocket,
            broadcaster: ScopeBroadcaster,
            scope_id: str,
            user_id: str,
            heartbeat_interval: float = HEARTBEAT_INTERVAL,
    ):
        self.websocket = websocket
        self.broadcaster = broadcaster
        self.scope_id = scope_id
        self.user_id = user_id
        self.heartbeat_interval = heartbeat_interval
        self._subscription: Optional[Subscription] = None
        self.frames_sent = 0

    async def run(self) -> None:
        """Pump events until the client disconnects."""
        self._subscription = self.broadcaster.subscribe(self.scope_id)
        receiver = asyncio.create_task(self._receive_loop(), name=f"ws-receive-{self._subscription.id}")
        metrics.ws_connections_active.inc()
        log.info(f"Stream opened: user={self.user_id} scope={self.scope_id}")
        try:
            await self._send("ready", {"scope_id": self.scope_id, "protocol_version": PROTOCOL_VERSION})
            await self._pump(receiver)
        except (WebSocketDisconnect, RuntimeError) as e:
            log.debug(f"Stream for {self.user_id} ended while sending: {e}")
        finally:
            metrics.ws_connections_active.dec()
            self._subscription.close()
            receiver.cancel()
            await asyncio.gather(receiver, return_exceptions=True)
            log.info(f"Stream closed: user={self.user_id} scope={self.scope_id} frames={self.frames_sent}")

    async def _pump(self, receiver: asyncio.Task) -> None:
        while True:
            getter = asyncio.ensure_future(self._subscription.get())
            done, _ = await asyncio.wait(
                {getter, receiver},
                timeout=self.heartbeat_interval,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if receiver in done:
                getter.cancel()
                return
            if getter not in done:
                getter.cancel()
                await self._send("heartbeat", {})
                continue

            event = getter.result()
            if event is None:
                if not self._subscription.overflowed:
                    return
                self._subscription = self.broadcaster.subscribe(self.scope_id)
                await self._send("resync_required", {"scope_id": self.scope_id})
                continue
            await self._send(event.event_type, event.to_dict_for_bus())

    async def _receive_loop(self) -> None:
        """Returns when the client goes away."""
        try:
            while True:
                raw = await self.websocket.receive_text()
                try:
                    frame = json.loads(raw)
                except ValueError:
                    log.debug(f"Ignoring non-JSON frame from {self.user_id}")
                    continue
                if isinstance(frame, dict) and frame.get("t") == "ping":
                    await self._send("pong", {})
        except (WebSocketDisconnect, RuntimeError):
            return

    async def _send(self, frame_type: str, payload: Dict[str, Any]) -> None:
        if self.websocket.client_state != WebSocketState.CONNECTED:
            raise WebSocketDisconnect()
        await self.websocket.send_text(json.dumps({"t": frame_type, "p": payload}))
        self.frames_sent += 1
        metrics.ws_messages_sent_total.labels(message_type=frame_type).inc()
