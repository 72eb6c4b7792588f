# =============================================================================
# File: app/wse/core/pubsub_bus.py
# Description: Redis Pub/Sub relay for multi-instance scope fan-out
# =============================================================================

"""
PubSubBus - Redis Pub/Sub relay between server instances

Architecture:
    MessageStore / ReactionLedger commit
                  ↓
    ScopeBroadcaster.publish() → local subscribers
                  ↓
    PubSubBus.relay() → Redis channel "<prefix>:scope:<scope_id>"
                  ↓
    ALL instances PSUBSCRIBE "<prefix>:scope:*"
                  ↓
    Each instance (except the origin) → ScopeBroadcaster.deliver_local()

Delivery is fire-and-forget. An instance that misses a relayed event is
covered by its sessions' resync on reconnect.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
from typing import Any, Dict, Optional

from app.config.redis_config import RedisConfig, get_redis_config
from app.infra.metrics import messaging_metrics as metrics
from app.messaging.broadcaster import ScopeBroadcaster
from app.messaging.events import ScopeEvent, parse_scope_event
from app.utils.uuid_utils import generate_uuid_str

log = logging.getLogger("campus.wse.pubsub")


class PubSubBus:
    """
    BroadcastRelay over Redis Pub/Sub.

    Example Usage:
        ```python
        bus = PubSubBus(redis_client, broadcaster)
        await bus.initialize()
        broadcaster.attach_relay(bus)
        ```
    """

    def __init__(
            self,
            redis_client: Any,
            broadcaster: ScopeBroadcaster,
            config: Optional[RedisConfig] = None,
            instance_id: Optional[str] = None,
    ):
        if not redis_client:
            raise ValueError("redis_client is required")

        self.redis_client = redis_client
        self.broadcaster = broadcaster
        self.config = config or get_redis_config()
        self.instance_id = instance_id or generate_uuid_str()
        self.pubsub: Optional[Any] = None  # redis.asyncio.client.PubSub

        self._running = False
        self._listener_task: Optional[asyncio.Task] = None

        self._messages_published = 0
        self._messages_received = 0

        # Exponential backoff state
        self._consecutive_errors = 0
        self._backoff_delay = 1.0
        self._max_backoff = 60.0
        self._backoff_factor = 1.5

    @property
    def channel_pattern(self) -> str:
        return f"{self.config.channel_prefix}:scope:*"

    def channel_for(self, scope_id: str) -> str:
        return f"{self.config.channel_prefix}:scope:{scope_id}"

    @property
    def is_running(self) -> bool:
        return self._running

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "instance_id": self.instance_id,
            "messages_published": self._messages_published,
            "messages_received": self._messages_received,
            "consecutive_errors": self._consecutive_errors,
        }

    async def initialize(self) -> None:
        """Ping, PSUBSCRIBE to every scope channel and start the listener."""
        log.info(f"[PUBSUB_BUS] Initializing relay (instance {self.instance_id})")
        await self.redis_client.ping()

        self.pubsub = self.redis_client.pubsub()
        await self.pubsub.psubscribe(self.channel_pattern)
        self._running = True
        self._listener_task = asyncio.create_task(self._listen_loop(), name="pubsub-relay-listener")
        log.info(f"[PUBSUB_BUS] Subscribed to {self.channel_pattern}")

    async def close(self) -> None:
        self._running = False
        if self._listener_task is not None:
            self._listener_task.cancel()
            await asyncio.gather(self._listener_task, return_exceptions=True)
            self._listener_task = None
        if self.pubsub is not None:
            try:
                await self.pubsub.punsubscribe(self.channel_pattern)
                await self.pubsub.aclose()
            except Exception as e:
                log.warning(f"[PUBSUB_BUS] Error while closing pubsub: {e}")
            self.pubsub = None
        log.info(
            f"[PUBSUB_BUS] Relay closed (published={self._messages_published}, "
            f"received={self._messages_received})"
        )

    # =========================================================================
    # Outbound
    # =========================================================================

    def encode(self, scope_id: str, event: ScopeEvent) -> str:
        return json.dumps({
            "origin": self.instance_id,
            "scope_id": scope_id,
            "event": event.to_dict_for_bus(),
        })

    async def relay(self, scope_id: str, event: ScopeEvent) -> None:
        """Publish to other instances. Errors propagate to the broadcaster."""
        await self.redis_client.publish(self.channel_for(scope_id), self.encode(scope_id, event))
        self._messages_published += 1
        metrics.relay_published_total.inc()
        log.debug(f"[PUBSUB_BUS] Relayed {event.event_type} {event.event_id} for {scope_id}")

    # =========================================================================
    # Inbound
    # =========================================================================

    async def _listen_loop(self) -> None:
        log.info("[PUBSUB_BUS] Listener loop started")

        while self._running:
            try:
                message = await self.pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message and message.get("type") in ("pmessage", "message"):
                    self.process_message(message)

                self._consecutive_errors = 0

            except asyncio.CancelledError:
                log.info("[PUBSUB_BUS] Listener loop cancelled")
                break

            except Exception as e:
                self._consecutive_errors += 1
                metrics.relay_errors_total.labels(stage="listen").inc()

                if self._consecutive_errors >= self.config.max_consecutive_errors:
                    log.critical("[PUBSUB_BUS] Too many consecutive errors, stopping listener")
                    self._running = False
                    break

                delay = min(
                    self._backoff_delay * (self._backoff_factor ** (self._consecutive_errors - 1)),
                    self._max_backoff
                )
                # Jitter (±20%)
                delay = max(0.1, delay + delay * 0.2 * (2 * random.random() - 1))

                log.error(
                    f"PubSubBus listener error (attempt {self._consecutive_errors}): {e}. "
                    f"Retrying in {delay:.2f}s...",
                    exc_info=True
                )
                await asyncio.sleep(delay)

    def process_message(self, message: Dict[str, Any]) -> bool:
        """
        Deliver one relayed event to local subscribers.

        Returns:
            True if the event was delivered, False if skipped or malformed
        """
        data = message.get("data")
        data_str = data.decode("utf-8") if isinstance(data, bytes) else data

        try:
            envelope = json.loads(data_str)
            if envelope.get("origin") == self.instance_id:
                return False
            scope_id = envelope["scope_id"]
            event = parse_scope_event(envelope["event"])
        except (TypeError, ValueError, KeyError) as e:
            metrics.relay_errors_total.labels(stage="decode").inc()
            log.error(f"[PUBSUB_BUS] Failed to decode relayed event: {e}")
            return False

        self._messages_received += 1
        metrics.relay_received_total.inc()
        delivered = self.broadcaster.deliver_local(scope_id, event)
        log.debug(f"[PUBSUB_BUS] {event.event_type} for {scope_id} delivered to {delivered} local subscriber(s)")
        return True
