# =============================================================================
# File: app/messaging/broadcaster.py
# Description: ScopeBroadcaster - at-least-once fan-out of committed scope
#              mutations to every live subscription of a scope
# =============================================================================

from __future__ import annotations

import asyncio
import itertools
from typing import Dict, Optional

from app.config.logging_config import get_logger
from app.infra.metrics import messaging_metrics as metrics
from app.messaging.events import AnyScopeEvent, ScopeEvent
from app.messaging.ports import BroadcastRelay

log = get_logger("campus.messaging.broadcaster")

_CLOSED = object()


class Subscription:
    """
    Live sequence of events for one scope.

    Iterate with ``async for event in subscription``. Iteration ends when the
    subscription is closed (no event is yielded after close()) or when the
    buffer overflowed; after an overflow the consumer must resubscribe and
    backfill with fetch_recent.
    """

    def __init__(self, subscription_id: str, scope_id: str, broadcaster: ScopeBroadcaster, maxsize: int):
        self.id = subscription_id
        self.scope_id = scope_id
        self._broadcaster = broadcaster
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.overflowed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _offer(self, event: ScopeEvent) -> None:
        if self._closed:
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            log.warning(f"[BROADCAST] Subscription {self.id} overflowed on scope {self.scope_id}; closing")
            metrics.broadcast_events_dropped_total.inc()
            self.overflowed = True
            self.close()

    def close(self) -> None:
        """Tear down; no further events are delivered once this returns."""
        if self._closed:
            return
        self._closed = True
        self._broadcaster._detach(self)
        # Wake a consumer blocked in get()
        while True:
            try:
                self._queue.put_nowait(_CLOSED)
                break
            except asyncio.QueueFull:
                self._queue.get_nowait()

    async def get(self) -> Optional[AnyScopeEvent]:
        """Next event, or None once the subscription is closed."""
        if self._closed:
            return None
        item = await self._queue.get()
        if item is _CLOSED or self._closed:
            return None
        return item

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> AnyScopeEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class ScopeBroadcaster:
    """
    In-process fan-out keyed by scope id, optionally mirrored to other
    server instances through a BroadcastRelay.

    publish() must only be called after the mutation is durable. Delivery is
    at-least-once; consumers merge idempotently.
    """

    def __init__(self, queue_size: int = 1000, relay: Optional[BroadcastRelay] = None):
        self._queue_size = queue_size
        self._relay = relay
        self._subscriptions: Dict[str, Dict[str, Subscription]] = {}
        self._ids = itertools.count(1)

    def attach_relay(self, relay: Optional[BroadcastRelay]) -> None:
        self._relay = relay

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def subscribe(self, scope_id: str) -> Subscription:
        subscription = Subscription(
            subscription_id=f"{scope_id}::{next(self._ids)}",
            scope_id=scope_id,
            broadcaster=self,
            maxsize=self._queue_size,
        )
        self._subscriptions.setdefault(scope_id, {})[subscription.id] = subscription
        metrics.broadcast_subscribers_active.inc()
        log.debug(f"[BROADCAST] Subscribed {subscription.id}")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.close()

    def _detach(self, subscription: Subscription) -> None:
        scope_subs = self._subscriptions.get(subscription.scope_id)
        if scope_subs is None or scope_subs.pop(subscription.id, None) is None:
            return
        if not scope_subs:
            del self._subscriptions[subscription.scope_id]
        metrics.broadcast_subscribers_active.dec()
        log.debug(f"[BROADCAST] Unsubscribed {subscription.id}")

    def subscriber_count(self, scope_id: str) -> int:
        return len(self._subscriptions.get(scope_id, {}))

    # =========================================================================
    # Publishing
    # =========================================================================

    async def publish(self, scope_id: str, event: ScopeEvent) -> None:
        """Deliver locally, then hand to the relay for other instances."""
        metrics.broadcasts_published_total.labels(event_type=event.event_type).inc()
        self.deliver_local(scope_id, event)

        if self._relay is not None:
            try:
                await self._relay.relay(scope_id, event)
            except Exception as e:
                # Local subscribers already have the event; remote ones backfill on reconnect
                metrics.relay_errors_total.labels(stage="publish").inc()
                log.error(f"[BROADCAST] Relay failed for scope {scope_id}: {e}", exc_info=True)

    def deliver_local(self, scope_id: str, event: ScopeEvent) -> int:
        """Fan out to subscriptions on this instance. Returns delivery count."""
        delivered = 0
        for subscription in list(self._subscriptions.get(scope_id, {}).values()):
            subscription._offer(event)
            delivered += 1
        return delivered

    def close(self) -> None:
        for scope_subs in list(self._subscriptions.values()):
            for subscription in list(scope_subs.values()):
                subscription.close()
