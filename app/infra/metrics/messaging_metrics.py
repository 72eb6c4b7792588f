# app/infra/metrics/messaging_metrics.py
"""
Messaging Metrics - Prometheus export for the store, ledger, broadcaster,
relay and uploader.
"""

from prometheus_client import Counter, Gauge, Histogram


# ============================================================================
# Message Store
# ============================================================================

messages_appended_total = Counter(
    'campus_messages_appended_total',
    'Messages durably appended',
    ['scope_kind', 'kind']
)

messages_append_rejected_total = Counter(
    'campus_messages_append_rejected_total',
    'Append attempts rejected by the store',
    ['reason']
)

messages_idempotent_replays_total = Counter(
    'campus_messages_idempotent_replays_total',
    'Appends answered from the idempotency registry'
)

messages_deleted_total = Counter(
    'campus_messages_deleted_total',
    'Messages deleted',
    ['mode']
)

append_latency_seconds = Histogram(
    'campus_append_latency_seconds',
    'Time spent inside MessageStore.append',
    buckets=[0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0]
)

# ============================================================================
# Reaction Ledger
# ============================================================================

reaction_toggles_total = Counter(
    'campus_reaction_toggles_total',
    'Reaction membership changes',
    ['kind', 'action']
)

# ============================================================================
# Broadcaster / Relay
# ============================================================================

broadcasts_published_total = Counter(
    'campus_broadcasts_published_total',
    'Scope events published',
    ['event_type']
)

broadcast_subscribers_active = Gauge(
    'campus_broadcast_subscribers_active',
    'Live scope subscriptions on this instance'
)

broadcast_events_dropped_total = Counter(
    'campus_broadcast_events_dropped_total',
    'Events dropped because a subscriber queue was full'
)

relay_published_total = Counter(
    'campus_relay_published_total',
    'Scope events relayed to Redis'
)

relay_received_total = Counter(
    'campus_relay_received_total',
    'Scope events received from other instances'
)

relay_errors_total = Counter(
    'campus_relay_errors_total',
    'Relay publish/listen errors',
    ['stage']
)

# ============================================================================
# Reconciliation
# ============================================================================

reconcile_duplicates_dropped_total = Counter(
    'campus_reconcile_duplicates_dropped_total',
    'Confirmed records ignored because the id was already present'
)

pending_timeouts_total = Counter(
    'campus_pending_timeouts_total',
    'Pending entries failed by the timeout'
)

# ============================================================================
# Uploads
# ============================================================================

uploads_total = Counter(
    'campus_uploads_total',
    'Attachment uploads',
    ['kind', 'outcome']
)

upload_bytes = Histogram(
    'campus_upload_bytes',
    'Attachment sizes',
    ['kind'],
    buckets=[1e4, 1e5, 1e6, 5e6, 1e7, 5e7, 1e8]
)

# ============================================================================
# WebSocket streams
# ============================================================================

ws_connections_active = Gauge(
    'campus_ws_connections_active',
    'Open scope stream WebSocket connections'
)

ws_messages_sent_total = Counter(
    'campus_ws_messages_sent_total',
    'Frames sent to WebSocket clients',
    ['message_type']
)
