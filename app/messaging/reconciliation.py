# =============================================================================
# File: app/messaging/reconciliation.py
# Description: ReconciliationEngine - a session's working view of one scope.
#              Merges locally originated pending entries with confirmed
#              records from the store and the broadcaster, without ever
#              showing a duplicate or losing user input.
# =============================================================================
#
# Entry lifecycle (one state machine per entry, no global suppression flags):
#
#     submit() --> PENDING --on_persisted()--> SENT
#                     |  ^
#   on_persist_failed |  | retry()
#   / expire_stale()  v  |
#                   FAILED --discard()--> (removed)
#
# Remote records enter directly as SENT. Confirmed records are keyed by their
# durable id; a second arrival of the same id is dropped.
# =============================================================================

from __future__ import annotations

import bisect
import itertools
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from app.common.exceptions.exceptions import CampusChatException
from app.config.logging_config import get_logger
from app.config.messaging_config import MessagingConfig, get_messaging_config
from app.infra.metrics import messaging_metrics as metrics
from app.messaging.enums import DeliveryState, ReactionKind
from app.messaging.events import ReactionChanged
from app.messaging.exceptions import (
    DuplicateSubmissionError,
    EmptyMessageError,
    MessageNotFoundError,
    PersistenceTimeoutError,
    UnknownScopeError,
)
from app.messaging.models import Attachment, Message
from app.messaging.value_objects import (
    Draft,
    ReactionState,
    ReactionSummary,
    ReplyResolution,
    ReplyUnavailable,
)
from app.utils.datetime_utils import utc_now
from app.utils.uuid_utils import generate_temp_id

log = get_logger("campus.messaging.reconciliation")


# =============================================================================
# Working-list entry
# =============================================================================

@dataclass(eq=False)
class Entry:
    """
    One row of the working list. While local it is identified by its
    temporary id; once confirmed it carries the durable record.
    """
    temp_id: Optional[str]
    draft: Optional[Draft]
    message: Optional[Message]
    delivery_state: DeliveryState
    local_created_at: datetime
    local_seq: int
    submitted_at: float = 0.0
    error: Optional[CampusChatException] = None

    @property
    def id(self) -> str:
        return self.message.id if self.message is not None else self.temp_id

    @property
    def is_local(self) -> bool:
        return self.message is None

    @property
    def scope_id(self) -> str:
        return self.message.scope_id if self.message is not None else self.draft.scope_id

    @property
    def author_id(self) -> str:
        return self.message.author_id if self.message is not None else self.draft.author_id

    @property
    def body(self) -> str:
        return self.message.body if self.message is not None else self.draft.body

    @property
    def attachments(self) -> Tuple[Attachment, ...]:
        return self.message.attachments if self.message is not None else self.draft.attachments

    @property
    def reply_to_id(self) -> Optional[str]:
        return self.message.reply_to_id if self.message is not None else self.draft.reply_to_id

    @property
    def created_at(self) -> datetime:
        return self.message.created_at if self.message is not None else self.local_created_at

    @property
    def submission_id(self) -> Optional[str]:
        if self.message is not None:
            return self.message.submission_id
        return self.draft.submission_id

    def sort_key(self) -> Tuple[datetime, int, int]:
        # Confirmed: (created_at, id). Local: as of submission, after any
        # confirmed record with the same timestamp.
        if self.message is not None:
            return self.message.created_at, 0, int(self.message.id)
        return self.local_created_at, 1, self.local_seq


# =============================================================================
# Upward notifications
# =============================================================================

class ScopeListener:
    """
    Rendering hooks. Override what you need; every method is optional.
    Exceptions raised by a listener are logged and never corrupt the engine.
    """

    def on_scope_snapshot(self, entries: List[Entry]) -> None:
        pass

    def on_message_inserted(self, entry: Entry) -> None:
        pass

    def on_message_confirmed(self, handle: str, entry: Entry) -> None:
        pass

    def on_message_deleted(self, message_id: str, affected_reply_ids: List[str]) -> None:
        pass

    def on_entry_discarded(self, handle: str) -> None:
        pass

    def on_reaction_changed(self, message_id: str, summary: ReactionSummary) -> None:
        pass

    def on_send_failed(self, handle: str, reason: CampusChatException) -> None:
        pass


# =============================================================================
# Engine
# =============================================================================

class ReconciliationEngine:
    """
    Canonical merge of one session's view of one scope. Synchronous and
    I/O free; ScopeSession drives it from network completions.
    """

    def __init__(
            self,
            scope_id: str,
            viewer_id: str,
            config: Optional[MessagingConfig] = None,
            listener: Optional[ScopeListener] = None,
            clock: Callable[[], float] = time.monotonic,
            wall_clock: Callable[[], datetime] = utc_now,
    ):
        self.scope_id = scope_id
        self.viewer_id = viewer_id
        self._config = config or get_messaging_config()
        self._listener = listener or ScopeListener()
        self._clock = clock
        self._wall_clock = wall_clock

        self._entries: List[Entry] = []
        self._local: Dict[str, Entry] = {}            # temp id -> entry
        self._by_submission: Dict[str, Entry] = {}    # submission id -> local entry
        self._by_id: Dict[str, Entry] = {}            # durable id -> entry
        self._deleted: Set[str] = set()
        self._recent_fingerprints: Dict[str, float] = {}
        self._reactions: Dict[str, ReactionSummary] = {}
        self._unconfirmed: Dict[Tuple[str, ReactionKind], int] = {}  # (message, kind) -> unconfirmed delta
        self._previews: Dict[str, ReplyResolution] = {}
        self._local_seq = itertools.count(1)

    def set_listener(self, listener: ScopeListener) -> None:
        self._listener = listener

    # =========================================================================
    # Queries
    # =========================================================================

    def entries(self) -> List[Entry]:
        """Working list in total order (oldest first)."""
        return list(self._entries)

    def get(self, handle_or_id: str) -> Optional[Entry]:
        return self._local.get(handle_or_id) or self._by_id.get(handle_or_id)

    def index_of(self, message_id: str) -> Optional[int]:
        entry = self.get(message_id)
        if entry is None:
            return None
        return self._entries.index(entry)

    def is_deleted(self, message_id: str) -> bool:
        return message_id in self._deleted

    def replies_to(self, message_id: str) -> List[Entry]:
        return [e for e in self._entries if e.reply_to_id == message_id]

    def oldest_confirmed_id(self) -> Optional[str]:
        for entry in self._entries:
            if entry.message is not None:
                return entry.message.id
        return None

    # =========================================================================
    # Local submissions
    # =========================================================================

    def submit(self, draft: Draft) -> Entry:
        """
        Insert a pending entry for the draft and return it; its temp_id is
        the handle for later callbacks. Never performs I/O.

        Raises:
            EmptyMessageError: no text and no attachments
            UnknownScopeError: draft addressed to another scope
            DuplicateSubmissionError: identical draft inside the recency window
        """
        if draft.scope_id != self.scope_id:
            raise UnknownScopeError(draft.scope_id)
        if not draft.has_content:
            raise EmptyMessageError()

        now = self._clock()
        self._check_duplicate(draft, now)

        entry = Entry(
            temp_id=generate_temp_id(),
            draft=draft,
            message=None,
            delivery_state=DeliveryState.PENDING,
            local_created_at=self._wall_clock(),
            local_seq=next(self._local_seq),
            submitted_at=now,
        )
        self._local[entry.temp_id] = entry
        self._by_submission[draft.submission_id] = entry
        self._insert_sorted(entry)

        log.debug(f"[RECONCILE] Pending {entry.temp_id} in {self.scope_id}")
        self._emit("on_message_inserted", entry)
        return entry

    def on_persisted(self, handle: str, record: Message) -> Optional[Entry]:
        """
        Replace a pending (or timed-out) entry with its confirmed record.
        No-op if the entry is gone (discarded or superseded).
        """
        entry = self._local.get(handle)
        if entry is None:
            log.debug(f"[RECONCILE] Confirmation for unknown handle {handle} ignored")
            return None

        existing = self._by_id.get(record.id)
        if existing is not None or record.id in self._deleted or not record.is_active:
            # The broadcast echo (or a delete) got here first
            self._forget_local(entry)
            self._remove(entry)
            if existing is not None:
                self._emit("on_message_confirmed", handle, existing)
            else:
                self._emit("on_entry_discarded", handle)
            return existing

        self._forget_local(entry)
        self._remove(entry)
        entry.message = record
        entry.delivery_state = DeliveryState.SENT
        entry.error = None
        self._by_id[record.id] = entry
        self._insert_sorted(entry)

        log.debug(f"[RECONCILE] {handle} confirmed as {record.id}")
        self._emit("on_message_confirmed", handle, entry)
        return entry

    def on_persist_failed(self, handle: str, error: CampusChatException) -> Optional[Entry]:
        """Mark the entry failed; its content stays for retry or discard."""
        entry = self._local.get(handle)
        if entry is None:
            return None
        entry.delivery_state = DeliveryState.FAILED
        entry.error = error
        log.info(f"[RECONCILE] {handle} failed: {error}")
        self._emit("on_send_failed", handle, error)
        return entry

    def retry(self, handle: str) -> Entry:
        """Return a failed entry to pending; the caller resubmits its draft."""
        entry = self._local.get(handle)
        if entry is None:
            raise MessageNotFoundError(handle)
        entry.delivery_state = DeliveryState.PENDING
        entry.error = None
        entry.submitted_at = self._clock()
        return entry

    def discard(self, handle: str) -> Optional[Entry]:
        """Explicitly drop a local entry (normally a failed one)."""
        entry = self._local.get(handle)
        if entry is None:
            return None
        self._forget_local(entry)
        self._remove(entry)
        self._emit("on_entry_discarded", handle)
        return entry

    def expire_stale(self, now: Optional[float] = None) -> List[Entry]:
        """Fail pending entries older than the pending timeout."""
        now = self._clock() if now is None else now
        timeout = self._config.pending_timeout_seconds
        expired = [
            e for e in self._local.values()
            if e.delivery_state is DeliveryState.PENDING and now - e.submitted_at >= timeout
        ]
        for entry in expired:
            metrics.pending_timeouts_total.inc()
            self.on_persist_failed(entry.temp_id, PersistenceTimeoutError(entry.temp_id, timeout))
        return expired

    def pending_handles(self) -> List[str]:
        return [h for h, e in self._local.items() if e.delivery_state is DeliveryState.PENDING]

    # =========================================================================
    # Remote records
    # =========================================================================

    def on_broadcast_received(self, record: Message) -> Optional[Entry]:
        """
        Merge a confirmed record from the broadcaster or a fetch. Already
        present ids are ignored; our own echo replaces its pending entry.
        """
        if record.scope_id != self.scope_id:
            return None
        if record.is_deleted:
            self.on_deleted(record.id)
            return None
        if not record.sealed:
            return None
        if record.id in self._by_id or record.id in self._deleted:
            metrics.reconcile_duplicates_dropped_total.inc()
            return None

        if record.submission_id and record.author_id == self.viewer_id:
            local = self._by_submission.get(record.submission_id)
            if local is not None:
                return self.on_persisted(local.temp_id, record)

        entry = Entry(
            temp_id=None,
            draft=None,
            message=record,
            delivery_state=DeliveryState.SENT,
            local_created_at=record.created_at,
            local_seq=0,
        )
        self._by_id[record.id] = entry
        self._insert_sorted(entry)
        self._emit("on_message_inserted", entry)
        return entry

    def on_deleted(self, message_id: str) -> List[str]:
        """
        Remove a message from the active view. Replies to it stay and their
        previews become unavailable. Returns the ids of those replies.
        """
        first_time = message_id not in self._deleted
        self._deleted.add(message_id)
        self._previews[message_id] = ReplyUnavailable(message_id)
        self._drop_unconfirmed(message_id)
        self._reactions.pop(message_id, None)

        entry = self._by_id.pop(message_id, None)
        if entry is not None:
            self._remove(entry)

        affected = [e.id for e in self.replies_to(message_id)]
        if first_time and (entry is not None or affected):
            self._emit("on_message_deleted", message_id, affected)
        return affected

    def load_snapshot(
            self,
            records: Iterable[Message],
            reactions: Optional[Mapping[str, ReactionSummary]] = None,
    ) -> List[Entry]:
        """
        Merge a fetched page (initial load or resync). Local entries are
        kept; records already present are refreshed in place.
        """
        for record in records:
            if record.scope_id != self.scope_id or not record.sealed:
                continue
            if record.is_deleted:
                self.on_deleted(record.id)
                continue
            if record.id in self._deleted:
                continue
            existing = self._by_id.get(record.id)
            if existing is not None:
                existing.message = record
                continue
            local = self._by_submission.get(record.submission_id) if record.submission_id else None
            if local is not None and record.author_id == self.viewer_id:
                self._forget_local(local)
                self._remove(local)
                local.message = record
                local.delivery_state = DeliveryState.SENT
                local.error = None
                self._by_id[record.id] = local
                self._insert_sorted(local)
                continue
            entry = Entry(
                temp_id=None,
                draft=None,
                message=record,
                delivery_state=DeliveryState.SENT,
                local_created_at=record.created_at,
                local_seq=0,
            )
            self._by_id[record.id] = entry
            self._insert_sorted(entry)

        if reactions:
            for message_id, summary in reactions.items():
                if message_id in self._by_id:
                    current = self._reactions.get(message_id)
                    if current is None or summary.revision >= current.revision:
                        self._reactions[message_id] = summary
                        self._drop_unconfirmed(message_id)

        snapshot = self.entries()
        self._emit("on_scope_snapshot", snapshot)
        return snapshot

    # =========================================================================
    # Reactions
    # =========================================================================

    def reactions(self, message_id: str) -> ReactionSummary:
        return self._reactions.get(message_id) or ReactionSummary(message_id=message_id)

    def apply_local_reaction(self, message_id: str, kind: ReactionKind) -> Tuple[ReactionSummary, bool]:
        """
        Optimistically flip the viewer's membership.

        Returns:
            (previous summary for revert, desired active state)
        """
        if message_id not in self._by_id:
            raise MessageNotFoundError(message_id)
        previous = self.reactions(message_id)
        active = kind not in previous.mine
        delta = 1 if active else -1
        updated = previous.with_kind(kind, active, previous.count(kind) + delta)
        self._reactions[message_id] = updated
        self._unconfirmed[(message_id, kind)] = self._unconfirmed.get((message_id, kind), 0) + delta
        self._emit("on_reaction_changed", message_id, updated)
        return previous, active

    def revert_reaction(self, message_id: str, kind: ReactionKind, previous: ReactionSummary) -> None:
        """
        Undo the viewer's optimistic flip of ``kind`` on the current summary.

        A count for ``kind`` that arrived from the server after the flip
        already excludes it and is kept as is.
        """
        delta = self._unconfirmed.pop((message_id, kind), 0)
        if message_id in self._deleted:
            return
        current = self.reactions(message_id)
        updated = current.with_kind(kind, kind in previous.mine, current.count(kind) - delta)
        self._reactions[message_id] = updated
        self._emit("on_reaction_changed", message_id, updated)

    def confirm_reaction(self, message_id: str, kind: ReactionKind, state: ReactionState) -> None:
        self._unconfirmed.pop((message_id, kind), None)
        current = self.reactions(message_id)
        if state.revision < current.revision or message_id in self._deleted:
            return
        updated = current.with_kind(kind, state.active, state.count, state.revision)
        self._reactions[message_id] = updated
        if updated != current:
            self._emit("on_reaction_changed", message_id, updated)

    def on_reaction_changed(self, event: ReactionChanged) -> Optional[ReactionSummary]:
        """Apply a reaction event; duplicates and stale revisions are ignored."""
        if event.message_id not in self._by_id:
            return None
        current = self.reactions(event.message_id)
        if event.revision <= current.revision:
            return None
        self._unconfirmed.pop((event.message_id, event.kind), None)
        if event.user_id == self.viewer_id:
            updated = current.with_kind(event.kind, event.active, event.count, event.revision)
        else:
            updated = current.with_count(event.kind, event.count, event.revision)
        self._reactions[event.message_id] = updated
        self._emit("on_reaction_changed", event.message_id, updated)
        return updated

    def _drop_unconfirmed(self, message_id: str) -> None:
        for key in [key for key in self._unconfirmed if key[0] == message_id]:
            del self._unconfirmed[key]

    # =========================================================================
    # Reply preview cache
    # =========================================================================

    def cached_preview(self, message_id: str) -> Optional[ReplyResolution]:
        return self._previews.get(message_id)

    def cache_preview(self, message_id: str, resolution: ReplyResolution) -> None:
        if message_id in self._deleted:
            return
        self._previews[message_id] = resolution

    # =========================================================================
    # Internals
    # =========================================================================

    def _check_duplicate(self, draft: Draft, now: float) -> None:
        window = self._config.duplicate_window_seconds
        self._recent_fingerprints = {
            fp: at for fp, at in self._recent_fingerprints.items() if now - at < window
        }
        fingerprint = draft.fingerprint()
        if fingerprint in self._recent_fingerprints:
            raise DuplicateSubmissionError(draft.author_id, draft.scope_id, window)
        if window > 0:
            self._recent_fingerprints[fingerprint] = now

    def _insert_sorted(self, entry: Entry) -> None:
        bisect.insort(self._entries, entry, key=Entry.sort_key)

    def _remove(self, entry: Entry) -> None:
        try:
            self._entries.remove(entry)
        except ValueError:
            pass

    def _forget_local(self, entry: Entry) -> None:
        if entry.temp_id is not None:
            self._local.pop(entry.temp_id, None)
        if entry.draft is not None:
            self._by_submission.pop(entry.draft.submission_id, None)

    def _emit(self, hook: str, *args) -> None:
        try:
            getattr(self._listener, hook)(*args)
        except Exception as e:
            log.error(f"[RECONCILE] Listener {hook} raised: {e}", exc_info=True)
