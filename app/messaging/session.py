# =============================================================================
# File: app/messaging/session.py
# Description: ScopeSession - one participant's live connection to one scope.
#              Drives the ReconciliationEngine from store, uploader and
#              broadcaster completions.
# =============================================================================

from __future__ import annotations

import asyncio
import itertools
import time
from typing import Callable, List, Optional, Set

from app.common.exceptions.exceptions import CampusChatException, UnavailableError
from app.config.logging_config import get_logger
from app.config.messaging_config import MessagingConfig, get_messaging_config
from app.messaging.broadcaster import ScopeBroadcaster, Subscription
from app.messaging.enums import ReactionKind, ScopeKind
from app.messaging.events import AnyScopeEvent, MessageDeleted, MessageInserted, ReactionChanged
from app.messaging.exceptions import (
    MessageAlreadySealedError,
    MessageNotFoundError,
    MessageTooLongError,
    TooManyAttachmentsError,
)
from app.messaging.models import Message, NewMessage
from app.messaging.reactions import ReactionLedger
from app.messaging.reconciliation import Entry, ReconciliationEngine, ScopeListener
from app.messaging.reply_resolver import ReplyResolver
from app.messaging.store import MessageStore
from app.messaging.uploader import AttachmentUploader
from app.messaging.value_objects import (
    Draft,
    JumpResult,
    ReactionState,
    ReplyResolution,
    ReplyUnavailable,
)
from app.utils.uuid_utils import generate_uuid_str

log = get_logger("campus.messaging.session")


class ScopeSession:
    """
    Usage:
        async with ScopeSession(scope_id, user_id, ...) as session:
            handle = session.submit(Draft(scope_id, user_id, body="hi"))

    submit() never waits for the network. Appends from one session are
    chained in submission order and carry a growing session sequence, so a
    later message can never be stored before an earlier one. Media uploads
    run concurrently; a message with media reserves its position first and
    becomes visible once its uploads are attached.
    """

    def __init__(
            self,
            scope_id: str,
            viewer_id: str,
            store: MessageStore,
            ledger: ReactionLedger,
            broadcaster: ScopeBroadcaster,
            uploader: AttachmentUploader,
            resolver: ReplyResolver,
            listener: Optional[ScopeListener] = None,
            config: Optional[MessagingConfig] = None,
            clock: Callable[[], float] = time.monotonic,
            session_id: Optional[str] = None,
    ):
        self.scope_id = scope_id
        self.viewer_id = viewer_id
        self.session_id = session_id or generate_uuid_str()
        self._store = store
        self._ledger = ledger
        self._broadcaster = broadcaster
        self._uploader = uploader
        self._resolver = resolver
        self._config = config or get_messaging_config()
        self.engine = ReconciliationEngine(
            scope_id, viewer_id, config=self._config, listener=listener, clock=clock
        )

        self._seq = itertools.count(1)
        self._tail: Optional[asyncio.Future] = None
        self._persist_tasks: Set[asyncio.Task] = set()
        self._subscription: Optional[Subscription] = None
        self._consumer_task: Optional[asyncio.Task] = None
        self._watchdog_task: Optional[asyncio.Task] = None
        self._scope_kind: Optional[ScopeKind] = None
        self._opened = False
        self._closed = False

    async def __aenter__(self) -> ScopeSession:
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def is_open(self) -> bool:
        return self._opened and not self._closed

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def open(self, limit: Optional[int] = None) -> List[Entry]:
        """
        Subscribe, then load the newest page. Subscribing first means nothing
        inserted while the page loads is missed; overlaps are deduplicated.
        """
        if self._opened:
            raise RuntimeError("ScopeSession already opened")
        self._scope_kind = await self._store.get_scope_kind(self.scope_id)
        self._subscription = self._broadcaster.subscribe(self.scope_id)
        try:
            snapshot = await self._load_page(limit)
        except BaseException:
            self._subscription.close()
            raise

        self._opened = True
        self._consumer_task = asyncio.create_task(self._consume(), name=f"scope-consumer-{self.session_id}")
        self._watchdog_task = asyncio.create_task(self._watchdog(), name=f"scope-watchdog-{self.session_id}")
        log.info(f"Session {self.session_id} opened {self.scope_id} for {self.viewer_id} ({len(snapshot)} messages)")
        return snapshot

    async def close(self, drain: bool = False) -> None:
        """
        Stop receiving events. No listener callback fires after this returns.
        Sends already in flight still complete at the store; pass drain=True
        to wait for them first.
        """
        if self._closed:
            return
        if drain:
            await self.drain()
        self._closed = True
        self.engine.set_listener(ScopeListener())

        if self._subscription is not None:
            self._subscription.close()
        tasks = [t for t in (self._consumer_task, self._watchdog_task) if t is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        log.info(f"Session {self.session_id} closed {self.scope_id}")

    async def drain(self) -> None:
        """Wait until every in-flight send has completed or failed."""
        while self._persist_tasks:
            await asyncio.gather(*list(self._persist_tasks), return_exceptions=True)

    # =========================================================================
    # Sending
    # =========================================================================

    def submit(self, draft: Draft) -> str:
        """
        Insert a pending entry and start persisting it in the background.

        Returns:
            Pending handle (the entry's temporary id)

        Raises:
            ValidationError / ConflictError synchronously; network failures
            arrive later through on_send_failed.
        """
        self._ensure_open()
        self._validate(draft)
        entry = self.engine.submit(draft)
        self._launch(entry)
        return entry.temp_id

    def retry(self, handle: str) -> str:
        """Resend a failed entry. The submission id is reused, so a send
        that did reach the store is not stored twice."""
        self._ensure_open()
        entry = self.engine.retry(handle)
        self._launch(entry)
        log.info(f"Session {self.session_id} retrying {handle}")
        return handle

    def discard(self, handle: str) -> bool:
        return self.engine.discard(handle) is not None

    def _launch(self, entry: Entry) -> None:
        seq = next(self._seq)
        previous = self._tail
        appended = asyncio.get_running_loop().create_future()
        self._tail = appended
        task = asyncio.create_task(
            self._persist(entry.temp_id, entry.draft, seq, previous, appended),
            name=f"persist-{entry.temp_id}",
        )
        self._persist_tasks.add(task)
        task.add_done_callback(self._persist_tasks.discard)

    async def _persist(
            self,
            handle: str,
            draft: Draft,
            seq: int,
            previous: Optional[asyncio.Future],
            appended: asyncio.Future,
    ) -> None:
        uploads: Optional[asyncio.Future] = None
        try:
            if draft.blobs:
                uploads = asyncio.ensure_future(asyncio.gather(*[
                    self._uploader.upload(self.scope_id, self._scope_kind, blob) for blob in draft.blobs
                ]))

            try:
                if previous is not None:
                    await previous
                record = await self._store.append(NewMessage(
                    scope_id=draft.scope_id,
                    author_id=draft.author_id,
                    body=draft.body,
                    attachments=draft.attachments,
                    reply_to_id=draft.reply_to_id,
                    submission_id=draft.submission_id,
                    session_id=self.session_id,
                    session_seq=seq,
                    awaiting_attachments=bool(draft.blobs),
                ))
            finally:
                if not appended.done():
                    appended.set_result(None)

            if uploads is not None:
                if record.sealed:
                    # Idempotent replay of a submission that already completed
                    uploads.cancel()
                else:
                    record = await self._attach(record, draft, uploads)

            self.engine.on_persisted(handle, record)

        except asyncio.CancelledError:
            if uploads is not None:
                uploads.cancel()
            raise
        except CampusChatException as e:
            if uploads is not None and not uploads.done():
                uploads.cancel()
            log.warning(f"Send {handle} failed in {self.scope_id}: {e}")
            self.engine.on_persist_failed(handle, e)
        except Exception as e:
            if uploads is not None and not uploads.done():
                uploads.cancel()
            log.error(f"Send {handle} failed unexpectedly in {self.scope_id}: {e}", exc_info=True)
            self.engine.on_persist_failed(handle, UnavailableError(str(e)))

    async def _attach(self, reservation: Message, draft: Draft, uploads: asyncio.Future) -> Message:
        try:
            uploaded = await uploads
        except BaseException:
            try:
                await self._store.abandon(reservation.id, draft.author_id)
            except CampusChatException as e:
                log.warning(f"Could not abandon reservation {reservation.id}: {e}")
            raise

        attachments = list(draft.attachments) + list(uploaded)
        try:
            return await self._store.seal(reservation.id, draft.author_id, attachments)
        except MessageAlreadySealedError:
            # An earlier attempt of the same submission completed first
            current = await self._store.get(reservation.id)
            if current is None or not current.is_active:
                raise MessageNotFoundError(reservation.id)
            return current

    def _validate(self, draft: Draft) -> None:
        body_length = len(draft.body.strip())
        if body_length > self._config.max_body_length:
            raise MessageTooLongError(body_length, self._config.max_body_length)
        total = len(draft.blobs) + len(draft.attachments)
        if total > self._config.max_attachments:
            raise TooManyAttachmentsError(total, self._config.max_attachments)
        for blob in draft.blobs:
            self._uploader.validate(blob)

    # =========================================================================
    # Reactions / deletes
    # =========================================================================

    async def toggle_reaction(self, message_id: str, kind: ReactionKind = ReactionKind.LIKE) -> ReactionState:
        """
        Optimistic toggle. The intended state is sent explicitly so a retried
        request cannot flip twice. Any failure reverts the local change and
        is re-raised.
        """
        self._ensure_open()
        previous, active = self.engine.apply_local_reaction(message_id, kind)
        try:
            state = await self._ledger.set_reaction(message_id, self.viewer_id, kind, active)
        except Exception:
            self.engine.revert_reaction(message_id, kind, previous)
            raise
        self.engine.confirm_reaction(message_id, kind, state)
        return state

    async def delete(self, message_id: str, hard: bool = False) -> None:
        self._ensure_open()
        if hard:
            await self._store.hard_delete(message_id, self.viewer_id)
            await self._ledger.purge_message(message_id)
        else:
            await self._store.soft_delete(message_id, self.viewer_id)
        self.engine.on_deleted(message_id)

    # =========================================================================
    # Reads
    # =========================================================================

    async def resync(self) -> List[Entry]:
        """Backfill the newest page after a reconnect or a dropped stream."""
        self._ensure_open()
        return await self._load_page(None)

    async def load_older(self, limit: Optional[int] = None) -> List[Entry]:
        """Load the page before the oldest confirmed message held."""
        self._ensure_open()
        oldest = self.engine.oldest_confirmed_id()
        if oldest is None:
            return await self._load_page(limit)
        return await self._load_page(limit, before=oldest)

    async def reply_preview(self, handle_or_id: str) -> Optional[ReplyResolution]:
        entry = self.engine.get(handle_or_id)
        if entry is None or not entry.reply_to_id:
            return None
        target_id = entry.reply_to_id
        if self.engine.is_deleted(target_id):
            return ReplyUnavailable(target_id)
        cached = self.engine.cached_preview(target_id)
        if cached is not None:
            return cached
        resolution = await self._resolver.resolve_preview(entry)
        if not getattr(resolution, "retryable", False):
            self.engine.cache_preview(target_id, resolution)
        return resolution

    def jump_to(self, message_id: str) -> JumpResult:
        return self._resolver.jump_to(message_id, self.engine)

    def entries(self) -> List[Entry]:
        return self.engine.entries()

    # =========================================================================
    # Background loops
    # =========================================================================

    async def _load_page(self, limit: Optional[int], before: Optional[str] = None) -> List[Entry]:
        records = await self._store.fetch_recent(self.scope_id, limit, before=before, viewer_id=self.viewer_id)
        summaries = await self._ledger.summaries([r.id for r in records], self.viewer_id)
        return self.engine.load_snapshot(records, summaries)

    async def _consume(self) -> None:
        while not self._closed:
            async for event in self._subscription:
                self._apply(event)
            if self._closed or not self._subscription.overflowed:
                return
            log.warning(f"[BROADCAST] Session {self.session_id} fell behind on {self.scope_id}; resubscribing")
            self._subscription = self._broadcaster.subscribe(self.scope_id)
            try:
                await self._load_page(None)
            except CampusChatException as e:
                log.error(f"Backfill after overflow failed for {self.scope_id}: {e}")

    def _apply(self, event: AnyScopeEvent) -> None:
        if isinstance(event, MessageInserted):
            self.engine.on_broadcast_received(event.message)
        elif isinstance(event, MessageDeleted):
            self.engine.on_deleted(event.message_id)
        elif isinstance(event, ReactionChanged):
            self.engine.on_reaction_changed(event)

    async def _watchdog(self) -> None:
        interval = max(min(self._config.pending_timeout_seconds / 4, 1.0), 0.05)
        while not self._closed:
            await asyncio.sleep(interval)
            self.engine.expire_stale()

    def _ensure_open(self) -> None:
        if not self.is_open:
            raise RuntimeError("ScopeSession is not open")
