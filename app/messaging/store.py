# =============================================================================
# File: app/messaging/store.py
# Description: MessageStore - durable, scope-partitioned, append-mostly log.
#              The only component that assigns durable message ids.
# =============================================================================

from __future__ import annotations

import asyncio
import time
import weakref
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator, Dict, Iterable, List, Optional

from app.common.exceptions.exceptions import CampusChatException
from app.config.logging_config import get_logger
from app.config.messaging_config import MessagingConfig, get_messaging_config
from app.infra.metrics import messaging_metrics as metrics
from app.infra.persistence.snowflake import SnowflakeIDGenerator, is_snowflake_id
from app.messaging.broadcaster import ScopeBroadcaster
from app.messaging.enums import ScopeAction, ScopeKind
from app.messaging.events import MessageDeleted, MessageInserted
from app.messaging.exceptions import (
    EmptyMessageError,
    MessageAlreadySealedError,
    MessageNotFoundError,
    MessageTooLongError,
    NotMessageAuthorError,
    NotScopeMemberError,
    OutOfOrderSubmissionError,
    ReplyTargetNotFoundError,
    ScopeNotFoundError,
    StoreUnavailableError,
    TooManyAttachmentsError,
)
from app.messaging.models import Attachment, Message, NewMessage
from app.messaging.ports import AuthorizationPort, MessageRepository
from app.utils.datetime_utils import utc_now

log = get_logger("campus.messaging.store")


class MessageStore:
    """
    Single source of truth for messages.

    - append() assigns id + created_at under a per-scope lock, so ids and
      timestamps are assigned in one well-defined order per scope
    - Every committed mutation is published to the broadcaster afterwards,
      never before
    - Soft-deleted messages stay resolvable (as tombstones) for replies
    """

    def __init__(
            self,
            repository: MessageRepository,
            authorization: AuthorizationPort,
            broadcaster: ScopeBroadcaster,
            id_generator: SnowflakeIDGenerator,
            config: Optional[MessagingConfig] = None,
    ):
        self._repo = repository
        self._authorization = authorization
        self._broadcaster = broadcaster
        self._ids = id_generator
        self._config = config or get_messaging_config()
        # Locks live only while some call holds or awaits them
        self._scope_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    # =========================================================================
    # Scopes
    # =========================================================================

    async def register_scope(self, scope_id: str, kind: ScopeKind) -> None:
        async with self._backend("register_scope"):
            await self._repo.register_scope(scope_id, kind)
        log.info(f"Scope registered: {scope_id} ({kind.value})")

    async def get_scope_kind(self, scope_id: str) -> ScopeKind:
        async with self._backend("get_scope_kind"):
            kind = await self._repo.get_scope_kind(scope_id)
        if kind is None:
            raise ScopeNotFoundError(scope_id)
        return kind

    # =========================================================================
    # Append
    # =========================================================================

    async def append(self, new: NewMessage) -> Message:
        """
        Persist a submission and return the confirmed record.

        Raises:
            ValidationError: empty/oversized message
            ScopeNotFoundError: unknown scope
            NotScopeMemberError: authorization denied
            ReplyTargetNotFoundError: reply target missing or in another scope
            OutOfOrderSubmissionError: session sequence went backwards
            StoreUnavailableError: backend down
        """
        self._validate(new)
        scope_kind = await self.get_scope_kind(new.scope_id)
        await self._authorize(new.author_id, new.scope_id, ScopeAction.APPEND)

        started = time.perf_counter()
        async with self._scope_lock(new.scope_id):
            if new.submission_id:
                async with self._backend("append"):
                    existing = await self._repo.find_by_submission(new.author_id, new.submission_id)
                if existing is not None:
                    metrics.messages_idempotent_replays_total.inc()
                    log.info(
                        f"[IDEMPOTENCY] Duplicate submission {new.submission_id} from {new.author_id}, "
                        f"returning existing message {existing.id}"
                    )
                    return existing

            if new.reply_to_id:
                await self._check_reply_target(new.reply_to_id, new.scope_id)

            if new.session_id and new.session_seq is not None:
                async with self._backend("append"):
                    last_seq = await self._repo.get_session_seq(new.scope_id, new.session_id)
                if new.session_seq <= last_seq:
                    metrics.messages_append_rejected_total.labels(reason="out_of_order").inc()
                    raise OutOfOrderSubmissionError(new.session_id, new.session_seq, last_seq)

            snowflake_id = self._ids.generate()
            message = Message(
                id=str(snowflake_id),
                scope_id=new.scope_id,
                author_id=new.author_id,
                body=new.body.strip(),
                attachments=new.attachments,
                reply_to_id=new.reply_to_id,
                created_at=self._ids.datetime_of(snowflake_id),
                submission_id=new.submission_id,
                sealed=not new.awaiting_attachments,
            )

            async with self._backend("append"):
                await self._repo.insert(message, new.session_id, new.session_seq)

            if message.sealed:
                metrics.messages_appended_total.labels(
                    scope_kind=scope_kind.value, kind=message.kind.value
                ).inc()
                await self._broadcaster.publish(
                    message.scope_id, MessageInserted(scope_id=message.scope_id, message=message)
                )

        metrics.append_latency_seconds.observe(time.perf_counter() - started)
        log.info(
            f"Message {message.id} appended to {message.scope_id} by {message.author_id}"
            f"{' (awaiting attachments)' if not message.sealed else ''}"
        )
        return message

    async def seal(self, message_id: str, author_id: str, attachments: List[Attachment]) -> Message:
        """
        Attach uploaded media to a reserved message and make it visible.
        Sealing an already sealed message returns it unchanged.
        """
        message = await self._get_or_raise(message_id)
        if message.author_id != author_id:
            raise NotMessageAuthorError(message_id, author_id)
        if message.is_deleted:
            raise MessageNotFoundError(message_id)
        if message.sealed:
            if [a.url for a in message.attachments] == [a.url for a in attachments]:
                return message
            raise MessageAlreadySealedError(message_id)

        async with self._scope_lock(message.scope_id):
            async with self._backend("seal"):
                sealed = await self._repo.seal(message_id, list(attachments))
            if sealed is None:
                # Lost a race with another seal of the same reservation
                current = await self._get_or_raise(message_id)
                if [a.url for a in current.attachments] == [a.url for a in attachments]:
                    return current
                raise MessageAlreadySealedError(message_id)

            scope_kind = await self.get_scope_kind(sealed.scope_id)
            metrics.messages_appended_total.labels(scope_kind=scope_kind.value, kind=sealed.kind.value).inc()
            await self._broadcaster.publish(
                sealed.scope_id, MessageInserted(scope_id=sealed.scope_id, message=sealed)
            )

        log.info(f"Message {message_id} sealed with {len(attachments)} attachment(s)")
        return sealed

    async def abandon(self, message_id: str, author_id: str) -> None:
        """Drop a reservation whose attachments will never arrive."""
        message = await self.get(message_id)
        if message is None:
            return
        if message.author_id != author_id:
            raise NotMessageAuthorError(message_id, author_id)
        if message.sealed:
            raise MessageAlreadySealedError(message_id)
        async with self._backend("abandon"):
            await self._repo.purge(message_id)
        log.info(f"Reservation {message_id} abandoned by {author_id}")

    async def purge_stale_reservations(self, max_age: timedelta) -> int:
        """Remove reservations older than max_age. Returns how many were purged."""
        async with self._backend("purge_stale_reservations"):
            stale = await self._repo.list_stale_reservations(utc_now() - max_age)
            for message in stale:
                await self._repo.purge(message.id)
        if stale:
            log.info(f"Purged {len(stale)} stale reservation(s)")
        return len(stale)

    # =========================================================================
    # Reads
    # =========================================================================

    async def fetch_recent(
            self,
            scope_id: str,
            limit: Optional[int] = None,
            before: Optional[str] = None,
            viewer_id: Optional[str] = None,
    ) -> List[Message]:
        """
        Active messages of a scope, oldest to newest.

        `before` is the id of the oldest message already held; only strictly
        older messages are returned, so pages never overlap and inserts made
        after the cursor was taken cannot shift a page.
        """
        await self.get_scope_kind(scope_id)
        if viewer_id is not None:
            await self._authorize(viewer_id, scope_id, ScopeAction.READ)

        page_size = limit or self._config.default_page_size
        page_size = max(1, min(page_size, self._config.max_page_size))
        if before is not None and not is_snowflake_id(before):
            raise MessageNotFoundError(before)

        async with self._backend("fetch_recent"):
            newest_first = await self._repo.list_recent(scope_id, page_size, before)
        return list(reversed(newest_first))

    async def get(self, message_id: str) -> Optional[Message]:
        """Any message by id, including tombstones and reservations."""
        if not is_snowflake_id(message_id):
            return None
        async with self._backend("get"):
            return await self._repo.get(message_id)

    async def resolve(self, ids: Iterable[str]) -> Dict[str, Message]:
        """
        Batch lookup for reply resolution. Unknown ids are absent from the
        result; tombstones are included so callers can tell deleted from
        never-existed. Reservations are not visible.
        """
        wanted = {i for i in ids if is_snowflake_id(i)}
        if not wanted:
            return {}
        async with self._backend("resolve"):
            found = await self._repo.get_many(wanted)
        return {mid: m for mid, m in found.items() if m.sealed}

    # =========================================================================
    # Deletes
    # =========================================================================

    async def soft_delete(self, message_id: str, requested_by: str) -> Message:
        """
        Tombstone a message. Only its author may do this; repeating the call
        returns the existing tombstone.
        """
        message = await self._get_or_raise(message_id)
        if not message.sealed:
            raise MessageNotFoundError(message_id)
        if message.author_id != requested_by:
            raise NotMessageAuthorError(message_id, requested_by)
        await self._authorize(requested_by, message.scope_id, ScopeAction.DELETE)
        if message.is_deleted:
            return message

        async with self._scope_lock(message.scope_id):
            async with self._backend("soft_delete"):
                tombstone = await self._repo.mark_deleted(message_id, utc_now())
            if tombstone is None:
                raise MessageNotFoundError(message_id)
            metrics.messages_deleted_total.labels(mode="soft").inc()
            await self._broadcaster.publish(
                message.scope_id, MessageDeleted(scope_id=message.scope_id, message_id=message_id)
            )

        log.info(f"Message {message_id} soft-deleted by {requested_by}")
        return tombstone

    async def hard_delete(self, message_id: str, requested_by: str) -> None:
        """Moderation removal. Requires the MODERATE action on the scope."""
        message = await self._get_or_raise(message_id)
        await self._authorize(requested_by, message.scope_id, ScopeAction.MODERATE)

        async with self._scope_lock(message.scope_id):
            async with self._backend("hard_delete"):
                removed = await self._repo.purge(message_id)
            if not removed:
                raise MessageNotFoundError(message_id)
            metrics.messages_deleted_total.labels(mode="hard").inc()
            await self._broadcaster.publish(
                message.scope_id,
                MessageDeleted(scope_id=message.scope_id, message_id=message_id, hard=True),
            )

        log.warning(f"Message {message_id} hard-deleted by {requested_by}")

    # =========================================================================
    # Helpers
    # =========================================================================

    def _validate(self, new: NewMessage) -> None:
        if not new.has_content:
            metrics.messages_append_rejected_total.labels(reason="empty").inc()
            raise EmptyMessageError()
        body_length = len(new.body.strip())
        if body_length > self._config.max_body_length:
            metrics.messages_append_rejected_total.labels(reason="too_long").inc()
            raise MessageTooLongError(body_length, self._config.max_body_length)
        if len(new.attachments) > self._config.max_attachments:
            metrics.messages_append_rejected_total.labels(reason="too_many_attachments").inc()
            raise TooManyAttachmentsError(len(new.attachments), self._config.max_attachments)

    async def _authorize(self, actor_id: str, scope_id: str, action: ScopeAction) -> None:
        if not await self._authorization.is_allowed(actor_id, scope_id, action):
            if action is ScopeAction.APPEND:
                metrics.messages_append_rejected_total.labels(reason="denied").inc()
            raise NotScopeMemberError(actor_id, scope_id, action.value)

    async def _check_reply_target(self, reply_to_id: str, scope_id: str) -> None:
        target = await self.get(reply_to_id)
        if target is None or not target.is_active or target.scope_id != scope_id:
            raise ReplyTargetNotFoundError(reply_to_id, scope_id)

    async def _get_or_raise(self, message_id: str) -> Message:
        message = await self.get(message_id)
        if message is None:
            raise MessageNotFoundError(message_id)
        return message

    def _scope_lock(self, scope_id: str) -> asyncio.Lock:
        lock = self._scope_locks.get(scope_id)
        if lock is None:
            lock = self._scope_locks[scope_id] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def _backend(self, operation: str) -> AsyncIterator[None]:
        """Translate backend failures into StoreUnavailableError."""
        try:
            yield
        except CampusChatException:
            raise
        except Exception as e:
            log.error(f"Message store backend failed during {operation}: {e}", exc_info=True)
            raise StoreUnavailableError(operation, str(e)) from e
