# =============================================================================
# File: app/messaging/reactions.py
# Description: ReactionLedger - per-message set of (user, kind) memberships
# =============================================================================

from __future__ import annotations

import asyncio
import weakref
from typing import Dict, Iterable, Optional, Tuple

from app.common.exceptions.exceptions import CampusChatException
from app.config.logging_config import get_logger
from app.infra.metrics import messaging_metrics as metrics
from app.messaging.broadcaster import ScopeBroadcaster
from app.messaging.enums import ReactionKind, ScopeAction
from app.messaging.events import ReactionChanged
from app.messaging.exceptions import MessageNotFoundError, NotScopeMemberError, StoreUnavailableError
from app.messaging.ports import AuthorizationPort, ReactionRepository
from app.messaging.store import MessageStore
from app.messaging.value_objects import ReactionState, ReactionSummary

log = get_logger("campus.messaging.reactions")


class ReactionLedger:
    """
    Membership per (message, user, kind) is a set: adding twice leaves one
    membership, so a retried request can never double count.

    Concurrent calls for the same (message, user, kind) are serialized and
    the last writer's intent wins.
    """

    def __init__(
            self,
            repository: ReactionRepository,
            store: MessageStore,
            authorization: AuthorizationPort,
            broadcaster: ScopeBroadcaster,
    ):
        self._repo = repository
        self._store = store
        self._authorization = authorization
        self._broadcaster = broadcaster
        # Locks live only while some call holds or awaits them
        self._locks: "weakref.WeakValueDictionary[Tuple[str, str, ReactionKind], asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    async def toggle(self, message_id: str, user_id: str, kind: ReactionKind = ReactionKind.LIKE) -> ReactionState:
        """
        Flip the user's membership.

        Raises:
            MessageNotFoundError: message missing or deleted; caller reverts
            NotScopeMemberError: authorization denied
        """
        return await self._change(message_id, user_id, kind, desired=None)

    async def set_reaction(
            self, message_id: str, user_id: str, kind: ReactionKind, active: bool
    ) -> ReactionState:
        """Set the membership to an explicit state. Idempotent under retry."""
        return await self._change(message_id, user_id, kind, desired=active)

    async def add(self, message_id: str, user_id: str, kind: ReactionKind = ReactionKind.LIKE) -> ReactionState:
        return await self.set_reaction(message_id, user_id, kind, True)

    async def remove(self, message_id: str, user_id: str, kind: ReactionKind = ReactionKind.LIKE) -> ReactionState:
        return await self.set_reaction(message_id, user_id, kind, False)

    async def summary(self, message_id: str, viewer_id: Optional[str] = None) -> ReactionSummary:
        summaries = await self.summaries([message_id], viewer_id)
        return summaries[message_id]

    async def summaries(
            self, message_ids: Iterable[str], viewer_id: Optional[str] = None
    ) -> Dict[str, ReactionSummary]:
        """Counts + viewer membership for each id; ids without reactions get an empty summary."""
        ids = list(dict.fromkeys(message_ids))
        if not ids:
            return {}
        try:
            found = await self._repo.summarize(ids, viewer_id)
        except CampusChatException:
            raise
        except Exception as e:
            log.error(f"Reaction summary failed: {e}", exc_info=True)
            raise StoreUnavailableError("reaction_summary", str(e)) from e
        return {mid: found.get(mid) or ReactionSummary(message_id=mid) for mid in ids}

    async def purge_message(self, message_id: str) -> None:
        """Drop every membership of a hard-deleted message."""
        try:
            await self._repo.purge_message(message_id)
        except CampusChatException:
            raise
        except Exception as e:
            log.error(f"Reaction purge failed for {message_id}: {e}", exc_info=True)
            raise StoreUnavailableError("reaction_purge", str(e)) from e
        log.info(f"Reactions purged for {message_id}")

    async def _change(
            self, message_id: str, user_id: str, kind: ReactionKind, desired: Optional[bool]
    ) -> ReactionState:
        message = await self._store.get(message_id)
        if message is None or not message.is_active:
            raise MessageNotFoundError(message_id)
        if not await self._authorization.is_allowed(user_id, message.scope_id, ScopeAction.REACT):
            raise NotScopeMemberError(user_id, message.scope_id, ScopeAction.REACT.value)

        key = (message_id, user_id, kind)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        async with lock:
            try:
                if desired is None:
                    current = await self._repo.get_state(message_id, user_id, kind)
                    desired = not current.active
                change = await self._repo.set_membership(message_id, user_id, kind, desired)
            except CampusChatException:
                raise
            except Exception as e:
                log.error(f"Reaction change failed for {message_id}: {e}", exc_info=True)
                raise StoreUnavailableError("reaction_change", str(e)) from e

            if change.changed:
                metrics.reaction_toggles_total.labels(
                    kind=kind.value, action="add" if change.active else "remove"
                ).inc()
                await self._broadcaster.publish(
                    message.scope_id,
                    ReactionChanged(
                        scope_id=message.scope_id,
                        message_id=message_id,
                        user_id=user_id,
                        kind=kind,
                        active=change.active,
                        count=change.count,
                        delta=1 if change.active else -1,
                        revision=change.revision,
                    ),
                )
                log.debug(
                    f"Reaction {kind.value} {'added' if change.active else 'removed'} "
                    f"on {message_id} by {user_id} (count={change.count})"
                )

        return ReactionState(active=change.active, count=change.count, revision=change.revision)
