# =============================================================================
# File: app/security/scope_authorization.py
# Description: Default AuthorizationPort adapters. Membership policy lives
#              outside this service; these cover development and moderation.
# =============================================================================

from __future__ import annotations

from typing import Dict, Iterable, Optional, Set

from app.config.logging_config import get_logger
from app.messaging.enums import ScopeAction

log = get_logger("campus.security.authorization")


class ModeratorListAuthorization:
    """
    Everyone may read, post, react and delete their own messages in any
    scope; only listed moderators may hard-delete.
    """

    def __init__(self, moderator_ids: Iterable[str] = ()):
        self._moderators: Set[str] = set(moderator_ids)

    async def is_allowed(self, actor_id: str, scope_id: str, action: ScopeAction) -> bool:
        if action is ScopeAction.MODERATE:
            allowed = actor_id in self._moderators
            if not allowed:
                log.warning(f"Moderation denied for {actor_id} in {scope_id}")
            return allowed
        return bool(actor_id)


class ScopeMembershipAuthorization(ModeratorListAuthorization):
    """
    Members-only scopes (class chats, post threads) on top of the moderator
    rule. Scopes without a member list are open.
    """

    def __init__(
            self,
            members: Optional[Dict[str, Iterable[str]]] = None,
            moderator_ids: Iterable[str] = (),
    ):
        super().__init__(moderator_ids)
        self._members: Dict[str, Set[str]] = {
            scope_id: set(user_ids) for scope_id, user_ids in (members or {}).items()
        }

    def grant(self, scope_id: str, user_id: str) -> None:
        self._members.setdefault(scope_id, set()).add(user_id)

    def revoke(self, scope_id: str, user_id: str) -> None:
        self._members.get(scope_id, set()).discard(user_id)

    async def is_allowed(self, actor_id: str, scope_id: str, action: ScopeAction) -> bool:
        if action is ScopeAction.MODERATE:
            return await super().is_allowed(actor_id, scope_id, action)
        members = self._members.get(scope_id)
        if members is None:
            return bool(actor_id)
        allowed = actor_id in members or actor_id in self._moderators
        if not allowed:
            log.debug(f"{actor_id} is not a member of {scope_id} ({action.value} denied)")
        return allowed
