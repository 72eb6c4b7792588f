# =============================================================================
# File: tests/test_reactions.py
# Description: ReactionLedger - set membership, idempotent retries,
#              concurrency, events
# =============================================================================

import asyncio

import pytest

from app.messaging.enums import ReactionKind, ScopeAction
from app.messaging.events import ReactionChanged
from app.messaging.exceptions import MessageNotFoundError, NotScopeMemberError, StoreUnavailableError
from app.messaging.models import NewMessage
from tests.conftest import SCOPE


async def post(store, body="react to me", author="alice"):
    return await store.append(NewMessage(scope_id=SCOPE, author_id=author, body=body))


def reaction_events(subscription):
    events = []
    while not subscription._queue.empty():
        item = subscription._queue.get_nowait()
        if isinstance(item, ReactionChanged):
            events.append(item)
    return events


class TestToggle:

    async def test_toggle_adds_then_removes(self, store, ledger):
        message = await post(store)
        added = await ledger.toggle(message.id, "bob")
        assert added.active and added.count == 1
        removed = await ledger.toggle(message.id, "bob")
        assert not removed.active and removed.count == 0
        assert removed.revision > added.revision

    async def test_counts_distinct_users(self, store, ledger):
        message = await post(store)
        await ledger.toggle(message.id, "bob")
        await ledger.toggle(message.id, "carol")
        summary = await ledger.summary(message.id, "bob")
        assert summary.likes_count == 2
        assert summary.user_liked

    async def test_kinds_are_independent(self, store, ledger):
        message = await post(store)
        await ledger.toggle(message.id, "bob", ReactionKind.LOVE)
        await ledger.toggle(message.id, "bob", ReactionKind.LIKE)
        summary = await ledger.summary(message.id, "bob")
        assert summary.count(ReactionKind.LOVE) == 1
        assert summary.count(ReactionKind.LIKE) == 1
        assert summary.mine == {ReactionKind.LOVE, ReactionKind.LIKE}


class TestIdempotentIntent:

    async def test_repeated_add_counts_once(self, store, ledger, broadcaster):
        message = await post(store)
        subscription = broadcaster.subscribe(SCOPE)
        first = await ledger.add(message.id, "bob")
        retry = await ledger.add(message.id, "bob")
        assert first.count == retry.count == 1
        assert retry.revision == first.revision
        assert len(reaction_events(subscription)) == 1

    async def test_remove_without_membership_is_noop(self, store, ledger, broadcaster):
        message = await post(store)
        subscription = broadcaster.subscribe(SCOPE)
        state = await ledger.remove(message.id, "bob")
        assert not state.active and state.count == 0
        assert reaction_events(subscription) == []

    async def test_concurrent_toggles_serialize(self, store, ledger):
        message = await post(store)
        await asyncio.gather(*[ledger.toggle(message.id, "bob") for _ in range(4)])
        summary = await ledger.summary(message.id, "bob")
        # Four flips from empty end empty
        assert summary.likes_count == 0

    async def test_concurrent_sets_last_writer_wins(self, store, ledger):
        message = await post(store)
        await asyncio.gather(
            ledger.set_reaction(message.id, "bob", ReactionKind.LIKE, True),
            ledger.set_reaction(message.id, "bob", ReactionKind.LIKE, False),
            ledger.set_reaction(message.id, "bob", ReactionKind.LIKE, True),
        )
        summary = await ledger.summary(message.id, "bob")
        assert summary.user_liked and summary.likes_count == 1


class TestEvents:

    async def test_event_carries_count_and_revision(self, store, ledger, broadcaster):
        message = await post(store)
        subscription = broadcaster.subscribe(SCOPE)
        await ledger.add(message.id, "bob")
        await ledger.add(message.id, "carol")
        events = reaction_events(subscription)
        assert [e.count for e in events] == [1, 2]
        assert [e.delta for e in events] == [1, 1]
        assert events[0].revision < events[1].revision
        assert events[1].user_id == "carol"


class TestFailures:

    async def test_deleted_message_rejected(self, store, ledger):
        message = await post(store)
        await store.soft_delete(message.id, "alice")
        with pytest.raises(MessageNotFoundError):
            await ledger.toggle(message.id, "bob")

    async def test_unknown_message_rejected(self, ledger):
        with pytest.raises(MessageNotFoundError):
            await ledger.toggle("424242", "bob")

    async def test_authorization_checked(self, store, ledger, authorization):
        message = await post(store)
        authorization.deny("eve", SCOPE, ScopeAction.REACT)
        with pytest.raises(NotScopeMemberError):
            await ledger.toggle(message.id, "eve")

    async def test_backend_failure_is_unavailable(self, store, ledger, reaction_repo, monkeypatch):
        message = await post(store)

        async def broken(*args, **kwargs):
            raise ConnectionError("db down")

        monkeypatch.setattr(reaction_repo, "set_membership", broken)
        with pytest.raises(StoreUnavailableError):
            await ledger.add(message.id, "bob")


class TestSummaries:

    async def test_every_id_gets_a_summary(self, store, ledger):
        a = await post(store, "a")
        b = await post(store, "b")
        await ledger.add(a.id, "bob")
        summaries = await ledger.summaries([a.id, b.id], "carol")
        assert summaries[a.id].likes_count == 1
        assert not summaries[a.id].user_liked
        assert summaries[b.id].likes_count == 0

    async def test_purge_message(self, store, ledger):
        message = await post(store)
        await ledger.add(message.id, "bob")
        await ledger.purge_message(message.id)
        assert (await ledger.summary(message.id)).likes_count == 0
