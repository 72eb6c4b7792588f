# =============================================================================
# File: tests/test_reconciliation.py
# Description: ReconciliationEngine - optimistic entries, echo merge,
#              duplicates, deletes, reactions, listener isolation
# =============================================================================

from datetime import datetime, timedelta, timezone

import pytest

from app.messaging.enums import DeliveryState, ReactionKind
from app.messaging.events import ReactionChanged
from app.messaging.exceptions import (
    DuplicateSubmissionError,
    EmptyMessageError,
    MessageNotFoundError,
    PersistenceTimeoutError,
    StoreUnavailableError,
    UnknownScopeError,
)
from app.messaging.models import Message
from app.messaging.reconciliation import ReconciliationEngine
from app.messaging.value_objects import Draft, ReactionState, ReactionSummary, ReplyUnavailable
from tests.conftest import OTHER_SCOPE, SCOPE
from tests.fakes.recording_listener import ExplodingListener

BASE = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def record(message_id, author="bob", body="hello", seconds=0, submission_id=None, reply_to_id=None,
           deleted=False, sealed=True, scope_id=SCOPE):
    return Message(
        id=str(message_id),
        scope_id=scope_id,
        author_id=author,
        body=body,
        created_at=BASE + timedelta(seconds=seconds),
        submission_id=submission_id,
        reply_to_id=reply_to_id,
        deleted_at=BASE if deleted else None,
        sealed=sealed,
    )


def persisted(entry, message_id, seconds=10):
    return record(message_id, author=entry.author_id, body=entry.body, seconds=seconds,
                  submission_id=entry.submission_id, reply_to_id=entry.reply_to_id)


@pytest.fixture
def engine(config, listener, clock):
    return ReconciliationEngine(
        SCOPE, "alice", config=config, listener=listener, clock=clock,
        wall_clock=lambda: BASE + timedelta(seconds=5),
    )


def draft(body="hi", **kwargs):
    return Draft(scope_id=SCOPE, author_id="alice", body=body, **kwargs)


class TestSubmit:

    def test_pending_entry_appears_immediately(self, engine, listener):
        entry = engine.submit(draft())
        assert entry.temp_id.startswith("temp_")
        assert entry.delivery_state is DeliveryState.PENDING
        assert engine.entries() == [entry]
        assert listener.of("on_message_inserted") == [(entry,)]

    def test_empty_draft_rejected(self, engine):
        with pytest.raises(EmptyMessageError):
            engine.submit(draft("   "))
        assert engine.entries() == []

    def test_wrong_scope_rejected(self, engine):
        with pytest.raises(UnknownScopeError):
            engine.submit(Draft(scope_id=OTHER_SCOPE, author_id="alice", body="hi"))

    def test_local_entries_keep_submission_order(self, engine):
        first = engine.submit(draft("one"))
        second = engine.submit(draft("two"))
        assert engine.entries() == [first, second]


class TestConfirmation:

    def test_persist_replaces_pending(self, engine, listener):
        entry = engine.submit(draft())
        confirmed = engine.on_persisted(entry.temp_id, persisted(entry, 100))
        assert confirmed.delivery_state is DeliveryState.SENT
        assert [e.id for e in engine.entries()] == ["100"]
        assert listener.of("on_message_confirmed")[0][0] == entry.temp_id

    def test_echo_after_persist_is_dropped(self, engine, listener):
        entry = engine.submit(draft())
        record_ = persisted(entry, 100)
        engine.on_persisted(entry.temp_id, record_)
        listener.clear()
        assert engine.on_broadcast_received(record_) is None
        assert len(engine.entries()) == 1
        assert listener.events == []

    def test_echo_before_persist_confirms_entry(self, engine, listener):
        entry = engine.submit(draft())
        record_ = persisted(entry, 100)
        engine.on_broadcast_received(record_)
        assert [e.id for e in engine.entries()] == ["100"]
        # The late append response is a no-op
        assert engine.on_persisted(entry.temp_id, record_) is None
        assert len(engine.entries()) == 1
        assert len(listener.of("on_message_confirmed")) == 1

    def test_confirmed_entry_moves_to_durable_position(self, engine):
        entry = engine.submit(draft("mine"))
        engine.on_broadcast_received(record(200, seconds=20))
        engine.on_persisted(entry.temp_id, persisted(entry, 300, seconds=30))
        assert [e.id for e in engine.entries()] == ["200", "300"]

    def test_unknown_handle_ignored(self, engine):
        assert engine.on_persisted("temp_missing", record(1)) is None


class TestFailureAndRetry:

    def test_failure_keeps_content(self, engine, listener):
        entry = engine.submit(draft("keep me"))
        error = StoreUnavailableError("append")
        engine.on_persist_failed(entry.temp_id, error)
        assert entry.delivery_state is DeliveryState.FAILED
        assert entry.body == "keep me"
        assert engine.entries() == [entry]
        assert listener.of("on_send_failed") == [(entry.temp_id, error)]

    def test_retry_returns_to_pending(self, engine):
        entry = engine.submit(draft())
        engine.on_persist_failed(entry.temp_id, StoreUnavailableError("append"))
        retried = engine.retry(entry.temp_id)
        assert retried is entry
        assert entry.delivery_state is DeliveryState.PENDING
        assert entry.error is None

    def test_retry_unknown_handle(self, engine):
        with pytest.raises(MessageNotFoundError):
            engine.retry("temp_missing")

    def test_discard_removes_entry(self, engine, listener):
        entry = engine.submit(draft())
        engine.on_persist_failed(entry.temp_id, StoreUnavailableError("append"))
        engine.discard(entry.temp_id)
        assert engine.entries() == []
        assert listener.of("on_entry_discarded") == [(entry.temp_id,)]

    def test_expire_stale_uses_pending_timeout(self, engine, clock, listener):
        entry = engine.submit(draft())
        clock.advance(29)
        assert engine.expire_stale() == []
        clock.advance(1)
        assert engine.expire_stale() == [entry]
        assert entry.delivery_state is DeliveryState.FAILED
        assert isinstance(entry.error, PersistenceTimeoutError)

    def test_late_confirmation_after_timeout_still_confirms(self, engine, clock):
        entry = engine.submit(draft())
        clock.advance(60)
        engine.expire_stale()
        engine.on_persisted(entry.temp_id, persisted(entry, 100))
        assert engine.entries()[0].delivery_state is DeliveryState.SENT


class TestDuplicateGuard:

    def test_identical_draft_in_window_rejected(self, engine, clock):
        engine.submit(draft("same"))
        clock.advance(1)
        with pytest.raises(DuplicateSubmissionError):
            engine.submit(draft("same"))
        assert len(engine.entries()) == 1

    def test_identical_draft_after_window_accepted(self, engine, clock):
        engine.submit(draft("same"))
        clock.advance(3)
        engine.submit(draft("same"))
        assert len(engine.entries()) == 2

    def test_different_reply_target_is_not_duplicate(self, engine):
        engine.submit(draft("+1", reply_to_id="10"))
        engine.submit(draft("+1", reply_to_id="11"))
        assert len(engine.entries()) == 2


class TestRemoteRecords:

    def test_total_order_by_created_at_then_id(self, engine):
        engine.on_broadcast_received(record(30, seconds=2))
        engine.on_broadcast_received(record(10, seconds=1))
        engine.on_broadcast_received(record(20, seconds=2))
        assert [e.id for e in engine.entries()] == ["10", "20", "30"]

    def test_duplicate_id_dropped(self, engine, listener):
        engine.on_broadcast_received(record(10))
        engine.on_broadcast_received(record(10))
        assert len(engine.entries()) == 1
        assert len(listener.of("on_message_inserted")) == 1

    def test_other_scope_and_reservations_ignored(self, engine):
        engine.on_broadcast_received(record(10, scope_id=OTHER_SCOPE))
        engine.on_broadcast_received(record(11, sealed=False))
        assert engine.entries() == []


class TestDeletes:

    def test_delete_keeps_replies_and_invalidates_preview(self, engine, listener):
        engine.on_broadcast_received(record(10))
        engine.on_broadcast_received(record(11, reply_to_id="10", seconds=1))
        affected = engine.on_deleted("10")
        assert affected == ["11"]
        assert [e.id for e in engine.entries()] == ["11"]
        assert isinstance(engine.cached_preview("10"), ReplyUnavailable)
        assert listener.of("on_message_deleted") == [("10", ["11"])]

    def test_deleted_record_never_resurrects(self, engine):
        engine.on_broadcast_received(record(10))
        engine.on_deleted("10")
        engine.on_broadcast_received(record(10))
        engine.load_snapshot([record(10)])
        assert engine.entries() == []

    def test_delete_before_insert(self, engine):
        engine.on_deleted("10")
        engine.on_broadcast_received(record(10))
        assert engine.entries() == []

    def test_delete_of_own_pending_target_discards_on_confirm(self, engine, listener):
        entry = engine.submit(draft())
        engine.on_deleted("100")
        engine.on_persisted(entry.temp_id, persisted(entry, 100))
        assert engine.entries() == []
        assert listener.of("on_entry_discarded") == [(entry.temp_id,)]

    def test_cache_preview_ignored_for_deleted(self, engine):
        engine.on_deleted("10")
        engine.cache_preview("10", object())
        assert isinstance(engine.cached_preview("10"), ReplyUnavailable)


class TestSnapshot:

    def test_snapshot_keeps_local_entries(self, engine, listener):
        entry = engine.submit(draft("draft"))
        snapshot = engine.load_snapshot([record(10, seconds=-60), record(11, seconds=-30)])
        assert [e.id for e in snapshot] == ["10", "11", entry.temp_id]
        assert listener.of("on_scope_snapshot")[0][0] == snapshot

    def test_snapshot_confirms_own_pending_entry(self, engine):
        entry = engine.submit(draft())
        engine.load_snapshot([persisted(entry, 100)])
        assert [e.id for e in engine.entries()] == ["100"]
        assert engine.pending_handles() == []

    def test_snapshot_applies_tombstones(self, engine):
        engine.on_broadcast_received(record(10))
        engine.load_snapshot([record(10, deleted=True)])
        assert engine.entries() == []
        assert engine.is_deleted("10")

    def test_oldest_confirmed_id(self, engine):
        engine.submit(draft())
        engine.load_snapshot([record(12, seconds=-1), record(11, seconds=-2)])
        assert engine.oldest_confirmed_id() == "11"


class TestReactions:

    @pytest.fixture
    def loaded(self, engine):
        engine.load_snapshot(
            [record(10)],
            {"10": ReactionSummary(message_id="10", counts={ReactionKind.LIKE: 2}, revision=4)},
        )
        return engine

    def test_optimistic_toggle_and_revert(self, loaded):
        previous, active = loaded.apply_local_reaction("10", ReactionKind.LIKE)
        assert active
        assert loaded.reactions("10").likes_count == 3
        assert loaded.reactions("10").user_liked
        loaded.revert_reaction("10", ReactionKind.LIKE, previous)
        assert loaded.reactions("10").likes_count == 2
        assert not loaded.reactions("10").user_liked

    def test_revert_keeps_newer_counts_from_other_users(self, loaded):
        previous, _ = loaded.apply_local_reaction("10", ReactionKind.LIKE)
        event = ReactionChanged(scope_id=SCOPE, message_id="10", user_id="bob",
                                kind=ReactionKind.LIKE, active=True, count=3, delta=1, revision=5)
        loaded.on_reaction_changed(event)
        loaded.revert_reaction("10", ReactionKind.LIKE, previous)
        summary = loaded.reactions("10")
        assert summary.likes_count == 3
        assert summary.revision == 5
        assert not summary.user_liked

    def test_revert_leaves_other_kinds_alone(self, loaded):
        previous, _ = loaded.apply_local_reaction("10", ReactionKind.LIKE)
        loaded.confirm_reaction("10", ReactionKind.LOVE, ReactionState(active=True, count=1, revision=5))
        loaded.revert_reaction("10", ReactionKind.LIKE, previous)
        summary = loaded.reactions("10")
        assert summary.count(ReactionKind.LOVE) == 1
        assert ReactionKind.LOVE in summary.mine
        assert summary.likes_count == 2
        assert not summary.user_liked

    def test_confirm_applies_authoritative_count(self, loaded):
        loaded.apply_local_reaction("10", ReactionKind.LIKE)
        loaded.confirm_reaction("10", ReactionKind.LIKE, ReactionState(active=True, count=5, revision=6))
        assert loaded.reactions("10").likes_count == 5
        assert loaded.reactions("10").revision == 6

    def test_stale_event_ignored(self, loaded):
        stale = ReactionChanged(scope_id=SCOPE, message_id="10", user_id="bob",
                                kind=ReactionKind.LIKE, active=True, count=1, delta=1, revision=3)
        assert loaded.on_reaction_changed(stale) is None
        assert loaded.reactions("10").likes_count == 2

    def test_newer_event_from_other_user_keeps_own_membership(self, loaded):
        loaded.apply_local_reaction("10", ReactionKind.LIKE)
        event = ReactionChanged(scope_id=SCOPE, message_id="10", user_id="bob",
                                kind=ReactionKind.LIKE, active=True, count=4, delta=1, revision=5)
        updated = loaded.on_reaction_changed(event)
        assert updated.likes_count == 4
        assert updated.user_liked

    def test_event_replay_is_idempotent(self, loaded, listener):
        event = ReactionChanged(scope_id=SCOPE, message_id="10", user_id="bob",
                                kind=ReactionKind.LIKE, active=True, count=3, delta=1, revision=5)
        loaded.on_reaction_changed(event)
        listener.clear()
        assert loaded.on_reaction_changed(event) is None
        assert listener.events == []

    def test_reaction_on_unknown_message(self, engine):
        with pytest.raises(MessageNotFoundError):
            engine.apply_local_reaction("404", ReactionKind.LIKE)


class TestListenerIsolation:

    def test_listener_errors_do_not_corrupt_state(self, config, clock):
        engine = ReconciliationEngine(SCOPE, "alice", config=config, listener=ExplodingListener(), clock=clock)
        entry = engine.submit(draft())
        engine.on_persist_failed(entry.temp_id, StoreUnavailableError("append"))
        engine.on_persisted(entry.temp_id, persisted(entry, 100))
        assert [e.id for e in engine.entries()] == ["100"]
