# =============================================================================
# File: tests/test_reply_resolver.py
# Description: ReplyResolver - previews, snippets, unavailable targets,
#              jump-to-message
# =============================================================================

import pytest

from app.messaging.enums import AttachmentKind, JumpStatus, MessageKind
from app.messaging.models import Attachment, NewMessage
from app.messaging.reconciliation import ReconciliationEngine
from app.messaging.reply_resolver import truncate_snippet
from app.messaging.value_objects import ReplyPreview, ReplyUnavailable
from tests.conftest import SCOPE


async def post(store, body="", author="alice", attachments=(), reply_to_id=None):
    return await store.append(NewMessage(
        scope_id=SCOPE, author_id=author, body=body, attachments=attachments, reply_to_id=reply_to_id,
    ))


def photo(filename="board.jpg"):
    return Attachment(url=f"https://files.test/{filename}", kind=AttachmentKind.IMAGE, filename=filename, size=10)


class TestTruncateSnippet:

    def test_short_text_unchanged(self):
        assert truncate_snippet("see you at 3", 20) == "see you at 3"

    def test_whitespace_collapsed(self):
        assert truncate_snippet("line one\n\n  line   two", 40) == "line one line two"

    def test_long_text_gets_ellipsis(self):
        snippet = truncate_snippet("the quick brown fox jumps over the lazy dog", 20)
        assert snippet.endswith("…")
        assert len(snippet) <= 20


class TestResolvePreview:

    async def test_text_target(self, store, resolver):
        target = await post(store, "Homework is due Friday before class starts")
        reply = await post(store, "thanks!", author="bob", reply_to_id=target.id)
        preview = await resolver.resolve_preview(reply)
        assert isinstance(preview, ReplyPreview)
        assert preview.author_name == "Alice Chen"
        assert preview.kind is MessageKind.TEXT
        assert preview.snippet == truncate_snippet(target.body, 20)
        assert preview.label is None

    async def test_image_without_caption_uses_label(self, store, resolver):
        target = await post(store, attachments=(photo(),))
        reply = await post(store, "nice", author="bob", reply_to_id=target.id)
        preview = await resolver.resolve_preview(reply)
        assert preview.kind is MessageKind.IMAGE
        assert preview.snippet == "Photo"
        assert preview.label == "Photo"
        assert preview.filename == "board.jpg"

    async def test_image_with_caption_uses_caption(self, store, resolver):
        target = await post(store, "whiteboard", attachments=(photo(),))
        reply = await post(store, "ok", author="bob", reply_to_id=target.id)
        preview = await resolver.resolve_preview(reply)
        assert preview.snippet == "whiteboard"
        assert preview.label == "Photo"

    async def test_not_a_reply(self, store, resolver):
        message = await post(store, "plain")
        assert await resolver.resolve_preview(message) is None

    async def test_deleted_target_is_unavailable(self, store, resolver):
        target = await post(store, "oops")
        reply = await post(store, "what?", author="bob", reply_to_id=target.id)
        await store.soft_delete(target.id, "alice")
        preview = await resolver.resolve_preview(reply)
        assert isinstance(preview, ReplyUnavailable)
        assert not preview.available
        assert not preview.retryable

    async def test_hard_deleted_target_is_unavailable(self, store, resolver):
        target = await post(store, "spam")
        reply = await post(store, "reported", author="bob", reply_to_id=target.id)
        await store.hard_delete(target.id, "mod")
        assert isinstance(await resolver.resolve_preview(reply), ReplyUnavailable)

    async def test_unknown_author_renders_unknown(self, store, resolver):
        target = await post(store, "hello", author="carol")
        reply = await post(store, "hi", reply_to_id=target.id)
        preview = await resolver.resolve_preview(reply)
        assert preview.author_name == "Unknown"


class TestResolveMany:

    async def test_every_id_resolved(self, store, resolver):
        a = await post(store, "a")
        resolved = await resolver.resolve_many([a.id, "999999", a.id])
        assert set(resolved) == {a.id, "999999"}
        assert isinstance(resolved["999999"], ReplyUnavailable)

    async def test_store_failure_never_raises(self, store, resolver, message_repo):
        a = await post(store, "a")
        message_repo.fail_next("get_many", ConnectionError("db down"))
        resolved = await resolver.resolve_many([a.id])
        assert isinstance(resolved[a.id], ReplyUnavailable)
        assert resolved[a.id].retryable

    async def test_profile_failure_renders_unknown(self, store, resolver, profiles):
        a = await post(store, "a")
        profiles.fail_with = ConnectionError("directory down")
        resolved = await resolver.resolve_many([a.id])
        assert resolved[a.id].author_name == "Unknown"

    async def test_profiles_looked_up_in_one_batch(self, store, resolver, profiles):
        a = await post(store, "a")
        b = await post(store, "b", author="bob")
        await resolver.resolve_many([a.id, b.id])
        assert profiles.lookups == [{"alice", "bob"}]


class TestJumpTo:

    @pytest.fixture
    def engine(self, config):
        return ReconciliationEngine(SCOPE, "alice", config=config)

    async def test_loaded_target(self, store, resolver, engine):
        a = await post(store, "a")
        b = await post(store, "b")
        engine.load_snapshot([a, b])
        result = resolver.jump_to(b.id, engine)
        assert result.loaded
        assert result.index == 1

    async def test_target_outside_window(self, store, resolver, engine):
        a = await post(store, "a")
        engine.load_snapshot([])
        assert resolver.jump_to(a.id, engine).status is JumpStatus.NOT_LOADED

    async def test_deleted_target(self, store, resolver, engine):
        a = await post(store, "a")
        engine.load_snapshot([a])
        engine.on_deleted(a.id)
        result = resolver.jump_to(a.id, engine)
        assert result.status is JumpStatus.UNAVAILABLE
        assert not result.loaded
