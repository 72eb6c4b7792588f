# =============================================================================
# File: tests/conftest.py
# Description: Shared fixtures - messaging core wired over in-memory fakes
# =============================================================================

from __future__ import annotations

import pytest

from app.config.messaging_config import MessagingConfig, reset_messaging_config
from app.config.pg_client_config import reset_database_config
from app.config.redis_config import reset_redis_config
from app.config.storage_config import StorageConfig, reset_storage_config
from app.infra.persistence.snowflake import SnowflakeIDGenerator
from app.infra.read_repos.memory_repo import InMemoryReactionRepository
from app.messaging.broadcaster import ScopeBroadcaster
from app.messaging.enums import ScopeKind
from app.messaging.reactions import ReactionLedger
from app.messaging.reply_resolver import ReplyResolver
from app.messaging.session import ScopeSession
from app.messaging.store import MessageStore
from app.messaging.uploader import AttachmentUploader
from app.messaging.value_objects import AuthorProfile
from tests.fakes.fake_authorization import FakeAuthorization
from tests.fakes.fake_message_repository import FlakyMessageRepository
from tests.fakes.fake_profile_lookup import FakeProfileLookup
from tests.fakes.fake_storage_provider import FakeStorageProvider
from tests.fakes.recording_listener import RecordingListener

SCOPE = "class-101"
OTHER_SCOPE = "campus-main"


class ManualClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def _reset_config_singletons():
    for reset in (reset_messaging_config, reset_storage_config, reset_redis_config, reset_database_config):
        reset()
    yield
    for reset in (reset_messaging_config, reset_storage_config, reset_redis_config, reset_database_config):
        reset()


@pytest.fixture
def config() -> MessagingConfig:
    return MessagingConfig(
        pending_timeout_seconds=30.0,
        duplicate_window_seconds=3.0,
        max_body_length=500,
        max_attachments=3,
        default_page_size=20,
        max_page_size=50,
        snippet_max_length=20,
        subscriber_queue_size=100,
    )


@pytest.fixture
def storage_config() -> StorageConfig:
    return StorageConfig(
        provider="local",
        max_image_size=1024,
        max_video_size=4096,
        max_file_size=2048,
    )


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def id_generator() -> SnowflakeIDGenerator:
    return SnowflakeIDGenerator(worker_id=7)


@pytest.fixture
def authorization() -> FakeAuthorization:
    return FakeAuthorization(moderators={"mod"})


@pytest.fixture
def broadcaster(config) -> ScopeBroadcaster:
    return ScopeBroadcaster(queue_size=config.subscriber_queue_size)


@pytest.fixture
def message_repo() -> FlakyMessageRepository:
    return FlakyMessageRepository()


@pytest.fixture
def reaction_repo() -> InMemoryReactionRepository:
    return InMemoryReactionRepository()


@pytest.fixture
async def store(message_repo, authorization, broadcaster, id_generator, config) -> MessageStore:
    store = MessageStore(message_repo, authorization, broadcaster, id_generator, config)
    await store.register_scope(SCOPE, ScopeKind.CLASS)
    await store.register_scope(OTHER_SCOPE, ScopeKind.CAMPUS)
    return store


@pytest.fixture
def ledger(reaction_repo, store, authorization, broadcaster) -> ReactionLedger:
    return ReactionLedger(reaction_repo, store, authorization, broadcaster)


@pytest.fixture
def storage() -> FakeStorageProvider:
    return FakeStorageProvider()


@pytest.fixture
def uploader(storage, storage_config) -> AttachmentUploader:
    return AttachmentUploader(storage, storage_config, clock=lambda: 1700000000.0)


@pytest.fixture
def profiles() -> FakeProfileLookup:
    return FakeProfileLookup(
        AuthorProfile("alice", "Alice Chen", "https://img.test/alice.png"),
        AuthorProfile("bob", "Bob Osei"),
    )


@pytest.fixture
def resolver(store, profiles, config) -> ReplyResolver:
    return ReplyResolver(store, profiles, config)


@pytest.fixture
def listener() -> RecordingListener:
    return RecordingListener()


@pytest.fixture
async def make_session(store, ledger, broadcaster, uploader, resolver, config, clock):
    """Factory for sessions; every session it creates is closed at teardown."""
    created = []

    def _make(viewer_id: str = "alice", scope_id: str = SCOPE, listener=None) -> ScopeSession:
        session = ScopeSession(
            scope_id,
            viewer_id,
            store=store,
            ledger=ledger,
            broadcaster=broadcaster,
            uploader=uploader,
            resolver=resolver,
            listener=listener,
            config=config,
            clock=clock,
        )
        created.append(session)
        return session

    yield _make

    for session in created:
        if session.is_open:
            await session.close()
