# app/core/startup/services.py
# =============================================================================
# File: app/core/startup/services.py
# Description: Messaging core wiring (repositories, store, ledger, uploader,
#              resolver, broadcaster)
# =============================================================================

import logging
from app.core.fastapi_types import FastAPI

from app.infra.persistence.snowflake import get_snowflake_generator
from app.infra.read_repos.memory_repo import (
    InMemoryMessageRepository,
    InMemoryProfileDirectory,
    InMemoryReactionRepository,
)
from app.infra.read_repos.message_pg_repo import (
    PostgresMessageRepository,
    PostgresProfileDirectory,
    PostgresReactionRepository,
)
from app.messaging.broadcaster import ScopeBroadcaster
from app.messaging.reactions import ReactionLedger
from app.messaging.reply_resolver import ReplyResolver
from app.messaging.store import MessageStore
from app.messaging.uploader import AttachmentUploader
from app.security.scope_authorization import ModeratorListAuthorization

logger = logging.getLogger("campus.startup.services")


async def initialize_messaging(app: FastAPI) -> None:
    """Build the messaging core on top of the selected backend."""
    state = app.state
    config = state.messaging_config

    if state.postgres_enabled:
        message_repo = PostgresMessageRepository()
        reaction_repo = PostgresReactionRepository()
        default_profiles = PostgresProfileDirectory()
    else:
        message_repo = InMemoryMessageRepository()
        reaction_repo = InMemoryReactionRepository()
        default_profiles = InMemoryProfileDirectory()

    if state.profiles is None:
        state.profiles = default_profiles
    if state.authorization is None:
        state.authorization = ModeratorListAuthorization(config.moderator_ids)

    state.id_generator = get_snowflake_generator(config.snowflake_worker_id)
    state.broadcaster = ScopeBroadcaster(queue_size=config.subscriber_queue_size)
    state.message_store = MessageStore(
        repository=message_repo,
        authorization=state.authorization,
        broadcaster=state.broadcaster,
        id_generator=state.id_generator,
        config=config,
    )
    state.reaction_ledger = ReactionLedger(
        repository=reaction_repo,
        store=state.message_store,
        authorization=state.authorization,
        broadcaster=state.broadcaster,
    )
    state.uploader = AttachmentUploader(state.storage)
    state.reply_resolver = ReplyResolver(state.message_store, state.profiles, config)

    logger.info(
        f"Messaging core ready (backend={config.backend}, worker_id={state.id_generator.worker_id})"
    )
