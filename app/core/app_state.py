# app/core/app_state.py
# =============================================================================
# File: app/core/app_state.py
# Description: Application state definition and global state management
# =============================================================================

from typing import Optional, Any
from datetime import datetime, timezone
import asyncio

from app.common.base.base_storage_provider import BaseStorageProvider
from app.config.messaging_config import MessagingConfig
from app.infra.persistence.snowflake import SnowflakeIDGenerator
from app.messaging.broadcaster import ScopeBroadcaster
from app.messaging.ports import AuthorizationPort, ProfileLookupPort
from app.messaging.reactions import ReactionLedger
from app.messaging.reply_resolver import ReplyResolver
from app.messaging.store import MessageStore
from app.messaging.uploader import AttachmentUploader
from app.wse.core.pubsub_bus import PubSubBus


# =============================================================================
# APP STATE TYPE DEFINITION
# =============================================================================
class AppState:
    """Type definition for FastAPI app.state with proper type hints"""

    def __init__(self):
        # Configuration
        self.messaging_config: Optional[MessagingConfig] = None

        # Core infrastructure
        self.postgres_enabled: bool = False
        self.redis_client: Optional[Any] = None  # redis.asyncio.Redis
        self.pubsub_bus: Optional[PubSubBus] = None
        self.storage: Optional[BaseStorageProvider] = None
        self.id_generator: Optional[SnowflakeIDGenerator] = None

        # External collaborators
        self.authorization: Optional[AuthorizationPort] = None
        self.profiles: Optional[ProfileLookupPort] = None

        # Messaging core
        self.broadcaster: Optional[ScopeBroadcaster] = None
        self.message_store: Optional[MessageStore] = None
        self.reaction_ledger: Optional[ReactionLedger] = None
        self.uploader: Optional[AttachmentUploader] = None
        self.reply_resolver: Optional[ReplyResolver] = None

        # Background tasks
        self.reservation_sweeper_task: Optional[asyncio.Task] = None


# =============================================================================
# GLOBAL STATE
# =============================================================================
_START_TIME = datetime.now(timezone.utc)


def get_start_time() -> datetime:
    """Get application start time"""
    return _START_TIME
