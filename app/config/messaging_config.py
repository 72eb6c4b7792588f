# =============================================================================
# File: app/config/messaging_config.py
# Description: Messaging engine configuration (timeouts, windows, limits)
# =============================================================================

from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import SettingsConfigDict

from app.common.base.base_config import BaseConfig, BASE_CONFIG_DICT


class MessagingConfig(BaseConfig):
    """
    Settings for the reconciliation engine, message store and broadcaster.
    """

    model_config = SettingsConfigDict(
        **BASE_CONFIG_DICT,
        env_prefix='MESSAGING_',
    )

    # Reconciliation
    pending_timeout_seconds: float = Field(
        default=30.0, gt=0,
        description="Pending entries older than this transition to failed"
    )
    duplicate_window_seconds: float = Field(
        default=3.0, ge=0,
        description="Identical content from the same author within this window is rejected"
    )

    # Store
    max_body_length: int = Field(default=10000, description="Maximum message body length")
    max_attachments: int = Field(default=10, description="Maximum attachments per message")
    default_page_size: int = Field(default=50, ge=1)
    max_page_size: int = Field(default=100, ge=1)
    snowflake_worker_id: Optional[int] = Field(default=None, ge=0, le=1023)
    reservation_max_age_seconds: float = Field(
        default=300.0, gt=0,
        description="Messages still waiting for attachments after this long are purged"
    )
    reservation_sweep_interval_seconds: float = Field(default=60.0, gt=0)

    # Authorization
    moderator_ids: List[str] = Field(default_factory=list, description="Users allowed to hard-delete")

    # Reply previews
    snippet_max_length: int = Field(default=80, ge=4, description="Reply preview snippet length")

    # Broadcaster
    subscriber_queue_size: int = Field(
        default=1000, ge=1,
        description="Events buffered per subscriber; overflow closes the subscription"
    )

    # Storage backend for messages
    backend: str = Field(default="memory", description="memory | postgres")


@lru_cache(maxsize=1)
def get_messaging_config() -> MessagingConfig:
    """Get messaging configuration singleton (cached)."""
    return MessagingConfig()


def reset_messaging_config() -> None:
    """Reset config singleton (for testing)."""
    get_messaging_config.cache_clear()
