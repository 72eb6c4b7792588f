# =============================================================================
# File: app/config/redis_config.py
# Description: Configuration for the Redis client used by the broadcast relay
#              and the idempotency registry
# =============================================================================

from functools import lru_cache

from pydantic import Field
from pydantic_settings import SettingsConfigDict

from app.common.base.base_config import BaseConfig, BASE_CONFIG_DICT


class RedisConfig(BaseConfig):
    """
    Redis connection settings. When disabled, broadcasts stay in-process.
    """

    model_config = SettingsConfigDict(
        **BASE_CONFIG_DICT,
        env_prefix='REDIS_',
    )

    enabled: bool = Field(default=False, description="Relay scope events between instances")
    redis_url: str = Field(default="redis://localhost:6379/1", description="Redis connection URL")
    max_connections: int = Field(default=50, description="Maximum number of connections in the pool")
    socket_timeout: float = Field(default=15.0, description="Socket timeout in seconds")
    socket_connect_timeout: float = Field(default=5.0, description="Socket connection timeout in seconds")
    health_check_interval: int = Field(default=30, description="Seconds between connection health checks")

    channel_prefix: str = Field(default="campus", description="Prefix for relay pub/sub channels")
    max_consecutive_errors: int = Field(default=20, description="Listener stops after this many errors in a row")


@lru_cache(maxsize=1)
def get_redis_config() -> RedisConfig:
    """Get Redis configuration singleton (cached)."""
    return RedisConfig()


def reset_redis_config() -> None:
    """Reset config singleton (for testing)."""
    get_redis_config.cache_clear()
