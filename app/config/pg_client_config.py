# app/config/pg_client_config.py
# =============================================================================
# File: app/config/pg_client_config.py
# Description: Database configuration for the PostgreSQL message store pool
# =============================================================================

from functools import lru_cache
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import SettingsConfigDict

from app.common.base.base_config import BaseConfig, BASE_CONFIG_DICT


class PoolConfig(BaseModel):
    """PostgreSQL connection pool configuration (nested model)"""
    min_size: int = Field(default=5, description="Minimum pool size")
    max_size: int = Field(default=20, description="Maximum pool size")
    timeout: float = Field(default=5.0, description="Pool acquisition timeout in seconds")
    command_timeout: float = Field(default=10.0, description="Default command timeout")
    max_queries: int = Field(default=50000, description="Close connection after this many queries")
    max_inactive_connection_lifetime: float = Field(default=300.0)

    def to_asyncpg_params(self) -> Dict[str, Any]:
        """Convert to asyncpg pool parameters"""
        return {
            'min_size': self.min_size,
            'max_size': self.max_size,
            'timeout': self.timeout,
            'command_timeout': self.command_timeout,
            'max_queries': self.max_queries,
            'max_inactive_connection_lifetime': self.max_inactive_connection_lifetime,
        }


class DatabaseConfig(BaseConfig):
    """
    PostgreSQL settings. The DSN may be given whole or assembled from parts.
    """

    model_config = SettingsConfigDict(
        **BASE_CONFIG_DICT,
        env_prefix='POSTGRES_',
    )

    dsn: Optional[SecretStr] = Field(default=None, description="Full DSN, overrides the parts below")
    host: str = Field(default="localhost")
    port: int = Field(default=5432)
    user: str = Field(default="campus")
    password: SecretStr = Field(default=SecretStr("campus"))
    database: str = Field(default="campus_chat")

    pool: PoolConfig = Field(default_factory=PoolConfig)

    slow_query_threshold_ms: float = Field(default=500.0, description="Log statements slower than this")

    schema_file: str = Field(default="app/database/messaging.sql")
    run_schema_on_startup: bool = Field(default=True)

    def get_dsn(self) -> str:
        if self.dsn is not None:
            return self.dsn.get_secret_value()
        return (
            f"postgresql://{self.user}:{self.password.get_secret_value()}"
            f"@{self.host}:{self.port}/{self.database}"
        )


@lru_cache(maxsize=1)
def get_database_config() -> DatabaseConfig:
    """Get database configuration singleton (cached)."""
    return DatabaseConfig()


def reset_database_config() -> None:
    """Reset config singleton (for testing)."""
    get_database_config.cache_clear()
