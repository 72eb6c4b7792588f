# =============================================================================
# File: app/config/reliability_config.py
# Description: Retry configuration for storage and database calls
# =============================================================================

from typing import Optional, Callable

from pydantic import BaseModel, ConfigDict


class RetryConfig(BaseModel):
    """Retry configuration."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    max_attempts: int = 3
    initial_delay_ms: int = 100
    max_delay_ms: int = 10000
    backoff_factor: float = 2.0
    jitter: bool = True
    jitter_type: str = "full"
    retry_condition: Optional[Callable[[Exception], bool]] = None


class ReliabilityConfigs:
    """Pre-configured retry policies per dependency"""

    @staticmethod
    def storage_retry() -> RetryConfig:
        """Object storage uploads: a few quick attempts, then surface an upload error"""
        return RetryConfig(
            max_attempts=3,
            initial_delay_ms=100,
            max_delay_ms=5000,
            backoff_factor=2.0,
            jitter=True,
            jitter_type="full",
        )

    @staticmethod
    def postgres_retry() -> RetryConfig:
        """Pool initialization only; statements are never retried blindly"""
        return RetryConfig(
            max_attempts=5,
            initial_delay_ms=200,
            max_delay_ms=5000,
            backoff_factor=2.0,
            jitter=True,
            jitter_type="equal",
        )
