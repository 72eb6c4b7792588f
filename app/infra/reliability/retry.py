# =============================================================================
# File: app/infra/reliability/retry.py
# Description: Retry mechanism with exponential backoff and jitter
# =============================================================================

import asyncio
import random
from typing import Awaitable, Callable, Optional, TypeVar

from app.config.logging_config import get_logger
from app.config.reliability_config import RetryConfig

logger = get_logger("campus.retry")

T = TypeVar('T')


def full_jitter(base_delay: float) -> float:
    """delay = random(0, base_delay)"""
    return random.uniform(0, base_delay)


def equal_jitter(base_delay: float) -> float:
    """delay = base_delay/2 + random(0, base_delay/2)"""
    half = base_delay / 2
    return half + random.uniform(0, half)


_JITTER_STRATEGIES = {
    'full': full_jitter,
    'equal': equal_jitter,
}


def compute_delay_ms(retry_config: RetryConfig, attempt: int) -> float:
    """Backoff delay before the attempt following `attempt` (1-based)."""
    base_delay_ms = min(
        retry_config.initial_delay_ms * (retry_config.backoff_factor ** (attempt - 1)),
        retry_config.max_delay_ms
    )
    if not retry_config.jitter:
        return base_delay_ms
    return _JITTER_STRATEGIES.get(retry_config.jitter_type, full_jitter)(base_delay_ms)


async def retry_async(
        func: Callable[..., Awaitable[T]],
        *args,
        retry_config: Optional[RetryConfig] = None,
        context: str = "operation",
        **kwargs
) -> T:
    """Execute async function with retry logic."""
    if retry_config is None:
        retry_config = RetryConfig()

    for attempt in range(1, retry_config.max_attempts + 1):
        try:
            return await func(*args, **kwargs)

        except Exception as e:
            if retry_config.retry_condition and not retry_config.retry_condition(e):
                logger.warning(f"Retry condition not met for {context} after attempt {attempt}. Error: {e}")
                raise

            if attempt >= retry_config.max_attempts:
                logger.warning(f"Retry exhausted for {context} after {attempt} attempts. Last error: {e}")
                raise

            delay_seconds = compute_delay_ms(retry_config, attempt) / 1000

            logger.info(
                f"Retry attempt {attempt}/{retry_config.max_attempts} for {context} "
                f"after error: {e}. Waiting {delay_seconds:.2f}s before retry."
            )

            await asyncio.sleep(delay_seconds)

    raise RuntimeError("Unexpected retry failure")
