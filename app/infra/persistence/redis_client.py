# =============================================================================
# File: app/infra/persistence/redis_client.py - Async Redis client
# =============================================================================
# Per-app (.state.redis) client used by the broadcast relay.
# =============================================================================

from __future__ import annotations

from typing import Any, Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from app.config.logging_config import get_logger
from app.config.redis_config import RedisConfig, get_redis_config
from app.config.reliability_config import RetryConfig
from app.infra.reliability.retry import retry_async

log = get_logger("campus.infra.redis_client")


def build_redis_client(config: Optional[RedisConfig] = None) -> redis.Redis:
    config = config or get_redis_config()
    return redis.Redis.from_url(
        config.redis_url,
        decode_responses=True,
        max_connections=config.max_connections,
        socket_timeout=config.socket_timeout,
        socket_connect_timeout=config.socket_connect_timeout,
        health_check_interval=config.health_check_interval,
    )


async def create_and_test_redis_client(config: Optional[RedisConfig] = None) -> redis.Redis:
    """Build a client and verify connectivity with PING (retried)."""
    client = build_redis_client(config)

    async def _ping() -> bool:
        return await client.ping()

    await retry_async(
        _ping,
        retry_config=RetryConfig(max_attempts=3, initial_delay_ms=200, max_delay_ms=2000),
        context="Redis ping",
    )
    log.info("Redis client connected")
    return client


async def close_redis_client(client: Optional[redis.Redis]) -> None:
    if client is None:
        return
    try:
        await client.aclose()
    except RedisError as e:
        log.warning(f"Error closing Redis client: {e}")


async def health_check(client: Optional[redis.Redis]) -> Dict[str, Any]:
    if client is None:
        return {"status": "disabled"}
    try:
        await client.ping()
        return {"status": "healthy"}
    except RedisError as e:
        return {"status": "unhealthy", "error": str(e)}
