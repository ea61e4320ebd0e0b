"""
Redis Cache Module

Connection management and best-effort invalidation of cached market data.
Cache keys follow market:{provider}:{product_id}:{...}.
"""

from typing import Optional

import structlog
from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

from market_pipeline.config import get_settings

logger = structlog.get_logger(__name__)

# Global Redis connection
_redis_pool: Optional[ConnectionPool] = None
_redis_client: Optional[Redis] = None


async def init_redis() -> Redis:
    """Initialize Redis connection pool"""
    global _redis_pool, _redis_client

    if _redis_client is not None:
        return _redis_client

    settings = get_settings()
    _redis_pool = ConnectionPool.from_url(
        settings.redis.get_url(),
        max_connections=settings.redis.max_connections,
        socket_timeout=settings.redis.socket_timeout,
        decode_responses=True,
    )
    _redis_client = Redis(connection_pool=_redis_pool)

    try:
        await _redis_client.ping()
        logger.info("Redis connection established")
    except (RedisError, OSError) as e:
        logger.error("Redis connection failed", error=str(e))
        await close_redis()
        raise

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection pool"""
    global _redis_pool, _redis_client

    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None

    if _redis_pool:
        await _redis_pool.disconnect()
        _redis_pool = None

    logger.info("Redis connection closed")


def get_redis() -> Optional[Redis]:
    """Redis client, or None until init_redis() has run"""
    return _redis_client


def market_cache_pattern(provider: str, product_id: str) -> str:
    return f"market:{provider}:{product_id}:*"


async def cache_delete_pattern(client: Redis, pattern: str) -> int:
    """Delete all keys matching pattern"""
    keys = [key async for key in client.scan_iter(match=pattern)]
    if not keys:
        return 0
    return await client.delete(*keys)


async def invalidate_market_cache(
    provider: str,
    product_id: Optional[str],
    client: Optional[Redis] = None,
) -> int:
    """
    Drop cached market data for a product after its facts were rewritten.

    Connects on first use when no client was initialized. Never raises: a
    cache failure is logged and reported as 0 keys deleted.
    """
    if not product_id:
        return 0

    pattern = market_cache_pattern(provider, product_id)
    try:
        client = client or get_redis() or await init_redis()
        deleted = await cache_delete_pattern(client, pattern)
    except (RedisError, OSError) as e:
        logger.warning("Market cache invalidation failed", pattern=pattern, error=str(e))
        return 0

    if deleted:
        logger.debug("Invalidated market cache", pattern=pattern, keys=deleted)
    return deleted
