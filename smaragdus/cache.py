# smaragdus/cache.py
import json
import logging
from typing import Any, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from . import config

logger = logging.getLogger(__name__)

_client: Optional[Redis] = None


def get_redis() -> Optional[Redis]:
    global _client
    if _client is None and config.REDIS_URL:
        _client = Redis.from_url(config.REDIS_URL, decode_responses=True)
    return _client


def set_redis(client) -> None:
    global _client
    _client = client


async def get_json(key: str) -> Optional[Any]:
    redis = get_redis()
    if redis is None:
        return None
    try:
        raw = await redis.get(key)
    except (RedisError, OSError) as e:
        logger.warning("cache get failed for %s: %s", key, e)
        return None
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


async def set_json(key: str, value: Any, ttl_seconds: int) -> None:
    redis = get_redis()
    if redis is None:
        return
    try:
        await redis.set(key, json.dumps(value), ex=ttl_seconds)
    except (RedisError, OSError) as e:
        logger.warning("cache set failed for %s: %s", key, e)


async def exists(key: str) -> bool:
    redis = get_redis()
    if redis is None:
        return False
    try:
        return bool(await redis.exists(key))
    except (RedisError, OSError) as e:
        logger.warning("cache exists failed for %s: %s", key, e)
        return False


async def delete(key: str) -> None:
    redis = get_redis()
    if redis is None:
        return
    try:
        await redis.delete(key)
    except (RedisError, OSError) as e:
        logger.warning("cache delete failed for %s: %s", key, e)


async def close() -> None:
    global _client
    if _client is not None:
        try:
            await _client.aclose()
        except (RedisError, OSError) as e:
            logger.warning("redis close failed: %s", e)
        _client = None
