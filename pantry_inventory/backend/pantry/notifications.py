import logging

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError, RedisError

from pantry import config

logger = logging.getLogger(__name__)

INVENTORY_CHANNEL = "inventory_updates"


async def connect():
    if not config.REDIS_URL:
        raise RedisConnectionError("REDIS_URL is not set")
    return await redis.from_url(config.REDIS_URL, encoding="utf-8", decode_responses=True)


async def publish_inventory_update(message: str):
    """Best effort: a stock change never fails because Redis is down."""
    if not config.REDIS_URL:
        return
    redis_client = await connect()
    try:
        await redis_client.publish(INVENTORY_CHANNEL, message)
    except RedisError as e:
        logger.warning(f"Could not publish inventory update: {e}")
    finally:
        await redis_client.aclose()
