# file: marketchat/core/redis.py

import redis.asyncio as aioredis
import logging
from marketchat.core.settings import settings

logger = logging.getLogger("redis")

# ============================================================
# 🔌 Redis connection (singleton)
# ============================================================

redis_client: aioredis.Redis | None = None


async def get_redis() -> aioredis.Redis:
    """
    Returns a reusable Redis client (singleton).
    """
    global redis_client

    if redis_client is None:
        try:
            redis_client = aioredis.Redis(
                host=settings.REDIS_HOST,
                port=settings.REDIS_PORT,
                password=settings.REDIS_PASSWORD or None,
                db=0,
                decode_responses=True,
            )

            pong = await redis_client.ping()
            if pong:
                logger.info("⚡ Redis connected")

        except Exception as e:
            logger.error(f"❌ Error connecting to Redis: {e}")
            redis_client = None
            raise

    return redis_client


async def close_redis():
    global redis_client

    if redis_client is not None:
        await redis_client.aclose()
        redis_client = None


# ============================================================
# 🧩 Pub/Sub helpers
# ============================================================

async def publish(channel: str, payload: str) -> int:
    """
    Publishes a message on a channel and returns the receiver count.
    """
    redis = await get_redis()
    receivers = await redis.publish(channel, payload)
    logger.debug(f"[redis] PUBLISH {channel} -> {receivers} receivers")
    return receivers


async def open_pubsub(channel: str):
    """
    Subscribes to a channel and returns the PubSub object.
    The caller owns it and must unsubscribe/close it.
    """
    redis = await get_redis()
    pubsub = redis.pubsub()
    await pubsub.subscribe(channel)
    logger.debug(f"[redis] SUBSCRIBE {channel}")
    return pubsub
