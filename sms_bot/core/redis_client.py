"""
Shared async Redis client.

Only the inbound rate limiter uses Redis, and it fails open, so the client
is built with short socket timeouts: an unreachable Redis must cost a
webhook call a couple of seconds at most, never the gateway's own timeout.
"""
import asyncio
from urllib.parse import urlparse

import redis.asyncio as aioredis

from sms_bot.core.config import settings
from sms_bot.core.logging import get_logger

logger = get_logger(__name__)

SOCKET_TIMEOUT_SECONDS = 2.0

_client: aioredis.Redis | None = None
_client_lock = asyncio.Lock()


def _safe_url(url: str) -> str:
    """REDIS_URL with the password replaced by ****"""
    password = urlparse(url).password
    return url.replace(f":{password}@", ":****@") if password else url


async def get_redis() -> aioredis.Redis:
    """Connect on first use (verified with PING) and reuse the pool afterwards"""
    global _client
    if _client is None:
        async with _client_lock:
            if _client is None:
                client = aioredis.from_url(
                    settings.REDIS_URL,
                    decode_responses=True,
                    socket_connect_timeout=SOCKET_TIMEOUT_SECONDS,
                    socket_timeout=SOCKET_TIMEOUT_SECONDS,
                )
                await client.ping()
                _client = client
                logger.info("Connected to Redis", extra_data={"url": _safe_url(settings.REDIS_URL)})
    return _client


async def close_redis() -> None:
    global _client
    if _client is None:
        return
    client, _client = _client, None
    await client.aclose()
    logger.info("Redis connection closed")
