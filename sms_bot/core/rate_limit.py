"""
Per-phone rate limiting for inbound SMS.

Fixed window counter in Redis: INCR a per-phone key, set its TTL on the first
hit. A phone over the limit is told to wait instead of reaching the bot.
"""
from dataclasses import dataclass

import redis.asyncio as aioredis

from sms_bot.core.config import settings
from sms_bot.core.logging import get_logger
from sms_bot.core.validation import PhoneNumberValidator

logger = get_logger(__name__)

_KEY_PREFIX = "sms_rate"


@dataclass
class RateLimitResult:
    allowed: bool
    count: int
    retry_after_seconds: int


class PhoneRateLimiter:
    """Counts inbound messages per phone within a rolling window"""

    def __init__(
        self,
        redis: aioredis.Redis,
        max_messages: int | None = None,
        window_seconds: int | None = None,
    ) -> None:
        self._redis = redis
        self._max_messages = max_messages or settings.SMS_RATE_LIMIT_MAX_MESSAGES
        self._window_seconds = window_seconds or settings.SMS_RATE_LIMIT_WINDOW_SECONDS

    @staticmethod
    def _key(phone: str) -> str:
        return f"{_KEY_PREFIX}:{phone}"

    async def hit(self, phone: str) -> RateLimitResult:
        key = self._key(phone)
        count = await self._redis.incr(key)
        if count == 1:
            await self._redis.expire(key, self._window_seconds)

        ttl = await self._redis.ttl(key)
        if ttl is None or ttl < 0:
            # Key lost its TTL (e.g. INCR raced with expiry); re-arm it
            await self._redis.expire(key, self._window_seconds)
            ttl = self._window_seconds

        allowed = count <= self._max_messages
        if not allowed:
            logger.warning(
                "SMS rate limit exceeded",
                extra_data={
                    "phone": PhoneNumberValidator.mask(phone),
                    "count": count,
                    "limit": self._max_messages,
                    "window_seconds": self._window_seconds,
                },
            )
        return RateLimitResult(allowed=allowed, count=count, retry_after_seconds=int(ttl))
