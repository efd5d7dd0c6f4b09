"""
Tests for per-phone inbound rate limiting
"""
import pytest

from sms_bot.core.rate_limit import PhoneRateLimiter


class TestPhoneRateLimiter:

    @pytest.mark.unit
    async def test_allows_up_to_limit(self, fake_redis):
        limiter = PhoneRateLimiter(fake_redis, max_messages=3, window_seconds=60)

        results = [await limiter.hit("0911223344") for _ in range(3)]

        assert all(r.allowed for r in results)
        assert [r.count for r in results] == [1, 2, 3]
        assert results[0].retry_after_seconds == 60

    @pytest.mark.unit
    async def test_blocks_over_limit(self, fake_redis):
        limiter = PhoneRateLimiter(fake_redis, max_messages=2, window_seconds=60)
        await limiter.hit("0911223344")
        await limiter.hit("0911223344")

        result = await limiter.hit("0911223344")

        assert not result.allowed
        assert result.count == 3
        assert result.retry_after_seconds == 60

    @pytest.mark.unit
    async def test_phones_are_counted_separately(self, fake_redis):
        limiter = PhoneRateLimiter(fake_redis, max_messages=1, window_seconds=60)
        await limiter.hit("0911223344")

        assert (await limiter.hit("0922334455")).allowed
        assert not (await limiter.hit("0911223344")).allowed

    @pytest.mark.unit
    async def test_window_expiry_resets_count(self, fake_redis):
        limiter = PhoneRateLimiter(fake_redis, max_messages=1, window_seconds=60)
        await limiter.hit("0911223344")
        await fake_redis.delete("sms_rate:0911223344")

        assert (await limiter.hit("0911223344")).allowed

    @pytest.mark.unit
    async def test_key_without_ttl_is_rearmed(self, fake_redis):
        """A counter left without a TTL gets one on the next hit"""
        await fake_redis.incr("sms_rate:0911223344")
        limiter = PhoneRateLimiter(fake_redis, max_messages=5, window_seconds=30)

        result = await limiter.hit("0911223344")

        assert result.count == 2
        assert result.retry_after_seconds == 30
        assert await fake_redis.ttl("sms_rate:0911223344") == 30
