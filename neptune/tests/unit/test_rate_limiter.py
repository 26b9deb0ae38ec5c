import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from neptune.models.errors import RateLimitError
from neptune.services.rate_limiter import RateLimiter


@pytest.mark.asyncio
async def test_allows_up_to_limit_then_rejects(fake_redis):
    limiter = RateLimiter(fake_redis, limit=3, window=60)
    for _ in range(3):
        await limiter.check("user-1")

    with pytest.raises(RateLimitError) as exc_info:
        await limiter.check("user-1")

    assert exc_info.value.retry_after == 60
    assert exc_info.value.to_event()["code"] == "rate_limited"
    assert fake_redis.expiries["ai:chat:user-1"] == 60


@pytest.mark.asyncio
async def test_actors_are_counted_separately(fake_redis):
    limiter = RateLimiter(fake_redis, limit=1, window=60)
    await limiter.check("user-1")
    await limiter.check("user-2")
    with pytest.raises(RateLimitError):
        await limiter.check("user-1")


@pytest.mark.asyncio
async def test_window_expiry_restored_when_missing(fake_redis):
    limiter = RateLimiter(fake_redis, limit=1, window=30)
    await limiter.check("user-1")
    fake_redis.expiries.clear()

    with pytest.raises(RateLimitError) as exc_info:
        await limiter.check("user-1")
    assert exc_info.value.retry_after == 30
    assert fake_redis.expiries["ai:chat:user-1"] == 30


@pytest.mark.asyncio
async def test_redis_outage_lets_requests_through(fake_redis):
    fake_redis.fail = True
    limiter = RateLimiter(fake_redis, limit=1, window=60)
    await limiter.check("user-1")
    await limiter.check("user-1")


@pytest.mark.asyncio
async def test_redis_failure_while_restoring_window_lets_request_through(fake_redis):
    limiter = RateLimiter(fake_redis, limit=1, window=60)
    await limiter.check("user-1")
    fake_redis.expiries.clear()

    async def broken_expire(key, seconds):
        raise RedisConnectionError("redis is down")

    fake_redis.expire = broken_expire
    await limiter.check("user-1")
