"""Tests for the token bucket algorithm."""

import pytest
from redis.exceptions import TimeoutError as RedisTimeoutError

from limitgate.app.exceptions import StoreUnavailableError
from limitgate.app.limiter import TokenBucket


@pytest.fixture
def bucket(fake_redis, clock):
    return TokenBucket(fake_redis, capacity=5, rate=1, ttl=60, clock=clock)


def seed(fake_redis, key, tokens, timestamp):
    fake_redis.data[f"token:{key}:tokens"] = tokens
    fake_redis.data[f"token:{key}:time"] = str(int(timestamp))


class TestTokenBucketAllow:

    @pytest.mark.asyncio
    async def test_fresh_key_starts_full(self, bucket, fake_redis):
        allowed, remaining = await bucket.allow("k")
        assert allowed is True
        assert remaining == 4
        assert fake_redis.data["token:k:tokens"] == "4"

    @pytest.mark.asyncio
    async def test_refill_after_empty(self, bucket, fake_redis, clock):
        """Zero tokens and three seconds elapsed refills three tokens."""
        seed(fake_redis, "k", "0", clock.now)
        clock.advance(3)

        allowed, remaining = await bucket.allow("k")
        assert allowed is True
        assert remaining == 2

    @pytest.mark.asyncio
    async def test_burst_then_deny(self, bucket):
        results = [await bucket.allow("k") for _ in range(6)]
        assert [r.allowed for r in results] == [True] * 5 + [False]
        assert results[-1].remaining == 0

    @pytest.mark.asyncio
    async def test_boundary_is_strict(self, fake_redis, clock):
        bucket = TokenBucket(fake_redis, capacity=5, rate=0.5, clock=clock)
        seed(fake_redis, "k", "0", clock.now)
        clock.advance(1)

        result = await bucket.allow("k")
        assert result.allowed is False
        assert fake_redis.data["token:k:tokens"] == "0"

        clock.advance(1)
        result = await bucket.allow("k")
        assert result.allowed is True
        assert result.remaining == 0

    @pytest.mark.asyncio
    async def test_refill_never_exceeds_capacity(self, bucket, fake_redis, clock):
        seed(fake_redis, "k", "1", clock.now)
        clock.advance(3600)

        allowed, remaining = await bucket.allow("k")
        assert allowed is True
        assert remaining == 4

    @pytest.mark.asyncio
    async def test_zero_rate_never_refills(self, fake_redis, clock):
        bucket = TokenBucket(fake_redis, capacity=1, rate=0, clock=clock)
        assert (await bucket.allow("k")).allowed is True
        clock.advance(10_000)
        assert (await bucket.allow("k")).allowed is False

    @pytest.mark.asyncio
    async def test_negative_stored_tokens_read_as_zero(self, bucket, fake_redis, clock):
        seed(fake_redis, "k", "-3", clock.now)
        clock.advance(2)

        allowed, remaining = await bucket.allow("k")
        assert allowed is True
        assert remaining == 1

    @pytest.mark.asyncio
    async def test_write_failure_propagates(self, bucket, fake_redis):
        fake_redis.fail_with = RedisTimeoutError("timed out")
        with pytest.raises(StoreUnavailableError):
            await bucket.allow("k")

    @pytest.mark.asyncio
    async def test_atomic_mode_uses_token_script(self, fake_redis, clock):
        bucket = TokenBucket(fake_redis, capacity=5, rate=1, atomic=True, clock=clock)
        fake_redis.eval_result = [1, "4"]

        result = await bucket.allow("k")
        assert result.allowed is True
        assert result.remaining == 4
        name, args = fake_redis.calls[-1]
        assert name == "eval"
        assert args[:3] == (2, "token:k:tokens", "token:k:time")


class TestTokenBucketStatus:

    @pytest.mark.asyncio
    async def test_unseen_key_reports_full_and_writes_nothing(self, bucket, fake_redis):
        status = await bucket.get_status("k")
        assert status.remaining == 5
        assert status.current == 0
        assert status.is_limited is False
        assert status.algorithm == "token_bucket"
        assert fake_redis.data == {}

    @pytest.mark.asyncio
    async def test_status_invariant(self, bucket, fake_redis, clock):
        seed(fake_redis, "k", "0.3", clock.now)
        clock.advance(1)

        status = await bucket.get_status("k")
        assert abs(status.remaining - 1.3) < 1e-9
        assert abs(status.current + status.remaining - status.capacity) < 1e-9
        assert status.is_limited is False

    @pytest.mark.asyncio
    async def test_limited_when_below_one_token(self, bucket, fake_redis, clock):
        seed(fake_redis, "k", "0.5", clock.now)
        status = await bucket.get_status("k")
        assert status.is_limited is True

    @pytest.mark.asyncio
    async def test_status_refreshes_persisted_state(self, bucket, fake_redis, clock):
        seed(fake_redis, "k", "1", clock.now)
        clock.advance(2)

        await bucket.get_status("k")

        assert fake_redis.data["token:k:tokens"] == "3"
        assert fake_redis.data["token:k:time"] == str(int(clock.now))
        assert fake_redis.ttls["token:k:tokens"] == 60

    @pytest.mark.asyncio
    async def test_no_refresh_without_elapsed_time(self, bucket, fake_redis, clock):
        seed(fake_redis, "k", "1", clock.now)
        await bucket.get_status("k")
        assert not any(name == "execute" for name, _ in fake_redis.calls)

    @pytest.mark.asyncio
    async def test_refresh_can_be_disabled(self, fake_redis, clock):
        bucket = TokenBucket(fake_redis, capacity=5, rate=1, clock=clock, refresh_on_status=False)
        seed(fake_redis, "k", "1", clock.now)
        clock.advance(2)

        status = await bucket.get_status("k")
        assert status.remaining == 3
        assert fake_redis.data["token:k:tokens"] == "1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("elapsed", [0, 1, 7, 100, 10_000])
    async def test_capacity_ceiling(self, bucket, fake_redis, clock, elapsed):
        seed(fake_redis, "k", "4.5", clock.now)
        clock.advance(elapsed)
        status = await bucket.get_status("k")
        assert status.remaining <= bucket.capacity


class TestTokenBucketReset:

    @pytest.mark.asyncio
    async def test_reset_restores_full_bucket(self, bucket, fake_redis):
        for _ in range(5):
            await bucket.allow("k")

        await bucket.reset("k")
        await bucket.reset("k")

        assert fake_redis.data == {}
        allowed, remaining = await bucket.allow("k")
        assert allowed is True
        assert remaining == 4

    def test_info(self, fake_redis):
        bucket = TokenBucket(fake_redis, capacity=20, rate=0.5)
        info = bucket.info()
        assert info["current"] == "token_bucket"
        assert info["rate_name"] == "refill_rate"
        assert bucket.refill_rate == 0.5
