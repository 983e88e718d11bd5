"""Token bucket behavior against an in-memory Redis stand-in."""

import pytest
import redis

from admitpay.common.rate_limit import RateLimited, TokenBucketLimiter


class FakeRedis:
    """Implements the three hash commands the limiter uses."""

    def __init__(self):
        self.hashes = {}
        self.calls = 0

    def hmget(self, key, *fields):
        self.calls += 1
        data = self.hashes.get(key, {})
        return [data.get(field) for field in fields]

    def hset(self, key, mapping):
        self.hashes.setdefault(key, {}).update({k: str(v) for k, v in mapping.items()})

    def expire(self, key, seconds):
        return True


class BrokenRedis:
    def hmget(self, key, *fields):
        raise redis.ConnectionError("redis down")


def test_bucket_allows_up_to_capacity():
    limiter = TokenBucketLimiter(FakeRedis(), limit_per_minute=2)

    limiter.check("10.0.0.1")
    limiter.check("10.0.0.1")
    with pytest.raises(RateLimited):
        limiter.check("10.0.0.1")


def test_buckets_are_per_client():
    limiter = TokenBucketLimiter(FakeRedis(), limit_per_minute=1)

    limiter.check("10.0.0.1")
    limiter.check("10.0.0.2")


def test_zero_limit_disables_the_check():
    rdb = FakeRedis()
    limiter = TokenBucketLimiter(rdb, limit_per_minute=0)

    for _ in range(5):
        limiter.check("10.0.0.1")
    assert rdb.calls == 0


def test_store_outage_lets_requests_through():
    TokenBucketLimiter(BrokenRedis(), limit_per_minute=1).check("10.0.0.1")
