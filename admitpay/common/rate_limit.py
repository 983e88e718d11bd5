"""Redis token bucket used to throttle pay-link creation per client."""

from time import time

import redis

from admitpay.common.logging import logger


class RateLimited(Exception):
    pass


class TokenBucketLimiter:
    """Capacity = refill rate = `limit_per_minute`; `0` disables the check."""

    def __init__(self, rdb, limit_per_minute: int, prefix: str = "tokenbucket:pay") -> None:
        self.rdb = rdb
        self.limit_per_minute = limit_per_minute
        self.prefix = prefix

    @classmethod
    def from_url(cls, redis_url: str, limit_per_minute: int) -> "TokenBucketLimiter":
        return cls(redis.Redis.from_url(redis_url, decode_responses=True), limit_per_minute)

    def check(self, client_key: str) -> None:
        if self.limit_per_minute <= 0:
            return
        key = f"{self.prefix}:{client_key}"
        now = time()
        capacity = float(self.limit_per_minute)
        refill_per_sec = capacity / 60.0
        try:
            values = self.rdb.hmget(key, "tokens", "updated_at")
            tokens = float(values[0]) if values[0] is not None else capacity
            updated_at = float(values[1]) if values[1] is not None else now
            elapsed = max(0.0, now - updated_at)
            tokens = min(capacity, tokens + elapsed * refill_per_sec)
            allowed = tokens >= 1.0
            if allowed:
                tokens -= 1.0
            self.rdb.hset(key, mapping={"tokens": tokens, "updated_at": now})
            self.rdb.expire(key, 120)
        except redis.RedisError as exc:
            logger.warning("rate_limit_store_unavailable: %s", exc)
            return
        if not allowed:
            raise RateLimited(client_key)
