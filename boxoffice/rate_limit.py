"""Per-client token bucket kept in a Redis hash (``rl:<key>`` -> tokens, last)."""

import time

from redis.exceptions import WatchError

BUCKET_TTL_SECONDS = 3600


def _refill(tokens: float, last: float, now: float, capacity: int, refill_per_sec: float) -> float:
    return min(float(capacity), tokens + max(now - last, 0.0) * refill_per_sec)


async def token_bucket(redis, key: str, capacity: int, refill_per_sec: float, *, now: float | None = None) -> bool:
    """Spend one token from ``key``'s bucket; False when the bucket is empty."""
    bucket_key = f"rl:{key}"

    async with redis.pipeline(transaction=True) as pipe:
        while True:
            try:
                # the read and the write commit together or retry
                await pipe.watch(bucket_key)
                ts = now if now is not None else time.time()
                data = await pipe.hgetall(bucket_key)
                tokens = _refill(
                    float(data.get("tokens", capacity)),
                    float(data.get("last", ts)),
                    ts,
                    capacity,
                    refill_per_sec,
                )
                allowed = tokens >= 1.0
                if allowed:
                    tokens -= 1.0

                pipe.multi()
                pipe.hset(bucket_key, mapping={"tokens": tokens, "last": ts})
                pipe.expire(bucket_key, BUCKET_TTL_SECONDS)
                await pipe.execute()
                return allowed
            except WatchError:
                continue
