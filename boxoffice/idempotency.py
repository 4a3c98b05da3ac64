"""Replay of cached responses for requests carrying an ``Idempotency-Key``.

Keys are namespaced by action and caller, so two users (or two scanners)
choosing the same key never see each other's responses.
"""

import json

from .config import IDEMPOTENCY_TTL_SECONDS


def scope_for(action: str, user_id: str) -> str:
    return f"{action}:{user_id}"


def _redis_key(scope: str, idem_key: str) -> str:
    return f"idem:{scope}:{idem_key}"


async def get_cached_response(redis, scope: str, idem_key: str) -> dict | None:
    raw = await redis.get(_redis_key(scope, idem_key))
    if not raw:
        return None
    return json.loads(raw)


async def set_cached_response(
    redis,
    scope: str,
    idem_key: str,
    response: dict,
    ttl_seconds: int = IDEMPOTENCY_TTL_SECONDS,
) -> None:
    await redis.setex(_redis_key(scope, idem_key), ttl_seconds, json.dumps(response, default=str))
