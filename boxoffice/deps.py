from functools import lru_cache

from redis.asyncio import Redis

from .config import REDIS_URL
from .db import SessionLocal
from .gateway import InTouchGateway
from .notifications import Notifier, notifier_from_config

# Redis connects lazily, on first command
redis = Redis.from_url(REDIS_URL, decode_responses=True)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_redis() -> Redis:
    return redis


@lru_cache
def get_gateway() -> InTouchGateway:
    return InTouchGateway.from_config()


@lru_cache
def get_notifier() -> Notifier:
    return notifier_from_config()
