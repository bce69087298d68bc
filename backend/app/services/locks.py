from __future__ import annotations
import uuid
import logging
import redis
from contextlib import contextmanager
from app.core.config import settings

logger = logging.getLogger(__name__)

def _client() -> redis.Redis:
    return redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)

@contextmanager
def redis_lock(key: str, ttl_seconds: int = 120):
    """Distributed lock using SET NX EX; yields whether it was acquired."""
    token = str(uuid.uuid4())
    c = _client()
    acquired = c.set(key, token, nx=True, ex=ttl_seconds)
    try:
        yield bool(acquired)
    finally:
        # Only release our own token; an expired lock may already belong to another worker.
        if acquired:
            try:
                if c.get(key) == token:
                    c.delete(key)
            except redis.RedisError as e:
                logger.warning("lock release failed key=%s err=%s", key, str(e)[:220])
