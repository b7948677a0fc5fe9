"""
Redis client initialization.

Redis pub/sub carries the delivery lifecycle events.
"""

import redis.asyncio as redis
from delivery_backend.app.core.config import settings

# Create async Redis client
redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)
