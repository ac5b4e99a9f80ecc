import logging

import redis as redis_lib

from ride_planner.config import settings

logger = logging.getLogger(__name__)


def get_redis() -> redis_lib.Redis:
    """Return a Redis client for the ride, order and logistics stores.

    Unlike the distance-matrix cache, these stores are the source of truth,
    so connection errors propagate to the caller instead of degrading.
    """
    return redis_lib.Redis(
        host=settings.REDIS_HOST,
        port=settings.REDIS_PORT,
        db=settings.REDIS_DB,
        decode_responses=True,
    )
