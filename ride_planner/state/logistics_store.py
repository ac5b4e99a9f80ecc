import logging

import redis as redis_lib

from ride_planner.config import settings
from ride_planner.models.order import LogisticsConfig

logger = logging.getLogger(__name__)

_LOGISTICS_KEY = "settings:logistics"


def default_logistics() -> LogisticsConfig:
    """Logistics configuration built from environment defaults."""
    return LogisticsConfig(
        depot_address=settings.DEPOT_ADDRESS,
        loading_seconds_per_item=settings.LOADING_SECONDS_PER_ITEM,
        stop_time_minutes=settings.STOP_TIME_MINUTES,
        unloading_paid_seconds=settings.UNLOADING_PAID_SECONDS,
        unloading_unpaid_seconds=settings.UNLOADING_UNPAID_SECONDS,
    )


class LogisticsStore:
    """Single current depot/logistics record, falling back to settings."""

    def __init__(self, client: redis_lib.Redis) -> None:
        self._redis = client

    def get(self) -> LogisticsConfig:
        raw = self._redis.get(_LOGISTICS_KEY)
        if raw is None:
            return default_logistics()
        return LogisticsConfig.model_validate_json(raw)

    def save(self, config: LogisticsConfig) -> LogisticsConfig:
        self._redis.set(_LOGISTICS_KEY, config.model_dump_json())
        logger.info("Logistics configuration updated: depot_set=%s", bool(config.depot_address))
        return config
