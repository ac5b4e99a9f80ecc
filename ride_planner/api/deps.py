from functools import lru_cache

import redis as redis_lib

from ride_planner.config import settings
from ride_planner.dispatch.service import DispatchService
from ride_planner.state.connection import get_redis
from ride_planner.state.logistics_store import LogisticsStore
from ride_planner.state.order_store import OrderStore
from ride_planner.state.ride_store import RideStore
from ride_planner.workers.tasks import recompute_ride


@lru_cache
def _redis_client() -> redis_lib.Redis:
    return get_redis()


def _enqueue_recompute(ride_id: str) -> None:
    recompute_ride.delay(ride_id)


def get_dispatch_service() -> DispatchService:
    client = _redis_client()
    return DispatchService(
        ride_store=RideStore(client),
        order_store=OrderStore(client),
        logistics_store=LogisticsStore(client),
        enqueue_recompute=_enqueue_recompute,
        default_departure_time=settings.DEFAULT_DEPARTURE_TIME,
    )
