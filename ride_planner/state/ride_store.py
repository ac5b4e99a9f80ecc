"""ride_planner/state/ride_store.py — Redis-backed ride records.

Each ride is stored as a single JSON document, plus membership sets used for
discovery:

    ride:{ride_id}            full Ride document
    rides:all                 every ride id
    rides:status:{status}     ride ids per lifecycle status
    rides:recompute           active rides whose steps were invalidated

Every write replaces the whole document inside a WATCH/MULTI transaction, so
the scheduler and the dispatch API never see a half-written ride.  Scheduler
writes additionally carry the ``revision`` they computed from; a ride that
was invalidated in the meantime keeps its empty steps.

An active ride is only recomputed on request.  The request is recorded in
the same transaction that invalidates its steps and stays until steps are
written or the ride completes, so a lost task or a failed attempt is picked
up again by the next scheduler pass.
"""
import datetime
import logging
from typing import Callable, Iterable, List, Optional

import redis as redis_lib

from ride_planner.models.errors import RideNotFoundError
from ride_planner.models.ride import Ride, RideStatus, RideStep
from ride_planner.state.locks import RedisLock

logger = logging.getLogger(__name__)

_ALL_KEY = "rides:all"
_RECOMPUTE_KEY = "rides:recompute"
_MAX_TRANSACTION_RETRIES = 5


class RideStoreConflictError(Exception):
    """A ride kept changing underneath a write; the caller may retry later."""


def _ride_key(ride_id: str) -> str:
    return f"ride:{ride_id}"


def _status_key(status: RideStatus) -> str:
    return f"rides:status:{RideStatus(status).value}"


class RideStore:
    def __init__(self, client: redis_lib.Redis) -> None:
        self._redis = client

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, ride_id: str) -> Optional[Ride]:
        raw = self._redis.get(_ride_key(ride_id))
        if raw is None:
            return None
        return Ride.model_validate_json(raw)

    def _load_many(self, ride_ids: Iterable[str]) -> List[Ride]:
        ids = sorted(ride_ids)
        if not ids:
            return []
        raws = self._redis.mget([_ride_key(i) for i in ids])
        return [Ride.model_validate_json(raw) for raw in raws if raw is not None]

    def list(
        self,
        date: Optional[datetime.date] = None,
        status: Optional[RideStatus] = None,
    ) -> List[Ride]:
        """Return rides filtered by date and/or status, ordered by (date, id)."""
        key = _status_key(status) if status is not None else _ALL_KEY
        rides = self._load_many(self._redis.smembers(key))
        if date is not None:
            rides = [r for r in rides if r.date == date]
        return sorted(rides, key=lambda r: (r.date, r.id))

    def list_pending(self, max_attempts: int = 0) -> List[Ride]:
        """Discovery query: rides with empty steps that are not stuck.

        Covers every planned ride, plus active rides with an outstanding
        recompute request.  Planned rides come first.
        """
        planned = [
            r
            for r in self.list(status=RideStatus.PLANNED)
            if not r.steps and not r.is_stuck(max_attempts)
        ]
        active = [
            r
            for r in self.list_recompute_requested()
            if not r.steps and not r.is_stuck(max_attempts)
        ]
        return planned + active

    def list_recompute_requested(self) -> List[Ride]:
        """Active rides waiting on a requested recompute; completed ones are dropped."""
        requested = self._load_many(self._redis.smembers(_RECOMPUTE_KEY))
        stale = [r.id for r in requested if r.status != RideStatus.ACTIVE]
        if stale:
            self._redis.srem(_RECOMPUTE_KEY, *stale)
        active = [r for r in requested if r.status == RideStatus.ACTIVE and not r.steps]
        return sorted(active, key=lambda r: (r.date, r.id))

    def recompute_requested(self, ride_id: str) -> bool:
        return bool(self._redis.sismember(_RECOMPUTE_KEY, ride_id))

    def list_stuck(self, max_attempts: int) -> List[Ride]:
        return [
            r
            for r in self.list(status=RideStatus.PLANNED) + self.list(status=RideStatus.ACTIVE)
            if not r.steps and r.is_stuck(max_attempts)
        ]

    def find_open_ride(self, driver_id: str, date: datetime.date) -> Optional[Ride]:
        """Return the driver's planned or active ride for *date*, if any."""
        for status in (RideStatus.PLANNED, RideStatus.ACTIVE):
            for ride in self.list(date=date, status=status):
                if ride.driver_id == driver_id:
                    return ride
        return None

    def find_rides_with_order(self, order_id: str) -> List[Ride]:
        """Return non-completed rides that contain *order_id*."""
        rides = self.list(status=RideStatus.PLANNED) + self.list(status=RideStatus.ACTIVE)
        return [r for r in rides if order_id in r.order_ids]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _transact(self, ride_id: str, fn: Callable[[Optional[Ride]], Optional[Ride]]) -> Optional[Ride]:
        """Run *fn* on the current ride and write its result atomically.

        *fn* receives the stored ride (or None) and returns the ride to write,
        or None to leave the record untouched.  It is re-run on a fresh copy
        if another writer got in between.
        """
        key = _ride_key(ride_id)
        for _ in range(_MAX_TRANSACTION_RETRIES):
            with self._redis.pipeline() as pipe:
                try:
                    pipe.watch(key)
                    raw = pipe.get(key)
                    current = Ride.model_validate_json(raw) if raw is not None else None
                    previous_status = current.status if current is not None else None
                    previous_revision = current.revision if current is not None else None

                    updated = fn(current)
                    if updated is None:
                        return None

                    pipe.multi()
                    pipe.set(key, updated.model_dump_json())
                    pipe.sadd(_ALL_KEY, updated.id)
                    if previous_status is not None and previous_status != updated.status:
                        pipe.srem(_status_key(previous_status), updated.id)
                    pipe.sadd(_status_key(updated.status), updated.id)
                    if updated.steps or updated.status != RideStatus.ACTIVE:
                        pipe.srem(_RECOMPUTE_KEY, updated.id)
                    elif previous_revision is not None and updated.revision != previous_revision:
                        pipe.sadd(_RECOMPUTE_KEY, updated.id)
                    pipe.execute()
                    return updated
                except redis_lib.WatchError:
                    logger.debug("Concurrent write on ride=%s, retrying", ride_id)
        raise RideStoreConflictError(f"Ride '{ride_id}' changed concurrently too many times")

    def create(self, ride: Ride) -> Ride:
        def insert(existing: Optional[Ride]) -> Ride:
            if existing is not None:
                raise ValueError(f"Ride '{ride.id}' already exists")
            return ride

        self._transact(ride.id, insert)
        logger.info(
            "Ride created: ride=%s driver=%s date=%s orders=%d",
            ride.id,
            ride.driver_id,
            ride.date,
            len(ride.order_ids),
        )
        return ride

    def update(self, ride_id: str, mutate: Callable[[Ride], object]) -> Ride:
        """Apply *mutate* to the stored ride and persist it.

        Exceptions raised by *mutate* propagate and nothing is written.

        Raises:
            RideNotFoundError: if the ride does not exist.
        """
        def apply(ride: Optional[Ride]) -> Ride:
            if ride is None:
                raise RideNotFoundError(ride_id)
            mutate(ride)
            return ride

        return self._transact(ride_id, apply)

    def save_steps(self, ride_id: str, steps: List[RideStep], expected_revision: int) -> bool:
        """Persist computed steps unless the ride changed since it was read.

        Returns False (and writes nothing) when the ride is gone, completed,
        or has been invalidated again after the computation started.
        """
        def apply(ride: Optional[Ride]) -> Optional[Ride]:
            if ride is None or ride.is_completed or ride.revision != expected_revision:
                return None
            ride.steps = list(steps)
            ride.failed_attempts = 0
            ride.last_error = None
            return ride

        written = self._transact(ride_id, apply) is not None
        if not written:
            logger.info(
                "Discarded computed steps for ride=%s (changed since revision %d)",
                ride_id,
                expected_revision,
            )
        return written

    def record_failure(self, ride_id: str, error: str, expected_revision: int) -> Optional[int]:
        """Count a failed computation; returns the new attempt count or None if stale."""
        def apply(ride: Optional[Ride]) -> Optional[Ride]:
            if ride is None or ride.is_completed or ride.revision != expected_revision:
                return None
            ride.failed_attempts += 1
            ride.last_error = error
            return ride

        ride = self._transact(ride_id, apply)
        return ride.failed_attempts if ride is not None else None

    def delete(self, ride_id: str) -> bool:
        ride = self.get(ride_id)
        if ride is None:
            return False
        pipe = self._redis.pipeline()
        pipe.delete(_ride_key(ride_id))
        pipe.srem(_ALL_KEY, ride_id)
        pipe.srem(_RECOMPUTE_KEY, ride_id)
        for status in RideStatus:
            pipe.srem(_status_key(status), ride_id)
        pipe.execute()
        logger.info("Ride deleted: ride=%s", ride_id)
        return True

    # ------------------------------------------------------------------
    # Locks
    # ------------------------------------------------------------------

    def lock(self, name: str, ttl_seconds: int = 60) -> RedisLock:
        """Return a lock on ``lock:{name}`` in the same Redis database as the rides."""
        return RedisLock(self._redis, name, ttl_seconds=ttl_seconds)
