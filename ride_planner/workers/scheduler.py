"""ride_planner/workers/scheduler.py — Background route computation for rides.

RideScheduler runs one pass per interval inside the API process:

  1. Discover planned rides whose steps are empty, and active rides with an
     outstanding recompute request (skipping any that hit the retry cap).
  2. For each ride, one at a time:
       a. load its orders and the depot/logistics configuration,
       b. call the optimization client (bounded by a timeout) while holding
          the shared optimizer lock,
       c. reconcile the result with the order records,
       d. persist the steps if the ride has not changed meanwhile.
  3. Sleep for whatever is left of the interval.

A pass always finishes before the next one starts.  The optimizer lock also
covers the Celery recompute task, so optimization calls never overlap across
processes either.  Per-ride failures are logged and counted on the ride;
they never stop the pass.
"""
import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ride_planner.config import settings
from ride_planner.models.ride import Ride, RideStatus
from ride_planner.optimizer.backends import build_optimization_client
from ride_planner.optimizer.contract import (
    LogisticsTiming,
    OptimizationError,
    OptimizationRequest,
    RouteOptimizationClient,
    StopDescriptor,
)
from ride_planner.optimizer.reconciliation import reconcile_steps
from ride_planner.state.connection import get_redis
from ride_planner.state.locks import OPTIMIZER_LOCK, LockTimeoutError, RedisLock
from ride_planner.state.logistics_store import LogisticsStore
from ride_planner.state.order_store import OrderStore
from ride_planner.state.ride_store import RideStore

logger = logging.getLogger(__name__)

# Per-ride outcomes, named after the PassResult fields they are counted in
PROCESSED = "processed"
FAILED = "failed"
SKIPPED = "skipped"


class RideProcessingError(Exception):
    """The ride's inputs cannot be sent to the optimizer (no orders, no depot)."""


@dataclass
class PassResult:
    """Outcome of one discovery-and-process pass."""
    processed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def discovered(self) -> int:
        return len(self.processed) + len(self.failed) + len(self.skipped)


class RideScheduler:
    def __init__(
        self,
        ride_store: RideStore,
        order_store: OrderStore,
        logistics_store: LogisticsStore,
        client: RouteOptimizationClient,
        interval_seconds: float = 60.0,
        timeout_seconds: float = 60.0,
        max_attempts: int = 0,
        optimizer_lock: Optional[RedisLock] = None,
    ) -> None:
        self.ride_store = ride_store
        self.order_store = order_store
        self.logistics_store = logistics_store
        self.client = client
        self.interval_seconds = interval_seconds
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts
        self.optimizer_lock = optimizer_lock

        self._task: Optional[asyncio.Task] = None
        self._stopping: Optional[asyncio.Event] = None

    # ------------------------------------------------------------------
    # Per-ride procedure
    # ------------------------------------------------------------------

    def _build_request(self, ride: Ride) -> OptimizationRequest:
        if not ride.order_ids:
            raise RideProcessingError(f"Ride '{ride.id}' has no orders")

        orders = self.order_store.get_many(ride.order_ids)
        if not orders:
            raise RideProcessingError(f"None of the orders of ride '{ride.id}' exist")

        logistics = self.logistics_store.get()
        if not logistics.depot_address:
            raise RideProcessingError("Depot address is not configured")

        stops = [StopDescriptor.from_order(orders[o]) for o in ride.order_ids if o in orders]
        return OptimizationRequest(
            depot_address=logistics.depot_address,
            stops=stops,
            departure_time=ride.departure_time,
            logistics=LogisticsTiming.from_config(logistics),
        )

    async def process_ride(self, ride_id: str, include_active: bool = False) -> bool:
        """Compute and persist steps for one ride.

        Completed rides are never touched; active rides only when
        *include_active* is set (operator-requested recomputation).

        Returns:
            True if new steps were written, False if the ride was skipped or
            changed while the computation was running.

        Raises:
            OptimizationError, RideProcessingError, asyncio.TimeoutError and
            store errors; callers decide how to record the failure.
        """
        ride = self.ride_store.get(ride_id)
        if ride is None:
            logger.info("Ride vanished before processing: ride=%s", ride_id)
            return False
        allowed = {RideStatus.PLANNED, RideStatus.ACTIVE} if include_active else {RideStatus.PLANNED}
        if ride.status not in allowed:
            logger.info("Skipping ride=%s with status=%s", ride.id, ride.status.value)
            return False
        if ride.steps:
            logger.info("Skipping ride=%s, steps already computed", ride.id)
            return False

        request = self._build_request(ride)
        logger.info(
            "Optimizing ride=%s stops=%d departure=%s revision=%d",
            ride.id,
            len(request.stops),
            ride.departure_time,
            ride.revision,
        )

        async with self._optimizer_slot():
            raw_steps = await asyncio.wait_for(
                self.client.optimize(request), timeout=self.timeout_seconds
            )
        steps = reconcile_steps(raw_steps, request.stops, ride.order_ids)

        written = self.ride_store.save_steps(ride.id, steps, expected_revision=ride.revision)
        if written:
            errors = sum(1 for s in steps if s.error)
            logger.info(
                "Ride computed: ride=%s steps=%d step_errors=%d",
                ride.id,
                len(steps),
                errors,
            )
        return written

    def _optimizer_slot(self):
        if self.optimizer_lock is None:
            return contextlib.nullcontext()
        # Another process may hold the slot for up to one full optimization
        return self.optimizer_lock.hold_async(blocking_timeout=self.timeout_seconds)

    async def process_ride_safely(self, ride: Ride, include_active: bool = False) -> str:
        """Run process_ride and record any failure on the ride instead of raising.

        Returns one of PROCESSED, SKIPPED or FAILED.  Waiting too long for
        the optimizer lock is not the ride's fault: the ride is SKIPPED and
        stays pending without using up an attempt.
        """
        try:
            written = await self.process_ride(ride.id, include_active=include_active)
            return PROCESSED if written else SKIPPED
        except asyncio.CancelledError:
            raise
        except LockTimeoutError as exc:
            logger.warning("Ride=%s postponed: %s", ride.id, exc)
            return SKIPPED
        except asyncio.TimeoutError:
            error = f"Optimization timed out after {self.timeout_seconds:.0f}s"
        except (OptimizationError, RideProcessingError) as exc:
            error = str(exc)
        except Exception as exc:
            logger.exception("Unexpected error while processing ride=%s", ride.id)
            error = f"Unexpected error: {exc}"

        logger.warning("Ride computation failed: ride=%s error=%s", ride.id, error)
        try:
            attempts = self.ride_store.record_failure(ride.id, error, expected_revision=ride.revision)
        except Exception as exc:
            logger.error("Could not record failure for ride=%s: %s", ride.id, exc)
            return FAILED
        if attempts is not None and self.max_attempts > 0 and attempts >= self.max_attempts:
            logger.error(
                "Ride=%s reached %d failed attempts; skipped until its orders or times change",
                ride.id,
                attempts,
            )
        return FAILED

    # ------------------------------------------------------------------
    # Periodic pass
    # ------------------------------------------------------------------

    async def run_pass(self) -> PassResult:
        """Discover pending rides and process them sequentially."""
        result = PassResult()
        rides = self.ride_store.list_pending(self.max_attempts)
        if rides:
            logger.info("Scheduler pass: %d ride(s) pending", len(rides))

        for ride in rides:
            # Active rides are only listed when a recompute was requested
            outcome = await self.process_ride_safely(
                ride, include_active=ride.status == RideStatus.ACTIVE
            )
            getattr(result, outcome).append(ride.id)
        return result

    async def run_forever(self) -> None:
        """Run passes every ``interval_seconds`` until stop() is called.

        The interval is measured from the start of a pass; a pass that
        overruns delays the next one instead of overlapping it.
        """
        loop = asyncio.get_running_loop()
        if self._stopping is None:
            self._stopping = asyncio.Event()
        logger.info("Ride scheduler started (interval=%ss)", self.interval_seconds)

        while not self._stopping.is_set():
            started = loop.time()
            try:
                await self.run_pass()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                # Discovery failed (e.g. Redis down); try again next tick
                logger.error("Scheduler pass failed: %s", exc)

            delay = max(0.0, self.interval_seconds - (loop.time() - started))
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

        logger.info("Ride scheduler stopped")

    def start(self) -> asyncio.Task:
        if self._task is not None and not self._task.done():
            return self._task
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self.run_forever(), name="ride-scheduler")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stopping.set()
        try:
            await self._task
        finally:
            self._task = None
        await self.client.aclose()


def build_scheduler() -> RideScheduler:
    """Wire a scheduler from settings (Redis stores + configured optimizer)."""
    client = get_redis()
    ride_store = RideStore(client)
    return RideScheduler(
        ride_store=ride_store,
        order_store=OrderStore(client),
        logistics_store=LogisticsStore(client),
        client=build_optimization_client(),
        interval_seconds=settings.SCHEDULER_INTERVAL_SECONDS,
        timeout_seconds=settings.OPTIMIZATION_TIMEOUT_SECONDS,
        max_attempts=settings.MAX_OPTIMIZATION_ATTEMPTS,
        optimizer_lock=ride_store.lock(
            OPTIMIZER_LOCK, ttl_seconds=int(settings.OPTIMIZATION_TIMEOUT_SECONDS) + 30
        ),
    )
