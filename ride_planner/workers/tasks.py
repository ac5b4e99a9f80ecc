"""ride_planner/workers/tasks.py — Celery tasks for out-of-band ride recomputation.

recompute_ride is enqueued by the dispatch API when the steps of an *active*
ride are invalidated, so the new route is ready before the next scheduler
tick.  It runs the same per-ride procedure as the scheduler:
  1. Load the ride; exit early if it is gone or already completed.
  2. Wait for the shared optimizer lock, then optimise, reconcile and
     persist its steps.
  3. Record the failure on the ride if the optimization call failed.

The task is a shortcut, not the only path: the invalidation itself records
a recompute request on the ride, and the scheduler keeps retrying requested
active rides until steps are written or the retry cap is reached.
"""
import asyncio
import logging

from ride_planner.models.ride import Ride
from ride_planner.workers.celery_app import celery_app
from ride_planner.workers.scheduler import PROCESSED, RideScheduler, build_scheduler

logger = logging.getLogger(__name__)


async def _recompute(scheduler: RideScheduler, ride: Ride) -> str:
    try:
        return await scheduler.process_ride_safely(ride, include_active=True)
    finally:
        await scheduler.client.aclose()


@celery_app.task(name="ride_planner.workers.tasks.recompute_ride")
def recompute_ride(ride_id: str) -> dict:
    """Recompute the steps of a planned or active ride.

    Args:
        ride_id: Ride identifier.

    Returns:
        Dict with keys: computed (bool), reason (str).
    """
    logger.info("Out-of-band recomputation requested: ride=%s", ride_id)
    scheduler = build_scheduler()

    ride = scheduler.ride_store.get(ride_id)
    if ride is None:
        logger.warning("recompute_ride: ride=%s not found", ride_id)
        return {"computed": False, "reason": "not_found"}
    if ride.is_completed:
        logger.info("recompute_ride: ride=%s is completed, nothing to do", ride_id)
        return {"computed": False, "reason": "completed"}

    outcome = asyncio.run(_recompute(scheduler, ride))
    if outcome != PROCESSED and scheduler.ride_store.recompute_requested(ride_id):
        logger.info("recompute_ride: ride=%s left to the scheduler (%s)", ride_id, outcome)
    return {"computed": outcome == PROCESSED, "reason": outcome}
