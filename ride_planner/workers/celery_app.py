"""ride_planner/workers/celery_app.py — Celery application instance and configuration.

The single `celery_app` object is imported by:
  - ride_planner/workers/tasks.py   (task definitions)
  - CLI startup commands            (celery -A ride_planner.workers.celery_app worker ...)

The periodic scan runs inside the API process; Celery carries the immediate
recomputation of active rides whose steps were invalidated.  Both sides take
the Redis optimizer lock around every optimization call.
"""
from celery import Celery

from ride_planner.config import settings

celery_app = Celery(
    "ride_planner",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["ride_planner.workers.tasks"],
)

celery_app.conf.update(
    # Serialisation
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    # Time limits: waiting for the optimizer lock plus one optimization call,
    # each bounded by the optimization timeout, plus headroom for Redis I/O
    task_soft_time_limit=2 * int(settings.OPTIMIZATION_TIMEOUT_SECONDS) + 15,
    task_time_limit=2 * int(settings.OPTIMIZATION_TIMEOUT_SECONDS) + 30,
    # One task at a time: a single worker process, no prefetched backlog
    worker_concurrency=1,
    worker_prefetch_multiplier=1,
    # Timezone
    timezone="UTC",
    enable_utc=True,
    task_always_eager=False,
)
