import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from ride_planner.api.routes import router
from ride_planner.config import configure_logging, settings
from ride_planner.workers.scheduler import build_scheduler

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the ride scheduler with the app and stop it on shutdown."""
    logger.info(
        "Ride Planner starting up: ENV=%s LOG_LEVEL=%s backend=%s",
        settings.ENV,
        settings.LOG_LEVEL,
        settings.OPTIMIZER_BACKEND,
    )
    scheduler = None
    if settings.SCHEDULER_ENABLED:
        scheduler = build_scheduler()
        scheduler.start()
    app.state.scheduler = scheduler
    try:
        yield
    finally:
        if scheduler is not None:
            await scheduler.stop()
        logger.info("Ride Planner shutting down")


app = FastAPI(
    title="Ride Planner API",
    description="Delivery ride planning with scheduled route optimization.",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(router)
