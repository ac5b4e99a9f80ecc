"""ride_planner/optimizer/backends.py — Pick the optimizer backend from settings."""
import logging

from ride_planner.config import settings
from ride_planner.optimizer.contract import RouteOptimizationClient
from ride_planner.optimizer.google_optimizer import GoogleRouteOptimizer
from ride_planner.optimizer.http_client import HttpRouteOptimizer

logger = logging.getLogger(__name__)


def build_optimization_client() -> RouteOptimizationClient:
    """Return the backend named by ``OPTIMIZER_BACKEND``.

    Raises:
        ValueError: if the selected backend is missing its configuration.
    """
    if settings.OPTIMIZER_BACKEND == "http":
        logger.info("Using remote optimization service at %s", settings.OPTIMIZER_SERVICE_URL)
        return HttpRouteOptimizer(
            settings.OPTIMIZER_SERVICE_URL,
            api_key=settings.OPTIMIZER_API_KEY,
            timeout=settings.OPTIMIZATION_TIMEOUT_SECONDS,
        )

    if not settings.GOOGLE_MAPS_API_KEY:
        raise ValueError("GOOGLE_MAPS_API_KEY is required for the google optimizer backend.")
    logger.info("Using in-process Google Maps + OR-Tools optimizer")
    return GoogleRouteOptimizer(max_stops=settings.MAX_STOPS_PER_ROUTE)
