import logging
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Google Maps (used by the in-process optimizer backend)
    GOOGLE_MAPS_API_KEY: str = ""

    # Route optimization service
    OPTIMIZER_BACKEND: Literal["google", "http"] = "google"
    OPTIMIZER_SERVICE_URL: str = ""
    OPTIMIZER_API_KEY: str = ""
    OPTIMIZATION_TIMEOUT_SECONDS: float = 60.0

    # Solver
    MAX_OPTIMIZATION_SECONDS: int = 5
    MAX_STOPS_PER_ROUTE: int = 25

    # Redis
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_TTL_SECONDS: int = 86400

    # Scheduler
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_INTERVAL_SECONDS: int = 60
    MAX_OPTIMIZATION_ATTEMPTS: int = 5

    # Rides & logistics defaults
    DEFAULT_DEPARTURE_TIME: str = "08:00"
    DEPOT_ADDRESS: str = ""
    STOP_TIME_MINUTES: int = 5
    LOADING_SECONDS_PER_ITEM: int = 30
    UNLOADING_PAID_SECONDS: int = 120
    UNLOADING_UNPAID_SECONDS: int = 300

    # Celery (out-of-band recomputation of active rides)
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"

    # App
    ENV: str = "development"
    LOG_LEVEL: str = "INFO"


settings = Settings()


def configure_logging() -> None:
    """Configure root logger level and format from settings."""
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
