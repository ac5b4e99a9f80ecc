"""ride_planner/models/schemas.py — Request/response bodies of the dispatch API."""
import datetime
from typing import List, Optional

from pydantic import BaseModel, field_validator

from ride_planner.config import settings
from ride_planner.models.order import OrderItem
from ride_planner.models.ride import Ride, RideStatus, RideStep
from ride_planner.utils.time_utils import validate_hhmm


class AssignOrdersRequest(BaseModel):
    date: datetime.date
    driver_id: str
    order_ids: List[str]
    departure_time: Optional[str] = None

    @field_validator("order_ids")
    @classmethod
    def validate_order_ids(cls, v: List[str]) -> List[str]:
        """Reject empty assignments."""
        if not v:
            raise ValueError("order_ids must contain at least one order")
        return v

    @field_validator("departure_time")
    @classmethod
    def validate_departure_time(cls, v: Optional[str]) -> Optional[str]:
        return validate_hhmm(v) if v is not None else v


class DepartureTimeRequest(BaseModel):
    departure_time: str

    @field_validator("departure_time")
    @classmethod
    def validate_departure_time(cls, v: str) -> str:
        return validate_hhmm(v)


class StatusRequest(BaseModel):
    status: RideStatus


class OrderUpdateRequest(BaseModel):
    """Partial order edit; only fields that are set are applied."""

    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    delivery_street: Optional[str] = None
    delivery_city: Optional[str] = None
    delivery_zip: Optional[str] = None
    delivery_address: Optional[str] = None
    delivery_date: Optional[str] = None
    is_paid: Optional[bool] = None
    items: Optional[List[OrderItem]] = None
    note: Optional[str] = None


class RideResponse(BaseModel):
    id: str
    date: datetime.date
    driver_id: str
    status: RideStatus
    departure_time: str
    order_ids: List[str]
    steps: List[RideStep]
    revision: int
    failed_attempts: int
    last_error: Optional[str]
    pending: bool
    stuck: bool

    @classmethod
    def from_ride(cls, ride: Ride) -> "RideResponse":
        return cls(
            **ride.model_dump(),
            pending=ride.needs_computation,
            stuck=ride.needs_computation and ride.is_stuck(settings.MAX_OPTIMIZATION_ATTEMPTS),
        )
