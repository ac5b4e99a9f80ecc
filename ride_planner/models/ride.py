"""ride_planner/models/ride.py — Ride records and their lifecycle state machine.

A ride's ``steps`` list doubles as its staleness flag: an empty list means
the visit sequence has to be (re)computed by the scheduler.  Every mutation
that can change the stop list goes through ``invalidate_steps()`` so the
flag is set synchronously with the change itself.

    planned ──► active ──► completed
       └───────────────────────┘
"""
import datetime
import logging
import uuid
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ride_planner.models.errors import InvalidTransitionError, RideCompletedError
from ride_planner.utils.time_utils import validate_hhmm

logger = logging.getLogger(__name__)


class RideStatus(str, Enum):
    PLANNED = "planned"
    ACTIVE = "active"
    COMPLETED = "completed"


# Forward-only transitions; completed is terminal.
_TRANSITIONS = {
    RideStatus.PLANNED: {RideStatus.ACTIVE, RideStatus.COMPLETED},
    RideStatus.ACTIVE: {RideStatus.COMPLETED},
    RideStatus.COMPLETED: set(),
}


def can_transition(current: RideStatus, target: RideStatus) -> bool:
    """Return True if a ride in *current* may move to *target*."""
    return target in _TRANSITIONS[RideStatus(current)]


def new_ride_id() -> str:
    return f"ride-{uuid.uuid4().hex[:12]}"


class RideStep(BaseModel):
    """One stop of a computed ride, in delivery order."""

    order_id: str
    type: str = "delivery"
    address: str = ""
    arrival_time: Optional[str] = None
    departure_time: Optional[str] = None
    distance_km: Optional[float] = None
    error: Optional[str] = None

    # Authoritative copies from the order record, never from the optimizer
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    note: Optional[str] = None
    is_paid: Optional[bool] = None
    items_count: Optional[int] = None


class Ride(BaseModel):
    id: str = Field(default_factory=new_ride_id)
    date: datetime.date
    driver_id: str
    status: RideStatus = RideStatus.PLANNED
    departure_time: str = "08:00"
    order_ids: List[str] = Field(default_factory=list)
    steps: List[RideStep] = Field(default_factory=list)

    # Bumped whenever steps are invalidated; guards scheduler writes.
    revision: int = 0
    failed_attempts: int = 0
    last_error: Optional[str] = None

    @field_validator("departure_time")
    @classmethod
    def validate_departure_time(cls, v: str) -> str:
        return validate_hhmm(v)

    @field_validator("order_ids")
    @classmethod
    def dedupe_order_ids(cls, v: List[str]) -> List[str]:
        """Drop repeated order ids, keeping first occurrence."""
        return list(dict.fromkeys(str(i) for i in v))

    @property
    def is_completed(self) -> bool:
        return self.status == RideStatus.COMPLETED

    @property
    def needs_computation(self) -> bool:
        """True when the ride has orders but no computed steps and can still be recomputed."""
        return not self.is_completed and bool(self.order_ids) and not self.steps

    def is_stuck(self, max_attempts: int) -> bool:
        """True once the retry cap is reached; ``max_attempts <= 0`` disables the cap."""
        return max_attempts > 0 and self.failed_attempts >= max_attempts

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _ensure_mutable(self) -> None:
        if self.is_completed:
            raise RideCompletedError(self.id)

    def invalidate_steps(self) -> None:
        """Clear computed steps so the ride is re-queued for optimisation.

        Also resets the failure bookkeeping: the inputs changed, so previous
        failures say nothing about the next attempt.
        """
        self._ensure_mutable()
        self.steps = []
        self.revision += 1
        self.failed_attempts = 0
        self.last_error = None
        logger.debug("Ride steps invalidated: ride=%s revision=%d", self.id, self.revision)

    def add_orders(self, order_ids: List[str]) -> List[str]:
        """Append orders not yet on the ride; returns the ids actually added."""
        self._ensure_mutable()
        added = [str(o) for o in dict.fromkeys(order_ids) if str(o) not in self.order_ids]
        if added:
            self.order_ids = self.order_ids + added
            self.invalidate_steps()
        return added

    def remove_order(self, order_id: str) -> bool:
        self._ensure_mutable()
        if order_id not in self.order_ids:
            return False
        self.order_ids = [o for o in self.order_ids if o != order_id]
        self.invalidate_steps()
        return True

    def set_departure_time(self, departure_time: str) -> bool:
        self._ensure_mutable()
        validate_hhmm(departure_time)
        if departure_time == self.departure_time:
            return False
        self.departure_time = departure_time
        self.invalidate_steps()
        return True

    def advance_status(self, target: RideStatus) -> bool:
        """Move the ride forward in its lifecycle.

        Returns False for a same-state request, True on a transition.

        Raises:
            InvalidTransitionError: for backward moves or moves out of completed.
        """
        target = RideStatus(target)
        if target == self.status:
            return False
        if not can_transition(self.status, target):
            raise InvalidTransitionError(self.id, self.status.value, target.value)
        self.status = target
        return True
