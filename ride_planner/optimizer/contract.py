"""ride_planner/optimizer/contract.py — Wire contract of the route optimization service.

Request and response models serialise with camelCase keys, matching the
payload the optimization service expects:

    {
      "depotAddress": "Main 1, 110 00 Prague",
      "stops": [{"id", "address", "isPaid", "itemsCount",
                 "customerName", "customerPhone", "note"}, ...],
      "departureTime": "08:00",
      "logistics": {"loadingSecondsPerItem", "stopTimeMinutes",
                    "unloadingPaidSeconds", "unloadingUnpaidSeconds"}
    }

and the ordered response ``[{"orderId", "type", "address", "arrivalTime",
"departureTime", "distanceKm", "error"}, ...]``.

The service is trusted for geometry and timing only.  Whatever it echoes back
for customer data is discarded by the reconciliation step.
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from ride_planner.models.order import LogisticsConfig, Order
from ride_planner.utils.time_utils import validate_hhmm


class OptimizationError(Exception):
    """The optimization call failed as a whole (transport, timeout, bad payload)."""


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StopDescriptor(_CamelModel):
    id: str
    address: str
    is_paid: bool = False
    items_count: int = 0
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    note: Optional[str] = None

    @classmethod
    def from_order(cls, order: Order) -> "StopDescriptor":
        return cls(
            id=order.id,
            address=order.address,
            is_paid=order.is_paid,
            items_count=order.items_count,
            customer_name=order.customer_name,
            customer_phone=order.customer_phone,
            note=order.note,
        )


class LogisticsTiming(_CamelModel):
    loading_seconds_per_item: int
    stop_time_minutes: int
    unloading_paid_seconds: int
    unloading_unpaid_seconds: int

    @classmethod
    def from_config(cls, config: LogisticsConfig) -> "LogisticsTiming":
        return cls(
            loading_seconds_per_item=config.loading_seconds_per_item,
            stop_time_minutes=config.stop_time_minutes,
            unloading_paid_seconds=config.unloading_paid_seconds,
            unloading_unpaid_seconds=config.unloading_unpaid_seconds,
        )

    def service_seconds(self, is_paid: bool) -> int:
        """Time spent at a stop: base stop time plus paid/unpaid unloading."""
        unloading = self.unloading_paid_seconds if is_paid else self.unloading_unpaid_seconds
        return self.stop_time_minutes * 60 + unloading


class OptimizationRequest(_CamelModel):
    depot_address: str
    stops: List[StopDescriptor]
    departure_time: str
    logistics: LogisticsTiming

    @field_validator("departure_time")
    @classmethod
    def validate_departure_time(cls, v: str) -> str:
        return validate_hhmm(v)

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True)


class RawStep(_CamelModel):
    """A step as returned by the optimizer, unvalidated beyond its shape.

    Customer fields are accepted so a response carrying them still parses,
    but they are never persisted as-is.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    order_id: str
    type: str = "delivery"
    address: str = ""
    arrival_time: Optional[str] = None
    departure_time: Optional[str] = None
    distance_km: Optional[float] = None
    error: Optional[str] = None

    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    note: Optional[str] = None
    is_paid: Optional[bool] = None
    items_count: Optional[int] = None

    @field_validator("order_id", mode="before")
    @classmethod
    def coerce_order_id(cls, v):
        """Optimizers occasionally echo numeric ids; compare as strings."""
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


class RouteOptimizationClient:
    """Interface every optimizer backend implements."""

    async def optimize(self, request: OptimizationRequest) -> List[RawStep]:
        """Return the optimizer's ordered steps for *request*.

        Raises:
            OptimizationError: when the call itself fails.  A response that
                covers only some of the stops is returned, not raised.
        """
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release any connections held by the client."""
