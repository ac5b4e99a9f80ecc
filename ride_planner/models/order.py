"""ride_planner/models/order.py — Collaborator records read by the ride planner.

Orders and the depot/logistics configuration are owned by the storefront;
this service only reads them (and reacts to address edits).
"""
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

# Changing any of these on an order invalidates the rides that contain it.
ADDRESS_FIELDS = ("delivery_street", "delivery_city", "delivery_zip", "delivery_address")


class OrderItem(BaseModel):
    name: str = ""
    quantity: int = 1

    @field_validator("quantity")
    @classmethod
    def validate_quantity(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"quantity must not be negative, got {v}")
        return v


class Order(BaseModel):
    id: str
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    delivery_street: str = ""
    delivery_city: str = ""
    delivery_zip: str = ""
    # Free-form override entered by the operator; wins over the structured fields.
    delivery_address: Optional[str] = None
    delivery_date: Optional[str] = None
    is_paid: bool = False
    items: List[OrderItem] = Field(default_factory=list)
    note: Optional[str] = None

    @property
    def address(self) -> str:
        """Single-line address sent to the route optimizer."""
        if self.delivery_address:
            return self.delivery_address
        city = " ".join(p for p in (self.delivery_zip, self.delivery_city) if p)
        return ", ".join(p for p in (self.delivery_street, city) if p)

    @property
    def items_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def address_differs(self, other: "Order") -> bool:
        return any(getattr(self, f) != getattr(other, f) for f in ADDRESS_FIELDS)


class LogisticsConfig(BaseModel):
    """Depot address plus the timing parameters used when sequencing stops."""

    depot_address: str = ""
    loading_seconds_per_item: int = 30
    stop_time_minutes: int = 5
    unloading_paid_seconds: int = 120
    unloading_unpaid_seconds: int = 300

    @field_validator(
        "loading_seconds_per_item",
        "stop_time_minutes",
        "unloading_paid_seconds",
        "unloading_unpaid_seconds",
    )
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"timing values must not be negative, got {v}")
        return v
