"""ride_planner/models/errors.py — Domain exceptions raised by the dispatch layer.

The API layer translates these into HTTP status codes; nothing below the
API layer knows about HTTP.
"""


class DispatchError(Exception):
    """Base class for operator-facing dispatch failures."""


class RideNotFoundError(DispatchError):
    def __init__(self, ride_id: str) -> None:
        super().__init__(f"Ride '{ride_id}' not found")
        self.ride_id = ride_id


class OrderNotFoundError(DispatchError):
    def __init__(self, order_id: str) -> None:
        super().__init__(f"Order '{order_id}' not found")
        self.order_id = order_id


class RideCompletedError(DispatchError):
    """Raised when a mutation targets a ride that has already been completed."""

    def __init__(self, ride_id: str) -> None:
        super().__init__(f"Ride '{ride_id}' is completed and can no longer be changed")
        self.ride_id = ride_id


class InvalidTransitionError(DispatchError):
    def __init__(self, ride_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Ride '{ride_id}' cannot move from '{current}' to '{target}'"
        )
        self.ride_id = ride_id
        self.current = current
        self.target = target


class OrderAlreadyAssignedError(DispatchError):
    def __init__(self, order_id: str, ride_id: str) -> None:
        super().__init__(f"Order '{order_id}' is already assigned to ride '{ride_id}'")
        self.order_id = order_id
        self.ride_id = ride_id
