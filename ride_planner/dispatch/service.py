"""ride_planner/dispatch/service.py — Operator-initiated ride operations.

Every operation that can change which stops a ride visits, or when it
leaves, clears the ride's computed steps in the same write.  The scheduler
picks up planned rides with empty steps on its next pass.  For an active
ride the same write records a recompute request, and the Celery recompute
task is queued so the new route does not wait for the next tick.

All HTTP concerns (status codes, request parsing) stay in the API layer;
this module raises the domain exceptions from ride_planner.models.errors.
"""
import datetime
import logging
from typing import Callable, Dict, List, Optional

from ride_planner.models.errors import (
    OrderAlreadyAssignedError,
    OrderNotFoundError,
    RideCompletedError,
    RideNotFoundError,
)
from ride_planner.models.order import LogisticsConfig, Order
from ride_planner.models.ride import Ride, RideStatus
from ride_planner.state.locks import ASSIGN_LOCK
from ride_planner.state.logistics_store import LogisticsStore
from ride_planner.state.order_store import OrderStore
from ride_planner.state.ride_store import RideStore
from ride_planner.utils.time_utils import validate_hhmm

logger = logging.getLogger(__name__)


class DispatchService:
    def __init__(
        self,
        ride_store: RideStore,
        order_store: OrderStore,
        logistics_store: LogisticsStore,
        enqueue_recompute: Optional[Callable[[str], object]] = None,
        default_departure_time: str = "08:00",
        assign_lock_timeout: float = 10.0,
    ) -> None:
        self.rides = ride_store
        self.orders = order_store
        self.logistics = logistics_store
        self._enqueue_recompute = enqueue_recompute
        self.default_departure_time = default_departure_time
        self.assign_lock_timeout = assign_lock_timeout

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_rides(
        self,
        date: Optional[datetime.date] = None,
        status: Optional[RideStatus] = None,
    ) -> List[Ride]:
        return self.rides.list(date=date, status=status)

    def get_ride(self, ride_id: str) -> Ride:
        ride = self.rides.get(ride_id)
        if ride is None:
            raise RideNotFoundError(ride_id)
        return ride

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def _check_assignable(self, order_ids: List[str], target_ride_id: Optional[str]) -> None:
        found = self.orders.get_many(order_ids)
        for order_id in order_ids:
            if order_id not in found:
                raise OrderNotFoundError(order_id)
            for ride in self.rides.find_rides_with_order(order_id):
                if ride.id != target_ride_id:
                    raise OrderAlreadyAssignedError(order_id, ride.id)

    def assign_orders(
        self,
        date: datetime.date,
        driver_id: str,
        order_ids: List[str],
        departure_time: Optional[str] = None,
    ) -> Ride:
        """Put orders on the driver's ride for *date*, creating the ride if needed.

        Appends to the driver's planned or active ride for that date when one
        exists; otherwise creates a planned ride.  Whenever the stop list or
        departure time changes, the ride's steps end up empty so the route
        is recomputed.  Lookup and write run under the assignment lock, so
        concurrent assignments cannot open a second ride for the driver or
        put one order on two rides.

        Raises:
            OrderNotFoundError: an order id has no order record.
            OrderAlreadyAssignedError: an order is on another open ride.
            LockTimeoutError: another assignment held the lock too long.
        """
        order_ids = list(dict.fromkeys(str(o) for o in order_ids))
        if not order_ids:
            raise ValueError("order_ids must not be empty")
        if departure_time is not None:
            validate_hhmm(departure_time)

        lock = self.rides.lock(ASSIGN_LOCK, ttl_seconds=int(self.assign_lock_timeout) + 30)
        with lock.hold(blocking_timeout=self.assign_lock_timeout):
            existing = self.rides.find_open_ride(driver_id, date)
            self._check_assignable(order_ids, existing.id if existing else None)

            if existing is None:
                ride = Ride(
                    date=date,
                    driver_id=driver_id,
                    departure_time=departure_time or self.default_departure_time,
                    order_ids=order_ids,
                )
                return self.rides.create(ride)

            added: List[str] = []
            departure_changed = False

            def append(ride: Ride) -> None:
                nonlocal added, departure_changed
                added = ride.add_orders(order_ids)
                departure_changed = departure_time is not None and ride.set_departure_time(departure_time)

            ride = self.rides.update(existing.id, append)

        if not added and not departure_changed:
            logger.info("Assignment changed nothing: ride=%s orders already on it", ride.id)
            return ride
        logger.info(
            "Orders appended: ride=%s added=%d total=%d",
            ride.id,
            len(added),
            len(ride.order_ids),
        )
        self._after_invalidation(ride)
        return ride

    def remove_order(self, ride_id: str, order_id: str) -> Optional[Ride]:
        """Take an order off a ride.

        Returns the updated ride, or None when the ride became empty and was
        deleted.
        """
        ride = self.get_ride(ride_id)
        if ride.is_completed:
            raise RideCompletedError(ride_id)
        if order_id not in ride.order_ids:
            raise OrderNotFoundError(order_id)

        ride = self.rides.update(ride_id, lambda r: r.remove_order(order_id))
        logger.info("Order removed: ride=%s order=%s remaining=%d", ride_id, order_id, len(ride.order_ids))

        if not ride.order_ids:
            self.rides.delete(ride_id)
            logger.info("Ride deleted after its last order was removed: ride=%s", ride_id)
            return None
        self._after_invalidation(ride)
        return ride

    # ------------------------------------------------------------------
    # Recomputation triggers
    # ------------------------------------------------------------------

    def _after_invalidation(self, ride: Ride) -> None:
        """Queue the recompute task for an invalidated active ride.

        The invalidation is already stored together with the recompute
        request, so a broker failure here only delays the new route until
        the next scheduler pass; it never fails the operator's request.
        """
        if ride.status != RideStatus.ACTIVE or self._enqueue_recompute is None:
            return
        try:
            self._enqueue_recompute(ride.id)
        except Exception as exc:
            logger.warning(
                "Could not queue recomputation for active ride=%s, the scheduler will pick it up: %s",
                ride.id,
                exc,
            )
            return
        logger.info("Recomputation queued for active ride=%s", ride.id)

    def recompute_ride(self, ride_id: str) -> Ride:
        """Force recomputation; keeps the ride's status."""
        ride = self.rides.update(ride_id, lambda r: r.invalidate_steps())
        logger.info("Recomputation forced: ride=%s status=%s", ride.id, ride.status.value)
        self._after_invalidation(ride)
        return ride

    def change_departure_time(self, ride_id: str, departure_time: str) -> Ride:
        validate_hhmm(departure_time)
        ride = self.rides.update(ride_id, lambda r: r.set_departure_time(departure_time))
        logger.info("Departure time set: ride=%s departure=%s", ride.id, ride.departure_time)
        self._after_invalidation(ride)
        return ride

    def advance_status(self, ride_id: str, status: RideStatus) -> Ride:
        ride = self.rides.update(ride_id, lambda r: r.advance_status(status))
        logger.info("Ride status: ride=%s status=%s", ride.id, ride.status.value)
        return ride

    def delete_ride(self, ride_id: str) -> None:
        if not self.rides.delete(ride_id):
            raise RideNotFoundError(ride_id)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def get_order(self, order_id: str) -> Order:
        order = self.orders.get(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    def upsert_order(self, order: Order) -> Order:
        """Store an order; an address change invalidates its open rides."""
        previous = self.orders.get(order.id)
        self.orders.save(order)
        if previous is not None and previous.address_differs(order):
            self._invalidate_rides_with_order(order.id)
        return order

    def update_order(self, order_id: str, changes: Dict[str, object]) -> Order:
        """Apply a partial edit to an order.

        If any delivery address field changed, every planned or active ride
        containing the order has its steps cleared before this returns.
        """
        previous = self.get_order(order_id)
        data = previous.model_dump()
        data.update({k: v for k, v in changes.items() if k != "id"})
        updated = Order.model_validate(data)
        self.orders.save(updated)

        if previous.address_differs(updated):
            self._invalidate_rides_with_order(order_id)
        return updated

    def _invalidate_rides_with_order(self, order_id: str) -> List[Ride]:
        invalidated = []
        for ride in self.rides.find_rides_with_order(order_id):
            try:
                updated = self.rides.update(ride.id, lambda r: r.invalidate_steps())
            except (RideCompletedError, RideNotFoundError):
                # Completed or deleted since the lookup; nothing to recompute
                continue
            logger.info("Address change invalidated ride=%s (order=%s)", ride.id, order_id)
            self._after_invalidation(updated)
            invalidated.append(updated)
        return invalidated

    # ------------------------------------------------------------------
    # Logistics
    # ------------------------------------------------------------------

    def get_logistics(self) -> LogisticsConfig:
        return self.logistics.get()

    def update_logistics(self, config: LogisticsConfig) -> LogisticsConfig:
        return self.logistics.save(config)
