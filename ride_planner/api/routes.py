import datetime
import logging
from typing import List, Optional

import redis
from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ride_planner.api.deps import get_dispatch_service
from ride_planner.config import settings
from ride_planner.dispatch.service import DispatchService
from ride_planner.models.errors import (
    DispatchError,
    InvalidTransitionError,
    OrderAlreadyAssignedError,
    OrderNotFoundError,
    RideCompletedError,
    RideNotFoundError,
)
from ride_planner.models.order import LogisticsConfig, Order
from ride_planner.models.ride import RideStatus
from ride_planner.models.schemas import (
    AssignOrdersRequest,
    DepartureTimeRequest,
    OrderUpdateRequest,
    RideResponse,
    StatusRequest,
)
from ride_planner.state.connection import get_redis
from ride_planner.state.locks import LockTimeoutError
from ride_planner.state.ride_store import RideStoreConflictError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1")


def _to_http(exc: Exception) -> HTTPException:
    """Translate a dispatch-layer exception into the matching HTTP error."""
    if isinstance(exc, (RideNotFoundError, OrderNotFoundError)):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (RideCompletedError, InvalidTransitionError, OrderAlreadyAssignedError)):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, RideStoreConflictError):
        return HTTPException(status_code=409, detail="Ride was modified concurrently, retry the request.")
    if isinstance(exc, LockTimeoutError):
        return HTTPException(status_code=409, detail="Another assignment is in progress, retry the request.")
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=422, detail=exc.errors(include_url=False, include_context=False))
    if isinstance(exc, ValueError):
        return HTTPException(status_code=422, detail=str(exc))
    logger.error("Ride store unavailable: %s", exc)
    return HTTPException(status_code=503, detail="Ride store unavailable. Try again shortly.")


_HANDLED = (DispatchError, RideStoreConflictError, LockTimeoutError, ValueError, redis.RedisError)


# ---------------------------------------------------------------------------
# Rides
# ---------------------------------------------------------------------------

@router.get("/rides", response_model=List[RideResponse])
async def list_rides(
    date: Optional[datetime.date] = None,
    status: Optional[RideStatus] = None,
    service: DispatchService = Depends(get_dispatch_service),
) -> List[RideResponse]:
    """List rides, optionally filtered by date and lifecycle status."""
    try:
        rides = service.list_rides(date=date, status=status)
    except _HANDLED as exc:
        raise _to_http(exc)
    return [RideResponse.from_ride(r) for r in rides]


@router.get("/rides/{ride_id}", response_model=RideResponse)
async def get_ride(
    ride_id: str,
    service: DispatchService = Depends(get_dispatch_service),
) -> RideResponse:
    try:
        return RideResponse.from_ride(service.get_ride(ride_id))
    except _HANDLED as exc:
        raise _to_http(exc)


@router.post("/rides/assign", response_model=RideResponse)
async def assign_orders(
    request: AssignOrdersRequest,
    service: DispatchService = Depends(get_dispatch_service),
) -> RideResponse:
    """Assign orders to a driver's ride for a date (created if it does not exist).

    Returns 404 for unknown orders and 409 if an order is already on
    another open ride.  The ride comes back with empty steps; the scheduler
    fills them in on its next pass.
    """
    logger.info(
        "assign: driver=%s date=%s orders=%d",
        request.driver_id,
        request.date,
        len(request.order_ids),
    )
    try:
        ride = service.assign_orders(
            date=request.date,
            driver_id=request.driver_id,
            order_ids=request.order_ids,
            departure_time=request.departure_time,
        )
    except _HANDLED as exc:
        raise _to_http(exc)
    return RideResponse.from_ride(ride)


@router.delete("/rides/{ride_id}/orders/{order_id}")
async def remove_order(
    ride_id: str,
    order_id: str,
    service: DispatchService = Depends(get_dispatch_service),
) -> JSONResponse:
    """Remove an order from a ride; the ride is deleted when it becomes empty."""
    try:
        ride = service.remove_order(ride_id, order_id)
    except _HANDLED as exc:
        raise _to_http(exc)
    if ride is None:
        return JSONResponse({"deleted": True, "ride": None})
    return JSONResponse(
        {"deleted": False, "ride": RideResponse.from_ride(ride).model_dump(mode="json")}
    )


@router.post("/rides/{ride_id}/recompute", response_model=RideResponse)
async def recompute_ride(
    ride_id: str,
    service: DispatchService = Depends(get_dispatch_service),
) -> RideResponse:
    """Clear a ride's steps so its route is computed again. 409 for completed rides."""
    try:
        return RideResponse.from_ride(service.recompute_ride(ride_id))
    except _HANDLED as exc:
        raise _to_http(exc)


@router.put("/rides/{ride_id}/departure-time", response_model=RideResponse)
async def change_departure_time(
    ride_id: str,
    request: DepartureTimeRequest,
    service: DispatchService = Depends(get_dispatch_service),
) -> RideResponse:
    try:
        ride = service.change_departure_time(ride_id, request.departure_time)
    except _HANDLED as exc:
        raise _to_http(exc)
    return RideResponse.from_ride(ride)


@router.post("/rides/{ride_id}/status", response_model=RideResponse)
async def advance_status(
    ride_id: str,
    request: StatusRequest,
    service: DispatchService = Depends(get_dispatch_service),
) -> RideResponse:
    """Move a ride forward (planned → active → completed). Backward moves return 409."""
    try:
        ride = service.advance_status(ride_id, request.status)
    except _HANDLED as exc:
        raise _to_http(exc)
    return RideResponse.from_ride(ride)


@router.delete("/rides/{ride_id}", status_code=204)
async def delete_ride(
    ride_id: str,
    service: DispatchService = Depends(get_dispatch_service),
) -> Response:
    try:
        service.delete_ride(ride_id)
    except _HANDLED as exc:
        raise _to_http(exc)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

@router.get("/orders/{order_id}", response_model=Order)
async def get_order(
    order_id: str,
    service: DispatchService = Depends(get_dispatch_service),
) -> Order:
    try:
        return service.get_order(order_id)
    except _HANDLED as exc:
        raise _to_http(exc)


@router.put("/orders/{order_id}", response_model=Order)
async def put_order(
    order_id: str,
    order: Order,
    service: DispatchService = Depends(get_dispatch_service),
) -> Order:
    """Create or replace an order record."""
    if order.id != order_id:
        raise HTTPException(status_code=422, detail="Order id in body does not match the URL")
    try:
        return service.upsert_order(order)
    except _HANDLED as exc:
        raise _to_http(exc)


@router.patch("/orders/{order_id}", response_model=Order)
async def update_order(
    order_id: str,
    request: OrderUpdateRequest,
    service: DispatchService = Depends(get_dispatch_service),
) -> Order:
    """Edit an order.  Changing its delivery address clears the steps of
    every planned or active ride that contains it."""
    changes = request.model_dump(exclude_unset=True)
    try:
        return service.update_order(order_id, changes)
    except _HANDLED as exc:
        raise _to_http(exc)


# ---------------------------------------------------------------------------
# Logistics
# ---------------------------------------------------------------------------

@router.get("/logistics", response_model=LogisticsConfig)
async def get_logistics(
    service: DispatchService = Depends(get_dispatch_service),
) -> LogisticsConfig:
    try:
        return service.get_logistics()
    except _HANDLED as exc:
        raise _to_http(exc)


@router.put("/logistics", response_model=LogisticsConfig)
async def update_logistics(
    config: LogisticsConfig,
    service: DispatchService = Depends(get_dispatch_service),
) -> LogisticsConfig:
    try:
        return service.update_logistics(config)
    except _HANDLED as exc:
        raise _to_http(exc)


@router.get("/health")
async def health_check() -> JSONResponse:
    """Return service health: Redis connectivity and optimizer configuration."""
    redis_status = "unavailable"
    try:
        get_redis().ping()
        redis_status = "ok"
    except redis.RedisError:
        pass

    if settings.OPTIMIZER_BACKEND == "http":
        optimizer_status = "configured" if settings.OPTIMIZER_SERVICE_URL else "missing"
    else:
        optimizer_status = "configured" if settings.GOOGLE_MAPS_API_KEY else "missing"

    return JSONResponse(
        {
            "status": "healthy",
            "redis": redis_status,
            "optimizer_backend": settings.OPTIMIZER_BACKEND,
            "optimizer": optimizer_status,
        }
    )
