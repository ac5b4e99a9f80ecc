"""ride_planner/optimizer/reconciliation.py — Merge optimizer output with order data.

The optimizer decides the visit order, times and distances.  Everything an
operator or driver relies on about the customer (name, phone, note, payment
status, item count) comes from our own order records, whatever the optimizer
sent back.

Output layout:
    1. steps for known orders, in the optimizer's order
    2. steps with ids we do not recognise, unchanged
    3. synthetic error steps for orders the optimizer dropped
"""
import logging
from typing import Dict, Iterable, List, Optional

from ride_planner.models.ride import RideStep
from ride_planner.optimizer.contract import RawStep, StopDescriptor

logger = logging.getLogger(__name__)

MISSING_FROM_OPTIMIZER = "Not processed by the route optimizer"
MISSING_ORDER_RECORD = "Order record not found"


def _enrich(step: RawStep, stop: StopDescriptor) -> RideStep:
    data = step.model_dump(
        exclude={"customer_name", "customer_phone", "note", "is_paid", "items_count"}
    )
    data["order_id"] = stop.id
    return RideStep(
        **data,
        customer_name=stop.customer_name,
        customer_phone=stop.customer_phone,
        note=stop.note,
        is_paid=stop.is_paid,
        items_count=stop.items_count,
    )


def _synthetic(stop: StopDescriptor, error: str) -> RideStep:
    return RideStep(
        order_id=stop.id,
        address=stop.address,
        error=error,
        customer_name=stop.customer_name,
        customer_phone=stop.customer_phone,
        note=stop.note,
        is_paid=stop.is_paid,
        items_count=stop.items_count,
    )


def reconcile_steps(
    raw_steps: Iterable[RawStep],
    stops: Iterable[StopDescriptor],
    order_ids: Optional[Iterable[str]] = None,
) -> List[RideStep]:
    """Build the final step list for a ride.

    Args:
        raw_steps: Steps exactly as the optimizer returned them.
        stops:     Descriptors sent to the optimizer (authoritative data).
        order_ids: The ride's full order list.  Ids with no descriptor (order
                   record missing) get an error step too, so every order on
                   the ride is represented.  Defaults to the descriptor ids.

    Returns:
        One step per known order plus any unrecognised optimizer steps.
        Pure function: the same inputs always give the same output.
    """
    stops = list(stops)
    by_id: Dict[str, StopDescriptor] = {s.id: s for s in stops}

    matched: List[RideStep] = []
    unknown: List[RideStep] = []
    seen = set()

    for step in raw_steps:
        stop = by_id.get(step.order_id)
        if stop is None:
            logger.warning(
                "Optimizer returned unknown order id=%s; keeping step unenriched",
                step.order_id,
            )
            unknown.append(RideStep(**step.model_dump()))
            continue
        if step.order_id in seen:
            logger.warning("Optimizer returned order id=%s twice; keeping first", step.order_id)
            continue
        seen.add(step.order_id)
        matched.append(_enrich(step, stop))

    synthetic: List[RideStep] = []
    for stop in stops:
        if stop.id not in seen:
            logger.warning("Optimizer dropped order id=%s; adding error step", stop.id)
            synthetic.append(_synthetic(stop, MISSING_FROM_OPTIMIZER))
            seen.add(stop.id)

    unknown_ids = {s.order_id for s in unknown}
    for order_id in order_ids or ():
        if order_id not in seen and order_id not in unknown_ids:
            synthetic.append(RideStep(order_id=order_id, error=MISSING_ORDER_RECORD))
            seen.add(order_id)

    return matched + unknown + synthetic
