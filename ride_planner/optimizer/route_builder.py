import logging
from typing import List

from ride_planner.optimizer.contract import LogisticsTiming, RawStep, StopDescriptor
from ride_planner.utils.time_utils import seconds_to_time_str, time_str_to_minutes

logger = logging.getLogger(__name__)


def loading_seconds(stops: List[StopDescriptor], logistics: LogisticsTiming) -> int:
    """Time needed to load every item of the ride at the depot before leaving."""
    return sum(s.items_count for s in stops) * logistics.loading_seconds_per_item


def build_steps(
    ordered_stops: List[StopDescriptor],
    time_matrix: List[List[int]],
    distance_matrix: List[List[int]],
    departure_time: str,
    logistics: LogisticsTiming,
    start_offset_seconds: int = 0,
) -> List[RawStep]:
    """Assemble per-stop arrival/departure times and leg distances.

    The caller is responsible for pre-ordering `ordered_stops` and for
    providing matrices whose indices are aligned to that order:
        index 0  → depot
        index 1  → ordered_stops[0]
        index 2  → ordered_stops[1]
        ...

    Args:
        ordered_stops:        Stops in the optimised visit sequence.
        time_matrix:          Travel times in **seconds** (index-aligned as above).
        distance_matrix:      Distances in **metres** (index-aligned as above).
        departure_time:       Scheduled departure from the depot, 'HH:MM'.
        logistics:            Per-stop service timing parameters.
        start_offset_seconds: Delay before the vehicle leaves (depot loading).

    Returns:
        One RawStep per stop with `distance_km` measured from the previous stop.
    """
    current = time_str_to_minutes(departure_time) * 60 + start_offset_seconds
    prev_node = 0  # depot = matrix index 0
    steps: List[RawStep] = []

    for seq, stop in enumerate(ordered_stops):
        curr_node = seq + 1

        arrival = current + time_matrix[prev_node][curr_node]
        departure = arrival + logistics.service_seconds(stop.is_paid)
        leg_km = round(distance_matrix[prev_node][curr_node] / 1000, 1)

        steps.append(
            RawStep(
                order_id=stop.id,
                address=stop.address,
                arrival_time=seconds_to_time_str(arrival),
                departure_time=seconds_to_time_str(departure),
                distance_km=leg_km,
            )
        )

        logger.debug(
            "Stop %d (%s): arrive=%s depart=%s leg=%.1f km",
            seq + 1,
            stop.id,
            seconds_to_time_str(arrival),
            seconds_to_time_str(departure),
            leg_km,
        )

        current = departure
        prev_node = curr_node

    logger.info(
        "Route built: %d stops, %.1f km, ends %s",
        len(steps),
        sum(s.distance_km for s in steps),
        seconds_to_time_str(current),
    )
    return steps
