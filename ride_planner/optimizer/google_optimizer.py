"""ride_planner/optimizer/google_optimizer.py — In-process optimizer backend.

Implements the optimization-service contract with the Google Distance Matrix
API and OR-Tools instead of a remote service:

    1. Build the address list: index 0 = depot, 1..n = stops.
    2. Fetch the driving time/distance matrices (Redis-cached).
    3. Split off stops whose address Google could not resolve.
    4. Solve the open-route visiting order for the remaining stops.
    5. Build per-stop times, starting after all items are loaded at the depot.
    6. Append an error step for every unresolved stop.

Blocking work (HTTP + solver) runs in a worker thread so the scheduler's
event loop stays responsive.
"""
import asyncio
import logging
from typing import List, Optional

from googlemaps import exceptions as gm_exceptions

from ride_planner.config import settings
from ride_planner.optimizer.contract import (
    OptimizationError,
    OptimizationRequest,
    RawStep,
    RouteOptimizationClient,
)
from ride_planner.optimizer.distance_matrix import build_distance_matrix
from ride_planner.optimizer.route_builder import build_steps, loading_seconds
from ride_planner.optimizer.vrp_solver import solve_route

logger = logging.getLogger(__name__)

UNRESOLVED_ADDRESS = "Address could not be resolved"


class GoogleRouteOptimizer(RouteOptimizationClient):
    def __init__(self, max_stops: Optional[int] = None) -> None:
        self.max_stops = max_stops if max_stops is not None else settings.MAX_STOPS_PER_ROUTE

    async def optimize(self, request: OptimizationRequest) -> List[RawStep]:
        if not request.stops:
            return []
        if len(request.stops) > self.max_stops:
            raise OptimizationError(
                f"{len(request.stops)} stops exceed the limit of {self.max_stops} per route"
            )
        return await asyncio.to_thread(self.optimize_sync, request)

    def optimize_sync(self, request: OptimizationRequest) -> List[RawStep]:
        stops = request.stops
        addresses = [request.depot_address] + [s.address for s in stops]

        try:
            matrices = build_distance_matrix(addresses)
        except (gm_exceptions.ApiError, gm_exceptions.TransportError, gm_exceptions.Timeout, ValueError) as exc:
            raise OptimizationError(f"Distance matrix request failed: {exc}") from exc

        time_matrix = matrices["time_matrix"]
        distance_matrix = matrices["distance_matrix"]
        unresolved = set(matrices["unresolved"])

        if 0 in unresolved:
            raise OptimizationError("Depot address could not be resolved")

        routable = [i for i in range(len(stops)) if i + 1 not in unresolved]
        if unresolved:
            logger.warning(
                "Unresolved stop addresses: orders=%s",
                [stops[k - 1].id for k in sorted(unresolved)],
            )

        # Solve on the routable sub-problem only
        sub_nodes = [0] + [i + 1 for i in routable]
        sub_time = [[time_matrix[r][c] for c in sub_nodes] for r in sub_nodes]
        service = [request.logistics.service_seconds(stops[i].is_paid) for i in routable]

        try:
            order = solve_route(sub_time, service)
        except ValueError as exc:
            raise OptimizationError(str(exc)) from exc

        ordered_stops = [stops[routable[k]] for k in order]
        node_order = [0] + [routable[k] + 1 for k in order]
        size = len(node_order)

        reordered_time = [
            [time_matrix[node_order[r]][node_order[c]] for c in range(size)]
            for r in range(size)
        ]
        reordered_dist = [
            [distance_matrix[node_order[r]][node_order[c]] for c in range(size)]
            for r in range(size)
        ]

        steps = build_steps(
            ordered_stops,
            reordered_time,
            reordered_dist,
            request.departure_time,
            request.logistics,
            start_offset_seconds=loading_seconds(stops, request.logistics),
        )
        steps += [
            RawStep(order_id=stops[k - 1].id, address=stops[k - 1].address, error=UNRESOLVED_ADDRESS)
            for k in sorted(unresolved)
        ]
        return steps
