import logging
from typing import List, Optional

from ortools.constraint_solver import pywrapcp, routing_enums_pb2

from ride_planner.config import settings

logger = logging.getLogger(__name__)


def solve_route(
    time_matrix: List[List[int]],
    service_seconds: List[int],
    time_limit_seconds: Optional[int] = None,
) -> List[int]:
    """Find the fastest visiting order for a single-vehicle delivery run.

    The vehicle starts at the depot and does not return: the route is open,
    so arcs back to the depot cost nothing.

    Args:
        time_matrix:     (n+1) × (n+1) travel-time matrix in **seconds**.
                         Index 0 = depot; indices 1..n = stops in input order.
        service_seconds: Time spent at each stop in **seconds** (length n),
                         indexed to match the stops.
        time_limit_seconds: Search time limit; defaults to
                            ``MAX_OPTIMIZATION_SECONDS``.

    Returns:
        Ordered list of 0-based stop indices (depot excluded).

    Raises:
        ValueError: If the solver finds no route.
    """
    n_nodes = len(time_matrix)
    if n_nodes <= 1:
        return []
    if n_nodes == 2:
        return [0]

    if time_limit_seconds is None:
        time_limit_seconds = settings.MAX_OPTIMIZATION_SECONDS

    manager = pywrapcp.RoutingIndexManager(n_nodes, 1, 0)
    routing = pywrapcp.RoutingModel(manager)

    # ------------------------------------------------------------------
    # Transit callback: travel time + service time at origin node (seconds)
    # ------------------------------------------------------------------
    def transit_callback(from_index: int, to_index: int) -> int:
        from_node = manager.IndexToNode(from_index)
        to_node = manager.IndexToNode(to_index)
        if to_node == 0:
            return 0  # open route: no return leg
        travel = time_matrix[from_node][to_node]
        service = service_seconds[from_node - 1] if from_node > 0 else 0
        return travel + service

    transit_idx = routing.RegisterTransitCallback(transit_callback)
    routing.SetArcCostEvaluatorOfAllVehicles(transit_idx)

    # ------------------------------------------------------------------
    # Search parameters
    # ------------------------------------------------------------------
    search_params = pywrapcp.DefaultRoutingSearchParameters()
    search_params.first_solution_strategy = (
        routing_enums_pb2.FirstSolutionStrategy.PATH_CHEAPEST_ARC
    )
    search_params.local_search_metaheuristic = (
        routing_enums_pb2.LocalSearchMetaheuristic.GUIDED_LOCAL_SEARCH
    )
    search_params.time_limit.seconds = time_limit_seconds

    logger.info(
        "Route solve: %d stops, time_limit=%ds",
        n_nodes - 1,
        time_limit_seconds,
    )

    solution = routing.SolveWithParameters(search_params)

    if not solution:
        raise ValueError(f"No route found for {n_nodes - 1} stops.")

    route: List[int] = []
    index = routing.Start(0)
    while not routing.IsEnd(index):
        node = manager.IndexToNode(index)
        if node != 0:  # skip depot
            route.append(node - 1)
        index = solution.Value(routing.NextVar(index))

    logger.info("Route solution: %s (objective=%d)", route, solution.ObjectiveValue())
    return route
