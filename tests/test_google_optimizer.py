"""tests/test_google_optimizer.py — In-process Distance Matrix + OR-Tools backend.

The Google API is mocked at build_distance_matrix; OR-Tools runs for real
with a one-second search limit.
"""
from unittest.mock import patch

import pytest
from googlemaps import exceptions as gm_exceptions

from ride_planner.models.order import LogisticsConfig
from ride_planner.optimizer.contract import (
    LogisticsTiming,
    OptimizationError,
    OptimizationRequest,
    StopDescriptor,
)
from ride_planner.optimizer.google_optimizer import UNRESOLVED_ADDRESS, GoogleRouteOptimizer

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

LOGISTICS = LogisticsTiming.from_config(LogisticsConfig(depot_address="Depot"))

STOPS = [
    StopDescriptor(id="s0", address="Far Street 1", is_paid=True, items_count=1),
    StopDescriptor(id="s1", address="Middle Street 2", is_paid=True, items_count=1),
    StopDescriptor(id="s2", address="Near Street 3", is_paid=True, items_count=0),
]

# depot → s2 (5 min) → s1 (10 min) → s0 (10 min) is the fastest open route
TIME_MATRIX = [
    [0,    3600, 1800,  300],
    [300,     0,  600, 3600],
    [1800,  600,    0,  600],
    [300,  3600,  600,    0],
]
DISTANCE_MATRIX = [
    [0,    40000, 20000, 3000],
    [3000,     0,  6000, 40000],
    [20000, 6000,     0, 6000],
    [3000, 40000,  6000,    0],
]


def _request(stops=STOPS, departure="08:00"):
    return OptimizationRequest(
        depot_address="Depot",
        stops=stops,
        departure_time=departure,
        logistics=LOGISTICS,
    )


def _matrices(unresolved=()):
    return {
        "time_matrix": TIME_MATRIX,
        "distance_matrix": DISTANCE_MATRIX,
        "unresolved": list(unresolved),
    }


@pytest.fixture(autouse=True)
def fast_solver(monkeypatch):
    from ride_planner.optimizer import vrp_solver

    monkeypatch.setattr(vrp_solver.settings, "MAX_OPTIMIZATION_SECONDS", 1)


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_optimize_returns_steps_in_solved_order():
    with patch(
        "ride_planner.optimizer.google_optimizer.build_distance_matrix",
        return_value=_matrices(),
    ) as mock_dm:
        steps = await GoogleRouteOptimizer(max_stops=10).optimize(_request())

    mock_dm.assert_called_once_with(["Depot", "Far Street 1", "Middle Street 2", "Near Street 3"])
    assert [s.order_id for s in steps] == ["s2", "s1", "s0"]
    assert all(s.error is None for s in steps)


@pytest.mark.asyncio
async def test_optimize_times_include_loading_and_service():
    with patch(
        "ride_planner.optimizer.google_optimizer.build_distance_matrix",
        return_value=_matrices(),
    ):
        steps = await GoogleRouteOptimizer(max_stops=10).optimize(_request())

    # 2 items × 30 s loading, then 5 min to s2 → 08:06
    assert steps[0].arrival_time == "08:06"
    # 7 min at s2 (paid), 10 min to s1 → 08:23
    assert steps[0].departure_time == "08:13"
    assert steps[1].arrival_time == "08:23"
    assert steps[0].distance_km == 3.0
    assert steps[1].distance_km == 6.0


@pytest.mark.asyncio
async def test_optimize_empty_request_skips_api():
    with patch("ride_planner.optimizer.google_optimizer.build_distance_matrix") as mock_dm:
        steps = await GoogleRouteOptimizer(max_stops=10).optimize(_request(stops=[]))

    assert steps == []
    mock_dm.assert_not_called()


# ---------------------------------------------------------------------------
# Unresolved addresses
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_unresolved_stop_gets_error_step():
    with patch(
        "ride_planner.optimizer.google_optimizer.build_distance_matrix",
        return_value=_matrices(unresolved=[1]),
    ):
        steps = await GoogleRouteOptimizer(max_stops=10).optimize(_request())

    assert [s.order_id for s in steps] == ["s2", "s1", "s0"]
    assert steps[-1].error == UNRESOLVED_ADDRESS
    assert steps[-1].arrival_time is None
    assert all(s.error is None for s in steps[:2])


@pytest.mark.asyncio
async def test_unresolved_depot_raises():
    with patch(
        "ride_planner.optimizer.google_optimizer.build_distance_matrix",
        return_value=_matrices(unresolved=[0]),
    ):
        with pytest.raises(OptimizationError, match="Depot"):
            await GoogleRouteOptimizer(max_stops=10).optimize(_request())


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_too_many_stops_raises():
    with pytest.raises(OptimizationError, match="exceed"):
        await GoogleRouteOptimizer(max_stops=2).optimize(_request())


@pytest.mark.asyncio
async def test_api_error_becomes_optimization_error():
    with patch(
        "ride_planner.optimizer.google_optimizer.build_distance_matrix",
        side_effect=gm_exceptions.ApiError("OVER_QUERY_LIMIT"),
    ):
        with pytest.raises(OptimizationError, match="Distance matrix"):
            await GoogleRouteOptimizer(max_stops=10).optimize(_request())


@pytest.mark.asyncio
async def test_solver_failure_becomes_optimization_error():
    with patch(
        "ride_planner.optimizer.google_optimizer.build_distance_matrix",
        return_value=_matrices(),
    ), patch(
        "ride_planner.optimizer.google_optimizer.solve_route",
        side_effect=ValueError("No route found for 3 stops."),
    ):
        with pytest.raises(OptimizationError, match="No route found"):
            await GoogleRouteOptimizer(max_stops=10).optimize(_request())
