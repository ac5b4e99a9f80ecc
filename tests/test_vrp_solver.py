from ride_planner.optimizer.vrp_solver import solve_route


# ---------------------------------------------------------------------------
# 3-stop problem with a known optimal order
#
# time_matrix (seconds): index 0 = depot, 1 = stop0, 2 = stop1, 3 = stop2
#
# Key legs (minutes):
#   depot → stop2 = 5 min   ← go here first (closest)
#   stop2 → stop1 = 10 min
#   stop1 → stop0 = 10 min
#
# The route is open (no return to the depot), so [2, 1, 0] costs
# 5 + 10 + 10 = 25 min of driving; every other order needs a 30- or
# 60-min leg somewhere.
# ---------------------------------------------------------------------------

TIME_MATRIX_3 = [
    [0,    3600, 1800,  300],  # depot:  60→s0, 30→s1,  5→s2
    [300,     0,  600, 3600],  # stop0:  10→s1, 60→s2
    [1800,  600,    0,  600],  # stop1:  10→s0, 10→s2
    [300,  3600,  600,    0],  # stop2:  60→s0, 10→s1
]

SERVICE = [300, 300, 300]


def test_three_stop_known_optimal_order():
    assert solve_route(TIME_MATRIX_3, SERVICE, time_limit_seconds=1) == [2, 1, 0]


def test_result_is_permutation_of_all_stops():
    result = solve_route(TIME_MATRIX_3, SERVICE, time_limit_seconds=1)
    assert sorted(result) == [0, 1, 2]


def test_returns_different_order_than_input():
    """The solver reorders stops rather than echoing input order."""
    result = solve_route(TIME_MATRIX_3, SERVICE, time_limit_seconds=1)
    assert result != [0, 1, 2]


# ---------------------------------------------------------------------------
# Open route: the return leg to the depot is free
#
# stop0 is far from the depot but close to stop1; a closed tour would
# start at stop0 to come back cheaply, an open route ends there instead.
# ---------------------------------------------------------------------------

def test_open_route_ignores_return_leg():
    time_matrix = [
        [0,    3000,  300],  # depot: 50→s0, 5→s1
        [60,      0,  600],  # stop0: 1 min back to depot, 10→s1
        [3000,  600,    0],  # stop1: 50 min back to depot, 10→s0
    ]
    assert solve_route(time_matrix, [60, 60], time_limit_seconds=1) == [1, 0]


# ---------------------------------------------------------------------------
# Edge cases
# ---------------------------------------------------------------------------

def test_no_stops_returns_empty_route():
    assert solve_route([[0]], [], time_limit_seconds=1) == []


def test_single_stop_skips_solver():
    assert solve_route([[0, 120], [120, 0]], [300], time_limit_seconds=1) == [0]


def test_default_time_limit_from_settings(monkeypatch):
    from ride_planner.optimizer import vrp_solver

    monkeypatch.setattr(vrp_solver.settings, "MAX_OPTIMIZATION_SECONDS", 1)
    result = solve_route(TIME_MATRIX_3, SERVICE)
    assert result == [2, 1, 0]
