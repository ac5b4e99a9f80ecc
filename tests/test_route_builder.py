from ride_planner.optimizer.contract import LogisticsTiming, StopDescriptor
from ride_planner.optimizer.route_builder import build_steps, loading_seconds

# ---------------------------------------------------------------------------
# Shared fixtures
# ---------------------------------------------------------------------------

LOGISTICS = LogisticsTiming(
    loading_seconds_per_item=30,
    stop_time_minutes=5,
    unloading_paid_seconds=120,
    unloading_unpaid_seconds=300,
)

STOP_A = StopDescriptor(id="1001", address="Vinohradská 12, 120 00 Praha", is_paid=True, items_count=4)
STOP_B = StopDescriptor(id="1002", address="Korunní 40, 120 00 Praha", is_paid=False, items_count=2)

# Ordered stops: depot → stop_A → stop_B
ORDERED_STOPS = [STOP_A, STOP_B]

# time_matrix (seconds): [depot, stop_A, stop_B]
# depot→stop_A = 1800 s (30 min)
# stop_A→stop_B = 1200 s (20 min)
TIME_MATRIX = [
    [0,    1800, 5400],
    [1800,    0, 1200],
    [5400, 1200,    0],
]

# distance_matrix (metres)
DISTANCE_MATRIX = [
    [0,     15000, 45000],
    [15000,     0, 10000],
    [45000, 10000,     0],
]


def _build(**kwargs):
    return build_steps(ORDERED_STOPS, TIME_MATRIX, DISTANCE_MATRIX, "09:00", LOGISTICS, **kwargs)


# ---------------------------------------------------------------------------
# Arrival & departure time calculations
# ---------------------------------------------------------------------------

def test_arrival_times_calculated_correctly():
    """stop_A arrives 09:30; leaves 09:37 (5 min + 2 min paid unloading);
    stop_B arrives 09:57."""
    steps = _build()
    assert steps[0].arrival_time == "09:30"
    assert steps[1].arrival_time == "09:57"


def test_departure_includes_stop_time_and_unloading():
    steps = _build()
    # paid: 300 s + 120 s = 7 min
    assert steps[0].departure_time == "09:37"
    # unpaid: 300 s + 300 s = 10 min
    assert steps[1].departure_time == "10:07"


def test_start_offset_delays_every_stop():
    steps = _build(start_offset_seconds=180)
    assert steps[0].arrival_time == "09:33"
    assert steps[1].arrival_time == "10:00"


# ---------------------------------------------------------------------------
# Distances and identity
# ---------------------------------------------------------------------------

def test_leg_distances_in_km():
    steps = _build()
    assert steps[0].distance_km == 15.0
    assert steps[1].distance_km == 10.0


def test_steps_carry_order_ids_and_addresses():
    steps = _build()
    assert [s.order_id for s in steps] == ["1001", "1002"]
    assert steps[1].address == STOP_B.address
    assert all(s.type == "delivery" for s in steps)
    assert all(s.error is None for s in steps)


def test_empty_route_returns_no_steps():
    assert build_steps([], [[0]], [[0]], "09:00", LOGISTICS) == []


# ---------------------------------------------------------------------------
# loading_seconds
# ---------------------------------------------------------------------------

def test_loading_seconds_counts_all_items():
    # (4 + 2) items × 30 s
    assert loading_seconds(ORDERED_STOPS, LOGISTICS) == 180


def test_loading_seconds_no_items():
    assert loading_seconds([StopDescriptor(id="x", address="A")], LOGISTICS) == 0
