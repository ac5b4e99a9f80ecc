"""
tests/test_e2e.py — End-to-end flow: operator API → scheduler → computed ride.

The only mock is build_distance_matrix (no real Google API key is needed);
the dispatch service, Redis stores (fakeredis), scheduler, OR-Tools solver,
route builder and reconciliation all run for real.

Scenario
--------
Stops are placed along a 1-D corridor.  Travel times are proportional to the
difference in position, so the optimal open route visits them in ascending
position order, which is *different* from the assignment order:

  Position (min from depot):  depot=0, s0=100, s1=30, s2=5, s3=110, s4=10

  Assignment order : s0→s1→s2→s3→s4
  Optimal order    : s2→s4→s1→s0→s3
"""
import asyncio
import datetime
from unittest.mock import MagicMock, patch

import fakeredis
import pytest
from fastapi.testclient import TestClient

from ride_planner.api.deps import get_dispatch_service
from ride_planner.dispatch.service import DispatchService
from ride_planner.main import app
from ride_planner.models.order import LogisticsConfig, Order, OrderItem
from ride_planner.optimizer.google_optimizer import GoogleRouteOptimizer
from ride_planner.state.logistics_store import LogisticsStore
from ride_planner.state.order_store import OrderStore
from ride_planner.state.ride_store import RideStore
from ride_planner.workers.scheduler import RideScheduler

client = TestClient(app)

# ---------------------------------------------------------------------------
# Corridor scenario
# ---------------------------------------------------------------------------

POSITIONS = {
    "Depot 1": 0,
    "Corridor 100": 100,
    "Corridor 30": 30,
    "Corridor 5": 5,
    "Corridor 110": 110,
    "Corridor 10": 10,
    "Corridor 120": 120,
}

ORDER_STREETS = {
    "s0": "Corridor 100",
    "s1": "Corridor 30",
    "s2": "Corridor 5",
    "s3": "Corridor 110",
    "s4": "Corridor 10",
}


def _corridor_matrix(addresses):
    """Travel time = |Δposition| minutes; distance = |Δposition| km."""
    pos = [POSITIONS[a.split(",")[0]] for a in addresses]
    n = len(pos)
    return {
        "time_matrix": [[abs(pos[i] - pos[j]) * 60 for j in range(n)] for i in range(n)],
        "distance_matrix": [[abs(pos[i] - pos[j]) * 1000 for j in range(n)] for i in range(n)],
        "unresolved": [],
    }


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def fake_redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def service(fake_redis_client):
    svc = DispatchService(
        ride_store=RideStore(fake_redis_client),
        order_store=OrderStore(fake_redis_client),
        logistics_store=LogisticsStore(fake_redis_client),
        enqueue_recompute=MagicMock(),
    )
    svc.update_logistics(LogisticsConfig(depot_address="Depot 1, Praha"))
    for order_id, street in ORDER_STREETS.items():
        svc.orders.save(
            Order(
                id=order_id,
                customer_name=f"Customer {order_id}",
                delivery_street=street,
                delivery_city="Praha",
                items=[OrderItem(name="Catering box", quantity=1)],
            )
        )
    app.dependency_overrides[get_dispatch_service] = lambda: svc
    yield svc
    app.dependency_overrides.clear()


@pytest.fixture
def scheduler(service, monkeypatch):
    from ride_planner.optimizer import vrp_solver

    monkeypatch.setattr(vrp_solver.settings, "MAX_OPTIMIZATION_SECONDS", 1)
    return RideScheduler(
        ride_store=service.rides,
        order_store=service.orders,
        logistics_store=service.logistics,
        client=GoogleRouteOptimizer(max_stops=25),
        timeout_seconds=30.0,
    )


def _run_pass(scheduler):
    with patch(
        "ride_planner.optimizer.google_optimizer.build_distance_matrix",
        side_effect=_corridor_matrix,
    ):
        return asyncio.run(scheduler.run_pass())


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

def test_assigned_ride_is_optimized_by_next_pass(service, scheduler):
    resp = client.post(
        "/api/v1/rides/assign",
        json={
            "date": "2030-06-15",
            "driver_id": "driver-1",
            "order_ids": ["s0", "s1", "s2", "s3", "s4"],
            "departure_time": "09:00",
        },
    )
    assert resp.status_code == 200
    ride_id = resp.json()["id"]
    assert resp.json()["pending"] is True

    result = _run_pass(scheduler)
    assert result.processed == [ride_id]

    ride = client.get(f"/api/v1/rides/{ride_id}").json()
    assert ride["pending"] is False
    assert [s["order_id"] for s in ride["steps"]] == ["s2", "s4", "s1", "s0", "s3"]
    assert all(s["error"] is None for s in ride["steps"])
    assert ride["steps"][0]["customer_name"] == "Customer s2"


def test_step_times_follow_logistics(service, scheduler):
    ride = service.assign_orders(datetime.date(2030, 6, 15), "driver-1", ["s2", "s4"], departure_time="09:00")
    _run_pass(scheduler)

    steps = service.get_ride(ride.id).steps
    # 2 items × 30 s loading + 5 min drive
    assert steps[0].arrival_time == "09:06"
    # 5 min stop + 5 min unpaid unloading
    assert steps[0].departure_time == "09:16"
    # +5 min to the next stop
    assert steps[1].arrival_time == "09:21"
    assert steps[0].distance_km == 5.0


def test_address_edit_triggers_recomputation(service, scheduler):
    ride = service.assign_orders(
        datetime.date(2030, 6, 15), "driver-1", ["s0", "s1", "s2", "s3", "s4"], departure_time="09:00"
    )
    _run_pass(scheduler)
    assert service.get_ride(ride.id).steps

    resp = client.patch("/api/v1/orders/s0", json={"delivery_street": "Corridor 120"})
    assert resp.status_code == 200

    # Steps are cleared synchronously with the edit
    assert client.get(f"/api/v1/rides/{ride.id}").json()["steps"] == []

    result = _run_pass(scheduler)
    assert result.processed == [ride.id]
    steps = service.get_ride(ride.id).steps
    assert [s.order_id for s in steps] == ["s2", "s4", "s1", "s3", "s0"]


def test_completed_ride_survives_scheduler_and_edits(service, scheduler):
    ride = service.assign_orders(datetime.date(2030, 6, 15), "driver-1", ["s2", "s4"])
    _run_pass(scheduler)
    assert client.post(f"/api/v1/rides/{ride.id}/status", json={"status": "completed"}).status_code == 200
    before = service.get_ride(ride.id)

    client.patch("/api/v1/orders/s2", json={"delivery_street": "Corridor 120"})
    assert client.post(f"/api/v1/rides/{ride.id}/recompute").status_code == 409
    result = _run_pass(scheduler)

    assert result.discovered == 0
    assert service.get_ride(ride.id) == before
