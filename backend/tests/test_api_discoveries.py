import asyncio
import time

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from api.main import app
from api.routes import discoveries as discoveries_router
from conftest import ROUTE_COORDS, FakeResolver, make_place
from db import init_db
from services.discovery import DiscoveryOrchestrator
from services.discovery_cache_sqlite import DiscoveryCache
from services.discovery_store import DiscoveryStore

HEADERS = {"X-User-Id": "walker-1"}


@pytest.fixture
def resolver():
    return FakeResolver(
        places=[
            make_place("P1", ["restaurant", "point_of_interest"], name="Lou Mitchell's"),
            make_place("P2", ["bar"], name="Green Mill"),
        ]
    )


@pytest.fixture
def client(store, resolver):
    orchestrator = DiscoveryOrchestrator(store, resolver=resolver, radius_m=100.0, max_samples=12)
    app.dependency_overrides[discoveries_router.get_store] = lambda: store
    app.dependency_overrides[discoveries_router.get_orchestrator] = lambda: orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()


def _discover(client, route_id="route-1", type_filters=None, headers=HEADERS):
    return client.post(
        f"/routes/{route_id}/discover",
        json={"coords": ROUTE_COORDS, "type_filters": type_filters or ["restaurant"]},
        headers=headers,
    )


def _discovery_id(client, route_id="route-1", place_id="P1"):
    rows = client.get(f"/routes/{route_id}/discoveries", headers=HEADERS).json()
    return next(r["id"] for r in rows if r["place_id"] == place_id)


def test_discover_returns_filtered_places_once(client, resolver):
    first = _discover(client)
    assert first.status_code == 200
    body = first.json()
    assert body["resolver_called"] is True
    assert [p["place_id"] for p in body["places"]] == ["P1"]

    calls = len(resolver.calls)
    second = _discover(client).json()
    assert second["resolver_called"] is False
    assert [p["place_id"] for p in second["places"]] == ["P1"]
    assert len(resolver.calls) == calls


def test_user_header_is_required(client):
    assert _discover(client, headers={}).status_code == 422


def test_dismiss_needs_a_choice_under_ask_policy(client):
    _discover(client)
    discovery_id = _discovery_id(client)

    resp = client.post(f"/discoveries/{discovery_id}/dismiss", headers=HEADERS)
    assert resp.status_code == 428

    resp = client.post(
        f"/discoveries/{discovery_id}/dismiss",
        headers={**HEADERS, "X-Dismissal-Policy": "always_forever"},
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "dismissed_forever"


def test_save_undo_and_invalid_transition(client):
    _discover(client)
    discovery_id = _discovery_id(client)

    saved = client.post(f"/discoveries/{discovery_id}/save", headers=HEADERS)
    assert saved.status_code == 200
    assert saved.json()["status"] == "saved"
    assert saved.json()["category"] == "restaurant"

    conflict = client.post(
        f"/discoveries/{discovery_id}/dismiss", json={"duration": "thirty_days"}, headers=HEADERS
    )
    assert conflict.status_code == 409

    undone = client.post(f"/discoveries/{discovery_id}/undo", headers=HEADERS)
    assert undone.json()["status"] == "unreviewed"

    dismissed = client.post(
        f"/discoveries/{discovery_id}/dismiss", json={"duration": "thirty_days"}, headers=HEADERS
    )
    assert dismissed.json()["status"] == "dismissed_temporary"
    assert dismissed.json()["dismiss_expires_at"] is not None


def test_unknown_discovery_is_404(client):
    assert client.post("/discoveries/nope/save", headers=HEADERS).status_code == 404
    other_user = {"X-User-Id": "walker-2"}
    _discover(client)
    discovery_id = _discovery_id(client)
    assert client.post(f"/discoveries/{discovery_id}/save", headers=other_user).status_code == 404


def test_progress_and_stats(client):
    _discover(client, type_filters=["food_drink"])
    discovery_id = _discovery_id(client)
    client.post(f"/discoveries/{discovery_id}/save", headers=HEADERS)

    progress = client.get("/routes/route-1/progress", headers=HEADERS).json()
    assert progress["total"] == 2
    assert progress["reviewed"] == 1
    assert progress["completion_percentage"] == 50
    assert progress["completed"] is False

    stats = client.get("/discoveries/stats", headers=HEADERS).json()
    assert stats == {"total": 2, "saved": 1, "dismissed": 0, "pending": 1}

    saved = client.get("/discoveries", params={"status": "saved"}, headers=HEADERS).json()
    assert [r["place_id"] for r in saved] == ["P1"]
    assert client.get("/discoveries", params={"status": "bogus"}, headers=HEADERS).status_code == 400


def test_save_place_directly(client):
    place = make_place("P7", ["museum"]).to_dict()
    resp = client.post("/routes/route-9/saved-places", json=place, headers=HEADERS)
    assert resp.status_code == 200
    assert resp.json()["status"] == "saved"

    no_location = make_place("P8", ["museum"], lat=None).to_dict()
    resp = client.post("/routes/route-9/saved-places", json=no_location, headers=HEADERS)
    assert resp.status_code == 422


def test_summary_request_and_attach(client):
    _discover(client)
    discovery_id = _discovery_id(client)

    requested = client.post(f"/discoveries/{discovery_id}/summary-request", headers=HEADERS)
    assert requested.json()["summary_requested_at"] is not None

    attached = client.put(
        f"/discoveries/{discovery_id}/summary",
        json={"payload": {"text": "Classic diner since 1923."}},
        headers=HEADERS,
    )
    assert attached.status_code == 200
    assert attached.json()["summary"] == {"text": "Classic diner since 1923."}


def test_min_rating_header_filters_rated_places(store):
    rated = make_place("R1", ["restaurant"], name="Alinea")
    rated.rating = 3.2
    resolver = FakeResolver(places=[rated, make_place("P1", ["restaurant"])])
    orchestrator = DiscoveryOrchestrator(store, resolver=resolver, radius_m=100.0, max_samples=12)
    app.dependency_overrides[discoveries_router.get_store] = lambda: store
    app.dependency_overrides[discoveries_router.get_orchestrator] = lambda: orchestrator
    try:
        client = TestClient(app)
        resp = _discover(client, headers={**HEADERS, "X-Min-Rating": "4"})
        assert [p["place_id"] for p in resp.json()["places"]] == ["P1"]
        assert _discover(client, route_id="route-2", headers={**HEADERS, "X-Min-Rating": "9"}).status_code == 422
    finally:
        app.dependency_overrides.clear()


def test_ping_places_are_consolidated_into_the_route(client, resolver):
    pings = [
        make_place("P1", ["restaurant"]).to_dict(),
        make_place("P1", ["restaurant", "food"]).to_dict(),
        make_place("N1", ["cafe"], lat=None).to_dict(),
    ]
    resp = client.post("/routes/route-1/pings", json={"places": pings}, headers=HEADERS)

    assert resp.status_code == 200
    body = resp.json()
    assert [p["place_id"] for p in body["places"]] == ["P1"]
    assert body["places"][0]["types"] == ["restaurant", "food"]
    assert body["rejected_place_ids"] == ["N1"]
    assert body["resolver_called"] is False

    # the route itself has still to be looked up
    assert _discover(client).json()["resolver_called"] is True
    rows = client.get("/routes/route-1/discoveries", headers=HEADERS).json()
    assert [r["place_id"] for r in rows] == ["P1"]

    bad = client.post("/routes/route-1/pings", json={"places": [{"name": "no id"}]}, headers=HEADERS)
    assert bad.status_code == 422


class SlowResolver(FakeResolver):
    def resolve_nearby(self, point, *args, **kwargs):
        time.sleep(0.5)
        return super().resolve_nearby(point, *args, **kwargs)


def test_routes_are_discovered_concurrently(tmp_path):
    # file-backed remote store so each worker thread gets its own connection
    engine = create_engine(
        f"sqlite:///{tmp_path / 'remote.sqlite'}",
        connect_args={"check_same_thread": False},
    )
    init_db(bind=engine)
    store = DiscoveryStore(
        session_factory=sessionmaker(bind=engine, autoflush=False, autocommit=False),
        cache=DiscoveryCache(str(tmp_path / "cache.sqlite")),
    )
    resolver = SlowResolver(places=[make_place("P1", ["restaurant"])])
    orchestrator = DiscoveryOrchestrator(store, resolver=resolver, radius_m=100.0, max_samples=12)
    app.dependency_overrides[discoveries_router.get_store] = lambda: store
    app.dependency_overrides[discoveries_router.get_orchestrator] = lambda: orchestrator

    async def discover_both():
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            return await asyncio.gather(*[
                client.post(
                    f"/routes/{route_id}/discover",
                    json={"coords": ROUTE_COORDS[:1], "type_filters": ["restaurant"]},
                    headers=HEADERS,
                )
                for route_id in ("route-a", "route-b")
            ])

    try:
        started = time.monotonic()
        responses = asyncio.run(discover_both())
        elapsed = time.monotonic() - started
    finally:
        app.dependency_overrides.clear()

    assert [r.status_code for r in responses] == [200, 200]
    assert all(r.json()["resolver_called"] for r in responses)
    assert len(resolver.calls) == 2
    # two half-second lookups overlap instead of queueing behind each other
    assert elapsed < 0.9
