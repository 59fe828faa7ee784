import pytest
from fastapi.testclient import TestClient

from cma_engine.data.inventory_client import InMemoryInventory
from cma_engine.main import create_app
from cma_engine.routers.deps import service_dep

OWNER = {"X-Owner-Id": "agent-1"}


@pytest.fixture
def service(build_service, make_listing):
    repo = InMemoryInventory([
        make_listing(500_000, listing_id="A"),
        make_listing(480_000, listing_id="B"),
        make_listing(515_000, listing_id="C"),
    ])
    svc = build_service(repo)
    repo.subscribe(svc.invalidate)
    return svc


@pytest.fixture
def client(service):
    app = create_app()
    app.dependency_overrides[service_dep] = lambda: service
    with TestClient(app) as c:
        yield c


class TestMeta:
    def test_health(self, client):
        r = client.get("/v1/health")
        assert r.status_code == 200
        assert r.json() == {"status": "ok"}
        assert r.headers["X-Request-Id"]

    def test_request_id_is_propagated(self, client):
        r = client.get("/v1/ping", headers={"X-Request-Id": "abc-123"})
        assert r.headers["X-Request-Id"] == "abc-123"


class TestComparables:
    def test_post_comparables(self, client, subject_params):
        r = client.post("/v1/comparables", json=subject_params)
        assert r.status_code == 200
        body = r.json()
        assert body["summary"]["comparables_used"] == 3
        assert body["cached"] is False
        assert r.headers["ETag"] == body["etag"]

    def test_second_call_is_cached_and_etag_stable(self, client, subject_params):
        first = client.post("/v1/comparables", json=subject_params)
        second = client.post("/v1/comparables", json=dict(reversed(list(subject_params.items()))))
        assert second.json()["cached"] is True
        assert second.headers["ETag"] == first.headers["ETag"]
        third = client.post("/v1/comparables", json=subject_params, headers={"If-None-Match": first.headers["ETag"]})
        assert third.status_code == 304

    def test_invalid_coordinates(self, client, subject_params):
        r = client.post("/v1/comparables", json={**subject_params, "lat": "north"})
        assert r.status_code == 422
        assert r.json() == {"error": "invalid_input", "field": "lat", "reason": "must be a number"}

    def test_inventory_event_purges_cache(self, client, subject_params):
        client.post("/v1/comparables", json=subject_params)
        r = client.post("/v1/inventory/events", json={"event": "listing_updated", "listing_ids": ["A"]})
        assert r.status_code == 200
        assert r.json()["purged"] == 1
        assert client.post("/v1/comparables", json=subject_params).json()["cached"] is False

    def test_market_context(self, client):
        r = client.get("/v1/market-context", params={"city": "Boston", "state": "MA"})
        assert r.status_code == 200
        assert r.json()["classification"] in ("hot", "balanced", "cold", "unknown")


class TestSessions:
    def _create(self, client, subject_params, **extra):
        body = {"name": "Main St", "params": subject_params, **extra}
        r = client.post("/v1/cma/sessions", json=body, headers=OWNER)
        assert r.status_code == 201
        return r.json()["session"]

    def test_lifecycle(self, client, subject_params):
        s = self._create(client, subject_params, is_standalone=True)
        assert client.get(f"/v1/cma/sessions/{s['id']}").json()["name"] == "Main St"
        assert client.get(f"/v1/cma/shared/{s['share_slug']}").status_code == 200

        listing = client.get("/v1/cma/sessions", headers=OWNER).json()
        assert listing["total"] == 1

        r = client.patch(f"/v1/cma/sessions/{s['id']}", json={"name": "Renamed"}, headers=OWNER)
        assert r.json()["name"] == "Renamed"
        assert client.post(f"/v1/cma/sessions/{s['id']}/favorite", headers=OWNER).json()["is_favorite"] is True

        assert client.delete(f"/v1/cma/sessions/{s['id']}", headers=OWNER).status_code == 204
        assert client.get(f"/v1/cma/sessions/{s['id']}").status_code == 404

    def test_foreign_owner_is_forbidden(self, client, subject_params):
        s = self._create(client, subject_params)
        r = client.patch(f"/v1/cma/sessions/{s['id']}", json={"name": "x"}, headers={"X-Owner-Id": "someone"})
        assert r.status_code == 403

    def test_listing_requires_owner(self, client):
        assert client.get("/v1/cma/sessions").status_code == 401

    def test_rerun(self, client, subject_params):
        s = self._create(client, subject_params)
        r = client.post(f"/v1/cma/sessions/{s['id']}/rerun", json={"filters": {"radius": 1}}, headers=OWNER)
        assert r.status_code == 201
        assert r.json()["session"]["id"] != s["id"]


class TestHistoryAndFinance:
    def test_history_after_valuation(self, client, subject_params):
        client.post("/v1/comparables", json=subject_params)
        r = client.get(f"/v1/cma/history/{subject_params['listing_id']}")
        assert r.status_code == 200
        assert r.json()["statistics"]["total_valuations"] == 1
        trend = client.get(f"/v1/cma/history/{subject_params['listing_id']}/trend", params={"months": 6}).json()
        assert trend["trend_direction"] == "flat"

    def test_trend_months_are_bounded(self, client):
        assert client.get("/v1/cma/history/X/trend", params={"months": 1}).status_code == 422

    def test_mortgage(self, client):
        r = client.post("/v1/finance/mortgage", json={"price": 500000, "down_payment_pct": 20, "annual_rate_pct": 6})
        assert r.status_code == 200
        body = r.json()
        assert body["loan_amount"] == 400000.0
        assert body["principal_and_interest"] == 2398.2
        assert body["pmi"] == 0.0
