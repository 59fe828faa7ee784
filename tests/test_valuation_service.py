"""
End-to-end engine runs against in-memory collaborators.
"""

import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from conftest import SUBJECT_LAT, CountingInventory, SlowInventory
from cma_engine.core.errors import InvalidInput, PersistenceFailure, UpstreamTimeout
from cma_engine.data.base import ListingStatus
from cma_engine.data.inventory_client import InMemoryInventory
from cma_engine.engine.geo import haversine_miles
from cma_engine.services.valuation_service import WARN_HISTORY, WARN_MARKET, split_params


def run(service, params, **kwargs):
    return asyncio.run(service.run(params, **kwargs))


@pytest.fixture
def neighbourhood(make_listing):
    return [
        make_listing(500_000, listing_id="EXACT"),
        make_listing(430_000, listing_id="LOW-EDGE"),
        make_listing(400_000, listing_id="OUTSIDE"),
        make_listing(560_000, listing_id="HIGH", sqft=2150),
        make_listing(520_000, listing_id="PENDING", status=ListingStatus.PENDING),
        make_listing(510_000, listing_id="FAR", lat=SUBJECT_LAT + 0.3),
    ]


class TestRun:
    def test_price_band_scenario(self, build_service, neighbourhood, subject_params):
        svc = build_service(InMemoryInventory(neighbourhood))
        out = run(svc, subject_params)
        by_id = {c["listing_id"]: c for c in out["comparables"]}
        assert set(by_id) == {"EXACT", "LOW-EDGE", "OUTSIDE", "HIGH"}
        assert by_id["EXACT"]["similarities"]["price"] == 1.0
        assert by_id["LOW-EDGE"]["similarities"]["price"] > 0
        assert by_id["OUTSIDE"]["similarities"]["price"] == 0.0
        assert out["cached"] is False
        assert out["filters_applied"]["price_range_pct"] == 15

    def test_invariants_on_results(self, build_service, neighbourhood, subject_params):
        svc = build_service(InMemoryInventory(neighbourhood))
        out = run(svc, {**subject_params, "radius": 2, "statuses": "Closed,Pending"})
        for comp in out["comparables"]:
            assert comp["status"] in ("Closed", "Pending")
            assert haversine_miles(subject_params["lat"], subject_params["lng"], comp["lat"], comp["lng"]) <= 2
        s = out["summary"]
        assert s["low"] <= s["weighted_mid"] <= s["high"]

    def test_comparables_carry_feature_adjustments(self, build_service, make_listing, subject_params):
        svc = build_service(InMemoryInventory([make_listing(550_000, listing_id="POOL", pool=True)]))
        out = run(svc, subject_params)
        comp = out["comparables"][0]
        assert [a["feature"] for a in comp["adjustments"]] == ["pool"]
        assert comp["adjusted_price"] == 500_000
        assert out["summary"]["weighted_mid"] == 500_000

    def test_comparables_are_ranked_by_similarity(self, build_service, neighbourhood, subject_params):
        out = run(build_service(InMemoryInventory(neighbourhood)), subject_params)
        scores = [c["similarity_score"] for c in out["comparables"]]
        assert scores == sorted(scores, reverse=True)
        assert out["comparables"][0]["listing_id"] == "EXACT"

    def test_empty_candidate_set(self, build_service, subject_params):
        out = run(build_service(InMemoryInventory()), subject_params)
        assert out["comparables"] == []
        s = out["summary"]
        assert s["comparables_used"] == 0
        assert s["confidence_score"] == 0
        assert s["low"] is None and s["mid"] is None and s["high"] is None
        assert s["insufficient_data"] is True

    def test_missing_coordinates_fail_before_any_work(self, build_service, subject_params):
        repo = CountingInventory()
        params = {k: v for k, v in subject_params.items() if k != "lat"}
        with pytest.raises(InvalidInput) as exc:
            run(build_service(repo), params)
        assert exc.value.field == "lat"
        assert repo.box_calls == 0

    def test_nested_form_is_accepted(self, build_service, neighbourhood, subject_params):
        svc = build_service(InMemoryInventory(neighbourhood))
        flat = run(svc, {**subject_params, "radius": 2})
        nested = run(svc, {"subject": subject_params, "filters": {"radius": 2}})
        assert nested["fingerprint"] == flat["fingerprint"]

    def test_split_params(self):
        subject, filters = split_params({"lat": 1, "radius": 2})
        assert subject == filters == {"lat": 1, "radius": 2}


class TestCaching:
    def test_reordered_payload_is_served_from_cache(self, build_service, neighbourhood, subject_params):
        repo = CountingInventory(neighbourhood)
        svc = build_service(repo)
        first = run(svc, {**subject_params, "radius": 2, "statuses": ["Closed", "Pending"]})
        reordered = dict(reversed(list({**subject_params, "statuses": ["Pending", "Closed"], "radius": 2}.items())))
        second = run(svc, reordered)
        assert repo.box_calls == 1
        assert second["cached"] is True
        assert second["fingerprint"] == first["fingerprint"]
        assert second["summary"] == first["summary"]

    def test_inventory_change_purges_cache(self, build_service, neighbourhood, subject_params, make_listing):
        repo = CountingInventory(neighbourhood)
        svc = build_service(repo)
        repo.subscribe(svc.invalidate)
        run(svc, subject_params)
        repo.upsert(make_listing(505_000, listing_id="NEW"))
        out = run(svc, subject_params)
        assert repo.box_calls == 2
        assert out["cached"] is False
        assert "NEW" in {c["listing_id"] for c in out["comparables"]}

    def test_arv_overrides_change_the_key(self, build_service, neighbourhood, subject_params):
        svc = build_service(InMemoryInventory(neighbourhood))
        plain = run(svc, subject_params)
        arv = run(svc, subject_params, overrides={"sqft": 2400, "condition": "Renovated"})
        assert arv["cached"] is False
        assert arv["fingerprint"] != plain["fingerprint"]
        assert arv["subject_property"]["sqft"] == 2400


class TestDegradation:
    def test_market_timeout_degrades_to_unknown(self, build_service, neighbourhood, subject_params):
        repo = SlowInventory(neighbourhood, delay=0.5)
        out = run(build_service(repo, market_timeout=0.05), subject_params)
        assert out["market_context"]["classification"] == "unknown"
        assert out["market_context"]["degraded"] is True
        assert WARN_MARKET in out["warnings"]
        assert out["summary"]["comparables_used"] > 0

    def test_selection_timeout_is_fatal(self, build_service, neighbourhood, subject_params):
        repo = SlowInventory(neighbourhood, delay=0.5, slow_area=False, slow_box=True)
        with pytest.raises(UpstreamTimeout):
            run(build_service(repo, repository_timeout=0.05), subject_params)

    def test_history_failure_is_a_warning(self, build_service, neighbourhood, subject_params, monkeypatch):
        svc = build_service(InMemoryInventory(neighbourhood))

        def broken(*args, **kwargs):
            raise PersistenceFailure("database is locked")

        monkeypatch.setattr(svc.history, "record", broken)
        out = run(svc, subject_params)
        assert out["warnings"] == [WARN_HISTORY]
        assert out["summary"]["comparables_used"] > 0

    def test_history_store_error_is_wrapped(self, build_service, neighbourhood, subject_params, session_factory):
        svc = build_service(InMemoryInventory(neighbourhood))

        class ExplodingSession:
            def __init__(self):
                self.inner = session_factory()

            def add(self, obj):
                raise OperationalError("INSERT", {}, Exception("disk I/O error"))

            def rollback(self):
                self.inner.rollback()

            def close(self):
                self.inner.close()

        svc.history.session_factory = ExplodingSession
        out = run(svc, subject_params)
        assert WARN_HISTORY in out["warnings"]

    def test_history_recorded_for_listed_subjects_only(self, build_service, neighbourhood, subject_params):
        svc = build_service(InMemoryInventory(neighbourhood))
        run(svc, subject_params)
        run(svc, {k: v for k, v in subject_params.items() if k != "listing_id"})
        assert len(svc.history.history("SUBJ-1")) == 1
