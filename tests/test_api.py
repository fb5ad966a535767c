import json

import pytest
from fastapi.testclient import TestClient

from adaptive.api import create_app
from adaptive.config import AppConfig
from adaptive.infrastructure.error_handling import PersistenceError
from adaptive.infrastructure.metrics_store import SqlMetricsStore
from tests.fakes import FakeResponse, insight_row, page

ROWS = [
    insight_row("1"),
    insight_row("2", actions=[], action_values=[], purchase_roas=[], spend="80", cpm="40"),
    insight_row("3", purchase_roas=[{"action_type": "omni_purchase", "value": "5"}]),
]


@pytest.fixture
def api(config, client, store, clock):
    return TestClient(create_app(config, client=client, store=store, clock=clock))


def test_ranked_defaults(api, session):
    session.queue(page(ROWS))
    resp = api.get("/api/meta/insights/ranked")
    assert resp.status_code == 200
    body = resp.json()
    assert body["since"] == "2024-04-30"
    assert body["until"] == "2024-05-21"
    assert body["count"] == 3
    assert body["strategy"] == "efficiency"
    assert body["smoothing"] is True and body["lcb"] is False
    assert [r["ad_id"] for r in body["ranked"]] == ["3", "1", "2"]
    params = session.calls[0]["params"]
    assert params["limit"] == "500"
    assert json.loads(params["time_range"]) == {"since": "2024-04-30", "until": "2024-05-21"}


def test_ranked_without_smoothing_uses_raw_rates(api, session):
    session.queue(page([insight_row("1")]))
    body = api.get("/api/meta/insights/ranked", params={"smoothing": "0"}).json()
    top = body["ranked"][0]
    assert body["smoothing"] is False
    assert top["cvr"] == pytest.approx(0.1)
    assert top["rpme_profit"] == pytest.approx(75.0)
    assert top["score"] == pytest.approx(2185.0)
    assert top["purchase_roas"] == 2.0


def test_ranked_profit_honours_smoothing_flags(api, session):
    session.queue(page([insight_row("1")]), page([insight_row("1")]))
    raw = api.get("/api/meta/insights/ranked", params={"strategy": "profit", "smoothing": "0"}).json()
    shrunk = api.get(
        "/api/meta/insights/ranked", params={"strategy": "profit", "lcb": "1", "z": "3"}
    ).json()
    assert raw["strategy"] == "profit" and raw["smoothing"] is False
    assert shrunk["smoothing"] is True and shrunk["lcb"] is True
    raw_row, shrunk_row = raw["ranked"][0], shrunk["ranked"][0]
    assert raw_row["cvr"] == pytest.approx(0.1)
    assert raw_row["rpme_profit"] == pytest.approx(75.0)
    assert shrunk_row["cvr"] < raw_row["cvr"]
    assert shrunk_row["rpme_profit"] < raw_row["rpme_profit"]
    assert raw_row["score"] == pytest.approx(shrunk_row["score"])


def test_ranked_lcb_lowers_rates(api, session):
    session.queue(page([insight_row("1")]), page([insight_row("1")]))
    plain = api.get("/api/meta/insights/ranked").json()["ranked"][0]
    shrunk = api.get("/api/meta/insights/ranked", params={"lcb": "1", "z": "2.5"}).json()["ranked"][0]
    assert shrunk["cvr"] < plain["cvr"]
    assert shrunk["score"] < plain["score"]


def test_ranked_clamps_days_and_limit(api, session):
    api.get("/api/meta/insights/ranked", params={"days": 500, "limit": 99999})
    params = session.calls[0]["params"]
    assert params["limit"] == "5000"
    assert json.loads(params["time_range"])["since"] == "2024-02-21"

    api.get("/api/meta/insights/ranked", params={"days": 0, "limit": 0})
    params = session.calls[1]["params"]
    assert params["limit"] == "1"
    assert json.loads(params["time_range"])["since"] == "2024-05-20"


def test_ranked_truncates_to_fifty(api, session):
    session.queue(page([insight_row(str(i)) for i in range(120)]))
    body = api.get("/api/meta/insights/ranked").json()
    assert body["count"] == 120
    assert len(body["ranked"]) == 50


def test_unknown_strategy_is_bad_request(api, session):
    resp = api.get("/api/meta/insights/ranked", params={"strategy": "vibes"})
    assert resp.status_code == 400
    assert "vibes" in resp.json()["error"]
    assert session.calls == []


def test_non_numeric_param_is_bad_request(api):
    resp = api.get("/api/meta/insights/ranked", params={"days": "soon"})
    assert resp.status_code == 400
    assert "error" in resp.json()


def test_authorization_header_token_is_forwarded(api, session):
    api.get("/api/meta/insights/ranked", headers={"Authorization": "Bearer caller-token"})
    assert session.calls[0]["headers"]["Authorization"] == "Bearer caller-token"


def test_missing_token_is_unauthorized(client, store, clock):
    app = create_app(AppConfig(ad_account_id="123"), client=client, store=store, clock=clock)
    resp = TestClient(app).get("/api/meta/insights/ranked")
    assert resp.status_code == 401
    assert resp.json() == {"error": "Meta token missing"}


def test_upstream_error_is_500_with_message(api, session):
    session.queue(FakeResponse(400, {"error": {"message": "Unsupported get request"}}))
    resp = api.get("/api/meta/insights/top-creatives")
    assert resp.status_code == 500
    assert "400" in resp.json()["error"]
    assert "Unsupported get request" in resp.json()["error"]


def test_top_creatives(api, session):
    session.queue(page(ROWS))
    body = api.get("/api/meta/insights/top-creatives").json()
    assert body["since"] == "2024-05-14"
    assert body["strategy"] == "profit"
    top = body["top"]
    assert [r["ad_id"] for r in top] == ["3", "1", "2"]
    assert top[1]["profit"] == pytest.approx(50.0)
    assert "spend_weight" in top[1]
    assert top[2]["profit"] == pytest.approx(-80.0)


def test_ingest_without_persist(api, session):
    session.queue(page(ROWS))
    body = api.get("/api/meta/ingest").json()
    assert body["persist"] is False
    assert body["db"] == "skipped"
    assert body["persisted"] == 0
    assert body["count"] == 3
    assert [r["ad_id"] for r in body["items"]] == ["3", "1", "2"]
    assert body["items"][1]["score"] == pytest.approx(2180.2857, abs=1e-3)
    assert session.calls[0]["params"]["limit"] == "1000"


def test_ingest_persist_and_read_back(api, session):
    session.queue(page(ROWS))
    body = api.get("/api/meta/ingest", params={"persist": "1", "breakdowns": "age,gender"}).json()
    assert body["db"] == "ok"
    assert body["persisted"] == 3
    assert session.calls[0]["params"]["breakdowns"] == "age,gender"

    saved = api.get("/api/metrics/1").json()
    assert saved["count"] == 1
    rec = saved["data"][0]
    assert rec["ctr"] == pytest.approx(0.02)
    assert rec["roas"] == pytest.approx(2.0)
    assert rec["window_since"] == "2024-04-30"

    no_roas = api.get("/api/metrics/2").json()["data"][0]
    assert no_roas["roas"] == pytest.approx(0.0)


def test_ingest_persist_failure_keeps_read_result(config, client, engine, clock, session):
    class BrokenStore(SqlMetricsStore):
        def insert_batch(self, records):
            raise PersistenceError("database unavailable")

    app = create_app(config, client=client, store=BrokenStore(engine), clock=clock)
    session.queue(page(ROWS))
    resp = TestClient(app).get("/api/meta/ingest", params={"persist": "true"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["db"] == "error"
    assert body["persisted"] == 0
    assert len(body["items"]) == 3


def test_ingest_returns_at_most_200_items(api, session):
    session.queue(page([insight_row(str(i)) for i in range(250)]))
    body = api.get("/api/meta/ingest").json()
    assert body["count"] == 250
    assert len(body["items"]) == 200


def test_listing_passes_rows_through(api, session):
    session.queue(FakeResponse(200, {"data": [{"ad_id": "1", "publisher_platform": "instagram"}],
                                     "paging": {"cursors": {"after": "x"}}}))
    body = api.get("/api/meta/insights").json()
    assert body["data"] == [{"ad_id": "1", "publisher_platform": "instagram"}]
    assert body["paging"] == {"cursors": {"after": "x"}}
    params = session.calls[0]["params"]
    assert params["breakdowns"] == "publisher_platform"
    assert params["limit"] == "200"


def test_validate_endpoint(api, session):
    session.queue(FakeResponse(200, {"success": True, "recommendations": []}))
    resp = api.post("/api/meta/validate", json={"name": "Ad", "adset_id": "1"})
    assert resp.status_code == 200
    assert resp.json()["result"]["success"] is True
    assert session.calls[0]["method"] == "POST"


def test_metrics_read_without_store(config, client, clock):
    app = create_app(config, client=client, store=None, clock=clock)
    app.state.store = None
    resp = TestClient(app).get("/api/metrics/1")
    assert resp.status_code == 400


def test_health(api):
    body = api.get("/api/health").json()
    assert body == {"ok": True, "account_configured": True, "token_configured": True, "store": "sql"}


def test_prometheus_metrics(api, session):
    session.queue(page([insight_row()]))
    api.get("/api/meta/insights/ranked")
    resp = api.get("/metrics")
    assert resp.status_code == 200
    assert "adaptive_graph_requests_total" in resp.text
    assert "adaptive_rows_scored_total" in resp.text
