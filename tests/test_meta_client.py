import json
from datetime import date

import pytest
import requests

from adaptive.infrastructure.error_handling import ConfigError, MissingTokenError, UpstreamError
from adaptive.integrations.meta_client import (
    AccountAuth,
    ClientConfig,
    MetaClient,
    insights_params,
    normalize_account_id,
)
from adaptive.utils import InsightsWindow
from tests.fakes import FakeResponse, FakeSession, insight_row, page

WINDOW = InsightsWindow(since=date(2024, 4, 30), until=date(2024, 5, 21))


def _client(session, token="server-token", account="123", **cfg):
    return MetaClient(AccountAuth(account, token), ClientConfig(**cfg), session=session, sleep=lambda _s: None)


def test_normalize_account_id():
    assert normalize_account_id("act_123") == ("123", "act_123")
    assert normalize_account_id(" 456 ") == ("456", "act_456")
    with pytest.raises(ConfigError):
        normalize_account_id("")
    with pytest.raises(ConfigError):
        normalize_account_id("act_abc")


def test_insights_params_shape():
    params = insights_params(WINDOW, 500, breakdowns=["publisher_platform"])
    assert params["level"] == "ad"
    assert params["limit"] == 500
    assert params["time_range"] == {"since": "2024-04-30", "until": "2024-05-21"}
    assert params["action_attribution_windows"] == ["7d_click", "1d_view"]
    assert params["action_report_time"] == "conversion"
    assert params["breakdowns"] == ["publisher_platform"]
    assert "purchase_roas" in params["fields"]
    assert "breakdowns" not in insights_params(WINDOW, 10)


def test_get_insights_request_encoding(client, session):
    session.queue(page([insight_row()]))
    out = client.get_insights(insights_params(WINDOW, 50))
    assert out["data"][0]["ad_id"] == "1"
    call = session.calls[0]
    assert call["method"] == "GET"
    assert call["url"] == "https://graph.facebook.com/v23.0/act_123/insights"
    assert call["headers"]["Authorization"] == "Bearer server-token"
    assert call["timeout"] == 30.0
    assert json.loads(call["params"]["time_range"]) == {"since": "2024-04-30", "until": "2024-05-21"}
    assert call["params"]["fields"].startswith("ad_id,ad_name,")
    assert call["params"]["action_attribution_windows"] == "7d_click,1d_view"
    assert "after" not in call["params"]


def test_request_token_overrides_configured_token(client, session):
    client.get_insights({"level": "ad"}, token="caller-token")
    assert session.calls[0]["headers"]["Authorization"] == "Bearer caller-token"


def test_missing_token_raises_before_any_request():
    session = FakeSession()
    with pytest.raises(MissingTokenError) as exc:
        _client(session, token=None).get_insights({})
    assert exc.value.status_code == 401
    assert session.calls == []


def test_missing_account_is_config_error():
    with pytest.raises(ConfigError):
        _client(FakeSession(), account=None).get_insights({})


def test_fetch_follows_cursors():
    session = FakeSession([
        page([insight_row("1"), insight_row("2")], after="c1"),
        page([insight_row("3")], after="c2"),
        page([insight_row("4")]),
    ])
    rows = _client(session).fetch_insights({"level": "ad"}, max_rows=100)
    assert [r["ad_id"] for r in rows] == ["1", "2", "3", "4"]
    assert [c["params"].get("after") for c in session.calls] == [None, "c1", "c2"]


def test_fetch_stops_at_max_rows():
    session = FakeSession([
        page([insight_row(str(i)) for i in range(3)], after="c1"),
        page([insight_row(str(i)) for i in range(3, 6)], after="c2"),
    ])
    rows = _client(session).fetch_insights({}, max_rows=4)
    assert len(rows) == 4
    assert len(session.calls) == 2


def test_fetch_never_repeats_a_cursor():
    session = FakeSession([
        page([insight_row("1")], after="same"),
        page([insight_row("2")], after="same"),
        page([insight_row("3")], after="same"),
    ])
    rows = _client(session).fetch_insights({}, max_rows=100)
    assert [r["ad_id"] for r in rows] == ["1", "2"]
    assert len(session.calls) == 2


def test_cursor_without_next_link_ends_pagination():
    session = FakeSession([FakeResponse(200, {"data": [insight_row()], "paging": {"cursors": {"after": "c1"}}})])
    assert len(_client(session).fetch_insights({}, max_rows=100)) == 1
    assert len(session.calls) == 1


def test_client_error_is_not_retried():
    body = {"error": {"message": "Invalid parameter", "code": 100}}
    session = FakeSession([FakeResponse(400, body)])
    with pytest.raises(UpstreamError) as exc:
        _client(session).get_insights({})
    assert exc.value.status == 400
    assert exc.value.body == body
    assert "400" in str(exc.value) and "Invalid parameter" in str(exc.value)
    assert len(session.calls) == 1


def test_server_error_is_retried_then_succeeds():
    session = FakeSession([FakeResponse(503, {"error": {"message": "busy"}}), page([insight_row()])])
    out = _client(session, retry_max=2).get_insights({})
    assert out["data"][0]["ad_id"] == "1"
    assert len(session.calls) == 2


def test_rate_limit_retries_are_bounded():
    session = FakeSession([FakeResponse(429, None, text="slow down")] * 5)
    with pytest.raises(UpstreamError) as exc:
        _client(session, retry_max=2).get_insights({})
    assert exc.value.status == 429
    assert exc.value.body == {"error": {"message": "slow down"}}
    assert len(session.calls) == 3


def test_connection_errors_are_retried():
    session = FakeSession([requests.ConnectionError("reset"), requests.Timeout("slow"), page([])])
    assert _client(session, retry_max=2).get_insights({}) == {"data": []}
    assert len(session.calls) == 3


def test_request_budget_is_enforced():
    ticks = iter([0.0, 0.0, 0.0, 0.0])

    def monotonic():
        return next(ticks, 1000.0)

    session = FakeSession([page([insight_row("1")], after="c1"), page([insight_row("2")])])
    client = MetaClient(
        AccountAuth("123", "t"),
        ClientConfig(request_budget_sec=120),
        session=session,
        sleep=lambda _s: None,
        monotonic=monotonic,
    )
    with pytest.raises(UpstreamError) as exc:
        client.fetch_insights({}, max_rows=100)
    assert "budget" in str(exc.value)
    assert len(session.calls) == 1


def test_validate_ad_posts_validate_only(client, session):
    session.queue(FakeResponse(200, {"success": True}))
    out = client.validate_ad({"name": "Ad", "adset_id": "55", "creative": {"creative_id": "77"}, "status": "PAUSED"})
    assert out == {"success": True}
    call = session.calls[0]
    assert call["method"] == "POST"
    assert call["url"].endswith("/act_123/ads")
    assert json.loads(call["data"]["execution_options"]) == ["validate_only", "include_recommendations"]
    assert json.loads(call["data"]["creative"]) == {"creative_id": "77"}
    assert call["data"]["status"] == "PAUSED"
