from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import requests
from prometheus_client import Counter, Histogram

from adaptive.infrastructure.error_handling import (
    ConfigError,
    MissingTokenError,
    RetryConfig,
    RetryHandler,
    UpstreamError,
    is_transient_upstream,
)
from adaptive.utils import InsightsWindow

logger = logging.getLogger(__name__)

GRAPH_REQUESTS = Counter(
    "adaptive_graph_requests_total", "Graph API requests", ["endpoint", "status"]
)
GRAPH_LATENCY = Histogram(
    "adaptive_graph_latency_seconds", "Graph API request latency", ["endpoint"]
)

INSIGHT_FIELDS: Tuple[str, ...] = (
    "ad_id",
    "ad_name",
    "impressions",
    "clicks",
    "spend",
    "ctr",
    "cpc",
    "cpm",
    "actions",
    "action_values",
    "purchase_roas",
)
DEFAULT_ATTRIBUTION_WINDOWS: Tuple[str, ...] = ("7d_click", "1d_view")


def _meta_log(level: int, message: str, *args) -> None:
    logger.log(level, f"[META] {message}", *args)


def normalize_account_id(raw: Optional[str]) -> Tuple[str, str]:
    """Return (numeric id, 'act_' prefixed id) for either input form."""
    s = (raw or "").strip()
    if s.startswith("act_"):
        s = s[4:]
    if not s or not s.isdigit():
        raise ConfigError(f"META_AD_ACCOUNT_ID missing or invalid: {raw!r}")
    return s, f"act_{s}"


@dataclass
class AccountAuth:
    account_id: Optional[str]
    access_token: Optional[str] = None


@dataclass
class ClientConfig:
    graph_version: str = "v23.0"
    graph_base: str = "https://graph.facebook.com"
    timeout: float = 30.0
    retry_max: int = 2
    backoff_base: float = 0.5
    request_budget_sec: float = 120.0

    @classmethod
    def from_app_config(cls, config: Any) -> "ClientConfig":
        return cls(
            graph_version=config.graph_version,
            graph_base=config.graph_base,
            timeout=config.timeout,
            retry_max=config.retry_max,
            backoff_base=config.backoff_base,
            request_budget_sec=config.request_budget_sec,
        )


def insights_params(
    window: InsightsWindow,
    limit: int,
    fields: Optional[Sequence[str]] = None,
    breakdowns: Optional[Sequence[str]] = None,
    attribution_windows: Optional[Sequence[str]] = DEFAULT_ATTRIBUTION_WINDOWS,
    action_report_time: Optional[str] = "conversion",
) -> Dict[str, Any]:
    params: Dict[str, Any] = {
        "level": "ad",
        "fields": list(fields or INSIGHT_FIELDS),
        "limit": int(limit),
        "time_range": window.as_time_range(),
    }
    if breakdowns:
        params["breakdowns"] = list(breakdowns)
    if attribution_windows:
        params["action_attribution_windows"] = list(attribution_windows)
    if action_report_time:
        params["action_report_time"] = action_report_time
    return params


def _encode_params(params: Mapping[str, Any]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for k, v in params.items():
        if v is None:
            continue
        if isinstance(v, dict):
            out[k] = json.dumps(v, separators=(",", ":"))
        elif isinstance(v, (list, tuple)):
            out[k] = ",".join(str(x) for x in v)
        else:
            out[k] = str(v)
    return out


class MetaClient:
    """Thin Graph API reader for ad-level insights.

    Each call retries transient failures (429, 5xx, connection errors, timeouts)
    with exponential backoff; anything else surfaces as `UpstreamError` at once.
    """

    def __init__(
        self,
        auth: AccountAuth,
        cfg: Optional[ClientConfig] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.auth = auth
        self.cfg = cfg or ClientConfig()
        self.session = session or requests.Session()
        self._retry = RetryHandler(
            RetryConfig(
                max_retries=self.cfg.retry_max,
                initial_delay=self.cfg.backoff_base,
                retryable_exceptions=(UpstreamError,),
                should_retry=is_transient_upstream,
            ),
            sleep=sleep,
        )
        self._monotonic = monotonic

    @property
    def account_configured(self) -> bool:
        try:
            normalize_account_id(self.auth.account_id)
        except ConfigError:
            return False
        return True

    def _token(self, token: Optional[str]) -> str:
        tok = token or self.auth.access_token
        if not tok:
            raise MissingTokenError("Meta token missing")
        return tok

    def _url(self, edge: str) -> str:
        _, act = normalize_account_id(self.auth.account_id)
        return f"{self.cfg.graph_base.rstrip('/')}/{self.cfg.graph_version}/{act}/{edge}"

    def _request_once(self, method: str, edge: str, url: str, token: str, **kwargs) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {token}"}
        started = self._monotonic()
        try:
            r = self.session.request(method, url, headers=headers, timeout=self.cfg.timeout, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as e:
            GRAPH_REQUESTS.labels(endpoint=edge, status="transport").inc()
            raise UpstreamError(f"Graph {method} {edge} failed: {e}") from e
        finally:
            GRAPH_LATENCY.labels(endpoint=edge).observe(max(0.0, self._monotonic() - started))
        GRAPH_REQUESTS.labels(endpoint=edge, status=str(r.status_code)).inc()
        if r.status_code >= 400:
            try:
                err = r.json()
            except ValueError:
                err = {"error": {"message": r.text}}
            raise UpstreamError(f"Graph {method} {edge} {r.status_code}: {err}", status=r.status_code, body=err)
        try:
            return r.json()
        except ValueError as e:
            raise UpstreamError(f"Graph {method} {edge} returned non-JSON body", status=r.status_code) from e

    def _request(self, method: str, edge: str, token: Optional[str], **kwargs) -> Dict[str, Any]:
        tok = self._token(token)
        url = self._url(edge)
        return self._retry.execute(self._request_once, method, edge, url, tok, **kwargs)

    # ------------- Insights -------------
    def get_insights(
        self,
        params: Mapping[str, Any],
        token: Optional[str] = None,
        after: Optional[str] = None,
    ) -> Dict[str, Any]:
        """One page of `act_<id>/insights`."""
        qp = _encode_params(params)
        if after:
            qp["after"] = after
        return self._request("GET", "insights", token, params=qp)

    def fetch_insights(
        self,
        params: Mapping[str, Any],
        max_rows: int,
        token: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Follow cursor pagination until `max_rows`, the last page, or the request budget."""
        deadline = self._monotonic() + self.cfg.request_budget_sec
        rows: List[Dict[str, Any]] = []
        seen_cursors = set()
        after: Optional[str] = None
        while True:
            if self._monotonic() > deadline:
                raise UpstreamError(
                    f"Graph insights exceeded request budget of {self.cfg.request_budget_sec:.0f}s "
                    f"after {len(rows)} rows"
                )
            page = self.get_insights(params, token=token, after=after)
            data = page.get("data") or []
            if isinstance(data, list):
                rows.extend(r for r in data if isinstance(r, dict))
            if len(rows) >= max_rows:
                return rows[:max_rows]
            paging = page.get("paging") or {}
            nxt = (paging.get("cursors") or {}).get("after")
            if not paging.get("next") or not nxt or nxt in seen_cursors:
                break
            seen_cursors.add(nxt)
            after = nxt
        _meta_log(logging.DEBUG, "fetched %d insights rows (%d pages)", len(rows), len(seen_cursors) + 1)
        return rows

    # ------------- Ads -------------
    def validate_ad(self, payload: Mapping[str, Any], token: Optional[str] = None) -> Dict[str, Any]:
        """Dry-run ad creation: Meta validates the payload without creating anything."""
        body = dict(payload)
        body["execution_options"] = ["validate_only", "include_recommendations"]
        form = {k: json.dumps(v) if isinstance(v, (dict, list)) else str(v) for k, v in body.items() if v is not None}
        return self._request("POST", "ads", token, data=form)


__all__ = [
    "AccountAuth",
    "ClientConfig",
    "DEFAULT_ATTRIBUTION_WINDOWS",
    "INSIGHT_FIELDS",
    "MetaClient",
    "insights_params",
    "normalize_account_id",
]
