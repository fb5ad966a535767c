"""Fetch, score, rank and persist ad insights.

These functions are shared by the HTTP handlers and the CLI. Each one returns a
plain dict envelope ready to be serialized as JSON.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from adaptive.analytics.ranking import rank
from adaptive.analytics.scoring import (
    AdditiveRates,
    BetaBinomialRates,
    RateEstimator,
    RawRates,
    ScoredRow,
    build_policy,
    score_rows,
)
from adaptive.config import AppConfig
from adaptive.infrastructure.metrics_store import MetricsStore, persist_rows
from adaptive.integrations.meta_client import MetaClient, insights_params
from adaptive.utils import Clock, InsightsWindow, clamp, window_for_days

logger = logging.getLogger(__name__)

DEFAULT_LISTING_BREAKDOWNS = ("publisher_platform",)


def _window(config: AppConfig, days: Any, default_days: int, clock: Optional[Clock]) -> InsightsWindow:
    lo, hi = config.limit_range("days")
    return window_for_days(clamp(days, lo, hi, default=default_days), clock, config.account_timezone)


def _fetch_limit(config: AppConfig, limit: Any, default_limit: int) -> int:
    lo, hi = config.limit_range("fetch")
    return clamp(limit, lo, hi, default=default_limit)


def _dicts(rows: Sequence[ScoredRow]) -> List[Dict[str, Any]]:
    return [r.as_dict() for r in rows]


def ranked_rates(
    config: AppConfig,
    smoothing: bool = True,
    lcb: bool = False,
    alpha_ctr: Optional[float] = None,
    beta_ctr: Optional[float] = None,
    alpha_cvr: Optional[float] = None,
    beta_cvr: Optional[float] = None,
    z: Optional[float] = None,
) -> RateEstimator:
    """Beta-binomial estimator (request overrides over configured priors), or raw ratios."""
    if not smoothing:
        return RawRates()
    priors = config.scoring["priors"]
    ctr_a, ctr_b = priors["ctr"]
    cvr_a, cvr_b = priors["cvr"]
    return BetaBinomialRates(
        ctr_prior=(alpha_ctr if alpha_ctr is not None else ctr_a, beta_ctr if beta_ctr is not None else ctr_b),
        cvr_prior=(alpha_cvr if alpha_cvr is not None else cvr_a, beta_cvr if beta_cvr is not None else cvr_b),
        z=z if z is not None else config.scoring["z"],
        lcb=lcb,
    )


def run_ranked(
    config: AppConfig,
    client: MetaClient,
    days: Any = 21,
    limit: Any = 500,
    smoothing: bool = True,
    lcb: bool = False,
    alpha_ctr: Optional[float] = None,
    beta_ctr: Optional[float] = None,
    alpha_cvr: Optional[float] = None,
    beta_cvr: Optional[float] = None,
    z: Optional[float] = None,
    strategy: str = "efficiency",
    action_types: Sequence[str] = (),
    token: Optional[str] = None,
    clock: Optional[Clock] = None,
) -> Dict[str, Any]:
    rates = ranked_rates(config, smoothing, lcb, alpha_ctr, beta_ctr, alpha_cvr, beta_cvr, z)
    policy = build_policy(strategy, config.scoring, rates)
    window = _window(config, days, 21, clock)
    max_rows = _fetch_limit(config, limit, 500)
    rows = client.fetch_insights(insights_params(window, max_rows), max_rows=max_rows, token=token)
    scored = score_rows(rows, policy, config.metrics_config().with_action_types(action_types))
    ranked = rank(scored, config.limit("ranked_page_size"), config.limit_range("fetch"))
    logger.info("ranked %d rows (%s, smoothing=%s, lcb=%s)", len(rows), policy.name, smoothing, lcb)
    return {
        "since": window.since_str,
        "until": window.until_str,
        "count": len(rows),
        "strategy": policy.name,
        "smoothing": bool(smoothing),
        "lcb": bool(lcb),
        "ranked": _dicts(ranked),
    }


def run_top_creatives(
    config: AppConfig,
    client: MetaClient,
    days: Any = 7,
    limit: Any = 500,
    strategy: str = "profit",
    action_types: Sequence[str] = (),
    token: Optional[str] = None,
    clock: Optional[Clock] = None,
) -> Dict[str, Any]:
    policy = build_policy(strategy, config.scoring, AdditiveRates(config.scoring["additive_epsilon"]))
    window = _window(config, days, 7, clock)
    max_rows = _fetch_limit(config, limit, 500)
    rows = client.fetch_insights(insights_params(window, max_rows), max_rows=max_rows, token=token)
    scored = score_rows(rows, policy, config.metrics_config().with_action_types(action_types))
    top = rank(scored, config.limit("ranked_page_size"), config.limit_range("fetch"))
    return {
        "since": window.since_str,
        "until": window.until_str,
        "count": len(rows),
        "strategy": policy.name,
        "top": _dicts(top),
    }


def run_ingest(
    config: AppConfig,
    client: MetaClient,
    store: Optional[MetricsStore] = None,
    days: Any = 21,
    limit: Any = 1000,
    persist: bool = False,
    breakdowns: Sequence[str] = (),
    action_types: Sequence[str] = (),
    batch_size: Optional[int] = None,
    token: Optional[str] = None,
    clock: Optional[Clock] = None,
) -> Dict[str, Any]:
    """Score every fetched row with the simple efficiency variant and optionally persist all of them.

    A persistence failure is reported in `db`, never raised.
    """
    policy = build_policy("efficiency", config.scoring, AdditiveRates(config.scoring["additive_epsilon"]))
    window = _window(config, days, 21, clock)
    max_rows = _fetch_limit(config, limit, 1000)
    params = insights_params(window, max_rows, breakdowns=breakdowns or None)
    rows = client.fetch_insights(params, max_rows=max_rows, token=token)
    scored = score_rows(rows, policy, config.metrics_config().with_action_types(action_types))
    ordered = rank(scored, len(scored) or 1, (1, max(1, len(scored))))

    persisted = 0
    db = "skipped"
    if persist:
        lo, hi = config.limit_range("batch")
        size = clamp(batch_size if batch_size is not None else config.limit("batch_size"), lo, hi)
        outcome = persist_rows(store, ordered, window, size, created_at=clock.now_utc() if clock else None)
        persisted, db = outcome.persisted, outcome.status

    return {
        "since": window.since_str,
        "until": window.until_str,
        "count": len(rows),
        "items": _dicts(ordered[: config.limit("ingest_items")]),
        "persist": bool(persist),
        "persisted": persisted,
        "db": db,
    }


def run_listing(
    config: AppConfig,
    client: MetaClient,
    days: Any = 21,
    limit: Any = None,
    breakdowns: Sequence[str] = DEFAULT_LISTING_BREAKDOWNS,
    after: Optional[str] = None,
    token: Optional[str] = None,
    clock: Optional[Clock] = None,
) -> Dict[str, Any]:
    """One raw insights page, passed through without scoring."""
    window = _window(config, days, 21, clock)
    default_limit = config.limit("listing_page_size")
    page_size = _fetch_limit(config, limit if limit is not None else default_limit, default_limit)
    params = insights_params(window, page_size, breakdowns=breakdowns or None)
    page = client.get_insights(params, token=token, after=after)
    data = [r for r in (page.get("data") or []) if isinstance(r, dict)]
    return {
        "since": window.since_str,
        "until": window.until_str,
        "count": len(data),
        "data": data[:page_size],
        "paging": page.get("paging") or {},
    }


__all__ = [
    "InsightsWindow",
    "ranked_rates",
    "run_ingest",
    "run_listing",
    "run_ranked",
    "run_top_creatives",
    "window_for_days",
]
