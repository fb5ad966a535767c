from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from prometheus_client import Counter

from adaptive.analytics.metrics import ExtractedMetrics, MetricsConfig, extract
from adaptive.infrastructure.error_handling import ConfigError

logger = logging.getLogger(__name__)

ROWS_SCORED = Counter("adaptive_rows_scored_total", "Insights rows scored", ["strategy"])

DEFAULT_CTR_PRIOR: Tuple[float, float] = (2.0, 200.0)
DEFAULT_CVR_PRIOR: Tuple[float, float] = (2.0, 50.0)
DEFAULT_Z = 1.96
DEFAULT_EPSILON = 1e-3


# -----------------------
# Rate estimators
# -----------------------
def beta_smooth(successes: float, trials: float, alpha: float, beta: float) -> Tuple[float, float]:
    """Posterior mean of a Beta(alpha, beta) prior and its pseudo-sample size."""
    n = max(0.0, trials) + alpha + beta
    if n <= 0:
        return 0.0, 0.0
    p = (max(0.0, successes) + alpha) / n
    return min(1.0, max(0.0, p)), n


def lower_bound(p: float, n: float, z: float) -> float:
    if n <= 0:
        return 0.0
    se = math.sqrt(max(0.0, p * (1.0 - p)) / n)
    return max(0.0, p - z * se)


class RateEstimator(ABC):
    name: str = "base"

    @abstractmethod
    def rates(self, m: ExtractedMetrics) -> Tuple[float, float]:
        """Return (ctr, cvr) as fractions."""


@dataclass
class AdditiveRates(RateEstimator):
    """CTR as reported by the API, CVR with add-one smoothing on clicks."""

    epsilon: float = DEFAULT_EPSILON
    name: str = "additive"

    def rates(self, m: ExtractedMetrics) -> Tuple[float, float]:
        ctr = m.ctr_pct / 100.0
        cvr = min(1.0, (m.purchases + self.epsilon) / (m.clicks + 1.0))
        return ctr, cvr


@dataclass
class BetaBinomialRates(RateEstimator):
    ctr_prior: Tuple[float, float] = DEFAULT_CTR_PRIOR
    cvr_prior: Tuple[float, float] = DEFAULT_CVR_PRIOR
    z: float = DEFAULT_Z
    lcb: bool = False
    name: str = "beta"

    def __post_init__(self) -> None:
        for label, (a, b) in (("ctr", self.ctr_prior), ("cvr", self.cvr_prior)):
            if a < 0 or b < 0 or a + b <= 0:
                raise ConfigError(f"invalid {label} prior: alpha={a}, beta={b}")
        if self.z < 0:
            raise ConfigError(f"z must be >= 0, got {self.z}")

    def _effective(self, successes: float, trials: float, prior: Tuple[float, float]) -> float:
        p, n = beta_smooth(successes, trials, *prior)
        return lower_bound(p, n, self.z) if self.lcb else p

    def rates(self, m: ExtractedMetrics) -> Tuple[float, float]:
        # CTR-dependent terms are 0 without impressions
        ctr = self._effective(m.clicks, m.impressions, self.ctr_prior) if m.impressions > 0 else 0.0
        cvr = self._effective(m.purchases, m.clicks, self.cvr_prior)
        return ctr, cvr


@dataclass
class RawRates(RateEstimator):
    name: str = "raw"

    def rates(self, m: ExtractedMetrics) -> Tuple[float, float]:
        ctr = m.clicks / m.impressions if m.impressions > 0 else 0.0
        cvr = m.purchases / m.clicks if m.clicks > 0 else 0.0
        return ctr, cvr


# -----------------------
# Scored rows
# -----------------------
@dataclass
class ScoredRow:
    ad_id: Optional[str]
    ad_name: Optional[str]
    impressions: float
    clicks: float
    spend: float
    ctr_pct: float
    cpm: float
    purchases: float
    purchase_value: float
    roas: float
    cvr: float = 0.0
    aov: float = 0.0
    rpme_profit: float = 0.0
    score: float = 0.0
    extra: Dict[str, float] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        extra = d.pop("extra")
        d["purchase_roas"] = d.pop("roas")
        d.update(extra)
        return d


def aov(purchase_value: float, purchases: float) -> float:
    return purchase_value / purchases if purchases > 0 else 0.0


def rpme_profit(ctr: float, cvr: float, order_value: float, cpm: float) -> float:
    """Modelled profit per thousand impressions; -cpm when nothing converts."""
    return 1000.0 * ctr * cvr * order_value - cpm


# -----------------------
# Policies
# -----------------------
class ScoringPolicy(ABC):
    name: str = "base"

    @abstractmethod
    def score(self, m: ExtractedMetrics) -> ScoredRow:
        ...


class EfficiencyPolicy(ScoringPolicy):
    """roas*W_roas + rpme_profit + purchases*W_purchases + purchase_value*W_value."""

    name = "efficiency"

    def __init__(
        self,
        rates: Optional[RateEstimator] = None,
        w_roas: float = 1000.0,
        w_purchases: float = 50.0,
        w_value: float = 0.1,
    ) -> None:
        self.rates = rates or AdditiveRates()
        self.w_roas = w_roas
        self.w_purchases = w_purchases
        self.w_value = w_value

    def score(self, m: ExtractedMetrics) -> ScoredRow:
        ctr, cvr = self.rates.rates(m)
        order_value = aov(m.purchase_value, m.purchases)
        rpme = rpme_profit(ctr, cvr, order_value, m.cpm)
        total = m.roas * self.w_roas + rpme + m.purchases * self.w_purchases + m.purchase_value * self.w_value
        return ScoredRow(
            ad_id=m.ad_id,
            ad_name=m.ad_name,
            impressions=m.impressions,
            clicks=m.clicks,
            spend=m.spend,
            ctr_pct=m.ctr_pct,
            cpm=m.cpm,
            purchases=m.purchases,
            purchase_value=m.purchase_value,
            roas=m.roas,
            cvr=cvr,
            aov=order_value,
            rpme_profit=rpme,
            score=total,
        )


class ProfitPolicy(ScoringPolicy):
    """Absolute profit, log-weighted by spend so low-volume outliers do not dominate.

    Rates only feed the reported cvr and rpme_profit; the score uses observed money.
    """

    name = "profit"

    def __init__(
        self,
        rates: Optional[RateEstimator] = None,
        w_purchases: float = 1000.0,
        w_roas: float = 50.0,
        w_ctr: float = 0.1,
    ) -> None:
        self.rates = rates or AdditiveRates()
        self.w_purchases = w_purchases
        self.w_roas = w_roas
        self.w_ctr = w_ctr

    def score(self, m: ExtractedMetrics) -> ScoredRow:
        value = m.purchase_value
        if value <= 0 and m.spend > 0 and m.roas > 0:
            value = m.roas * m.spend
        profit = value - m.spend
        spend_weight = max(1.0, math.log10(1.0 + max(0.0, m.spend)))
        total = (
            profit * spend_weight
            + m.purchases * self.w_purchases
            + m.roas * self.w_roas
            + m.ctr_pct * self.w_ctr
        )
        ctr, cvr = self.rates.rates(m)
        order_value = aov(value, m.purchases)
        return ScoredRow(
            ad_id=m.ad_id,
            ad_name=m.ad_name,
            impressions=m.impressions,
            clicks=m.clicks,
            spend=m.spend,
            ctr_pct=m.ctr_pct,
            cpm=m.cpm,
            purchases=m.purchases,
            purchase_value=value,
            roas=m.roas,
            cvr=cvr,
            aov=order_value,
            rpme_profit=rpme_profit(ctr, cvr, order_value, m.cpm),
            score=total,
            extra={"profit": profit, "spend_weight": spend_weight, "cpc": m.cpc},
        )


POLICIES = {
    EfficiencyPolicy.name: EfficiencyPolicy,
    ProfitPolicy.name: ProfitPolicy,
}


def build_policy(
    name: str,
    settings: Optional[Mapping[str, Any]] = None,
    rates: Optional[RateEstimator] = None,
) -> ScoringPolicy:
    """Instantiate a named strategy with weights from the `scoring` settings section."""
    key = (name or "").strip().lower()
    if key not in POLICIES:
        raise ConfigError(f"unknown scoring strategy {name!r}; expected one of {sorted(POLICIES)}")
    weights = dict((settings or {}).get(key) or {})
    return POLICIES[key](rates=rates, **weights)


def score_rows(
    rows: Iterable[Mapping[str, Any]],
    policy: ScoringPolicy,
    metrics_cfg: Optional[MetricsConfig] = None,
) -> List[ScoredRow]:
    scored = [policy.score(extract(r, metrics_cfg)) for r in rows]
    ROWS_SCORED.labels(strategy=policy.name).inc(len(scored))
    logger.debug("scored %d rows with %s", len(scored), policy.name)
    return scored


__all__ = [
    "AdditiveRates",
    "BetaBinomialRates",
    "EfficiencyPolicy",
    "POLICIES",
    "ProfitPolicy",
    "RateEstimator",
    "RawRates",
    "ScoredRow",
    "ScoringPolicy",
    "aov",
    "beta_smooth",
    "build_policy",
    "lower_bound",
    "rpme_profit",
    "score_rows",
]
