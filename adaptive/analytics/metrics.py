from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple
import logging
import math

logger = logging.getLogger(__name__)

DEFAULT_PURCHASE_ACTION_TYPES: Tuple[str, ...] = (
    "purchase",
    "offsite_conversion.fb_pixel_purchase",
    "omni_purchase",
)
DEFAULT_ROAS_ACTION_TYPES: Tuple[str, ...] = (
    "purchase",
    "omni_purchase",
    "offsite_conversion.fb_pixel_purchase",
)


@dataclass(frozen=True)
class MetricsConfig:
    """Priority lists used to pick purchase counts, values and ROAS out of action arrays.

    Order matters: the first action type in the list that appears in the row wins.
    """

    purchase_action_types: Tuple[str, ...] = DEFAULT_PURCHASE_ACTION_TYPES
    value_action_types: Optional[Tuple[str, ...]] = None
    roas_action_types: Tuple[str, ...] = DEFAULT_ROAS_ACTION_TYPES

    def __post_init__(self) -> None:
        object.__setattr__(self, "purchase_action_types", tuple(self.purchase_action_types))
        object.__setattr__(self, "roas_action_types", tuple(self.roas_action_types))
        if self.value_action_types is None:
            object.__setattr__(self, "value_action_types", self.purchase_action_types)
        else:
            object.__setattr__(self, "value_action_types", tuple(self.value_action_types))
        if not self.purchase_action_types:
            raise ValueError("purchase_action_types must not be empty")

    def with_action_types(self, action_types: Sequence[str]) -> "MetricsConfig":
        """Same config with purchase/value priorities overridden (ROAS priorities kept)."""
        if not action_types:
            return self
        return MetricsConfig(
            purchase_action_types=tuple(action_types),
            value_action_types=tuple(action_types),
            roas_action_types=self.roas_action_types,
        )


def to_float(x: Any, default: float = 0.0) -> float:
    try:
        if x is None or isinstance(x, bool):
            return default
        if isinstance(x, (int, float)):
            v = float(x)
        else:
            s = str(x).strip().replace(",", "")
            if s == "":
                return default
            v = float(s)
    except (TypeError, ValueError):
        return default
    return v if math.isfinite(v) else default


def parse_ctr_pct(raw: Any, impressions: float, clicks: float) -> float:
    """CTR in percent. Accepts "1.23%", "1.23" or 1.23; derives it from counts when missing."""
    if isinstance(raw, str):
        raw = raw.strip().rstrip("%")
    ctr = to_float(raw)
    if ctr == 0.0 and impressions > 0:
        ctr = clicks / impressions * 100.0
    return max(0.0, ctr)


def pick_action(entries: Any, priority: Sequence[str]) -> Optional[Dict[str, Any]]:
    if not isinstance(entries, list):
        return None
    for action_type in priority:
        for entry in entries:
            if isinstance(entry, dict) and entry.get("action_type") == action_type:
                return entry
    return None


def _action_value(entries: Any, priority: Sequence[str]) -> float:
    found = pick_action(entries, priority)
    return to_float(found.get("value")) if found else 0.0


def extract_roas(raw: Any, priority: Sequence[str] = DEFAULT_ROAS_ACTION_TYPES) -> float:
    # purchase_roas arrives either as a number or as [{action_type, value}, ...]
    if isinstance(raw, list):
        if not raw:
            return 0.0
        roas = _action_value(raw, priority)
        if not roas:
            first = raw[0] if isinstance(raw[0], dict) else {}
            roas = to_float(first.get("value"))
            if roas:
                logger.debug("purchase_roas: no priority match, using %r", first.get("action_type"))
        return roas
    if isinstance(raw, (int, float, str)):
        return to_float(raw)
    return 0.0


@dataclass
class ExtractedMetrics:
    ad_id: Optional[str] = None
    ad_name: Optional[str] = None
    impressions: float = 0.0
    clicks: float = 0.0
    spend: float = 0.0
    ctr_pct: float = 0.0
    cpm: float = 0.0
    cpc: float = 0.0
    purchases: float = 0.0
    purchase_value: float = 0.0
    roas: float = 0.0

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def extract(row: Mapping[str, Any], cfg: Optional[MetricsConfig] = None) -> ExtractedMetrics:
    """Normalize one insights row. Malformed fields degrade to 0, never raise."""
    cfg = cfg or MetricsConfig()
    if not isinstance(row, Mapping):
        return ExtractedMetrics()
    impressions = max(0.0, to_float(row.get("impressions")))
    clicks = max(0.0, to_float(row.get("clicks")))
    ad_id = row.get("ad_id")
    return ExtractedMetrics(
        ad_id=str(ad_id) if ad_id is not None else None,
        ad_name=row.get("ad_name"),
        impressions=impressions,
        clicks=clicks,
        spend=to_float(row.get("spend")),
        ctr_pct=parse_ctr_pct(row.get("ctr"), impressions, clicks),
        cpm=to_float(row.get("cpm")),
        cpc=to_float(row.get("cpc")),
        purchases=_action_value(row.get("actions"), cfg.purchase_action_types),
        purchase_value=_action_value(row.get("action_values"), cfg.value_action_types),
        roas=extract_roas(row.get("purchase_roas"), cfg.roas_action_types),
    )


__all__ = [
    "DEFAULT_PURCHASE_ACTION_TYPES",
    "DEFAULT_ROAS_ACTION_TYPES",
    "ExtractedMetrics",
    "MetricsConfig",
    "extract",
    "extract_roas",
    "parse_ctr_pct",
    "pick_action",
    "to_float",
]
