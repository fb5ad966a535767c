from __future__ import annotations

import copy
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

import jsonschema
import yaml
from dotenv import load_dotenv

from adaptive.analytics.metrics import (
    DEFAULT_PURCHASE_ACTION_TYPES,
    DEFAULT_ROAS_ACTION_TYPES,
    MetricsConfig,
)
from adaptive.infrastructure.error_handling import ConfigError
from adaptive.utils import require_tz

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_PATH = "config/settings.yaml"

DEFAULT_SETTINGS: Dict[str, Any] = {
    "extraction": {
        "purchase_action_types": list(DEFAULT_PURCHASE_ACTION_TYPES),
        "roas_action_types": list(DEFAULT_ROAS_ACTION_TYPES),
    },
    "scoring": {
        "efficiency": {"w_roas": 1000.0, "w_purchases": 50.0, "w_value": 0.1},
        "profit": {"w_purchases": 1000.0, "w_roas": 50.0, "w_ctr": 0.1},
        "additive_epsilon": 1e-3,
        "priors": {"ctr": [2.0, 200.0], "cvr": [2.0, 50.0]},
        "z": 1.96,
    },
    "limits": {
        "days": {"min": 1, "max": 90},
        "fetch": {"min": 1, "max": 5000},
        "batch": {"min": 1, "max": 500},
        "batch_size": 200,
        "ranked_page_size": 50,
        "listing_page_size": 200,
        "ingest_items": 200,
    },
}

_RANGE = {
    "type": "object",
    "properties": {"min": {"type": "integer", "minimum": 1}, "max": {"type": "integer", "minimum": 1}},
    "required": ["min", "max"],
}
_PRIOR = {"type": "array", "items": {"type": "number", "minimum": 0}, "minItems": 2, "maxItems": 2}
_WEIGHTS = {"type": "object", "additionalProperties": {"type": "number"}}

SETTINGS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "extraction": {
            "type": "object",
            "properties": {
                "purchase_action_types": {"type": "array", "items": {"type": "string"}, "minItems": 1},
                "roas_action_types": {"type": "array", "items": {"type": "string"}},
            },
        },
        "scoring": {
            "type": "object",
            "properties": {
                "efficiency": {
                    **_WEIGHTS,
                    "propertyNames": {"enum": ["w_roas", "w_purchases", "w_value"]},
                },
                "profit": {
                    **_WEIGHTS,
                    "propertyNames": {"enum": ["w_purchases", "w_roas", "w_ctr"]},
                },
                "additive_epsilon": {"type": "number", "exclusiveMinimum": 0},
                "priors": {"type": "object", "properties": {"ctr": _PRIOR, "cvr": _PRIOR}},
                "z": {"type": "number", "minimum": 0},
            },
        },
        "limits": {
            "type": "object",
            "properties": {
                "days": _RANGE,
                "fetch": _RANGE,
                "batch": _RANGE,
                "batch_size": {"type": "integer", "minimum": 1},
                "ranked_page_size": {"type": "integer", "minimum": 1},
                "listing_page_size": {"type": "integer", "minimum": 1},
                "ingest_items": {"type": "integer", "minimum": 1},
            },
        },
    },
}


def load_yaml(path: str) -> Dict[str, Any]:
    """Load YAML document; a missing file yields {} while a malformed one is a ConfigError."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            doc = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.info("Settings file %s not found, using defaults", path)
        return {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(doc, dict):
        raise ConfigError(f"Settings document {path} must be a mapping")
    return doc


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    result = copy.deepcopy(dict(base))
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def load_settings(path: Optional[str] = None, overrides: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    doc = load_yaml(path) if path else {}
    settings = deep_merge(DEFAULT_SETTINGS, doc)
    if overrides:
        settings = deep_merge(settings, overrides)
    try:
        jsonschema.validate(instance=settings, schema=SETTINGS_SCHEMA)
    except jsonschema.ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise ConfigError(f"Invalid settings at {where}: {e.message}") from e
    for name in ("days", "fetch", "batch"):
        rng = settings["limits"][name]
        if rng["min"] > rng["max"]:
            raise ConfigError(f"Invalid settings at limits/{name}: min > max")
    return settings


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e


def _env_int(name: str, default: int) -> int:
    return int(_env_float(name, default))


@dataclass(frozen=True)
class AppConfig:
    """Process-wide configuration, built once at startup and passed down explicitly."""

    ad_account_id: Optional[str] = None
    access_token: Optional[str] = None
    graph_version: str = "v23.0"
    graph_base: str = "https://graph.facebook.com"
    timeout: float = 30.0
    retry_max: int = 2
    backoff_base: float = 0.5
    request_budget_sec: float = 120.0
    database_url: Optional[str] = None
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    metrics_table: str = "performance_metrics"
    account_timezone: str = "UTC"
    log_level: str = "INFO"
    settings: Dict[str, Any] = field(default_factory=lambda: copy.deepcopy(DEFAULT_SETTINGS))

    def __post_init__(self) -> None:
        try:
            require_tz(self.account_timezone)
        except ValueError as e:
            raise ConfigError(str(e)) from e
        if self.timeout <= 0:
            raise ConfigError("META_TIMEOUT must be > 0")
        if self.retry_max < 0:
            raise ConfigError("META_RETRY_MAX must be >= 0")

    @classmethod
    def from_env(cls, settings_path: Optional[str] = None) -> "AppConfig":
        load_dotenv()
        path = settings_path or os.getenv("ADAPTIVE_SETTINGS") or DEFAULT_SETTINGS_PATH
        return cls(
            ad_account_id=os.getenv("META_AD_ACCOUNT_ID") or None,
            access_token=os.getenv("META_ACCESS_TOKEN") or None,
            graph_version=os.getenv("META_GRAPH_VERSION") or "v23.0",
            graph_base=(os.getenv("META_GRAPH_BASE") or "https://graph.facebook.com").rstrip("/"),
            timeout=_env_float("META_TIMEOUT", 30.0),
            retry_max=_env_int("META_RETRY_MAX", 2),
            backoff_base=_env_float("META_BACKOFF_BASE", 0.5),
            request_budget_sec=_env_float("META_REQUEST_BUDGET_SEC", 120.0),
            database_url=os.getenv("DATABASE_URL") or None,
            supabase_url=os.getenv("SUPABASE_URL") or None,
            supabase_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_ANON_KEY") or None,
            metrics_table=os.getenv("METRICS_TABLE") or "performance_metrics",
            account_timezone=os.getenv("ACCOUNT_TIMEZONE") or "UTC",
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
            settings=load_settings(path),
        )

    # -- settings accessors --
    def limit_range(self, name: str) -> Tuple[int, int]:
        rng = self.settings["limits"][name]
        return int(rng["min"]), int(rng["max"])

    def limit(self, name: str) -> int:
        return int(self.settings["limits"][name])

    @property
    def scoring(self) -> Dict[str, Any]:
        return self.settings["scoring"]

    def metrics_config(self) -> MetricsConfig:
        ext = self.settings["extraction"]
        return MetricsConfig(
            purchase_action_types=tuple(ext["purchase_action_types"]),
            roas_action_types=tuple(ext["roas_action_types"]),
        )


__all__ = ["AppConfig", "DEFAULT_SETTINGS", "SETTINGS_SCHEMA", "deep_merge", "load_settings", "load_yaml"]
