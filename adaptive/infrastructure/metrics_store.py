from __future__ import annotations

import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from prometheus_client import Counter, Histogram
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from supabase import create_client

from adaptive.analytics.scoring import ScoredRow
from adaptive.infrastructure.data_validation import validate_record
from adaptive.infrastructure.error_handling import ConfigError, PersistenceError
from adaptive.utils import InsightsWindow

logger = logging.getLogger(__name__)

PERSIST_BATCHES = Counter("adaptive_persist_batches_total", "Metrics insert batches", ["result"])
PERSIST_LATENCY = Histogram("adaptive_persist_latency_seconds", "Metrics insert batch latency")

DEFAULT_BATCH_SIZE = 200
_IDENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

COLUMNS = (
    "scope",
    "ref_id",
    "window_since",
    "window_until",
    "impressions",
    "clicks",
    "purchases",
    "spend",
    "revenue",
    "ctr",
    "roas",
    "created_at",
)


def _iso(dt: datetime) -> str:
    return dt.replace(microsecond=0).isoformat()


@dataclass
class PersistedMetric:
    scope: str
    ref_id: str
    window_since: str
    window_until: str
    impressions: float
    clicks: float
    purchases: float
    spend: float
    revenue: float
    ctr: float
    roas: Optional[float]
    created_at: str

    def as_record(self) -> Dict[str, Any]:
        return asdict(self)


def to_persisted(
    row: ScoredRow,
    window: InsightsWindow,
    scope: str = "ad",
    created_at: Optional[datetime] = None,
) -> PersistedMetric:
    """Storage form of a scored row: ctr as a 0..1 fraction, roas derived from revenue/spend when absent."""
    if row.roas and row.roas > 0:
        roas: Optional[float] = float(row.roas)
    elif row.spend > 0:
        roas = row.purchase_value / row.spend
    else:
        roas = None
    return PersistedMetric(
        scope=scope,
        ref_id=str(row.ad_id or ""),
        window_since=window.since_str,
        window_until=window.until_str,
        impressions=row.impressions,
        clicks=row.clicks,
        purchases=row.purchases,
        spend=row.spend,
        revenue=row.purchase_value,
        ctr=(row.ctr_pct or 0.0) / 100.0,
        roas=roas,
        created_at=_iso(created_at or datetime.now(timezone.utc)),
    )


class MetricsStore(ABC):
    name = "base"

    @abstractmethod
    def insert_batch(self, records: Sequence[Dict[str, Any]]) -> int:
        """Insert all records atomically; return the number written or raise PersistenceError."""

    @abstractmethod
    def fetch(self, ref_id: str, scope: str = "ad", limit: int = 100) -> List[Dict[str, Any]]:
        ...

    def ensure_schema(self) -> None:
        pass


class SqlMetricsStore(MetricsStore):
    name = "sql"

    def __init__(self, engine: Engine, table: str = "performance_metrics") -> None:
        if not _IDENT.match(table or ""):
            raise ConfigError(f"Invalid metrics table name: {table!r}")
        self.eng = engine
        self.table = table

    @classmethod
    def from_url(cls, url: str, table: str = "performance_metrics") -> "SqlMetricsStore":
        return cls(create_engine(url, pool_pre_ping=True), table)

    def close(self) -> None:
        self.eng.dispose()

    def ensure_schema(self) -> None:
        # No unique key on (scope, ref_id, window): every ingest run appends.
        with self.eng.begin() as c:
            c.exec_driver_sql(f"""
              CREATE TABLE IF NOT EXISTS {self.table}(
                scope TEXT NOT NULL,
                ref_id TEXT NOT NULL,
                window_since DATE NOT NULL,
                window_until DATE NOT NULL,
                impressions DOUBLE PRECISION NOT NULL DEFAULT 0,
                clicks DOUBLE PRECISION NOT NULL DEFAULT 0,
                purchases DOUBLE PRECISION NOT NULL DEFAULT 0,
                spend DOUBLE PRECISION NOT NULL DEFAULT 0,
                revenue DOUBLE PRECISION NOT NULL DEFAULT 0,
                ctr DOUBLE PRECISION NOT NULL DEFAULT 0,
                roas DOUBLE PRECISION,
                created_at TIMESTAMP NOT NULL
              );""")
            c.exec_driver_sql(
                f"CREATE INDEX IF NOT EXISTS idx_{self.table}_ref "
                f"ON {self.table}(scope, ref_id, window_since, window_until);"
            )

    def insert_batch(self, records: Sequence[Dict[str, Any]]) -> int:
        if not records:
            return 0
        cols = ", ".join(COLUMNS)
        binds = ", ".join(f":{c}" for c in COLUMNS)
        sql = f"INSERT INTO {self.table} ({cols}) VALUES ({binds})"
        try:
            # one transaction per batch; the connection goes back to the pool on exit
            with self.eng.begin() as c:
                c.execute(text(sql), [dict(r) for r in records])
        except SQLAlchemyError as e:
            raise PersistenceError(f"insert into {self.table} failed: {e}") from e
        return len(records)

    def fetch(self, ref_id: str, scope: str = "ad", limit: int = 100) -> List[Dict[str, Any]]:
        sql = (
            f"SELECT {', '.join(COLUMNS)} FROM {self.table} "
            "WHERE scope=:scope AND ref_id=:ref_id "
            "ORDER BY window_until DESC, created_at DESC LIMIT :limit"
        )
        try:
            with self.eng.connect() as c:
                rows = c.execute(text(sql), {"scope": scope, "ref_id": ref_id, "limit": int(limit)}).mappings().all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"read from {self.table} failed: {e}") from e
        return [_plain(r) for r in rows]


def _plain(row: Any) -> Dict[str, Any]:
    out = {}
    for k, v in dict(row).items():
        out[k] = v.isoformat() if hasattr(v, "isoformat") else v
    return out


def _log_supabase_error(operation: str, table: str, error: Any) -> None:
    code = None
    details = None
    for arg in getattr(error, "args", ()):
        if isinstance(arg, dict):
            code = code or arg.get("code")
            details = details or arg.get("details") or arg.get("hint")
    logger.error("Supabase %s on %s failed (code=%s): %s %s", operation, table, code, error, details or "")


class SupabaseMetricsStore(MetricsStore):
    name = "supabase"

    def __init__(self, client: Any, table: str = "performance_metrics") -> None:
        self.client = client
        self.table = table

    @classmethod
    def from_credentials(cls, url: str, key: str, table: str = "performance_metrics") -> "SupabaseMetricsStore":
        return cls(create_client(url, key), table)

    def insert_batch(self, records: Sequence[Dict[str, Any]]) -> int:
        if not records:
            return 0
        try:
            self.client.table(self.table).insert([dict(r) for r in records]).execute()
        except Exception as e:
            _log_supabase_error("insert", self.table, e)
            raise PersistenceError(f"insert into {self.table} failed: {e}") from e
        return len(records)

    def fetch(self, ref_id: str, scope: str = "ad", limit: int = 100) -> List[Dict[str, Any]]:
        try:
            resp = (
                self.client.table(self.table)
                .select("*")
                .eq("scope", scope)
                .eq("ref_id", ref_id)
                .order("window_until", desc=True)
                .limit(int(limit))
                .execute()
            )
        except Exception as e:
            _log_supabase_error("select", self.table, e)
            raise PersistenceError(f"read from {self.table} failed: {e}") from e
        return list(getattr(resp, "data", None) or [])


def create_metrics_store(config: Any) -> Optional[MetricsStore]:
    """SQL store when DATABASE_URL is set, else Supabase when credentials are, else None."""
    if config.database_url:
        logger.info("Metrics store: SQL (%s)", config.metrics_table)
        return SqlMetricsStore.from_url(config.database_url, config.metrics_table)
    if config.supabase_url and config.supabase_key:
        logger.info("Metrics store: Supabase (%s)", config.metrics_table)
        return SupabaseMetricsStore.from_credentials(config.supabase_url, config.supabase_key, config.metrics_table)
    logger.info("Metrics store: none configured")
    return None


@dataclass
class PersistResult:
    persisted: int = 0
    batches: int = 0
    status: str = "skipped"
    error: Optional[str] = None


def persist_rows(
    store: Optional[MetricsStore],
    rows: Sequence[ScoredRow],
    window: InsightsWindow,
    batch_size: int = DEFAULT_BATCH_SIZE,
    scope: str = "ad",
    created_at: Optional[datetime] = None,
) -> PersistResult:
    """Write rows in fixed-size batches. The first failing batch stops the run; earlier batches stay."""
    if store is None:
        return PersistResult(status="error", error="no metrics store configured")
    size = max(1, int(batch_size))
    stamp = created_at or datetime.now(timezone.utc)
    result = PersistResult(status="ok")
    for start in range(0, len(rows), size):
        batch = rows[start:start + size]
        started = time.perf_counter()
        try:
            records = [to_persisted(r, window, scope=scope, created_at=stamp).as_record() for r in batch]
            for rec in records:
                validate_record(rec)
            result.persisted += store.insert_batch(records)
        except PersistenceError as e:
            PERSIST_BATCHES.labels(result="error").inc()
            logger.error("Persist batch %d failed after %d rows: %s", result.batches + 1, result.persisted, e)
            result.status = "error"
            result.error = str(e)
            return result
        finally:
            PERSIST_LATENCY.observe(time.perf_counter() - started)
        result.batches += 1
        PERSIST_BATCHES.labels(result="ok").inc()
    logger.info("Persisted %d rows in %d batches", result.persisted, result.batches)
    return result


__all__ = [
    "COLUMNS",
    "DEFAULT_BATCH_SIZE",
    "MetricsStore",
    "PersistResult",
    "PersistedMetric",
    "SqlMetricsStore",
    "SupabaseMetricsStore",
    "create_metrics_store",
    "persist_rows",
    "to_persisted",
]
