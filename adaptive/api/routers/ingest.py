"""Ingest router plus read-back of persisted performance metrics."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from adaptive import pipeline
from adaptive.api.deps import get_client, get_clock, get_config, get_store, get_token
from adaptive.api.routers.insights import flag
from adaptive.config import AppConfig
from adaptive.infrastructure.error_handling import ConfigError
from adaptive.infrastructure.metrics_store import MetricsStore
from adaptive.integrations.meta_client import MetaClient
from adaptive.utils import Clock, clamp, parse_csv

router = APIRouter(tags=["ingest"])


@router.get("/api/meta/ingest")
def ingest(
    days: int = Query(21),
    limit: int = Query(1000),
    persist: Optional[str] = Query(None),
    breakdowns: Optional[str] = Query(None),
    action_types: Optional[str] = Query(None),
    token: str = Depends(get_token),
    config: AppConfig = Depends(get_config),
    client: MetaClient = Depends(get_client),
    store: Optional[MetricsStore] = Depends(get_store),
    clock: Clock = Depends(get_clock),
) -> Dict[str, Any]:
    return pipeline.run_ingest(
        config,
        client,
        store,
        days=days,
        limit=limit,
        persist=flag(persist, False),
        breakdowns=parse_csv(breakdowns),
        action_types=parse_csv(action_types),
        token=token,
        clock=clock,
    )


@router.get("/api/metrics/{ref_id}")
def persisted_metrics(
    ref_id: str,
    scope: str = Query("ad"),
    limit: int = Query(100),
    store: Optional[MetricsStore] = Depends(get_store),
) -> Dict[str, Any]:
    if store is None:
        raise ConfigError("metrics store not configured")
    rows = store.fetch(ref_id, scope=scope, limit=clamp(limit, 1, 1000, default=100))
    return {"ref_id": ref_id, "scope": scope, "count": len(rows), "data": rows}
