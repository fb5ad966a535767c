"""Meta insights routers: ranked, top creatives, raw listing and ad validation."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query

from adaptive import pipeline
from adaptive.api.deps import get_client, get_clock, get_config, get_token
from adaptive.config import AppConfig
from adaptive.integrations.meta_client import MetaClient
from adaptive.utils import Clock, parse_csv

router = APIRouter(prefix="/api/meta", tags=["meta"])


def flag(value: Optional[str], default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@router.get("/insights/ranked")
def ranked_insights(
    days: int = Query(21),
    limit: int = Query(500),
    smoothing: Optional[str] = Query(None),
    lcb: Optional[str] = Query(None),
    alpha_ctr: Optional[float] = Query(None, ge=0),
    beta_ctr: Optional[float] = Query(None, ge=0),
    alpha_cvr: Optional[float] = Query(None, ge=0),
    beta_cvr: Optional[float] = Query(None, ge=0),
    z: Optional[float] = Query(None, ge=0),
    strategy: str = Query("efficiency"),
    action_types: Optional[str] = Query(None),
    token: str = Depends(get_token),
    config: AppConfig = Depends(get_config),
    client: MetaClient = Depends(get_client),
    clock: Clock = Depends(get_clock),
) -> Dict[str, Any]:
    """Top 50 ads by score; beta-binomial smoothing unless `smoothing=0`."""
    return pipeline.run_ranked(
        config,
        client,
        days=days,
        limit=limit,
        smoothing=flag(smoothing, True),
        lcb=flag(lcb, False),
        alpha_ctr=alpha_ctr,
        beta_ctr=beta_ctr,
        alpha_cvr=alpha_cvr,
        beta_cvr=beta_cvr,
        z=z,
        strategy=strategy,
        action_types=parse_csv(action_types),
        token=token,
        clock=clock,
    )


@router.get("/insights/top-creatives")
def top_creatives(
    days: int = Query(7),
    limit: int = Query(500),
    strategy: str = Query("profit"),
    action_types: Optional[str] = Query(None),
    token: str = Depends(get_token),
    config: AppConfig = Depends(get_config),
    client: MetaClient = Depends(get_client),
    clock: Clock = Depends(get_clock),
) -> Dict[str, Any]:
    return pipeline.run_top_creatives(
        config,
        client,
        days=days,
        limit=limit,
        strategy=strategy,
        action_types=parse_csv(action_types),
        token=token,
        clock=clock,
    )


@router.get("/insights")
def list_insights(
    days: int = Query(21),
    limit: Optional[int] = Query(None),
    breakdowns: str = Query("publisher_platform"),
    after: Optional[str] = Query(None),
    token: str = Depends(get_token),
    config: AppConfig = Depends(get_config),
    client: MetaClient = Depends(get_client),
    clock: Clock = Depends(get_clock),
) -> Dict[str, Any]:
    return pipeline.run_listing(
        config,
        client,
        days=days,
        limit=limit,
        breakdowns=parse_csv(breakdowns),
        after=after,
        token=token,
        clock=clock,
    )


@router.post("/validate")
def validate_ad(
    payload: Dict[str, Any] = Body(...),
    token: str = Depends(get_token),
    client: MetaClient = Depends(get_client),
) -> Dict[str, Any]:
    """Ask Meta to validate an ad payload without creating it."""
    return {"ok": True, "result": client.validate_ad(payload, token=token)}
