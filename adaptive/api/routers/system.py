from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from adaptive.api.deps import get_client, get_config, get_store
from adaptive.config import AppConfig
from adaptive.infrastructure.metrics_store import MetricsStore
from adaptive.integrations.meta_client import MetaClient

router = APIRouter(tags=["system"])


@router.get("/api/health")
def health(
    config: AppConfig = Depends(get_config),
    client: MetaClient = Depends(get_client),
    store: Optional[MetricsStore] = Depends(get_store),
) -> Dict[str, Any]:
    return {
        "ok": True,
        "account_configured": client.account_configured,
        "token_configured": bool(config.access_token),
        "store": store.name if store is not None else None,
    }


@router.get("/metrics")
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
