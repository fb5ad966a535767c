"""Request-scoped dependencies: app services and the caller's Meta token."""

from typing import Optional

from fastapi import Request

from adaptive.config import AppConfig
from adaptive.infrastructure.error_handling import MissingTokenError
from adaptive.infrastructure.metrics_store import MetricsStore
from adaptive.integrations.meta_client import MetaClient
from adaptive.utils import Clock


def get_config(request: Request) -> AppConfig:
    return request.app.state.config


def get_client(request: Request) -> MetaClient:
    return request.app.state.client


def get_store(request: Request) -> Optional[MetricsStore]:
    return request.app.state.store


def get_clock(request: Request) -> Clock:
    return request.app.state.clock


def get_token(request: Request) -> str:
    """Bearer token from the Authorization header, else the configured server token."""
    header = request.headers.get("authorization") or ""
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    token = request.app.state.config.access_token
    if not token:
        raise MissingTokenError("Meta token missing")
    return token
