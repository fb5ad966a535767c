from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from adaptive.config import AppConfig
from adaptive.infrastructure.metrics_store import SqlMetricsStore
from adaptive.integrations.meta_client import AccountAuth, ClientConfig, MetaClient
from adaptive.utils import FixedClock
from tests.fakes import FakeSession


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def config():
    return AppConfig(ad_account_id="123", access_token="server-token")


@pytest.fixture
def client(session):
    return MetaClient(
        AccountAuth("act_123", "server-token"),
        ClientConfig(retry_max=2, backoff_base=0.01),
        session=session,
        sleep=lambda _s: None,
    )


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    yield eng
    eng.dispose()


@pytest.fixture
def store(engine):
    s = SqlMetricsStore(engine, "performance_metrics")
    s.ensure_schema()
    return s


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 5, 21, 12, 0, tzinfo=timezone.utc))
