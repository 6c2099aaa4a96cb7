from __future__ import annotations

from datetime import datetime, timezone
from typing import List

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.pool import StaticPool

from backend.analytics import AnalyticsService, SQLEventRepository
from company_site.storage import SiteStore

NOW = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)
PROCEDURES = ("update_user_risk_scores", "generate_proactive_notifications")


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def procedure_calls() -> List[str]:
    return []


@pytest.fixture
def engine(procedure_calls):
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Stand-ins for the stored procedures of the hosted backend.
    @event.listens_for(engine, "connect")
    def _register_procedures(dbapi_connection, _record):
        for name in PROCEDURES:
            dbapi_connection.create_function(name, 0, lambda name=name: procedure_calls.append(name) or 1)

    yield engine
    engine.dispose()


@pytest.fixture
def store(engine) -> SiteStore:
    return SiteStore(engine, procedures=PROCEDURES)


@pytest.fixture
def repository(engine) -> SQLEventRepository:
    return SQLEventRepository(engine)


@pytest.fixture
def analytics(repository, now) -> AnalyticsService:
    return AnalyticsService(repository, session_id="session_test", clock=lambda: now)
