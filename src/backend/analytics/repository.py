from __future__ import annotations

import json
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import JSON as SAJSON
from sqlalchemy import Column, DateTime, Integer, MetaData, String, Table, Text, create_engine, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Engine, Row

from .models import AnalyticsEvent


def normalize_database_url(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    url = url.strip()
    # Managed Postgres hosts hand out postgres:// which SQLAlchemy rejects.
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class EventRepository:
    """
    Interface for the append-only analytics event store.

    Reads only push the time window and simple equality predicates down to
    the store; every other grouping happens in :mod:`.dataset`.
    """

    def insert(self, event: AnalyticsEvent) -> None:
        raise NotImplementedError

    def load(
        self,
        since: datetime,
        event_type: Optional[str] = None,
        user_id: Optional[str] = None,
        require_user: bool = False,
    ) -> Sequence[AnalyticsEvent]:
        raise NotImplementedError

    def purge_before(self, cutoff: datetime) -> int:
        raise NotImplementedError


class SQLEventRepository(EventRepository):
    """
    Store events in the ``analytics_events`` table:

      analytics_events(id, event_type, event_data, user_id, session_id,
                       timestamp, user_agent, ip_address)
    """

    def __init__(self, engine: Engine, table_name: str = "analytics_events", create_tables: bool = True):
        self.engine = engine
        self.metadata = MetaData()
        json_type = SAJSON().with_variant(JSONB, "postgresql")
        self.table = Table(
            table_name,
            self.metadata,
            Column("id", Integer, primary_key=True, autoincrement=True),
            Column("event_type", String(128), index=True, nullable=False),
            Column("event_data", json_type, nullable=False),
            Column("user_id", String(128), index=True, nullable=True),
            Column("session_id", String(128), nullable=False),
            Column("timestamp", DateTime(timezone=True), index=True, nullable=False, server_default=func.now()),
            Column("user_agent", Text, nullable=True),
            Column("ip_address", String(64), nullable=True),
        )
        if create_tables:
            self.metadata.create_all(self.engine, checkfirst=True)

    def insert(self, event: AnalyticsEvent) -> None:
        row = event.as_row()
        row["timestamp"] = _as_utc(event.timestamp)
        with self.engine.begin() as connection:
            connection.execute(self.table.insert().values(**row))

    def load(
        self,
        since: datetime,
        event_type: Optional[str] = None,
        user_id: Optional[str] = None,
        require_user: bool = False,
    ) -> Sequence[AnalyticsEvent]:
        query = self.table.select().where(self.table.c.timestamp >= _as_utc(since))
        if event_type is not None:
            query = query.where(self.table.c.event_type == event_type)
        if user_id is not None:
            query = query.where(self.table.c.user_id == user_id)
        if require_user:
            query = query.where(self.table.c.user_id.is_not(None))
        query = query.order_by(self.table.c.timestamp.asc(), self.table.c.id.asc())

        with self.engine.connect() as connection:
            rows = connection.execute(query).fetchall()
        return tuple(self._row_to_event(row) for row in rows)

    def purge_before(self, cutoff: datetime) -> int:
        statement = self.table.delete().where(self.table.c.timestamp < _as_utc(cutoff))
        with self.engine.begin() as connection:
            result = connection.execute(statement)
        return int(result.rowcount or 0)

    @staticmethod
    def _row_to_event(row: Row) -> AnalyticsEvent:
        event_data = row.event_data
        if isinstance(event_data, str):
            try:
                event_data = json.loads(event_data)
            except json.JSONDecodeError:
                event_data = {}
        if not isinstance(event_data, dict):
            event_data = {}
        return AnalyticsEvent(
            id=row.id,
            event_type=row.event_type,
            event_data=event_data,
            user_id=row.user_id,
            session_id=row.session_id,
            timestamp=_as_utc(row.timestamp),
            user_agent=row.user_agent,
            ip_address=row.ip_address,
        )


@dataclass(frozen=True)
class RepositoryConfig:
    database_url: Optional[str] = None
    table_name: str = "analytics_events"

    @classmethod
    def from_env(cls) -> "RepositoryConfig":
        return cls(
            database_url=normalize_database_url(os.getenv("ANALYTICS_DATABASE_URL") or os.getenv("DATABASE_URL")),
            table_name=os.getenv("ANALYTICS_TABLE", "analytics_events"),
        )


def build_repository_from_env(config: Optional[RepositoryConfig] = None) -> Optional[EventRepository]:
    cfg = config or RepositoryConfig.from_env()
    if cfg.database_url:
        engine = create_engine(cfg.database_url, future=True, pool_pre_ping=True)
        return SQLEventRepository(engine, table_name=cfg.table_name)
    return None
