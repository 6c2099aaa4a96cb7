from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy import JSON as SAJSON
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    func,
    select,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Engine

from .configuration import DatabaseConfig

logger = logging.getLogger(__name__)

JSON_TYPE = SAJSON().with_variant(JSONB, "postgresql")

CONTENT_TABLES = ("company_info", "services_detail", "team_members", "portfolio_items")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _content_table(name: str, metadata: MetaData) -> Table:
    return Table(
        name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("language", String(8), index=True, nullable=False, default="en"),
        Column("title", String(255), nullable=False),
        Column("subtitle", String(255), nullable=True),
        Column("slug", String(255), index=True, nullable=True),
        Column("description", Text, nullable=True),
        Column("image_url", Text, nullable=True),
        Column("details", JSON_TYPE, nullable=True),
        Column("order_index", Integer, nullable=False, default=0),
        Column("is_active", Boolean, nullable=False, default=True),
        Column("created_at", DateTime(timezone=True), nullable=False, default=utc_now),
        Column("updated_at", DateTime(timezone=True), nullable=True),
    )


def build_metadata() -> MetaData:
    metadata = MetaData()
    Table(
        "profiles",
        metadata,
        Column("id", String(64), primary_key=True),
        Column("full_name", String(255), index=True, nullable=True),
        Column("email", String(255), nullable=True),
        Column("role", String(32), nullable=False, default="customer"),
        Column("join_date", DateTime(timezone=True), nullable=False, default=utc_now),
        Column("billing_addresses", JSON_TYPE, nullable=True),
        Column("shipping_addresses", JSON_TYPE, nullable=True),
        Column("updated_at", DateTime(timezone=True), nullable=True),
    )
    Table(
        "user_goals",
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("user_id", String(64), index=True, nullable=False),
        Column("title", String(255), nullable=False),
        Column("description", Text, nullable=True),
        Column("target_date", Date, nullable=True),
        Column("target_value", Integer, nullable=True),
        Column("current_value", Integer, nullable=False, default=0),
        Column("status", String(32), nullable=False, default="pending"),
        Column("created_at", DateTime(timezone=True), nullable=False, default=utc_now),
        Column("updated_at", DateTime(timezone=True), nullable=True),
    )
    Table(
        "user_activities",
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("user_id", String(64), index=True, nullable=False),
        Column("goal_id", Integer, ForeignKey("user_goals.id", ondelete="SET NULL"), nullable=True),
        Column("activity_type", String(64), nullable=False),
        Column("description", Text, nullable=True),
        Column("mood_score", Integer, nullable=True),
        Column("created_at", DateTime(timezone=True), nullable=False, default=utc_now),
    )
    Table(
        "rfq_submissions",
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("user_email", String(255), index=True, nullable=False),
        Column("project_name", String(255), nullable=False),
        Column("product_category", String(128), nullable=True),
        Column("quantity", Integer, nullable=True),
        Column("description", Text, nullable=True),
        Column("design_file_urls", JSON_TYPE, nullable=True),
        Column("status", String(32), nullable=False, default="pending"),
        Column("created_at", DateTime(timezone=True), nullable=False, default=utc_now),
    )
    Table(
        "notifications",
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("user_id", String(64), index=True, nullable=False),
        Column("title", String(255), nullable=False),
        Column("message", Text, nullable=False),
        Column("type", String(32), nullable=False, default="info"),
        Column("is_read", Boolean, nullable=False, default=False),
        Column("action_url", Text, nullable=True),
        Column("action_text", String(255), nullable=True),
        Column("metadata", JSON_TYPE, nullable=True),
        Column("created_at", DateTime(timezone=True), nullable=False, default=utc_now),
        Column("updated_at", DateTime(timezone=True), nullable=True),
    )
    Table(
        "notification_settings",
        metadata,
        Column("user_id", String(64), primary_key=True),
        Column("notify_activity_reminders", Boolean, nullable=False, default=True),
        Column("notify_progress_updates", Boolean, nullable=False, default=True),
        Column("notify_risk_alerts", Boolean, nullable=False, default=True),
        Column("notify_weekly_summary", Boolean, nullable=False, default=True),
        Column("notify_rfq_updates", Boolean, nullable=False, default=True),
        Column("notify_goal_reminders", Boolean, nullable=False, default=True),
        Column("notify_proactive_suggestions", Boolean, nullable=False, default=True),
        Column("updated_at", DateTime(timezone=True), nullable=True),
    )
    Table(
        "contact_messages",
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("name", String(255), nullable=False),
        Column("email", String(255), nullable=False),
        Column("subject", String(255), nullable=True),
        Column("message", Text, nullable=False),
        Column("lang", String(8), nullable=True),
        Column("created_at", DateTime(timezone=True), nullable=False, default=utc_now),
    )
    for name in CONTENT_TABLES:
        _content_table(name, metadata)
    return metadata


def build_engine(config: DatabaseConfig) -> Engine:
    if not config.url:
        raise ValueError("Database URL is required (set DATABASE_URL).")
    return create_engine(
        config.url,
        future=True,
        echo=config.echo,
        pool_pre_ping=True,
        pool_recycle=config.pool_recycle_seconds,
    )


def _row_to_dict(row: Any) -> Dict[str, Any]:
    record = dict(row._mapping)
    for key, value in record.items():
        # SQLite hands back naive datetimes; everything is stored in UTC.
        if isinstance(value, datetime) and value.tzinfo is None:
            record[key] = value.replace(tzinfo=timezone.utc)
    return record


class SiteStore:
    """
    Thin predicate CRUD over the relational backend.

    Mirrors the filter vocabulary the site code uses (``eq``, ``gte``, ``lt``,
    ``ilike``, ``order``, ``range``). ``SQLAlchemyError`` propagates; callers
    decide how to degrade.
    """

    def __init__(self, engine: Engine, procedures: Iterable[str] = (), create_tables: bool = True):
        self.engine = engine
        self.metadata = build_metadata()
        self.procedures = frozenset(procedures)
        if create_tables:
            self.metadata.create_all(self.engine, checkfirst=True)

    def table(self, name: str) -> Table:
        try:
            return self.metadata.tables[name]
        except KeyError:
            raise ValueError(f"Unknown table '{name}'.") from None

    def _where(
        self,
        table: Table,
        statement: Any,
        eq: Optional[Mapping[str, Any]] = None,
        gte: Optional[Mapping[str, Any]] = None,
        lt: Optional[Mapping[str, Any]] = None,
        ilike: Optional[Mapping[str, str]] = None,
    ) -> Any:
        for column, value in (eq or {}).items():
            if value is None:
                statement = statement.where(table.c[column].is_(None))
            else:
                statement = statement.where(table.c[column] == value)
        for column, value in (gte or {}).items():
            statement = statement.where(table.c[column] >= value)
        for column, value in (lt or {}).items():
            statement = statement.where(table.c[column] < value)
        for column, pattern in (ilike or {}).items():
            statement = statement.where(table.c[column].ilike(pattern))
        return statement

    def select(
        self,
        table_name: str,
        *,
        eq: Optional[Mapping[str, Any]] = None,
        gte: Optional[Mapping[str, Any]] = None,
        lt: Optional[Mapping[str, Any]] = None,
        ilike: Optional[Mapping[str, str]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        table = self.table(table_name)
        statement = self._where(table, select(table), eq=eq, gte=gte, lt=lt, ilike=ilike)
        if order_by is not None:
            column = table.c[order_by]
            statement = statement.order_by(column.desc() if descending else column.asc())
        if limit is not None:
            statement = statement.limit(limit)
        if offset:
            statement = statement.offset(offset)
        with self.engine.connect() as connection:
            rows = connection.execute(statement).fetchall()
        return [_row_to_dict(row) for row in rows]

    def select_one(self, table_name: str, **filters: Any) -> Optional[Dict[str, Any]]:
        rows = self.select(table_name, limit=1, **filters)
        return rows[0] if rows else None

    def count(
        self,
        table_name: str,
        *,
        eq: Optional[Mapping[str, Any]] = None,
        gte: Optional[Mapping[str, Any]] = None,
        lt: Optional[Mapping[str, Any]] = None,
    ) -> int:
        table = self.table(table_name)
        statement = self._where(table, select(func.count()).select_from(table), eq=eq, gte=gte, lt=lt)
        with self.engine.connect() as connection:
            return int(connection.execute(statement).scalar_one())

    def insert(self, table_name: str, values: Mapping[str, Any]) -> Dict[str, Any]:
        table = self.table(table_name)
        with self.engine.begin() as connection:
            result = connection.execute(table.insert().values(**values))
            primary_key = result.inserted_primary_key
            key_columns = list(table.primary_key.columns)
            statement = select(table)
            for column, value in zip(key_columns, primary_key):
                statement = statement.where(column == value)
            row = connection.execute(statement).first()
        return _row_to_dict(row)

    def update(self, table_name: str, values: Mapping[str, Any], *, eq: Mapping[str, Any]) -> int:
        if not eq:
            raise ValueError("update requires at least one equality filter")
        table = self.table(table_name)
        statement = self._where(table, table.update(), eq=eq).values(**values)
        with self.engine.begin() as connection:
            result = connection.execute(statement)
        return int(result.rowcount or 0)

    def delete(self, table_name: str, *, eq: Mapping[str, Any]) -> int:
        if not eq:
            raise ValueError("delete requires at least one equality filter")
        table = self.table(table_name)
        statement = self._where(table, table.delete(), eq=eq)
        with self.engine.begin() as connection:
            result = connection.execute(statement)
        return int(result.rowcount or 0)

    def upsert(self, table_name: str, values: Mapping[str, Any], key: str) -> Dict[str, Any]:
        table = self.table(table_name)
        key_value = values[key]
        with self.engine.begin() as connection:
            result = connection.execute(
                table.update().where(table.c[key] == key_value).values(**values)
            )
            if not result.rowcount:
                connection.execute(table.insert().values(**values))
            row = connection.execute(select(table).where(table.c[key] == key_value)).first()
        return _row_to_dict(row)

    def call_procedure(self, name: str) -> None:
        """
        Invoke an argument-less stored procedure by name.

        Only names registered at construction are accepted since the name is
        interpolated into the statement.
        """

        if name not in self.procedures:
            raise ValueError(f"Procedure '{name}' is not registered.")
        with self.engine.begin() as connection:
            connection.execute(text(f"SELECT {name}()"))
        logger.debug("Called stored procedure %s", name)
