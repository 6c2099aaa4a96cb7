"""
Environment driven configuration for the company site backend.
"""

from __future__ import annotations

import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

from backend.analytics.repository import normalize_database_url

load_dotenv()


class DatabaseConfig(BaseModel):
    url: Optional[str] = None
    echo: bool = False
    pool_recycle_seconds: int = 300


class AnalyticsConfig(BaseModel):
    database_url: Optional[str] = None
    """Defaults to the main database when unset."""

    timezone: str = "UTC"
    """Timezone used to bucket events into calendar days."""

    retention_days: int = 90


class EmailConfig(BaseModel):
    api_key: Optional[str] = None
    sender: Optional[str] = None
    company_email: Optional[str] = None
    company_name: str = "PT Company Emran Ghanim Asahi"

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.sender and self.company_email)


class NotificationConfig(BaseModel):
    list_limit: int = 20
    dedupe_hours: int = 24
    goal_reminder_days: int = 3
    rfq_follow_up_days: int = 3
    low_activity_window_days: int = 7
    low_activity_threshold: int = 3


class MaintenanceConfig(BaseModel):
    risk_score_procedure: str = "update_user_risk_scores"
    notification_procedure: str = "generate_proactive_notifications"


class SiteConfig(BaseModel):
    """Configuration for the company site backend."""

    database: DatabaseConfig = DatabaseConfig()
    analytics: AnalyticsConfig = AnalyticsConfig()
    email: EmailConfig = EmailConfig()
    notifications: NotificationConfig = NotificationConfig()
    maintenance: MaintenanceConfig = MaintenanceConfig()
    cors_allow_origins: List[str] = ["*"]

    @property
    def analytics_database_url(self) -> Optional[str]:
        return self.analytics.database_url or self.database.url

    @property
    def procedures(self) -> List[str]:
        return [self.maintenance.risk_score_procedure, self.maintenance.notification_procedure]


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def load_site_config() -> SiteConfig:
    cfg = SiteConfig()

    cfg.database = DatabaseConfig(
        url=normalize_database_url(os.getenv("DATABASE_URL")),
        echo=_env_bool("SQL_ECHO", cfg.database.echo),
        pool_recycle_seconds=_env_int("DB_POOL_RECYCLE_SECONDS", cfg.database.pool_recycle_seconds),
    )

    cfg.analytics = AnalyticsConfig(
        database_url=normalize_database_url(os.getenv("ANALYTICS_DATABASE_URL")),
        timezone=os.getenv("ANALYTICS_TIMEZONE", cfg.analytics.timezone),
        retention_days=_env_int("ANALYTICS_RETENTION_DAYS", cfg.analytics.retention_days),
    )

    cfg.email = EmailConfig(
        api_key=os.getenv("RESEND_API_KEY") or None,
        sender=os.getenv("EMAIL_FROM") or None,
        company_email=os.getenv("COMPANY_EMAIL") or None,
        company_name=os.getenv("COMPANY_NAME", cfg.email.company_name),
    )

    cfg.notifications = NotificationConfig(
        list_limit=_env_int("NOTIFICATION_LIST_LIMIT", cfg.notifications.list_limit),
        dedupe_hours=_env_int("NOTIFICATION_DEDUPE_HOURS", cfg.notifications.dedupe_hours),
        goal_reminder_days=_env_int("GOAL_REMINDER_DAYS", cfg.notifications.goal_reminder_days),
        rfq_follow_up_days=_env_int("RFQ_FOLLOW_UP_DAYS", cfg.notifications.rfq_follow_up_days),
        low_activity_window_days=_env_int("LOW_ACTIVITY_WINDOW_DAYS", cfg.notifications.low_activity_window_days),
        low_activity_threshold=_env_int("LOW_ACTIVITY_THRESHOLD", cfg.notifications.low_activity_threshold),
    )

    origins = os.getenv("CORS_ALLOW_ORIGINS")
    if origins:
        cfg.cors_allow_origins = [origin.strip() for origin in origins.split(",") if origin.strip()]

    return cfg
