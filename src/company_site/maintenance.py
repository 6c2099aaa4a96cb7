"""
Daily maintenance job.

Runs the risk score and proactive notification stored procedures and the
analytics retention purge. Each task is independent; a failure is logged and
the remaining tasks still run.

    company-site-maintenance --days-to-keep 90
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import dataclass
from typing import Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from backend.analytics import AnalyticsService, EventRepository, SQLEventRepository

from .configuration import SiteConfig, load_site_config
from .storage import SiteStore, build_engine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MaintenanceReport:
    risk_scores_updated: bool
    notifications_generated: bool
    analytics_cleaned: bool

    @property
    def ok(self) -> bool:
        return self.risk_scores_updated and self.notifications_generated and self.analytics_cleaned


def _call_procedure(store: SiteStore, name: str, description: str) -> bool:
    logger.info("Starting %s...", description)
    try:
        store.call_procedure(name)
    except SQLAlchemyError as exc:
        logger.error("Error during %s: %s", description, exc)
        return False
    logger.info("Finished %s", description)
    return True


def update_user_risk_scores(store: SiteStore, config: SiteConfig) -> bool:
    return _call_procedure(store, config.maintenance.risk_score_procedure, "user risk score update")


def generate_proactive_notifications(store: SiteStore, config: SiteConfig) -> bool:
    return _call_procedure(store, config.maintenance.notification_procedure, "proactive notification generation")


def cleanup_old_analytics_events(repository: EventRepository, days_to_keep: int) -> bool:
    logger.info("Starting cleanup of analytics events older than %s days...", days_to_keep)
    purged = AnalyticsService(repository).cleanup_old_events(days_to_keep)
    if purged is None:
        logger.error("Error during analytics event cleanup")
        return False
    return True


def run_maintenance(
    store: SiteStore,
    repository: EventRepository,
    config: SiteConfig,
    days_to_keep: Optional[int] = None,
) -> MaintenanceReport:
    logger.info("Running maintenance tasks...")
    report = MaintenanceReport(
        risk_scores_updated=update_user_risk_scores(store, config),
        notifications_generated=generate_proactive_notifications(store, config),
        analytics_cleaned=cleanup_old_analytics_events(
            repository, days_to_keep if days_to_keep is not None else config.analytics.retention_days
        ),
    )
    if report.ok:
        logger.info("All maintenance tasks completed successfully.")
    else:
        logger.warning("One or more maintenance tasks failed: %s", report)
    return report


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Run the daily company site maintenance tasks.")
    parser.add_argument("--days-to-keep", type=int, default=None, help="Analytics retention in days.")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_site_config()
    store = SiteStore(build_engine(config.database), procedures=config.procedures, create_tables=False)
    analytics_engine = store.engine
    if config.analytics.database_url:
        analytics_engine = build_engine(config.database.model_copy(update={"url": config.analytics.database_url}))
    repository = SQLEventRepository(analytics_engine, create_tables=False)

    report = run_maintenance(store, repository, config, days_to_keep=args.days_to_keep)
    return 0 if report.ok else 1


if __name__ == "__main__":
    sys.exit(main())
