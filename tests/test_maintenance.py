from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy.exc import OperationalError

from backend.analytics import AnalyticsEvent, EventRepository
from company_site import maintenance
from company_site.configuration import MaintenanceConfig, SiteConfig
from company_site.maintenance import cleanup_old_analytics_events, run_maintenance
from company_site.storage import utc_now


class BrokenRepository(EventRepository):
    def purge_before(self, cutoff):
        raise OperationalError("DELETE", {}, Exception("database is down"))


def test_run_maintenance_calls_procedures_and_purges(store, repository, procedure_calls):
    old = utc_now() - timedelta(days=120)
    repository.insert(AnalyticsEvent(event_type="page_view", session_id="s", timestamp=old))
    repository.insert(AnalyticsEvent(event_type="page_view", session_id="s", timestamp=utc_now()))

    report = run_maintenance(store, repository, SiteConfig())

    assert report.ok
    assert procedure_calls == ["update_user_risk_scores", "generate_proactive_notifications"]
    assert len(repository.load(old - timedelta(days=1))) == 1


def test_failed_task_does_not_stop_the_others(store, repository, procedure_calls, caplog):
    config = SiteConfig(maintenance=MaintenanceConfig(risk_score_procedure="missing_procedure"))
    store.procedures = store.procedures | {"missing_procedure"}

    with caplog.at_level(logging.ERROR, logger="company_site.maintenance"):
        report = run_maintenance(store, repository, config, days_to_keep=30)

    assert not report.risk_scores_updated
    assert report.notifications_generated
    assert report.analytics_cleaned
    assert not report.ok
    assert procedure_calls == ["generate_proactive_notifications"]
    assert "user risk score update" in caplog.text


def test_cleanup_reports_store_failure():
    assert cleanup_old_analytics_events(BrokenRepository(), 90) is False


def test_main_exit_codes(monkeypatch, store, repository):
    reports = iter([True, False])

    def fake_run(*args, **kwargs):
        ok = next(reports)
        return maintenance.MaintenanceReport(ok, True, True)

    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    monkeypatch.delenv("ANALYTICS_DATABASE_URL", raising=False)
    monkeypatch.setattr(maintenance, "run_maintenance", fake_run)

    assert maintenance.main([]) == 0
    assert maintenance.main(["--days-to-keep", "30"]) == 1
