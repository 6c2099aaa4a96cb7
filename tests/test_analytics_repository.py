from __future__ import annotations

from datetime import datetime, timedelta, timezone

from backend.analytics import AnalyticsEvent, RepositoryConfig, build_repository_from_env


def _event(at, event_type="page_view", user_id=None, **data):
    return AnalyticsEvent(event_type=event_type, session_id="session_test", timestamp=at, event_data=data, user_id=user_id)


def test_load_returns_events_since_oldest_first(repository, now):
    repository.insert(_event(now, page="home"))
    repository.insert(_event(now - timedelta(hours=2), page="about"))
    repository.insert(_event(now - timedelta(days=40), page="old"))

    events = repository.load(now - timedelta(days=30))

    assert [event.event_data["page"] for event in events] == ["about", "home"]
    assert all(event.timestamp.tzinfo is not None for event in events)
    assert events[0].id is not None


def test_load_filters_by_type_and_user(repository, now):
    repository.insert(_event(now, "page_view", user_id="u1"))
    repository.insert(_event(now, "rfq_submitted", user_id="u1"))
    repository.insert(_event(now, "page_view", user_id="u2"))
    repository.insert(_event(now, "page_view"))

    since = now - timedelta(days=1)

    assert len(repository.load(since, event_type="page_view")) == 3
    assert len(repository.load(since, user_id="u1")) == 2
    assert {event.user_id for event in repository.load(since, require_user=True)} == {"u1", "u2"}


def test_insert_normalizes_timestamps_to_utc(repository):
    offset = timezone(timedelta(hours=7))
    local = datetime(2024, 5, 15, 6, 30, tzinfo=offset)
    repository.insert(_event(local))

    (event,) = repository.load(datetime(2024, 5, 14, tzinfo=timezone.utc))

    assert event.timestamp == datetime(2024, 5, 14, 23, 30, tzinfo=timezone.utc)


def test_purge_removes_only_rows_strictly_older_than_cutoff(repository, now):
    cutoff = now - timedelta(days=90)
    repository.insert(_event(cutoff - timedelta(seconds=1), page="older"))
    repository.insert(_event(cutoff, page="boundary"))
    repository.insert(_event(cutoff + timedelta(seconds=1), page="newer"))

    purged = repository.purge_before(cutoff)

    remaining = repository.load(cutoff - timedelta(days=1))
    assert purged == 1
    assert [event.event_data["page"] for event in remaining] == ["boundary", "newer"]


def test_build_repository_from_env_without_url_returns_none():
    assert build_repository_from_env(RepositoryConfig(database_url=None)) is None


def test_repository_config_prefers_analytics_url(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite:///main.db")
    monkeypatch.setenv("ANALYTICS_DATABASE_URL", "sqlite:///analytics.db")
    monkeypatch.delenv("ANALYTICS_TABLE", raising=False)

    config = RepositoryConfig.from_env()

    assert config.database_url == "sqlite:///analytics.db"
    assert config.table_name == "analytics_events"


def test_repository_config_normalizes_postgres_scheme(monkeypatch):
    monkeypatch.delenv("ANALYTICS_DATABASE_URL", raising=False)
    monkeypatch.setenv("DATABASE_URL", "postgres://user:pw@db.example.com/site")

    assert RepositoryConfig.from_env().database_url == "postgresql://user:pw@db.example.com/site"
