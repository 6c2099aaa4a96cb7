from __future__ import annotations

import re
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from backend.analytics import (
    AnalyticsEvent,
    AnalyticsService,
    DashboardAnalyticsSummary,
    EventRepository,
    RealtimeStats,
    UserAnalyticsSummary,
)
from backend.analytics.service import (
    CHATBOT_MESSAGE_SENT,
    RFQ_SUBMITTED,
    SERVICE_PAGE_VISITED,
    generate_session_id,
)


class FailingRepository(EventRepository):
    def _fail(self, *args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("database is down"))

    insert = _fail
    load = _fail
    purge_before = _fail


def _seed(repository, now, event_type, offset, user_id=None, **data):
    repository.insert(
        AnalyticsEvent(
            event_type=event_type,
            session_id="session_seed",
            timestamp=now - offset,
            event_data=data,
            user_id=user_id,
        )
    )


def test_generate_session_id_format():
    assert re.fullmatch(r"session_\d+_[0-9a-z]{9}", generate_session_id())


def test_track_event_fills_session_and_ip(analytics, repository, now):
    assert analytics.track_page_view("home", "u1")

    (event,) = repository.load(now - timedelta(minutes=1))
    assert event.event_type == "page_view"
    assert event.event_data == {"page": "home"}
    assert event.session_id == "session_test"
    assert event.ip_address == "unknown"
    assert event.timestamp == now


def test_track_chatbot_interaction_truncates_message(analytics, repository, now):
    analytics.track_chatbot_interaction("user", "x" * 150)

    (event,) = repository.load(now - timedelta(minutes=1))
    assert len(event.event_data["message"]) == 100
    assert event.event_data["messageLength"] == 150


def test_track_chatbot_interaction_rejects_unknown_sender(analytics):
    with pytest.raises(ValueError):
        analytics.track_chatbot_interaction("system", "hello")


def test_daily_event_counts_zero_filled(analytics, repository, now):
    _seed(repository, now, RFQ_SUBMITTED, timedelta(days=2))
    _seed(repository, now, RFQ_SUBMITTED, timedelta(days=2, hours=1))
    _seed(repository, now, RFQ_SUBMITTED, timedelta(0))
    _seed(repository, now, CHATBOT_MESSAGE_SENT, timedelta(days=1))

    counts = analytics.daily_event_counts(RFQ_SUBMITTED, 3)

    assert [point.count for point in counts] == [2, 0, 1]
    assert counts[-1].day == now.date()


def test_daily_active_users(analytics, repository, now):
    _seed(repository, now, CHATBOT_MESSAGE_SENT, timedelta(hours=1), user_id="a")
    _seed(repository, now, CHATBOT_MESSAGE_SENT, timedelta(hours=2), user_id="a")
    _seed(repository, now, SERVICE_PAGE_VISITED, timedelta(hours=3), user_id="b")
    _seed(repository, now, SERVICE_PAGE_VISITED, timedelta(hours=3))

    assert [point.count for point in analytics.daily_active_users(2)] == [0, 2]


def test_dashboard_summary(analytics, repository, now):
    _seed(repository, now, SERVICE_PAGE_VISITED, timedelta(days=1), user_id="a", serviceName="Welding")
    _seed(repository, now, SERVICE_PAGE_VISITED, timedelta(days=2), user_id="b", serviceName="Welding")
    _seed(repository, now, SERVICE_PAGE_VISITED, timedelta(days=9), user_id="a", serviceName="Painting")
    _seed(repository, now, CHATBOT_MESSAGE_SENT, timedelta(days=3), user_id="a")

    summary = analytics.dashboard_summary().as_dict()

    assert summary["totalServicePageViews"] == 3
    assert summary["totalChatbotInteractions"] == 1
    assert summary["totalRFQSubmissions"] == 0
    assert summary["weeklyGrowthRate"] == pytest.approx(200.0)
    assert summary["topServices"] == [{"service": "Welding", "views": 2}, {"service": "Painting", "views": 1}]
    assert summary["userEngagementScore"] == pytest.approx(2.0)


def test_user_summary(analytics, repository, now):
    _seed(repository, now, SERVICE_PAGE_VISITED, timedelta(days=4), user_id="u1", serviceName="CNC")
    _seed(repository, now, SERVICE_PAGE_VISITED, timedelta(days=1), user_id="u1", serviceName="CNC")
    _seed(repository, now, RFQ_SUBMITTED, timedelta(hours=1), user_id="u1")
    _seed(repository, now, RFQ_SUBMITTED, timedelta(hours=1), user_id="someone-else")

    summary = analytics.user_summary("u1").as_dict()

    assert summary["totalServicePageViews"] == 2
    assert summary["totalRFQSubmissions"] == 1
    assert summary["favoriteServices"] == ["CNC"]
    assert summary["lastActivityDate"] == (now - timedelta(hours=1)).isoformat()
    assert summary["engagementScore"] == pytest.approx(3 / 4)


def test_user_summary_without_events(analytics):
    assert analytics.user_summary("nobody") == UserAnalyticsSummary()
    assert analytics.user_summary("nobody").as_dict()["lastActivityDate"] == ""


def test_service_page_views_chart(analytics, repository, now):
    for name, views in (("Welding", 1), ("CNC", 3)):
        for _ in range(views):
            _seed(repository, now, SERVICE_PAGE_VISITED, timedelta(days=1), serviceName=name)

    chart = analytics.service_page_views_chart().as_dict()

    assert chart["labels"] == ["CNC", "Welding"]
    assert chart["datasets"][0]["data"] == [3, 1]
    assert chart["datasets"][0]["label"] == "Page Views"


def test_line_charts_carry_styling(analytics):
    chart = analytics.chatbot_interactions_chart(7).as_dict()

    assert len(chart["labels"]) == 7
    dataset = chart["datasets"][0]
    assert dataset["data"] == [0] * 7
    assert dataset["borderWidth"] == 2
    assert dataset["borderColor"].startswith("rgba(")


def test_realtime_stats(analytics, repository, now):
    _seed(repository, now, CHATBOT_MESSAGE_SENT, timedelta(minutes=10), user_id="a")
    _seed(repository, now, CHATBOT_MESSAGE_SENT, timedelta(minutes=20), user_id="b")
    _seed(repository, now, SERVICE_PAGE_VISITED, timedelta(hours=3), user_id="c")
    _seed(repository, now, SERVICE_PAGE_VISITED, timedelta(days=2), user_id="d")

    stats = analytics.realtime_stats().as_dict()

    assert stats["activeUsers"] == 2
    assert stats["todayEvents"] == 3
    assert stats["topEventTypes"] == [
        {"type": CHATBOT_MESSAGE_SENT, "count": 2},
        {"type": SERVICE_PAGE_VISITED, "count": 1},
    ]


def test_cleanup_old_events(analytics, repository, now):
    _seed(repository, now, CHATBOT_MESSAGE_SENT, timedelta(days=120))
    _seed(repository, now, CHATBOT_MESSAGE_SENT, timedelta(days=10))

    assert analytics.cleanup_old_events(90) == 1
    assert len(repository.load(now - timedelta(days=365))) == 1


def test_store_failures_degrade_to_defaults(now):
    service = AnalyticsService(FailingRepository(), clock=lambda: now)

    assert service.track_page_view("home") is False
    assert service.dashboard_summary() == DashboardAnalyticsSummary()
    assert service.realtime_stats() == RealtimeStats()
    assert service.user_summary("u1") == UserAnalyticsSummary()
    assert service.daily_event_counts(RFQ_SUBMITTED, 7) == []
    assert service.daily_active_users(7) == []
    assert service.rfq_trends_chart().as_dict() == {"labels": [], "datasets": []}
    assert service.cleanup_old_events() is None
