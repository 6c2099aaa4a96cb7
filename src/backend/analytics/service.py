from __future__ import annotations

import logging
import math
import random
import string
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Mapping, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from .dataset import EventDataset, coerce_timezone, normalize_datetime, rank, window_start
from .models import (
    AnalyticsEvent,
    ChartData,
    ChartDataset,
    DailyCount,
    DashboardAnalyticsSummary,
    RealtimeStats,
    UserAnalyticsSummary,
    UserDashboardCounts,
)
from .repository import EventRepository

logger = logging.getLogger(__name__)

PAGE_VIEW = "page_view"
SERVICE_PAGE_VISITED = "service_page_visited"
CHATBOT_MESSAGE_SENT = "chatbot_message_sent"
RFQ_SUBMITTED = "rfq_submitted"
CONTACT_SUBMITTED = "contact_submitted"
USER_GOAL_CREATED = "user_goal_created"
USER_ACTIVITY_LOGGED = "user_activity_logged"
FEATURE_USED = "feature_used"
SEARCH_PERFORMED = "search_performed"
FILE_DOWNLOADED = "file_downloaded"
ERROR_OCCURRED = "error_occurred"

SUMMARY_WINDOW_DAYS = 30
DEFAULT_RETENTION_DAYS = 90

SERVICE_CHART_COLORS = [
    "rgba(59, 130, 246, 0.8)",
    "rgba(16, 185, 129, 0.8)",
    "rgba(245, 158, 11, 0.8)",
    "rgba(239, 68, 68, 0.8)",
    "rgba(139, 92, 246, 0.8)",
    "rgba(236, 72, 153, 0.8)",
    "rgba(34, 197, 94, 0.8)",
    "rgba(251, 191, 36, 0.8)",
    "rgba(168, 85, 247, 0.8)",
    "rgba(14, 165, 233, 0.8)",
]

_SESSION_ALPHABET = string.digits + string.ascii_lowercase


def generate_session_id() -> str:
    suffix = "".join(random.choice(_SESSION_ALPHABET) for _ in range(9))
    return f"session_{int(time.time() * 1000)}_{suffix}"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _line_chart(label: str, points: Sequence[DailyCount], rgb: str) -> ChartData:
    return ChartData(
        labels=[point.day.isoformat() for point in points],
        datasets=[
            ChartDataset(
                label=label,
                data=[point.count for point in points],
                background_color=f"rgba({rgb}, 0.2)",
                border_color=f"rgba({rgb}, 1)",
                border_width=2,
            )
        ],
    )


class AnalyticsService:
    """
    Event tracking plus the read-side aggregates used by the dashboards.

    Every read fetches the relevant window from the repository and folds it
    in memory through :class:`EventDataset`. Store failures are logged and
    turned into zero-valued results; nothing is raised to the caller.
    """

    def __init__(
        self,
        repository: EventRepository,
        timezone_name: str = "UTC",
        session_id: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.repository = repository
        self.timezone_name = timezone_name
        self.tz = coerce_timezone(timezone_name)
        self.session_id = session_id or generate_session_id()
        self._clock = clock or _utc_now

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------
    def track_event(
        self,
        event_type: str,
        event_data: Optional[Mapping[str, Any]] = None,
        user_id: Optional[str] = None,
        *,
        session_id: Optional[str] = None,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> bool:
        event = AnalyticsEvent(
            event_type=event_type,
            event_data=dict(event_data or {}),
            user_id=user_id,
            session_id=session_id or self.session_id,
            timestamp=timestamp or self.now(),
            user_agent=user_agent,
            ip_address=ip_address or "unknown",
        )
        try:
            self.repository.insert(event)
        except SQLAlchemyError as exc:
            logger.warning("Failed to track analytics event %s: %s", event_type, exc)
            return False
        return True

    def track_page_view(self, page_name: str, user_id: Optional[str] = None, **context: Any) -> bool:
        return self.track_event(PAGE_VIEW, {"page": page_name}, user_id, **context)

    def track_service_page_view(self, service_name: str, user_id: Optional[str] = None, **context: Any) -> bool:
        return self.track_event(SERVICE_PAGE_VISITED, {"serviceName": service_name}, user_id, **context)

    def track_chatbot_interaction(
        self, message_type: str, message: str, user_id: Optional[str] = None, **context: Any
    ) -> bool:
        if message_type not in {"user", "bot"}:
            raise ValueError("message_type must be 'user' or 'bot'")
        payload = {"messageType": message_type, "message": message[:100], "messageLength": len(message)}
        return self.track_event(CHATBOT_MESSAGE_SENT, payload, user_id, **context)

    def track_rfq_submission(self, rfq: Mapping[str, Any], user_id: Optional[str] = None, **context: Any) -> bool:
        payload = {
            "projectName": rfq.get("project_name"),
            "category": rfq.get("product_category"),
            "quantity": rfq.get("quantity"),
            "hasDesignFiles": bool(rfq.get("design_file_urls")),
        }
        return self.track_event(RFQ_SUBMITTED, payload, user_id, **context)

    def track_contact_submission(
        self, contact: Mapping[str, Any], user_id: Optional[str] = None, **context: Any
    ) -> bool:
        payload = {
            "subject": contact.get("subject"),
            "hasMessage": bool(contact.get("message")),
            "language": contact.get("lang"),
        }
        return self.track_event(CONTACT_SUBMITTED, payload, user_id, **context)

    def track_user_goal_created(self, goal: Mapping[str, Any], user_id: Optional[str] = None, **context: Any) -> bool:
        payload = {
            "title": goal.get("title"),
            "hasTargetDate": bool(goal.get("target_date")),
            "hasTargetValue": bool(goal.get("target_value")),
        }
        return self.track_event(USER_GOAL_CREATED, payload, user_id, **context)

    def track_user_activity_logged(
        self, activity: Mapping[str, Any], user_id: Optional[str] = None, **context: Any
    ) -> bool:
        payload = {
            "activityType": activity.get("activity_type"),
            "hasMoodScore": bool(activity.get("mood_score")),
            "hasDescription": bool(activity.get("description")),
        }
        return self.track_event(USER_ACTIVITY_LOGGED, payload, user_id, **context)

    def track_feature_usage(self, feature_name: str, user_id: Optional[str] = None, **context: Any) -> bool:
        return self.track_event(FEATURE_USED, {"featureName": feature_name}, user_id, **context)

    def track_search_query(
        self, query: str, results_count: int, user_id: Optional[str] = None, **context: Any
    ) -> bool:
        payload = {"query": query[:50], "resultsCount": results_count}
        return self.track_event(SEARCH_PERFORMED, payload, user_id, **context)

    def track_download(self, file_name: str, file_type: str, user_id: Optional[str] = None, **context: Any) -> bool:
        return self.track_event(FILE_DOWNLOADED, {"fileName": file_name, "fileType": file_type}, user_id, **context)

    def track_error(self, error_type: str, error_message: str, user_id: Optional[str] = None, **context: Any) -> bool:
        payload = {"errorType": error_type, "errorMessage": error_message[:200]}
        return self.track_event(ERROR_OCCURRED, payload, user_id, **context)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def _dataset(
        self,
        since: datetime,
        event_type: Optional[str] = None,
        user_id: Optional[str] = None,
        require_user: bool = False,
    ) -> EventDataset:
        events = self.repository.load(since, event_type=event_type, user_id=user_id, require_user=require_user)
        return EventDataset(events=events, timezone=self.timezone_name)

    def dashboard_summary(self) -> DashboardAnalyticsSummary:
        now = self.now()
        week_ago = now - timedelta(days=7)
        two_weeks_ago = now - timedelta(days=14)
        try:
            dataset = self._dataset(now - timedelta(days=SUMMARY_WINDOW_DAYS))
        except SQLAlchemyError as exc:
            logger.warning("Failed to build dashboard analytics summary: %s", exc)
            return DashboardAnalyticsSummary()

        last_week = dataset.count(start=week_ago)
        previous_week = dataset.count(start=two_weeks_ago, end=week_ago)
        growth = (last_week - previous_week) / previous_week * 100 if previous_week else 0.0

        unique_users = dataset.distinct_users()
        total_events = len(dataset.events)

        return DashboardAnalyticsSummary(
            total_chatbot_interactions=dataset.count(CHATBOT_MESSAGE_SENT),
            total_service_page_views=dataset.count(SERVICE_PAGE_VISITED),
            total_rfq_submissions=dataset.count(RFQ_SUBMITTED),
            total_contact_submissions=dataset.count(CONTACT_SUBMITTED),
            weekly_growth_rate=growth,
            top_services=dataset.leaderboard("serviceName", 5, [SERVICE_PAGE_VISITED]),
            user_engagement_score=total_events / unique_users if unique_users else 0.0,
        )

    def user_dashboard_counts(self, user_id: str) -> UserDashboardCounts:
        try:
            dataset = self._dataset(self.now() - timedelta(days=SUMMARY_WINDOW_DAYS), user_id=user_id)
        except SQLAlchemyError as exc:
            logger.warning("Failed to load analytics counts for user %s: %s", user_id, exc)
            return UserDashboardCounts()
        return UserDashboardCounts(
            total_chatbot_interactions=dataset.count(CHATBOT_MESSAGE_SENT),
            total_service_page_views=dataset.count(SERVICE_PAGE_VISITED),
        )

    def user_summary(self, user_id: str) -> UserAnalyticsSummary:
        now = self.now()
        try:
            dataset = self._dataset(now - timedelta(days=SUMMARY_WINDOW_DAYS), user_id=user_id)
        except SQLAlchemyError as exc:
            logger.warning("Failed to build analytics summary for user %s: %s", user_id, exc)
            return UserAnalyticsSummary()

        events = dataset.events
        favourites = dataset.leaderboard("serviceName", 3, [SERVICE_PAGE_VISITED])
        if events:
            elapsed = now - normalize_datetime(events[0].timestamp, timezone.utc)
            active_days = max(1, math.ceil(elapsed.total_seconds() / 86400))
        else:
            active_days = 1

        return UserAnalyticsSummary(
            total_chatbot_interactions=dataset.count(CHATBOT_MESSAGE_SENT),
            total_service_page_views=dataset.count(SERVICE_PAGE_VISITED),
            total_rfq_submissions=dataset.count(RFQ_SUBMITTED),
            total_contact_submissions=dataset.count(CONTACT_SUBMITTED),
            last_activity=normalize_datetime(events[-1].timestamp, timezone.utc) if events else None,
            favorite_services=[row.label for row in favourites],
            engagement_score=len(events) / active_days,
        )

    def daily_event_counts(self, event_type: str, days: int = SUMMARY_WINDOW_DAYS) -> List[DailyCount]:
        """
        Per-day counts of ``event_type`` over the last ``days`` calendar days.

        Always ``days`` entries, oldest first, with zero-filled gaps. Empty
        on store failure.
        """

        now = self.now()
        try:
            dataset = self._dataset(window_start(days, now, self.tz), event_type=event_type)
        except SQLAlchemyError as exc:
            logger.warning("Failed to load daily %s counts: %s", event_type, exc)
            return []
        return dataset.daily_counts(days, now, [event_type])

    def daily_active_users(self, days: int = SUMMARY_WINDOW_DAYS) -> List[DailyCount]:
        now = self.now()
        try:
            dataset = self._dataset(window_start(days, now, self.tz), require_user=True)
        except SQLAlchemyError as exc:
            logger.warning("Failed to load daily active users: %s", exc)
            return []
        return dataset.daily_distinct_users(days, now)

    def chatbot_interactions_chart(self, days: int = SUMMARY_WINDOW_DAYS) -> ChartData:
        points = self.daily_event_counts(CHATBOT_MESSAGE_SENT, days)
        if not points:
            return ChartData()
        return _line_chart("Chatbot Interactions", points, "34, 197, 94")

    def rfq_trends_chart(self, days: int = SUMMARY_WINDOW_DAYS) -> ChartData:
        points = self.daily_event_counts(RFQ_SUBMITTED, days)
        if not points:
            return ChartData()
        return _line_chart("RFQ Submissions", points, "168, 85, 247")

    def user_activity_chart(self, days: int = SUMMARY_WINDOW_DAYS) -> ChartData:
        points = self.daily_active_users(days)
        if not points:
            return ChartData()
        return _line_chart("Active Users", points, "236, 72, 153")

    def service_page_views_chart(self, top_n: int = 10) -> ChartData:
        try:
            dataset = self._dataset(
                self.now() - timedelta(days=SUMMARY_WINDOW_DAYS), event_type=SERVICE_PAGE_VISITED
            )
        except SQLAlchemyError as exc:
            logger.warning("Failed to build service page views chart: %s", exc)
            return ChartData()

        rows = dataset.leaderboard("serviceName", top_n, [SERVICE_PAGE_VISITED])
        return ChartData(
            labels=[row.label for row in rows],
            datasets=[
                ChartDataset(
                    label="Page Views",
                    data=[row.count for row in rows],
                    background_color=list(SERVICE_CHART_COLORS),
                )
            ],
        )

    def realtime_stats(self) -> RealtimeStats:
        now = self.now()
        try:
            recent = self._dataset(now - timedelta(hours=1), require_user=True)
            today = self._dataset(window_start(1, now, self.tz))
        except SQLAlchemyError as exc:
            logger.warning("Failed to load realtime analytics stats: %s", exc)
            return RealtimeStats()

        return RealtimeStats(
            active_users=recent.distinct_users(),
            today_events=len(today.events),
            top_event_types=rank(today.group_count_by_type(), 5),
        )

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------
    def cleanup_old_events(self, days_to_keep: int = DEFAULT_RETENTION_DAYS) -> Optional[int]:
        """
        Delete events strictly older than ``days_to_keep`` days.

        Returns the number of purged rows, or ``None`` when the delete failed.
        """

        cutoff = self.now() - timedelta(days=days_to_keep)
        try:
            purged = self.repository.purge_before(cutoff)
        except SQLAlchemyError as exc:
            logger.warning("Failed to clean up analytics events older than %s days: %s", days_to_keep, exc)
            return None
        logger.info("Cleaned up %s analytics events older than %s days", purged, days_to_keep)
        return purged
