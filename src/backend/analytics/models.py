from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence


@dataclass(frozen=True)
class AnalyticsEvent:
    """
    Single recorded user or system action.

    ``event_data`` is the free-form payload (stored as JSON/JSONB) and holds
    things like ``serviceName`` or ``page`` depending on ``event_type``.
    """

    event_type: str
    session_id: str
    timestamp: datetime
    event_data: Dict[str, Any] = field(default_factory=dict)
    user_id: Optional[str] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    id: Optional[int] = None

    def as_row(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "event_data": self.event_data,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "timestamp": self.timestamp,
            "user_agent": self.user_agent,
            "ip_address": self.ip_address,
        }


@dataclass(frozen=True)
class DailyCount:
    day: date
    count: int


@dataclass(frozen=True)
class LeaderboardRow:
    label: str
    count: int


@dataclass(frozen=True)
class ChartDataset:
    label: str
    data: Sequence[float]
    background_color: Any = None
    border_color: Optional[str] = None
    border_width: Optional[int] = None


@dataclass(frozen=True)
class ChartData:
    labels: Sequence[str] = field(default_factory=list)
    datasets: Sequence[ChartDataset] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        datasets: List[Dict[str, Any]] = []
        for dataset in self.datasets:
            payload: Dict[str, Any] = {"label": dataset.label, "data": list(dataset.data)}
            if dataset.background_color is not None:
                payload["backgroundColor"] = dataset.background_color
            if dataset.border_color is not None:
                payload["borderColor"] = dataset.border_color
            if dataset.border_width is not None:
                payload["borderWidth"] = dataset.border_width
            datasets.append(payload)
        return {"labels": list(self.labels), "datasets": datasets}


@dataclass(frozen=True)
class DashboardAnalyticsSummary:
    total_chatbot_interactions: int = 0
    total_service_page_views: int = 0
    total_rfq_submissions: int = 0
    total_contact_submissions: int = 0
    weekly_growth_rate: float = 0.0
    top_services: Sequence[LeaderboardRow] = field(default_factory=list)
    user_engagement_score: float = 0.0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "totalChatbotInteractions": self.total_chatbot_interactions,
            "totalServicePageViews": self.total_service_page_views,
            "totalRFQSubmissions": self.total_rfq_submissions,
            "totalContactSubmissions": self.total_contact_submissions,
            "weeklyGrowthRate": self.weekly_growth_rate,
            "topServices": [{"service": row.label, "views": row.count} for row in self.top_services],
            "userEngagementScore": self.user_engagement_score,
        }


@dataclass(frozen=True)
class UserDashboardCounts:
    total_chatbot_interactions: int = 0
    total_service_page_views: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "totalChatbotInteractions": self.total_chatbot_interactions,
            "totalServicePageViews": self.total_service_page_views,
        }


@dataclass(frozen=True)
class UserAnalyticsSummary:
    total_chatbot_interactions: int = 0
    total_service_page_views: int = 0
    total_rfq_submissions: int = 0
    total_contact_submissions: int = 0
    last_activity: Optional[datetime] = None
    favorite_services: Sequence[str] = field(default_factory=list)
    engagement_score: float = 0.0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "totalChatbotInteractions": self.total_chatbot_interactions,
            "totalServicePageViews": self.total_service_page_views,
            "totalRFQSubmissions": self.total_rfq_submissions,
            "totalContactSubmissions": self.total_contact_submissions,
            "lastActivityDate": self.last_activity.isoformat() if self.last_activity else "",
            "favoriteServices": list(self.favorite_services),
            "engagementScore": self.engagement_score,
        }


@dataclass(frozen=True)
class RealtimeStats:
    active_users: int = 0
    today_events: int = 0
    top_event_types: Sequence[LeaderboardRow] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "activeUsers": self.active_users,
            "todayEvents": self.today_events,
            "topEventTypes": [{"type": row.label, "count": row.count} for row in self.top_event_types],
        }
