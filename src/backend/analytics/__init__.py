"""
Analytics event pipeline.

Events are appended to the ``analytics_events`` table and read back in
bounded windows; grouping by day, type and user happens in memory and is
shaped into time series, leaderboards and summary cards for the dashboards.
"""

from .dataset import EventDataset  # noqa: F401
from .models import (  # noqa: F401
    AnalyticsEvent,
    ChartData,
    ChartDataset,
    DailyCount,
    DashboardAnalyticsSummary,
    LeaderboardRow,
    RealtimeStats,
    UserAnalyticsSummary,
    UserDashboardCounts,
)
from .repository import (  # noqa: F401
    EventRepository,
    RepositoryConfig,
    SQLEventRepository,
    build_repository_from_env,
)
from .service import AnalyticsService  # noqa: F401
