from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .models import AnalyticsEvent, DailyCount, LeaderboardRow

UNKNOWN_LABEL = "Unknown"


def coerce_timezone(name: Optional[str]) -> ZoneInfo:
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def normalize_datetime(dt: datetime, tz: ZoneInfo) -> datetime:
    # Naive timestamps coming back from the store are UTC.
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(tz)


def window_days(days: int, now: datetime, tz: ZoneInfo) -> List[date]:
    """
    Calendar days covered by a ``days`` long window ending today, oldest first.
    """

    today = normalize_datetime(now, tz).date()
    return [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]


def window_start(days: int, now: datetime, tz: ZoneInfo) -> datetime:
    """
    Midnight (in ``tz``) of the oldest day of the window, expressed in UTC.
    """

    first_day = window_days(max(days, 1), now, tz)[0]
    return datetime.combine(first_day, time.min, tzinfo=tz).astimezone(timezone.utc)


def rank(counts: Dict[str, int], top_n: Optional[int] = None) -> List[LeaderboardRow]:
    """
    Sort ``counts`` descending. ``counts`` must be in first-seen order; the
    sort is stable so ties keep that order.
    """

    ordered = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    if top_n is not None:
        ordered = ordered[: max(top_n, 0)]
    return [LeaderboardRow(label=label, count=count) for label, count in ordered]


@dataclass
class EventDataset:
    events: Sequence[AnalyticsEvent]
    timezone: str = "UTC"

    def __post_init__(self) -> None:
        self.tz = coerce_timezone(self.timezone)
        self.events = tuple(
            sorted(self.events, key=lambda event: normalize_datetime(event.timestamp, self.tz))
        )

    def iter_events(
        self,
        event_types: Optional[Iterable[str]] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Iterator[Tuple[AnalyticsEvent, datetime]]:
        """
        Yield ``(event, localized_timestamp)`` for events of the given types
        inside ``[start, end)``. Omitted bounds are open.
        """

        allowed = set(event_types or [])
        window_start_local = normalize_datetime(start, self.tz) if start else None
        window_end_local = normalize_datetime(end, self.tz) if end else None

        for event in self.events:
            if allowed and event.event_type not in allowed:
                continue
            localized = normalize_datetime(event.timestamp, self.tz)
            if window_start_local is not None and localized < window_start_local:
                continue
            if window_end_local is not None and localized >= window_end_local:
                continue
            yield event, localized

    def count(
        self,
        event_type: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> int:
        types = [event_type] if event_type else None
        return sum(1 for _ in self.iter_events(types, start=start, end=end))

    def distinct_users(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> int:
        return len({event.user_id for event, _ in self.iter_events(start=start, end=end) if event.user_id})

    def daily_counts(
        self,
        days: int,
        now: datetime,
        event_types: Optional[Iterable[str]] = None,
    ) -> List[DailyCount]:
        daily: Dict[date, int] = defaultdict(int)
        for _, localized in self.iter_events(event_types):
            daily[localized.date()] += 1
        return [DailyCount(day=day, count=daily.get(day, 0)) for day in window_days(days, now, self.tz)]

    def daily_distinct_users(
        self,
        days: int,
        now: datetime,
        event_types: Optional[Iterable[str]] = None,
    ) -> List[DailyCount]:
        daily: Dict[date, Set[str]] = defaultdict(set)
        for event, localized in self.iter_events(event_types):
            if not event.user_id:
                continue
            daily[localized.date()].add(event.user_id)
        return [
            DailyCount(day=day, count=len(daily.get(day, ()))) for day in window_days(days, now, self.tz)
        ]

    def group_count_by_field(
        self,
        field_name: str,
        event_types: Optional[Iterable[str]] = None,
    ) -> Dict[str, int]:
        """
        Count events sharing the same ``event_data[field_name]`` value, in
        first-seen order.
        """

        totals: Dict[str, int] = {}
        for event, _ in self.iter_events(event_types):
            key = str(event.event_data.get(field_name) or UNKNOWN_LABEL)
            totals[key] = totals.get(key, 0) + 1
        return totals

    def group_count_by_type(self) -> Dict[str, int]:
        totals: Dict[str, int] = {}
        for event, _ in self.iter_events():
            totals[event.event_type] = totals.get(event.event_type, 0) + 1
        return totals

    def leaderboard(
        self,
        field_name: str,
        top_n: int,
        event_types: Optional[Iterable[str]] = None,
    ) -> List[LeaderboardRow]:
        return rank(self.group_count_by_field(field_name, event_types), top_n)
