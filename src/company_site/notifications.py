from __future__ import annotations

import logging
import math
import threading
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, Dict, List, Literal, Optional, get_args

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from .configuration import NotificationConfig
from .storage import SiteStore, utc_now

logger = logging.getLogger(__name__)

NotificationType = Literal[
    "info",
    "warning",
    "success",
    "error",
    "rfq_update",
    "goal_reminder",
    "proactive_suggestion",
]
NOTIFICATION_TYPES = frozenset(get_args(NotificationType))

ChangeCallback = Callable[[Dict[str, Any]], None]


class NotificationSettings(BaseModel):
    notify_activity_reminders: bool = True
    notify_progress_updates: bool = True
    notify_risk_alerts: bool = True
    notify_weekly_summary: bool = True
    notify_rfq_updates: bool = True
    notify_goal_reminders: bool = True
    notify_proactive_suggestions: bool = True


class NotificationChangeFeed:
    """
    In-process change channel for the notifications table.

    Every write publishes ``{"event": "INSERT" | "UPDATE", "record": ...}``.
    Subscribers are expected to re-fetch rather than apply the change.
    """

    def __init__(self) -> None:
        self._subscribers: List[ChangeCallback] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, change: Dict[str, Any]) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(change)
            except Exception as exc:
                logger.warning("Notification subscriber failed: %s", exc)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)


def _days_until(target: date, now: datetime) -> int:
    deadline = datetime.combine(target, time.min, tzinfo=timezone.utc)
    return math.ceil((deadline - now).total_seconds() / 86400)


def _days_since(moment: datetime, now: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return math.ceil((now - moment).total_seconds() / 86400)


class NotificationCenter:
    def __init__(
        self,
        store: SiteStore,
        config: Optional[NotificationConfig] = None,
        feed: Optional[NotificationChangeFeed] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.config = config or NotificationConfig()
        self.feed = feed or NotificationChangeFeed()
        self._clock = clock or utc_now

    def list_notifications(self, user_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        try:
            return self.store.select(
                "notifications",
                eq={"user_id": user_id},
                order_by="created_at",
                descending=True,
                limit=limit or self.config.list_limit,
            )
        except SQLAlchemyError as exc:
            logger.warning("Failed to fetch notifications for %s: %s", user_id, exc)
            return []

    def unread_count(self, user_id: str) -> int:
        try:
            return self.store.count("notifications", eq={"user_id": user_id, "is_read": False})
        except SQLAlchemyError as exc:
            logger.warning("Failed to count unread notifications for %s: %s", user_id, exc)
            return 0

    def create_notification(
        self,
        user_id: str,
        title: str,
        message: str,
        type: str = "info",
        action_url: Optional[str] = None,
        action_text: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        dedupe: bool = True,
    ) -> Optional[Dict[str, Any]]:
        """
        Insert a notification unless an identical one (same user, type and
        title) was created inside the dedupe window. Returns the new row, or
        ``None`` when skipped or on failure.
        """

        if type not in NOTIFICATION_TYPES:
            raise ValueError(f"Unsupported notification type '{type}'.")

        now = self._clock()
        try:
            if dedupe:
                existing = self.store.select(
                    "notifications",
                    eq={"user_id": user_id, "type": type, "title": title},
                    gte={"created_at": now - timedelta(hours=self.config.dedupe_hours)},
                    limit=1,
                )
                if existing:
                    return None
            record = self.store.insert(
                "notifications",
                {
                    "user_id": user_id,
                    "title": title,
                    "message": message,
                    "type": type,
                    "action_url": action_url,
                    "action_text": action_text,
                    "metadata": metadata,
                    "is_read": False,
                    "created_at": now,
                },
            )
        except SQLAlchemyError as exc:
            logger.warning("Failed to create notification for %s: %s", user_id, exc)
            return None

        self.feed.publish({"event": "INSERT", "record": record})
        return record

    def mark_as_read(self, user_id: str, notification_id: int) -> bool:
        try:
            updated = self.store.update(
                "notifications",
                {"is_read": True, "updated_at": self._clock()},
                eq={"id": notification_id, "user_id": user_id},
            )
        except SQLAlchemyError as exc:
            logger.warning("Failed to mark notification %s as read: %s", notification_id, exc)
            return False
        if updated:
            self.feed.publish({"event": "UPDATE", "record": {"id": notification_id, "is_read": True}})
        return bool(updated)

    def mark_all_as_read(self, user_id: str) -> int:
        try:
            updated = self.store.update(
                "notifications",
                {"is_read": True, "updated_at": self._clock()},
                eq={"user_id": user_id, "is_read": False},
            )
        except SQLAlchemyError as exc:
            logger.warning("Failed to mark notifications as read for %s: %s", user_id, exc)
            return 0
        if updated:
            self.feed.publish({"event": "UPDATE", "record": {"user_id": user_id, "is_read": True}})
        return updated

    def get_settings(self, user_id: str) -> NotificationSettings:
        try:
            row = self.store.select_one("notification_settings", eq={"user_id": user_id})
        except SQLAlchemyError as exc:
            logger.warning("Failed to fetch notification settings for %s: %s", user_id, exc)
            row = None
        if not row:
            return NotificationSettings()
        return NotificationSettings(
            **{name: row[name] for name in NotificationSettings.model_fields if row.get(name) is not None}
        )

    def update_settings(self, user_id: str, settings: NotificationSettings) -> Optional[NotificationSettings]:
        values = {"user_id": user_id, **settings.model_dump(), "updated_at": self._clock()}
        try:
            self.store.upsert("notification_settings", values, key="user_id")
        except SQLAlchemyError as exc:
            logger.warning("Failed to update notification settings for %s: %s", user_id, exc)
            return None
        return settings

    def subscribe(self, user_id: str, callback: Callable[[List[Dict[str, Any]]], None]) -> Callable[[], None]:
        """
        Call ``callback`` with the user's full notification list whenever the
        notifications table changes.
        """

        def _refetch(_change: Dict[str, Any]) -> None:
            callback(self.list_notifications(user_id))

        return self.feed.subscribe(_refetch)

    # ------------------------------------------------------------------
    # Proactive checks
    # ------------------------------------------------------------------
    def check_proactive(self, user_id: str, email: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Run the goal reminder, pending RFQ and low activity checks. They are
        independent: one failing does not stop the others.
        """

        settings = self.get_settings(user_id)
        created: List[Dict[str, Any]] = []
        now = self._clock()

        if settings.notify_goal_reminders:
            created.extend(self._goal_reminders(user_id, now))
        if settings.notify_proactive_suggestions:
            if email:
                created.extend(self._pending_rfq_follow_up(user_id, email, now))
            created.extend(self._low_activity_nudge(user_id, now))
        return created

    def _goal_reminders(self, user_id: str, now: datetime) -> List[Dict[str, Any]]:
        try:
            goals = self.store.select("user_goals", eq={"user_id": user_id, "status": "in_progress"})
        except SQLAlchemyError as exc:
            logger.warning("Goal reminder check failed for %s: %s", user_id, exc)
            return []

        created = []
        for goal in goals:
            if not goal.get("target_date"):
                continue
            days_left = _days_until(goal["target_date"], now)
            if not 0 < days_left <= self.config.goal_reminder_days:
                continue
            record = self.create_notification(
                user_id,
                title="Goal Reminder",
                message=f'Goal "{goal["title"]}" is due in {days_left} days',
                type="goal_reminder",
                metadata={"goal_id": goal["id"], "days_remaining": days_left},
            )
            if record:
                created.append(record)
        return created

    def _pending_rfq_follow_up(self, user_id: str, email: str, now: datetime) -> List[Dict[str, Any]]:
        try:
            rfqs = self.store.select("rfq_submissions", eq={"user_email": email, "status": "pending"})
        except SQLAlchemyError as exc:
            logger.warning("Pending RFQ check failed for %s: %s", user_id, exc)
            return []

        stale = [rfq for rfq in rfqs if _days_since(rfq["created_at"], now) >= self.config.rfq_follow_up_days]
        if not stale:
            return []
        record = self.create_notification(
            user_id,
            title="Proactive Suggestion",
            message=f"You have {len(stale)} pending RFQs. Use our chatbot to inquire about status.",
            type="proactive_suggestion",
            action_text="Open Chatbot",
            action_url="#chatbot",
        )
        return [record] if record else []

    def _low_activity_nudge(self, user_id: str, now: datetime) -> List[Dict[str, Any]]:
        since = now - timedelta(days=self.config.low_activity_window_days)
        try:
            recent = self.store.count("user_activities", eq={"user_id": user_id}, gte={"created_at": since})
        except SQLAlchemyError as exc:
            logger.warning("Low activity check failed for %s: %s", user_id, exc)
            return []

        if recent >= self.config.low_activity_threshold:
            return []
        record = self.create_notification(
            user_id,
            title="Boost Your Activity",
            message="You've been less active this week. Try exploring our new services!",
            type="proactive_suggestion",
            action_text="View Services",
            action_url="/services",
        )
        return [record] if record else []
