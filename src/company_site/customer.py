from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from sqlalchemy import func, select, update
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from backend.analytics import AnalyticsService, UserDashboardCounts

from .storage import SiteStore, utc_now

logger = logging.getLogger(__name__)

GOAL_STATUSES = frozenset({"pending", "in_progress", "completed", "cancelled"})
ADDRESS_FIELDS = {"billing": "billing_addresses", "shipping": "shipping_addresses"}
PROFILE_FIELDS = frozenset({"full_name", "email"})
RECENT_ACTIVITY_LIMIT = 20


@dataclass
class CustomerDashboardData:
    goals: List[Dict[str, Any]] = field(default_factory=list)
    activities: List[Dict[str, Any]] = field(default_factory=list)
    rfqs: List[Dict[str, Any]] = field(default_factory=list)
    profile: Optional[Dict[str, Any]] = None
    analytics: UserDashboardCounts = field(default_factory=UserDashboardCounts)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "goals": self.goals,
            "activities": self.activities,
            "rfqs": self.rfqs,
            "profile": self.profile,
            "analytics": self.analytics.as_dict(),
        }


class CustomerDashboard:
    """
    Goals, activities, RFQs and profile data for the signed-in customer.

    ``user_id`` and ``email`` always come from the caller; ownership is
    enforced by filtering on them, not by an auth layer here.
    """

    def __init__(
        self,
        store: SiteStore,
        analytics: Optional[AnalyticsService] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.analytics = analytics
        self._clock = clock or utc_now

    def _safe_select(self, description: str, table: str, **filters: Any) -> List[Dict[str, Any]]:
        try:
            return self.store.select(table, **filters)
        except SQLAlchemyError as exc:
            logger.warning("Failed to fetch %s: %s", description, exc)
            return []

    def load_dashboard(self, user_id: str, email: Optional[str] = None) -> CustomerDashboardData:
        goals = self._safe_select("goals", "user_goals", eq={"user_id": user_id}, order_by="created_at", descending=True)
        activities = self._safe_select(
            "activities",
            "user_activities",
            eq={"user_id": user_id},
            order_by="created_at",
            descending=True,
            limit=RECENT_ACTIVITY_LIMIT,
        )
        rfqs = (
            self._safe_select("rfqs", "rfq_submissions", eq={"user_email": email}, order_by="created_at", descending=True)
            if email
            else []
        )
        profiles = self._safe_select("profile", "profiles", eq={"id": user_id}, limit=1)
        counts = self.analytics.user_dashboard_counts(user_id) if self.analytics else UserDashboardCounts()

        return CustomerDashboardData(
            goals=goals,
            activities=activities,
            rfqs=rfqs,
            profile=profiles[0] if profiles else None,
            analytics=counts,
        )

    # ------------------------------------------------------------------
    # Goals
    # ------------------------------------------------------------------
    def create_goal(
        self,
        user_id: str,
        title: str,
        description: Optional[str] = None,
        target_date: Optional[date] = None,
        target_value: Optional[int] = None,
    ) -> Optional[Dict[str, Any]]:
        values = {
            "user_id": user_id,
            "title": title,
            "description": description,
            "target_date": target_date,
            "target_value": target_value or None,
            "current_value": 0,
            "status": "pending",
            "created_at": self._clock(),
        }
        try:
            goal = self.store.insert("user_goals", values)
        except SQLAlchemyError as exc:
            logger.warning("Failed to create goal for %s: %s", user_id, exc)
            return None
        if self.analytics:
            self.analytics.track_user_goal_created(goal, user_id)
        return goal

    def update_goal_status(self, user_id: str, goal_id: int, status: str) -> bool:
        if status not in GOAL_STATUSES:
            raise ValueError(f"Unsupported goal status '{status}'.")
        try:
            updated = self.store.update(
                "user_goals",
                {"status": status, "updated_at": self._clock()},
                eq={"id": goal_id, "user_id": user_id},
            )
        except SQLAlchemyError as exc:
            logger.warning("Failed to update goal %s: %s", goal_id, exc)
            return False
        return bool(updated)

    def delete_goal(self, user_id: str, goal_id: int) -> bool:
        try:
            # Detach activities first; SQLite does not enforce ON DELETE SET NULL by default.
            self.store.update("user_activities", {"goal_id": None}, eq={"goal_id": goal_id, "user_id": user_id})
            deleted = self.store.delete("user_goals", eq={"id": goal_id, "user_id": user_id})
        except SQLAlchemyError as exc:
            logger.warning("Failed to delete goal %s: %s", goal_id, exc)
            return False
        return bool(deleted)

    # ------------------------------------------------------------------
    # Activities
    # ------------------------------------------------------------------
    def log_activity(
        self,
        user_id: str,
        activity_type: str,
        description: Optional[str] = None,
        mood_score: Optional[int] = None,
        goal_id: Optional[int] = None,
    ) -> Optional[Dict[str, Any]]:
        values = {
            "user_id": user_id,
            "activity_type": activity_type,
            "description": description,
            "mood_score": mood_score,
            "goal_id": goal_id,
            "created_at": self._clock(),
        }
        try:
            activity = self.store.insert("user_activities", values)
        except SQLAlchemyError as exc:
            logger.warning("Failed to log activity for %s: %s", user_id, exc)
            return None
        if self.analytics:
            self.analytics.track_user_activity_logged(activity, user_id)
        return activity

    def link_activity_to_goal(self, user_id: str, activity_id: int, goal_id: Optional[int]) -> bool:
        """
        Attach an activity to a goal (or detach with ``goal_id=None``).

        Both the goal the activity leaves and the goal it joins have their
        progress recomputed from the number of linked activities when they
        carry a target value: ``completed`` at 100%, otherwise ``in_progress``.
        The relink and the recomputes commit together.
        """

        activities = self.store.table("user_activities")
        goals = self.store.table("user_goals")
        try:
            with self.store.engine.begin() as connection:
                previous = connection.execute(
                    select(activities.c.goal_id).where(
                        activities.c.id == activity_id, activities.c.user_id == user_id
                    )
                ).first()
                if previous is None:
                    return False
                if goal_id is not None:
                    owned = connection.execute(
                        select(goals.c.id).where(goals.c.id == goal_id, goals.c.user_id == user_id)
                    ).first()
                    if owned is None:
                        return False

                connection.execute(
                    update(activities).where(activities.c.id == activity_id).values(goal_id=goal_id)
                )
                for affected in {previous.goal_id, goal_id} - {None}:
                    self._recompute_goal_progress(connection, affected)
        except SQLAlchemyError as exc:
            logger.warning("Failed to link activity %s to goal %s: %s", activity_id, goal_id, exc)
            return False
        return True

    def _recompute_goal_progress(self, connection: Connection, goal_id: int) -> None:
        activities = self.store.table("user_activities")
        goals = self.store.table("user_goals")
        target = connection.execute(select(goals.c.target_value).where(goals.c.id == goal_id)).scalar()
        if not target:
            return
        linked = connection.execute(
            select(func.count()).select_from(activities).where(activities.c.goal_id == goal_id)
        ).scalar_one()
        progress = min(linked / target * 100, 100)
        connection.execute(
            update(goals)
            .where(goals.c.id == goal_id)
            .values(
                current_value=linked,
                status="completed" if progress >= 100 else "in_progress",
                updated_at=self._clock(),
            )
        )

    # ------------------------------------------------------------------
    # RFQs
    # ------------------------------------------------------------------
    def submit_rfq(
        self,
        email: str,
        rfq: Mapping[str, Any],
        user_id: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        values = {
            "user_email": email,
            "project_name": rfq["project_name"],
            "product_category": rfq.get("product_category"),
            "quantity": rfq.get("quantity"),
            "description": rfq.get("description"),
            "design_file_urls": list(rfq.get("design_file_urls") or []),
            "status": "pending",
            "created_at": self._clock(),
        }
        try:
            record = self.store.insert("rfq_submissions", values)
        except SQLAlchemyError as exc:
            logger.warning("Failed to submit RFQ for %s: %s", email, exc)
            return None
        if self.analytics:
            self.analytics.track_rfq_submission(record, user_id)
        return record

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------
    def update_profile(self, user_id: str, changes: Mapping[str, Any]) -> bool:
        values = {key: value for key, value in changes.items() if key in PROFILE_FIELDS}
        if not values:
            return False
        values["updated_at"] = self._clock()
        try:
            updated = self.store.update("profiles", values, eq={"id": user_id})
        except SQLAlchemyError as exc:
            logger.warning("Failed to update profile %s: %s", user_id, exc)
            return False
        return bool(updated)

    def add_address(self, user_id: str, kind: str, address: Mapping[str, Any]) -> Optional[List[Dict[str, Any]]]:
        column = ADDRESS_FIELDS.get(kind)
        if column is None:
            raise ValueError("Address kind must be 'billing' or 'shipping'.")
        try:
            profile = self.store.select_one("profiles", eq={"id": user_id})
            if profile is None:
                return None
            addresses = list(profile.get(column) or [])
            addresses.append({**address, "id": str(int(time.time() * 1000))})
            self.store.update("profiles", {column: addresses, "updated_at": self._clock()}, eq={"id": user_id})
        except SQLAlchemyError as exc:
            logger.warning("Failed to add %s address for %s: %s", kind, user_id, exc)
            return None
        return addresses
