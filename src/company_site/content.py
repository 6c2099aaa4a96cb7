from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError

from .storage import SiteStore, utc_now

logger = logging.getLogger(__name__)

SECTION_TABLES = {
    "company_info": "company_info",
    "services": "services_detail",
    "team": "team_members",
    "portfolio": "portfolio_items",
}
EDITABLE_FIELDS = frozenset(
    {"title", "subtitle", "slug", "description", "image_url", "details", "order_index", "is_active"}
)
RELATED_SERVICES_LIMIT = 3
USERS_PER_PAGE = 10


class UnknownSection(ValueError):
    pass


@dataclass
class ServicePage:
    service: Dict[str, Any]
    related: List[Dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {"service": self.service, "related": self.related}


def _table_for(section: str) -> str:
    try:
        return SECTION_TABLES[section]
    except KeyError:
        raise UnknownSection(f"Unknown content section '{section}'.") from None


def _editable(values: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in values.items() if key in EDITABLE_FIELDS}


class ContentManager:
    """
    Admin CRUD for the localized content sections plus the public reads
    built on top of them.
    """

    def __init__(self, store: SiteStore, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.store = store
        self._clock = clock or utc_now

    def list_items(self, section: str, language: str = "en") -> List[Dict[str, Any]]:
        table = _table_for(section)
        try:
            return self.store.select(table, eq={"language": language}, order_by="order_index")
        except SQLAlchemyError as exc:
            logger.warning("Failed to fetch %s content: %s", section, exc)
            return []

    def create_item(self, section: str, values: Mapping[str, Any], language: str = "en") -> Optional[Dict[str, Any]]:
        table = _table_for(section)
        payload = {**_editable(values), "language": language, "created_at": self._clock()}
        try:
            return self.store.insert(table, payload)
        except SQLAlchemyError as exc:
            logger.warning("Failed to create %s item: %s", section, exc)
            return None

    def update_item(self, section: str, item_id: int, values: Mapping[str, Any]) -> bool:
        table = _table_for(section)
        payload = {**_editable(values), "updated_at": self._clock()}
        try:
            return bool(self.store.update(table, payload, eq={"id": item_id}))
        except SQLAlchemyError as exc:
            logger.warning("Failed to update %s item %s: %s", section, item_id, exc)
            return False

    def delete_item(self, section: str, item_id: int) -> bool:
        table = _table_for(section)
        try:
            return bool(self.store.delete(table, eq={"id": item_id}))
        except SQLAlchemyError as exc:
            logger.warning("Failed to delete %s item %s: %s", section, item_id, exc)
            return False

    def toggle_active(self, section: str, item_id: int) -> Optional[bool]:
        """Flip ``is_active``; returns the new value or ``None`` if missing."""
        table = _table_for(section)
        try:
            item = self.store.select_one(table, eq={"id": item_id})
            if item is None:
                return None
            new_state = not item["is_active"]
            self.store.update(table, {"is_active": new_state, "updated_at": self._clock()}, eq={"id": item_id})
        except SQLAlchemyError as exc:
            logger.warning("Failed to toggle %s item %s: %s", section, item_id, exc)
            return None
        return new_state

    # ------------------------------------------------------------------
    # Public pages
    # ------------------------------------------------------------------
    def active_items(self, section: str, language: str = "en") -> List[Dict[str, Any]]:
        table = _table_for(section)
        try:
            return self.store.select(table, eq={"language": language, "is_active": True}, order_by="order_index")
        except SQLAlchemyError as exc:
            logger.warning("Failed to fetch active %s content: %s", section, exc)
            return []

    def active_services(self, language: str = "en") -> List[Dict[str, Any]]:
        return self.active_items("services", language)

    def service_page(self, slug: str, language: str = "en") -> Optional[ServicePage]:
        services = self.active_services(language)
        service = next((item for item in services if item.get("slug") == slug), None)
        if service is None:
            return None
        related = [item for item in services if item["id"] != service["id"]][:RELATED_SERVICES_LIMIT]
        return ServicePage(service=service, related=related)

    # ------------------------------------------------------------------
    # Admin user list
    # ------------------------------------------------------------------
    def list_users(self, search: str = "", page: int = 1, per_page: int = USERS_PER_PAGE) -> List[Dict[str, Any]]:
        page = max(page, 1)
        filters: Dict[str, Any] = {}
        if search:
            filters["ilike"] = {"full_name": f"%{search}%"}
        try:
            return self.store.select(
                "profiles",
                order_by="join_date",
                descending=True,
                limit=per_page,
                offset=(page - 1) * per_page,
                **filters,
            )
        except SQLAlchemyError as exc:
            logger.warning("Failed to fetch users: %s", exc)
            return []
