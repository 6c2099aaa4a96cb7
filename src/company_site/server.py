"""FastAPI server for the company site: public pages, customer dashboard, notifications and admin."""
from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from backend.analytics import AnalyticsService, SQLEventRepository
from backend.analytics.server import create_app as create_analytics_app

from .configuration import SiteConfig, load_site_config
from .contact import ContactService, ContactSubmission, ContactSubmissionError, EmailNotConfigured, EmailSender
from .content import ContentManager, UnknownSection
from .customer import CustomerDashboard
from .notifications import NotificationCenter, NotificationChangeFeed, NotificationSettings
from .storage import SiteStore, build_engine

config: SiteConfig = load_site_config()

app = FastAPI(title="Company Site API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_store: Optional[SiteStore] = None
_analytics: Optional[AnalyticsService] = None
_email_sender: Optional[EmailSender] = None
_feed = NotificationChangeFeed()


# ----------------------------------------------------------------------
# Dependencies
# ----------------------------------------------------------------------
def get_store() -> SiteStore:
    global _store
    if _store is None:
        try:
            engine = build_engine(config.database)
        except ValueError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        _store = SiteStore(engine, procedures=config.procedures)
    return _store


def get_analytics(store: SiteStore = Depends(get_store)) -> AnalyticsService:
    global _analytics
    if _analytics is None:
        engine = store.engine
        if config.analytics.database_url:
            engine = build_engine(config.database.model_copy(update={"url": config.analytics.database_url}))
        _analytics = AnalyticsService(SQLEventRepository(engine), timezone_name=config.analytics.timezone)
    return _analytics


def get_notification_center(store: SiteStore = Depends(get_store)) -> NotificationCenter:
    return NotificationCenter(store, config.notifications, feed=_feed)


def get_customer_dashboard(
    store: SiteStore = Depends(get_store),
    analytics: AnalyticsService = Depends(get_analytics),
) -> CustomerDashboard:
    return CustomerDashboard(store, analytics)


def get_content_manager(store: SiteStore = Depends(get_store)) -> ContentManager:
    return ContentManager(store)


def get_email_sender() -> EmailSender:
    global _email_sender
    if _email_sender is None:
        _email_sender = EmailSender(config.email)
    return _email_sender


def get_contact_service(
    store: SiteStore = Depends(get_store),
    analytics: AnalyticsService = Depends(get_analytics),
    sender: EmailSender = Depends(get_email_sender),
) -> ContactService:
    return ContactService(store, sender, analytics)


def current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    # Sign-in happens upstream; the proxy forwards the verified identity.
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header.")
    return x_user_id


def current_user_email(x_user_email: Optional[str] = Header(None)) -> Optional[str]:
    return x_user_email or None


def require_admin(
    user_id: str = Depends(current_user_id),
    store: SiteStore = Depends(get_store),
) -> str:
    try:
        profile = store.select_one("profiles", eq={"id": user_id})
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Failed to load profile.") from exc
    if not profile or profile.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin access required.")
    return user_id


# Ingest stays public; dashboard reads and the purge need an admin.
analytics_app = create_analytics_app(service_dependency=get_analytics, dashboard_dependency=require_admin)
app.mount("/analytics", analytics_app)


# ----------------------------------------------------------------------
# Request bodies
# ----------------------------------------------------------------------
class GoalCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    target_date: Optional[date] = None
    target_value: Optional[int] = Field(None, ge=0)


class GoalStatusUpdate(BaseModel):
    status: str


class ActivityCreate(BaseModel):
    activity_type: str = Field(..., min_length=1, max_length=64)
    description: Optional[str] = None
    mood_score: Optional[int] = Field(None, ge=1, le=10)
    goal_id: Optional[int] = None


class ActivityGoalLink(BaseModel):
    goal_id: Optional[int] = None


class RFQCreate(BaseModel):
    project_name: str = Field(..., min_length=1, max_length=255)
    product_category: Optional[str] = None
    quantity: Optional[int] = Field(None, ge=0)
    description: Optional[str] = None
    design_file_urls: List[str] = Field(default_factory=list)


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = None
    email: Optional[str] = None


class ContentItem(BaseModel):
    title: Optional[str] = None
    subtitle: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    order_index: Optional[int] = None
    is_active: Optional[bool] = None


def _not_found(detail: str) -> HTTPException:
    return HTTPException(status_code=404, detail=detail)


# ----------------------------------------------------------------------
# Public
# ----------------------------------------------------------------------
@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/services")
def list_services(
    lang: str = Query("en", max_length=8),
    content: ContentManager = Depends(get_content_manager),
) -> List[Dict[str, Any]]:
    return content.active_services(lang)


@app.get("/services/{slug}")
def service_detail(
    slug: str,
    request: Request,
    lang: str = Query("en", max_length=8),
    x_user_id: Optional[str] = Header(None),
    content: ContentManager = Depends(get_content_manager),
    analytics: AnalyticsService = Depends(get_analytics),
) -> Dict[str, Any]:
    page = content.service_page(slug, lang)
    if page is None:
        raise _not_found(f"Service '{slug}' not found.")
    analytics.track_service_page_view(
        page.service["title"],
        x_user_id,
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
    )
    return page.as_dict()


@app.get("/content/{section}")
def public_content(
    section: str,
    lang: str = Query("en", max_length=8),
    content: ContentManager = Depends(get_content_manager),
) -> List[Dict[str, Any]]:
    try:
        return content.active_items(section, lang)
    except UnknownSection as exc:
        raise _not_found(str(exc)) from exc


@app.post("/contact")
def submit_contact(
    submission: ContactSubmission,
    x_user_id: Optional[str] = Header(None),
    contact: ContactService = Depends(get_contact_service),
) -> Dict[str, Any]:
    try:
        record = contact.submit(submission, x_user_id)
    except EmailNotConfigured as exc:
        raise HTTPException(status_code=503, detail="Email is not configured.") from exc
    except ContactSubmissionError as exc:
        raise HTTPException(status_code=502, detail="Failed to send message. Please try again later.") from exc
    return {"ok": True, "id": record.get("id")}


# ----------------------------------------------------------------------
# Customer dashboard
# ----------------------------------------------------------------------
@app.get("/me/dashboard")
def customer_dashboard(
    user_id: str = Depends(current_user_id),
    email: Optional[str] = Depends(current_user_email),
    dashboard: CustomerDashboard = Depends(get_customer_dashboard),
) -> Dict[str, Any]:
    return dashboard.load_dashboard(user_id, email).as_dict()


@app.post("/me/goals", status_code=201)
def create_goal(
    body: GoalCreate,
    user_id: str = Depends(current_user_id),
    dashboard: CustomerDashboard = Depends(get_customer_dashboard),
) -> Dict[str, Any]:
    goal = dashboard.create_goal(user_id, body.title, body.description, body.target_date, body.target_value)
    if goal is None:
        raise HTTPException(status_code=500, detail="Failed to create goal.")
    return goal


@app.patch("/me/goals/{goal_id}")
def update_goal_status(
    goal_id: int,
    body: GoalStatusUpdate,
    user_id: str = Depends(current_user_id),
    dashboard: CustomerDashboard = Depends(get_customer_dashboard),
) -> Dict[str, bool]:
    try:
        updated = dashboard.update_goal_status(user_id, goal_id, body.status)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not updated:
        raise _not_found("Goal not found.")
    return {"ok": True}


@app.delete("/me/goals/{goal_id}")
def delete_goal(
    goal_id: int,
    user_id: str = Depends(current_user_id),
    dashboard: CustomerDashboard = Depends(get_customer_dashboard),
) -> Dict[str, bool]:
    if not dashboard.delete_goal(user_id, goal_id):
        raise _not_found("Goal not found.")
    return {"ok": True}


@app.post("/me/activities", status_code=201)
def log_activity(
    body: ActivityCreate,
    user_id: str = Depends(current_user_id),
    dashboard: CustomerDashboard = Depends(get_customer_dashboard),
) -> Dict[str, Any]:
    activity = dashboard.log_activity(user_id, body.activity_type, body.description, body.mood_score, body.goal_id)
    if activity is None:
        raise HTTPException(status_code=500, detail="Failed to log activity.")
    return activity


@app.put("/me/activities/{activity_id}/goal")
def link_activity(
    activity_id: int,
    body: ActivityGoalLink,
    user_id: str = Depends(current_user_id),
    dashboard: CustomerDashboard = Depends(get_customer_dashboard),
) -> Dict[str, bool]:
    if not dashboard.link_activity_to_goal(user_id, activity_id, body.goal_id):
        raise _not_found("Activity or goal not found.")
    return {"ok": True}


@app.post("/me/rfqs", status_code=201)
def submit_rfq(
    body: RFQCreate,
    user_id: str = Depends(current_user_id),
    email: Optional[str] = Depends(current_user_email),
    dashboard: CustomerDashboard = Depends(get_customer_dashboard),
) -> Dict[str, Any]:
    if not email:
        raise HTTPException(status_code=400, detail="Missing X-User-Email header.")
    record = dashboard.submit_rfq(email, body.model_dump(), user_id)
    if record is None:
        raise HTTPException(status_code=500, detail="Failed to submit RFQ.")
    return record


@app.patch("/me/profile")
def update_profile(
    body: ProfileUpdate,
    user_id: str = Depends(current_user_id),
    dashboard: CustomerDashboard = Depends(get_customer_dashboard),
) -> Dict[str, bool]:
    if not dashboard.update_profile(user_id, body.model_dump(exclude_none=True)):
        raise _not_found("Profile not found or nothing to update.")
    return {"ok": True}


@app.post("/me/addresses/{kind}")
def add_address(
    kind: str,
    address: Dict[str, Any],
    user_id: str = Depends(current_user_id),
    dashboard: CustomerDashboard = Depends(get_customer_dashboard),
) -> List[Dict[str, Any]]:
    try:
        addresses = dashboard.add_address(user_id, kind, address)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if addresses is None:
        raise _not_found("Profile not found.")
    return addresses


# ----------------------------------------------------------------------
# Notifications
# ----------------------------------------------------------------------
@app.get("/me/notifications")
def list_notifications(
    limit: Optional[int] = Query(None, ge=1, le=100),
    user_id: str = Depends(current_user_id),
    center: NotificationCenter = Depends(get_notification_center),
) -> List[Dict[str, Any]]:
    return center.list_notifications(user_id, limit)


@app.get("/me/notifications/unread-count")
def unread_count(
    user_id: str = Depends(current_user_id),
    center: NotificationCenter = Depends(get_notification_center),
) -> Dict[str, int]:
    return {"count": center.unread_count(user_id)}


@app.post("/me/notifications/read-all")
def mark_all_read(
    user_id: str = Depends(current_user_id),
    center: NotificationCenter = Depends(get_notification_center),
) -> Dict[str, int]:
    return {"updated": center.mark_all_as_read(user_id)}


@app.post("/me/notifications/check")
def check_notifications(
    user_id: str = Depends(current_user_id),
    email: Optional[str] = Depends(current_user_email),
    center: NotificationCenter = Depends(get_notification_center),
) -> List[Dict[str, Any]]:
    return center.check_proactive(user_id, email)


@app.post("/me/notifications/{notification_id}/read")
def mark_read(
    notification_id: int,
    user_id: str = Depends(current_user_id),
    center: NotificationCenter = Depends(get_notification_center),
) -> Dict[str, bool]:
    if not center.mark_as_read(user_id, notification_id):
        raise _not_found("Notification not found.")
    return {"ok": True}


@app.get("/me/notification-settings", response_model=NotificationSettings)
def get_notification_settings(
    user_id: str = Depends(current_user_id),
    center: NotificationCenter = Depends(get_notification_center),
) -> NotificationSettings:
    return center.get_settings(user_id)


@app.put("/me/notification-settings", response_model=NotificationSettings)
def update_notification_settings(
    settings: NotificationSettings,
    user_id: str = Depends(current_user_id),
    center: NotificationCenter = Depends(get_notification_center),
) -> NotificationSettings:
    saved = center.update_settings(user_id, settings)
    if saved is None:
        raise HTTPException(status_code=500, detail="Failed to save notification settings.")
    return saved


# ----------------------------------------------------------------------
# Admin
# ----------------------------------------------------------------------
@app.get("/admin/content/{section}")
def admin_list_content(
    section: str,
    lang: str = Query("en", max_length=8),
    _admin: str = Depends(require_admin),
    content: ContentManager = Depends(get_content_manager),
) -> List[Dict[str, Any]]:
    try:
        return content.list_items(section, lang)
    except UnknownSection as exc:
        raise _not_found(str(exc)) from exc


@app.post("/admin/content/{section}", status_code=201)
def admin_create_content(
    section: str,
    item: ContentItem,
    lang: str = Query("en", max_length=8),
    _admin: str = Depends(require_admin),
    content: ContentManager = Depends(get_content_manager),
) -> Dict[str, Any]:
    if not item.title:
        raise HTTPException(status_code=400, detail="title is required.")
    try:
        created = content.create_item(section, item.model_dump(exclude_none=True), lang)
    except UnknownSection as exc:
        raise _not_found(str(exc)) from exc
    if created is None:
        raise HTTPException(status_code=500, detail="Failed to create content item.")
    return created


@app.patch("/admin/content/{section}/{item_id}")
def admin_update_content(
    section: str,
    item_id: int,
    item: ContentItem,
    _admin: str = Depends(require_admin),
    content: ContentManager = Depends(get_content_manager),
) -> Dict[str, bool]:
    try:
        updated = content.update_item(section, item_id, item.model_dump(exclude_none=True))
    except UnknownSection as exc:
        raise _not_found(str(exc)) from exc
    if not updated:
        raise _not_found("Content item not found.")
    return {"ok": True}


@app.delete("/admin/content/{section}/{item_id}")
def admin_delete_content(
    section: str,
    item_id: int,
    _admin: str = Depends(require_admin),
    content: ContentManager = Depends(get_content_manager),
) -> Dict[str, bool]:
    try:
        deleted = content.delete_item(section, item_id)
    except UnknownSection as exc:
        raise _not_found(str(exc)) from exc
    if not deleted:
        raise _not_found("Content item not found.")
    return {"ok": True}


@app.post("/admin/content/{section}/{item_id}/toggle")
def admin_toggle_content(
    section: str,
    item_id: int,
    _admin: str = Depends(require_admin),
    content: ContentManager = Depends(get_content_manager),
) -> Dict[str, bool]:
    try:
        is_active = content.toggle_active(section, item_id)
    except UnknownSection as exc:
        raise _not_found(str(exc)) from exc
    if is_active is None:
        raise _not_found("Content item not found.")
    return {"is_active": is_active}


@app.get("/admin/users")
def admin_list_users(
    search: str = Query("", max_length=255),
    page: int = Query(1, ge=1),
    _admin: str = Depends(require_admin),
    content: ContentManager = Depends(get_content_manager),
) -> List[Dict[str, Any]]:
    return content.list_users(search, page)
