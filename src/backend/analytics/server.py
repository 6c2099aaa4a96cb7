from __future__ import annotations

import os
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from pydantic import BaseModel, Field

from .repository import build_repository_from_env
from .service import DEFAULT_RETENTION_DAYS, SUMMARY_WINDOW_DAYS, AnalyticsService

_service: Optional[AnalyticsService] = None


def get_analytics_service() -> AnalyticsService:
    global _service
    if _service is None:
        repository = build_repository_from_env()
        if repository is None:
            raise HTTPException(
                status_code=500,
                detail="ANALYTICS_DATABASE_URL / DATABASE_URL is not configured.",
            )
        _service = AnalyticsService(repository, timezone_name=os.getenv("ANALYTICS_TIMEZONE", "UTC"))
    return _service


class EventPayload(BaseModel):
    event_type: str = Field(..., min_length=1, max_length=128)
    event_data: Dict[str, Any] = Field(default_factory=dict)
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    timestamp: Optional[datetime] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None


class EventBatch(BaseModel):
    events: List[EventPayload]


class IngestResponse(BaseModel):
    ok: bool
    inserted: int


def create_app(
    service_dependency: Callable[..., AnalyticsService] = get_analytics_service,
    dashboard_dependency: Optional[Callable[..., Any]] = None,
) -> FastAPI:
    """
    Build the analytics API.

    ``service_dependency`` supplies the :class:`AnalyticsService`;
    ``dashboard_dependency`` guards every route except ingest and health.
    The standalone app built below has no guard and is meant for internal
    deployments only.
    """

    analytics_app = FastAPI(title="Company Site Analytics API", version="0.1.0")
    dashboard = [Depends(dashboard_dependency)] if dashboard_dependency else []

    @analytics_app.get("/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok"}

    @analytics_app.post("/events", response_model=IngestResponse)
    def ingest_events(
        request: Request,
        payload: Union[EventBatch, EventPayload],
        service: AnalyticsService = Depends(service_dependency),
    ) -> IngestResponse:
        events = payload.events if isinstance(payload, EventBatch) else [payload]

        # Client-supplied values take precedence over request metadata.
        client_ip = request.client.host if request.client else None
        user_agent = request.headers.get("user-agent")

        inserted = 0
        for event in events:
            tracked = service.track_event(
                event.event_type,
                event.event_data,
                event.user_id,
                session_id=event.session_id,
                user_agent=event.user_agent or user_agent,
                ip_address=event.ip_address or client_ip,
                timestamp=event.timestamp,
            )
            if tracked:
                inserted += 1
        return IngestResponse(ok=inserted == len(events), inserted=inserted)

    @analytics_app.get("/summary", dependencies=dashboard)
    def dashboard_summary(service: AnalyticsService = Depends(service_dependency)) -> Dict[str, Any]:
        return service.dashboard_summary().as_dict()

    @analytics_app.get("/users/{user_id}/summary", dependencies=dashboard)
    def user_summary(user_id: str, service: AnalyticsService = Depends(service_dependency)) -> Dict[str, Any]:
        return service.user_summary(user_id).as_dict()

    @analytics_app.get("/users/{user_id}/counts", dependencies=dashboard)
    def user_counts(user_id: str, service: AnalyticsService = Depends(service_dependency)) -> Dict[str, Any]:
        return service.user_dashboard_counts(user_id).as_dict()

    @analytics_app.get("/charts/service-page-views", dependencies=dashboard)
    def service_page_views_chart(service: AnalyticsService = Depends(service_dependency)) -> Dict[str, Any]:
        return service.service_page_views_chart().as_dict()

    @analytics_app.get("/charts/{chart_name}", dependencies=dashboard)
    def daily_chart(
        chart_name: str,
        days: int = Query(SUMMARY_WINDOW_DAYS, ge=1, le=365),
        service: AnalyticsService = Depends(service_dependency),
    ) -> Dict[str, Any]:
        builders = {
            "chatbot-interactions": service.chatbot_interactions_chart,
            "rfq-trends": service.rfq_trends_chart,
            "user-activity": service.user_activity_chart,
        }
        builder = builders.get(chart_name)
        if builder is None:
            raise HTTPException(status_code=404, detail=f"Unknown chart '{chart_name}'.")
        return builder(days).as_dict()

    @analytics_app.get("/realtime", dependencies=dashboard)
    def realtime_stats(service: AnalyticsService = Depends(service_dependency)) -> Dict[str, Any]:
        return service.realtime_stats().as_dict()

    @analytics_app.delete("/events", dependencies=dashboard)
    def cleanup_events(
        days_to_keep: int = Query(DEFAULT_RETENTION_DAYS, ge=1),
        service: AnalyticsService = Depends(service_dependency),
    ) -> Dict[str, int]:
        deleted = service.cleanup_old_events(days_to_keep)
        if deleted is None:
            raise HTTPException(status_code=500, detail="Failed to clean up analytics events.")
        return {"deleted": deleted}

    return analytics_app


app = create_app()
