from __future__ import annotations

from datetime import timedelta

import pytest
import resend
from fastapi.testclient import TestClient

from company_site.configuration import EmailConfig
from company_site.contact import EmailSender
from company_site.server import analytics_app, app, get_analytics, get_email_sender, get_store

USER = {"X-User-Id": "u1", "X-User-Email": "u1@example.com"}
ADMIN = {"X-User-Id": "admin"}


@pytest.fixture
def client(store, analytics):
    store.insert("profiles", {"id": "u1", "full_name": "Customer One", "email": "u1@example.com"})
    store.insert("profiles", {"id": "admin", "full_name": "Site Admin", "role": "admin"})
    for target in (app, analytics_app):
        target.dependency_overrides[get_store] = lambda: store
        target.dependency_overrides[get_analytics] = lambda: analytics
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    analytics_app.dependency_overrides.clear()


def _use_email(config):
    app.dependency_overrides[get_email_sender] = lambda: EmailSender(config)


def _create_service(client, title, slug, order_index=0):
    response = client.post(
        "/admin/content/services",
        json={"title": title, "slug": slug, "order_index": order_index, "is_active": True},
        headers=ADMIN,
    )
    assert response.status_code == 201
    return response.json()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_public_service_pages(client, repository, now):
    _create_service(client, "CNC Machining", "cnc", 0)
    _create_service(client, "Welding", "welding", 1)

    assert [item["slug"] for item in client.get("/services").json()] == ["cnc", "welding"]

    page = client.get("/services/welding", headers={"X-User-Id": "u1"}).json()
    assert page["service"]["title"] == "Welding"
    assert [item["slug"] for item in page["related"]] == ["cnc"]

    (event,) = repository.load(now - timedelta(days=1))
    assert event.event_type == "service_page_visited"
    assert event.event_data == {"serviceName": "Welding"}
    assert event.user_id == "u1"

    assert client.get("/services/unknown").status_code == 404
    assert client.get("/content/careers").status_code == 404


def test_admin_routes_require_admin_role(client):
    assert client.get("/admin/users").status_code == 401
    assert client.get("/admin/users", headers=USER).status_code == 403

    users = client.get("/admin/users", params={"search": "customer"}, headers=ADMIN).json()
    assert [user["id"] for user in users] == ["u1"]


def test_admin_content_lifecycle(client):
    item = _create_service(client, "Painting", "painting")
    path = f"/admin/content/services/{item['id']}"

    assert client.patch(path, json={"subtitle": "Powder coat"}, headers=ADMIN).json() == {"ok": True}
    assert client.post(f"{path}/toggle", headers=ADMIN).json() == {"is_active": False}
    assert client.get("/services").json() == []
    assert client.delete(path, headers=ADMIN).json() == {"ok": True}
    assert client.delete(path, headers=ADMIN).status_code == 404
    assert client.post("/admin/content/careers", json={"title": "x"}, headers=ADMIN).status_code == 404
    assert client.post("/admin/content/team", json={}, headers=ADMIN).status_code == 400


def test_customer_goal_and_activity_flow(client):
    assert client.get("/me/dashboard").status_code == 401

    goal = client.post("/me/goals", json={"title": "Visit factory", "target_value": 1}, headers=USER).json()
    activity = client.post("/me/activities", json={"activity_type": "visit"}, headers=USER).json()

    link = client.put(f"/me/activities/{activity['id']}/goal", json={"goal_id": goal["id"]}, headers=USER)
    assert link.json() == {"ok": True}
    foreign = client.put(
        f"/me/activities/{activity['id']}/goal", json={"goal_id": goal["id"]}, headers={"X-User-Id": "u2"}
    )
    assert foreign.status_code == 404

    dashboard = client.get("/me/dashboard", headers=USER).json()
    assert dashboard["goals"][0]["status"] == "completed"
    assert dashboard["profile"]["id"] == "u1"

    bad_status = client.patch(f"/me/goals/{goal['id']}", json={"status": "archived"}, headers=USER)
    assert bad_status.status_code == 400
    assert client.delete(f"/me/goals/{goal['id']}", headers=USER).json() == {"ok": True}


def test_customer_rfq_profile_and_addresses(client):
    rfq = client.post("/me/rfqs", json={"project_name": "Brackets", "quantity": 200}, headers=USER)
    assert rfq.status_code == 201
    assert rfq.json()["user_email"] == "u1@example.com"
    assert client.post("/me/rfqs", json={"project_name": "x"}, headers={"X-User-Id": "u1"}).status_code == 400

    assert client.patch("/me/profile", json={"full_name": "Customer 1"}, headers=USER).json() == {"ok": True}

    addresses = client.post("/me/addresses/billing", json={"city": "Bekasi"}, headers=USER).json()
    assert addresses[0]["city"] == "Bekasi"
    assert client.post("/me/addresses/office", json={}, headers=USER).status_code == 400


def test_notification_routes(client):
    created = client.post("/me/notifications/check", headers=USER).json()
    assert [item["title"] for item in created] == ["Boost Your Activity"]

    assert client.get("/me/notifications/unread-count", headers=USER).json() == {"count": 1}
    notification_id = client.get("/me/notifications", headers=USER).json()[0]["id"]
    assert client.post(f"/me/notifications/{notification_id}/read", headers=USER).json() == {"ok": True}
    assert client.post("/me/notifications/read-all", headers=USER).json() == {"updated": 0}

    settings = client.get("/me/notification-settings", headers=USER).json()
    assert settings["notify_goal_reminders"] is True
    settings["notify_proactive_suggestions"] = False
    saved = client.put("/me/notification-settings", json=settings, headers=USER).json()
    assert saved["notify_proactive_suggestions"] is False

def test_notifications_cannot_be_marked_read_by_another_user(client):
    client.post("/me/notifications/check", headers=USER)
    notification_id = client.get("/me/notifications", headers=USER).json()[0]["id"]

    response = client.post(f"/me/notifications/{notification_id}/read", headers={"X-User-Id": "intruder"})

    assert response.status_code == 404
    assert client.get("/me/notifications/unread-count", headers=USER).json() == {"count": 1}


def test_mounted_analytics_ingest_is_public(client, repository, now):
    response = client.post("/analytics/events", json={"event_type": "page_view", "event_data": {"page": "home"}})

    assert response.json() == {"ok": True, "inserted": 1}
    assert len(repository.load(now - timedelta(days=1))) == 1


@pytest.mark.parametrize(
    "method, path",
    [
        ("get", "/analytics/summary"),
        ("get", "/analytics/realtime"),
        ("get", "/analytics/users/u1/summary"),
        ("get", "/analytics/charts/rfq-trends"),
        ("delete", "/analytics/events"),
    ],
)
def test_mounted_analytics_dashboard_requires_admin(client, method, path):
    assert client.request(method, path).status_code == 401
    assert client.request(method, path, headers=USER).status_code == 403
    assert client.request(method, path, headers=ADMIN).status_code == 200


def test_mounted_analytics_purge_keeps_recent_events(client, repository, analytics, now):
    analytics.track_page_view("old", timestamp=now - timedelta(days=5))
    analytics.track_page_view("new")

    assert client.delete("/analytics/events", params={"days_to_keep": 1}).status_code == 401
    assert len(repository.load(now - timedelta(days=10))) == 2

    response = client.delete("/analytics/events", params={"days_to_keep": 1}, headers=ADMIN)
    assert response.json() == {"deleted": 1}


def test_contact_route(client, monkeypatch):
    outbox = []
    monkeypatch.setattr(resend.Emails, "send", lambda params: outbox.append(params) or {"id": "email"})
    _use_email(EmailConfig(api_key="re_test", sender="noreply@example.com", company_email="sales@example.com"))

    payload = {"name": "Budi", "email": "budi@example.com", "message": "Hello"}
    response = client.post("/contact", json=payload)

    assert response.status_code == 200
    assert response.json()["ok"] is True
    assert len(outbox) == 2
    assert client.post("/contact", json={**payload, "email": "nope"}).status_code == 422


def test_contact_route_failures(client, monkeypatch):
    payload = {"name": "Budi", "email": "budi@example.com", "message": "Hello"}
    _use_email(EmailConfig())
    assert client.post("/contact", json=payload).status_code == 503

    def failing_send(params):
        raise RuntimeError("resend is down")

    monkeypatch.setattr(resend.Emails, "send", failing_send)
    _use_email(EmailConfig(api_key="re_test", sender="noreply@example.com", company_email="sales@example.com"))
    response = client.post("/contact", json=payload)
    assert response.status_code == 502
    assert "resend" not in response.json()["detail"]
