"""HTTP surface tests"""
import json
from datetime import date
from urllib.parse import unquote

from funnel_tracker.core.config import settings
from funnel_tracker.models.tracking_event import TrackingEvent
from funnel_tracker.services.consent import CATEGORIES_COOKIE_NAME, STATUS_COOKIE_NAME
from funnel_tracker.services.session_resolver import SESSION_COOKIE_NAME


FUNNEL = {
    "name": "Webinar signup",
    "description": "Landing to thank-you",
    "steps": [
        {"step_type": "page", "page_id": 11, "step_name": "Landing"},
        {"step_type": "form", "form_id": 22, "step_name": "Register"},
    ],
}


def _create(client, payload=FUNNEL):
    response = client.post("/funnels", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def test_health_endpoint(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_funnel_crud(client):
    created = _create(client)
    assert created["status"] == "active"
    assert [s["step_order"] for s in created["steps"]] == [1, 2]

    fetched = client.get(f"/funnels/{created['id']}").json()
    assert fetched["name"] == "Webinar signup"

    patched = client.patch(f"/funnels/{created['id']}", json={
        "status": "draft",
        "steps": [{"step_type": "page", "page_id": 99}],
    })
    assert patched.status_code == 200
    assert patched.json()["status"] == "draft"
    assert len(patched.json()["steps"]) == 1

    listing = client.get("/funnels", params={"status": "draft", "include_steps": True}).json()
    assert listing["total_items"] == 1
    assert listing["items"][0]["steps"][0]["page_id"] == 99

    assert client.delete(f"/funnels/{created['id']}").status_code == 204
    assert client.get(f"/funnels/{created['id']}").status_code == 404


def test_funnel_errors_map_to_status_codes(client):
    _create(client)
    duplicate = client.post("/funnels", json={"name": "webinar SIGNUP"})
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "name_exists"

    blank = client.post("/funnels", json={"name": "  "})
    assert blank.status_code == 400
    assert blank.json()["code"] == "invalid_name"

    # Discriminated step variant is enforced at the request boundary too
    bad_step = client.post("/funnels", json={"name": "x", "steps": [{"step_type": "form", "page_id": 1}]})
    assert bad_step.status_code == 422

    assert client.patch("/funnels/12345", json={"name": "y"}).status_code == 404


def test_tracking_requires_consent(client):
    _create(client)
    response = client.post("/track/page-view", json={"page_id": 11})
    assert response.status_code == 200
    assert response.json()["status"] == "consent_required"
    assert SESSION_COOKIE_NAME not in response.cookies


def test_tracking_flow_sets_session_cookie(client, db):
    funnel = _create(client)
    client.cookies.set(STATUS_COOKIE_NAME, "accepted")

    first = client.post("/track/page-view", json={"page_id": 11, "utm_source": "linkedin"})
    body = first.json()
    assert body["status"] == "tracked"
    assert body["funnel_steps_found"] == 1
    assert first.cookies.get(SESSION_COOKIE_NAME) == body["session_id"]

    second = client.post("/track/form-step", json={"form_id": 22, "step_index": 1})
    assert second.json()["session_id"] == body["session_id"]

    invalid = client.post("/track/form-step", json={"form_id": 22})
    assert invalid.status_code == 400

    skipped = client.post("/track/page-view", json={"page_id": 5000})
    assert skipped.json()["status"] == "skipped"

    events = db.query(TrackingEvent).filter(TrackingEvent.funnel_id == funnel["id"]).all()
    assert len(events) == 2

    today = date.today().isoformat()
    analytics = client.get(
        f"/funnels/{funnel['id']}/analytics", params={"date_from": today, "date_to": today}
    ).json()
    assert [s["unique_visitors"] for s in analytics["steps"]] == [1, 1]
    assert analytics["summary"]["overall_conversion_rate"] == 100.0
    # The form step carried no UTM tags, so it lands in its own "not set" row
    assert {row["utm_source"] for row in analytics["utm_breakdown"]} == {"linkedin", "not set"}

    export = client.get(f"/funnels/{funnel['id']}/analytics/export", params={"format": "csv"})
    assert export.status_code == 200
    assert export.headers["content-type"].startswith("text/csv")
    assert export.text.count("\n") == 3

    raw = client.get(f"/funnels/{funnel['id']}/events/export", params={"format": "json"})
    assert len(raw.json()) == 2

    top = client.get(f"/funnels/{funnel['id']}/analytics/top-utm", params={"limit": 1}).json()
    assert len(top) == 1

    filtered = client.get(f"/funnels/{funnel['id']}/analytics/utm", params={"utm_source": "LINKED"}).json()
    assert [row["utm_source"] for row in filtered] == ["linkedin"]

    times = client.get(f"/funnels/{funnel['id']}/analytics/completion-times").json()
    assert len(times["completions"]) == 1


def test_tracking_disabled_reports_status(client, monkeypatch):
    monkeypatch.setattr(settings, "UTM_TRACKING_ENABLED", False)
    response = client.post("/track/page-view", json={"page_id": 11})
    assert response.status_code == 200
    assert response.json()["status"] == "disabled"


def test_consent_endpoints(client):
    state = client.get("/consent").json()
    assert state["has_analytics_consent"] is False
    assert state["categories"]["necessary"] is True

    response = client.post("/consent", json={"consent_action": "customize", "categories": {"analytics": True}})
    assert response.status_code == 200
    assert response.json()["status"] == "partial"
    assert response.cookies.get(STATUS_COOKIE_NAME) == "partial"
    assert json.loads(unquote(response.cookies.get(CATEGORIES_COOKIE_NAME)))["analytics"] is True

    state = client.get("/consent").json()
    assert state["has_analytics_consent"] is True
    assert state["has_marketing_consent"] is False

    stats = client.get("/consent/statistics").json()
    assert stats["total_consents"] == 1
    assert stats["partial"] == 1

    assert client.post("/consent", json={"consent_action": "maybe"}).status_code == 422


def test_utm_endpoints(client):
    assert client.get("/utm/statistics").json()["top_sources"] == []
    assert client.get("/utm/values/utm_source").json() == []
    assert client.get("/utm/values/referrer").status_code == 400
    assert client.get("/utm/report", params={"date_from": "2026-03-02", "date_to": "2026-03-01"}).status_code == 400
