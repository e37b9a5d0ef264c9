from datetime import datetime, timedelta

import pytest

from coach.core.rate_limiter import RateLimiter
from coach.database.models import Role, TelemetryEvent, utcnow
from tests.helpers import make_user, parse_sse


@pytest.fixture
def staff_id(db):
    return make_user(db, Role.STAFF, name="Sam Staff")


@pytest.fixture
def admin_id(db):
    return make_user(db, Role.ADMIN, name="Ada Admin")


def _window():
    now = utcnow()
    return {
        "start": (now - timedelta(days=1)).isoformat(),
        "end": (now + timedelta(days=1)).isoformat(),
    }


def _create_invitation(client, sign_in, staff_id, scenario_id):
    sign_in(staff_id)
    response = client.post("/invitation", json={"scenario_id": scenario_id, "preset_name": "quick-chat"})
    assert response.status_code == 200
    client.cookies.clear()
    return response.json()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.headers["X-Content-Type-Options"] == "nosniff"


def test_readiness(client):
    response = client.get("/health/ready")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ready"
    assert body["database"] == "ok"
    assert body["ai_providers"] == []


def test_root(client):
    assert client.get("/").json()["documentation"] == "/docs"


def test_scenarios_are_public(client, scenario_id):
    scenarios = client.get("/scenario").json()
    assert {s["slug"] for s in scenarios} == {"angry-uncle-thanksgiving", "difficult-coworker"}
    assert client.get(f"/scenario/{scenario_id}").json()["id"] == scenario_id

    missing = client.get("/scenario/9999")
    assert missing.status_code == 404
    assert missing.json()["error"] == "NOT_FOUND"


def test_my_sessions_anonymous_is_empty(client):
    response = client.get("/session/mine")
    assert response.status_code == 200
    assert response.json() == []


def test_start_session_tiers(client, db, sign_in, staff_id, scenario_id):
    body = {"scenario_id": scenario_id, "preset_name": "quick-chat"}

    anonymous = client.post("/session/start", json=body)
    assert anonymous.status_code == 401
    assert anonymous.json()["error"] == "UNAUTHORIZED"

    sign_in(make_user(db, Role.USER))
    assert client.post("/session/start", json=body).status_code == 403

    sign_in(staff_id)
    started = client.post("/session/start", json=body)
    assert started.status_code == 200
    assert [s["id"] for s in client.get("/session/mine").json()] == [started.json()["session_id"]]


def test_start_session_unknown_scenario(client, sign_in, staff_id):
    sign_in(staff_id)
    response = client.post("/session/start", json={"scenario_id": 9999, "preset_name": "quick-chat"})
    assert response.status_code == 404


def test_invitation_claim_signs_in_guest(client, sign_in, staff_id, scenario_id):
    created = _create_invitation(client, sign_in, staff_id, scenario_id)

    preview = client.get("/invitation/validate", params={"token": created["token"]})
    assert preview.status_code == 200
    assert preview.json()["claimed"] is False

    claimed = client.post("/invitation/claim", json={"token": created["token"]})
    assert claimed.status_code == 200
    body = claimed.json()
    assert body["user"]["role"] == "GUEST"
    assert body["already_claimed"] is False

    me = client.get("/auth/me").json()
    assert me["user"]["id"] == body["user"]["id"]
    assert me["merged_from"] is None

    sessions = client.get("/session/mine").json()
    assert [s["id"] for s in sessions] == [body["session_id"]]

    again = client.post("/invitation/claim", json={"token": created["token"]}).json()
    assert again["already_claimed"] is True
    assert again["session_id"] == body["session_id"]


def test_invitation_errors(client):
    assert client.get("/invitation/validate", params={"token": "bad"}).status_code == 400
    assert client.get("/invitation/validate", params={"token": "A" * 43}).status_code == 404


def test_invitation_staff_endpoints(client, sign_in, staff_id, scenario_id):
    sign_in(staff_id)
    assert client.get("/invitation/presets").json()[0]["name"] == "quick-chat"

    bad = client.post("/invitation", json={
        "scenario_id": scenario_id, "preset_name": "quick-chat", "expires_in_days": 400,
    })
    assert bad.status_code == 422

    client.post("/invitation", json={"scenario_id": scenario_id, "preset_name": "quick-chat", "label": "Cohort A"})
    listed = client.get("/invitation").json()
    assert [i["label"] for i in listed] == ["Cohort A"]


def test_conversation_turn_streams_events(client, provider, sign_in, staff_id, scenario_id):
    created = _create_invitation(client, sign_in, staff_id, scenario_id)
    session_id = client.post("/invitation/claim", json={"token": created["token"]}).json()["session_id"]
    provider.reply("You again?")
    provider.reply("Stay calm.")

    response = client.post(f"/conversation/{session_id}/messages", json={"content": "Hi uncle"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    events = parse_sse(response.text)
    assert [name for name, _ in events] == ["partner:delta", "partner:done", "coach:delta", "coach:done"]
    assert events[0][1] == {"content": "You again?"}

    history = client.get(f"/conversation/{session_id}/history").json()
    assert [m["content"] for m in history["messages"]] == ["Hi uncle", "You again?", "Stay calm."]


def test_conversation_requires_owner(client, db, sign_in, staff_id, scenario_id):
    sign_in(staff_id)
    session_id = client.post(
        "/session/start", json={"scenario_id": scenario_id, "preset_name": "quick-chat"}
    ).json()["session_id"]

    client.cookies.clear()
    assert client.post(f"/conversation/{session_id}/messages", json={"content": "Hi"}).status_code == 401

    sign_in(make_user(db, Role.USER))
    assert client.post(f"/conversation/{session_id}/messages", json={"content": "Hi"}).status_code == 403
    assert client.get(f"/conversation/{session_id}/history").status_code == 403


def test_conversation_rejects_blank_message(client, sign_in, staff_id, scenario_id):
    sign_in(staff_id)
    session_id = client.post(
        "/session/start", json={"scenario_id": scenario_id, "preset_name": "quick-chat"}
    ).json()["session_id"]

    assert client.post(f"/conversation/{session_id}/messages", json={"content": ""}).status_code == 422
    blank = client.post(f"/conversation/{session_id}/messages", json={"content": "   "})
    assert blank.status_code == 400
    assert blank.json()["error"] == "BAD_REQUEST"


def test_conversation_rate_limit(client, monkeypatch, sign_in, staff_id, scenario_id):
    monkeypatch.setattr("coach.core.rate_limiter._rate_limiter", RateLimiter(requests_per_minute=1))
    sign_in(staff_id)
    session_id = client.post(
        "/session/start", json={"scenario_id": scenario_id, "preset_name": "quick-chat"}
    ).json()["session_id"]

    assert client.post(f"/conversation/{session_id}/messages", json={"content": "One"}).status_code == 200
    limited = client.post(f"/conversation/{session_id}/messages", json={"content": "Two"})

    assert limited.status_code == 429
    assert limited.json()["error"] == "RATE_LIMITED"
    assert int(limited.headers["Retry-After"]) > 0


def test_cancel_without_running_turn(client, sign_in, staff_id, scenario_id):
    sign_in(staff_id)
    session_id = client.post(
        "/session/start", json={"scenario_id": scenario_id, "preset_name": "quick-chat"}
    ).json()["session_id"]

    assert client.post(f"/conversation/{session_id}/cancel").json() == {"cancelled": False}


def test_telemetry_track_is_public(client):
    response = client.post("/telemetry/track", json={"name": "landing_viewed", "properties": {"ref": "email"}})
    assert response.status_code == 200
    assert response.json() == {"success": True}


def test_telemetry_track_with_stale_cookie(client, db, sign_in):
    sign_in("deleted-user")

    response = client.post("/telemetry/track", json={"name": "landing_viewed"})

    assert response.status_code == 200
    with db.get_session() as session:
        event = session.query(TelemetryEvent).one()
        assert event.user_id is None


def test_telemetry_dashboard_is_admin_only(client, sign_in, staff_id, admin_id):
    client.post("/telemetry/track", json={"name": "conversation_started", "properties": {"scenarioSlug": "uncle"}})

    sign_in(staff_id)
    assert client.get("/telemetry/summary", params=_window()).status_code == 403

    sign_in(admin_id)
    summary = client.get("/telemetry/summary", params=_window()).json()
    assert summary["conversations_started"] == 1
    assert summary["completion_rate"] == 0

    top = client.get("/telemetry/top-scenarios", params=_window()).json()
    assert top == [{"scenario": "uncle", "count": 1}]

    series = client.get("/telemetry/time-series", params=_window()).json()
    assert series["data"][0]["conversation_started"] == 1

    events = client.get("/telemetry/events", params={**_window(), "limit": 10}).json()
    assert events["events"][0]["name"] == "conversation_started"
    assert events["next_cursor"] is None

    assert client.get("/telemetry/event-types").json() == ["conversation_started"]


def test_observation_notes(client, db, sign_in, staff_id, scenario_id):
    sign_in(staff_id)
    started = client.post(
        "/session/start", json={"scenario_id": scenario_id, "preset_name": "quick-chat"}
    ).json()

    created = client.post("/observation", json={
        "invitation_id": started["invitation_id"],
        "session_id": started["session_id"],
        "content": "Participant de-escalated well.",
    })
    assert created.status_code == 200
    note_id = created.json()["id"]

    notes = client.get("/observation", params={"invitation_id": started["invitation_id"]}).json()
    assert [n["id"] for n in notes] == [note_id]
    assert notes[0]["researcher"]["name"] == "Sam Staff"

    sign_in(make_user(db, Role.STAFF))
    assert client.delete(f"/observation/{note_id}").status_code == 403

    sign_in(staff_id)
    assert client.delete(f"/observation/{note_id}").status_code == 200
    assert client.get("/observation", params={"invitation_id": started["invitation_id"]}).json() == []


def test_user_admin(client, db, sign_in, admin_id):
    target = make_user(db, Role.USER, name="Uma")
    sign_in(admin_id)

    listed = client.get("/user", params={"search": "um"}).json()
    assert [u["id"] for u in listed["users"]] == [target]

    promoted = client.patch(f"/user/{target}/role", json={"role": "STAFF"})
    assert promoted.status_code == 200
    assert promoted.json()["role"] == "STAFF"

    own = client.patch(f"/user/{admin_id}/role", json={"role": "USER"})
    assert own.status_code == 403

    assert client.get(f"/user/{target}").json()["role"] == "STAFF"
    assert client.get("/user/missing").status_code == 404


def test_google_login_not_configured(client):
    response = client.get("/api/auth/google", follow_redirects=False)
    assert response.status_code == 503
    assert response.json()["error"] == "NOT_CONFIGURED"


def test_logout_clears_session(client, db, sign_in):
    user_id = make_user(db, Role.USER)
    sign_in(user_id)
    assert client.get("/auth/me").json()["user"]["id"] == user_id

    assert client.post("/api/auth/logout").json() == {"success": True}
    assert client.get("/auth/me").json() == {"user": None, "merged_from": None}


def test_me_with_deleted_user(client, sign_in):
    sign_in("deleted-user")
    assert client.get("/auth/me").json()["user"] is None
