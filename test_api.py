"""Tests for the REST API."""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient

import api_server
from events import EventChannel

IST = "Asia/Kolkata"
NOW = datetime(2026, 10, 18, 10, 0, tzinfo=ZoneInfo(IST)).astimezone(timezone.utc)


def parse(value):
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def ist(*args):
    return datetime(*args, tzinfo=ZoneInfo(IST)).astimezone(timezone.utc)


@pytest.fixture
def clock():
    state = {"now": NOW}
    api_server.app.dependency_overrides[api_server.current_time] = lambda: state["now"]
    yield state
    api_server.app.dependency_overrides.pop(api_server.current_time, None)


@pytest.fixture
def channel():
    channel = EventChannel()
    api_server.app.dependency_overrides[api_server.get_channel] = lambda: channel
    yield channel
    api_server.app.dependency_overrides.pop(api_server.get_channel, None)


@pytest.fixture
def client(clock, channel):
    return TestClient(api_server.app)


def create(client, **overrides):
    body = {
        "owner_id": "owner-1",
        "channel_id": "chat-1",
        "title": "Take medicine",
        "type": "daily",
        "scheduledAt": "2026-10-19T09:00:00+05:30",
        "recurrencePattern": {"timeOfDay": "09:00", "timezone": IST},
    }
    body.update(overrides)
    response = client.post("/reminders", json=body)
    assert response.status_code == 201, response.text
    return response.json()


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"
    assert client.get("/").json()["service"] == "Recurring Reminder Engine API"


def test_create_and_fetch(client):
    created = create(client)
    assert created["status"] == "active"
    assert parse(created["next_execution"]) == ist(2026, 10, 19, 9, 0)
    assert created["recurrence_pattern"]["timezone"] == IST

    fetched = client.get(f"/reminders/{created['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["title"] == "Take medicine"


def test_create_rejects_malformed_input(client):
    bad_zone = client.post("/reminders", json={
        "owner_id": "owner-1", "channel_id": "chat-1", "title": "x", "type": "daily",
        "scheduledAt": "2026-10-19T09:00:00", "recurrencePattern": {"timezone": "Mars/Olympus_Mons"},
    })
    assert bad_zone.status_code == 422

    bad_time = client.post("/reminders", json={
        "owner_id": "owner-1", "channel_id": "chat-1", "title": "x", "type": "daily",
        "scheduledAt": "2026-10-19T09:00:00", "recurrencePattern": {"timeOfDay": "9am"},
    })
    assert bad_time.status_code == 422

    exhausted = client.post("/reminders", json={
        "owner_id": "owner-1", "channel_id": "chat-1", "title": "x", "type": "daily",
        "scheduledAt": "2026-10-17T09:00:00+05:30",
        "recurrencePattern": {"timezone": IST, "endDate": "2026-10-17T23:00:00+05:30"},
    })
    assert exhausted.status_code == 400


def test_unknown_reminder_is_404(client):
    assert client.get("/reminders/missing").status_code == 404
    assert client.put("/reminders/missing", json={"title": "x"}).status_code == 404
    assert client.request("DELETE", "/reminders/missing").status_code == 404


def test_list_and_search(client):
    medicine = create(client)
    gym = create(client, title="Gym", recurrencePattern={"timeOfDay": "07:00", "timezone": IST})
    create(client, owner_id="owner-2")

    listed = client.get("/reminders", params={"owner_id": "owner-1"}).json()
    assert [r["id"] for r in listed] == [gym["id"], medicine["id"]]

    found = client.get("/reminders/search", params={"owner_id": "owner-1", "query": "medic"}).json()
    assert [r["id"] for r in found] == [medicine["id"]]


def test_update_reschedules(client):
    created = create(client)
    response = client.put(f"/reminders/{created['id']}", json={"title": "Vitamins"})
    assert response.status_code == 200
    assert response.json()["title"] == "Vitamins"
    assert response.json()["version"] == 2


def test_pause_and_resume(client, clock):
    created = create(client)
    assert client.post(f"/reminders/{created['id']}/pause").json()["status"] == "paused"
    assert client.post(f"/reminders/{created['id']}/pause").status_code == 400

    clock["now"] = ist(2026, 10, 21, 12, 0)
    resumed = client.post(f"/reminders/{created['id']}/resume").json()
    assert resumed["status"] == "active"
    assert parse(resumed["next_execution"]) == ist(2026, 10, 22, 9, 0)


def test_delete_past_occurrence_is_conflict(client):
    created = create(client)
    response = client.request(
        "DELETE", f"/reminders/{created['id']}",
        json={"type": "single", "target": "2026-10-18T09:00:00"}
    )
    assert response.status_code == 409
    assert "already occurred" in response.json()["detail"]
    assert client.get(f"/reminders/{created['id']}").json()["version"] == 1


def test_delete_single_occurrence(client):
    created = create(client)
    response = client.request(
        "DELETE", f"/reminders/{created['id']}",
        json={"type": "single", "target": "2026-10-19T09:00:00"}
    )
    assert response.status_code == 200, response.text
    assert response.json()["success"] is True

    after = client.get(f"/reminders/{created['id']}").json()
    assert after["recurrence_pattern"]["exclusionDates"] == ["2026-10-19"]
    assert parse(after["next_execution"]) == ist(2026, 10, 20, 9, 0)


def test_delete_without_body_removes_series(client):
    created = create(client)
    response = client.request("DELETE", f"/reminders/{created['id']}")
    assert response.status_code == 200
    assert response.json()["deletion_type"] == "series"
    assert client.get(f"/reminders/{created['id']}").status_code == 404


def test_match_and_smart_delete(client):
    medicine = create(client)
    create(client, title="Call mom", recurrencePattern={"timeOfDay": "18:00", "timezone": IST})
    request = {"owner_id": "owner-1", "criteria": {"description": "medicine", "keywords": ["medicine"]}}

    matches = client.post("/reminders/match", json=request).json()
    assert [m["reminder"]["id"] for m in matches] == [medicine["id"]]
    assert matches[0]["is_recurring"] is True

    options = client.post("/reminders/smart-delete", json=request).json()
    assert options["success"] is False
    assert "is a recurring reminder" in options["message"]

    request["criteria"]["deletionScope"] = "series"
    deleted = client.post("/reminders/smart-delete", json=request).json()
    assert deleted["success"] is True
    assert client.get(f"/reminders/{medicine['id']}").status_code == 404


def test_trigger_fires_due_reminders(client, clock, channel):
    created = create(client)
    clock["now"] = ist(2026, 10, 19, 9, 0, 30)

    response = client.post("/scheduler/trigger")

    assert response.json() == {"fired": 1, "pending_notifications": 1}
    [event] = channel.drain()
    assert event.reminder_id == created["id"]
    after = client.get(f"/reminders/{created['id']}").json()
    assert after["execution_count"] == 1
    assert parse(after["next_execution"]) == ist(2026, 10, 20, 9, 0)


def test_update_status_keeps_schedule_consistent(client, clock):
    paused = create(client)
    client.post(f"/reminders/{paused['id']}/pause")
    finished = create(
        client, title="Dentist",
        recurrencePattern={"timeOfDay": "09:00", "timezone": IST, "maxOccurrences": 1}
    )
    clock["now"] = ist(2026, 10, 19, 9, 0, 30)
    client.post("/scheduler/trigger")
    assert client.get(f"/reminders/{finished['id']}").json()["status"] == "completed"

    clock["now"] = ist(2026, 10, 21, 12, 0)
    resumed = client.put(f"/reminders/{paused['id']}", json={"status": "active"})
    assert resumed.status_code == 200
    assert parse(resumed.json()["next_execution"]) == ist(2026, 10, 22, 9, 0)

    rejected = client.put(f"/reminders/{finished['id']}", json={"status": "active"})
    assert rejected.status_code == 400
    after = client.get(f"/reminders/{finished['id']}").json()
    assert after["status"] == "completed"
    assert after["next_execution"] is None


def test_upcoming_and_channel_listing(client):
    medicine = create(client)
    gym = create(
        client, title="Gym", channel_id="group-7",
        recurrencePattern={"timeOfDay": "07:00", "timezone": IST}
    )
    create(client, title="Rent", type="monthly", scheduledAt="2026-11-01T09:00:00+05:30")

    upcoming = client.get("/reminders/upcoming", params={"hours": 24}).json()
    assert [r["id"] for r in upcoming] == [gym["id"], medicine["id"]]

    channel = client.get("/channels/group-7/reminders").json()
    assert [r["id"] for r in channel] == [gym["id"]]
