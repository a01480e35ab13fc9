"""Tests for the deletion scope resolver."""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import crud
import database
import reminder_service
from deletion import delete_with_scope, resolve_deletion
from schemas import DeletionScope, ReminderStatus
from timezone_utils import local_date

IST = "Asia/Kolkata"
NOW = datetime(2026, 10, 18, 10, 0, tzinfo=ZoneInfo(IST)).astimezone(timezone.utc)


def ist(*args):
    return datetime(*args, tzinfo=ZoneInfo(IST)).astimezone(timezone.utc)


def create(db, title="Take medicine", type="daily", scheduled=None, **pattern):
    pattern.setdefault("timezone", IST)
    pattern.setdefault("timeOfDay", "09:00")
    params = {
        "title": title,
        "type": type,
        "scheduledAt": scheduled or ist(2026, 10, 19, 9, 0),
        "recurrencePattern": pattern,
    }
    return reminder_service.create_reminder(db, "owner-1", "chat-1", params, NOW)


def reload(reminder_id):
    with database.SessionLocal() as session:
        return crud.get_reminder(session, reminder_id)


def test_single_deletion_of_past_occurrence_is_rejected(db):
    reminder = create(db, scheduled=ist(2026, 10, 17, 9, 0))
    before = reload(reminder.id)

    result = delete_with_scope(db, reminder, DeletionScope(type="single", target=datetime(2026, 10, 18, 9, 0)), NOW)

    assert not result.success
    assert result.reason == "already_occurred"
    assert "already occurred" in result.message
    after = reload(reminder.id)
    assert after.next_execution == before.next_execution
    assert after.recurrence_pattern == before.recurrence_pattern
    assert after.version == before.version


def test_single_deletion_of_future_occurrence_adds_one_exclusion(db):
    reminder = create(db)
    assert reminder.next_execution == ist(2026, 10, 19, 9, 0)

    result = delete_with_scope(db, reminder, DeletionScope(type="single", target=datetime(2026, 10, 19, 9, 0)), NOW)

    assert result.success, result.message
    after = reload(reminder.id)
    assert after.recurrence_pattern["exclusionDates"] == ["2026-10-19"]
    assert after.next_execution == ist(2026, 10, 20, 9, 0)
    assert local_date(after.next_execution, IST).isoformat() != "2026-10-19"
    assert after.status == ReminderStatus.ACTIVE


def test_single_deletion_defaults_to_next_occurrence(db):
    reminder = create(db)
    result = delete_with_scope(db, reminder, DeletionScope(type="single"), NOW)
    assert result.success
    assert reload(reminder.id).recurrence_pattern["exclusionDates"] == ["2026-10-19"]


def test_single_deletion_of_later_occurrence_keeps_next_execution(db):
    reminder = create(db)
    result = delete_with_scope(db, reminder, DeletionScope(type="single", target=datetime(2026, 10, 21, 9, 0)), NOW)
    assert result.success
    after = reload(reminder.id)
    assert after.recurrence_pattern["exclusionDates"] == ["2026-10-21"]
    assert after.next_execution == ist(2026, 10, 19, 9, 0)


def test_single_deletion_on_a_day_without_occurrence(db):
    reminder = create(db, type="weekly", daysOfWeek=[1, 3, 5])
    result = delete_with_scope(db, reminder, DeletionScope(type="single", target=datetime(2026, 10, 20, 9, 0)), NOW)
    assert not result.success
    assert result.reason == "no_occurrence"
    assert reload(reminder.id).recurrence_pattern.get("exclusionDates", []) == []


def test_excluding_the_last_occurrence_completes_the_reminder(db):
    reminder = create(db, endDate=ist(2026, 10, 19, 23, 0))
    result = delete_with_scope(db, reminder, DeletionScope(type="single"), NOW)
    assert result.success
    after = reload(reminder.id)
    assert after is not None
    assert after.status == ReminderStatus.COMPLETED
    assert after.next_execution is None


def test_series_deletion_removes_the_row(db):
    reminder = create(db)
    reminder_service.mark_reminder_executed(db, reminder, ist(2026, 10, 19, 9, 0))

    result = delete_with_scope(db, reminder, DeletionScope(type="series"), NOW)

    assert result.success
    assert result.deletion_type == "series"
    assert reload(reminder.id) is None


def test_once_reminder_is_deleted_whatever_the_scope(db):
    reminder = create(db, title="Dentist", type="once", scheduled=ist(2026, 10, 20, 15, 0))
    result = delete_with_scope(db, reminder, DeletionScope(type="single"), NOW)
    assert result.success
    assert result.deletion_type == "single"
    assert reload(reminder.id) is None


def test_from_date_before_next_execution_completes_series(db):
    reminder = create(db)
    cutoff = datetime(2026, 10, 18, 12, 0)

    result = delete_with_scope(db, reminder, DeletionScope(type="from_date", target=cutoff), NOW)

    assert result.success
    assert result.deletion_type == "from_date"
    after = reload(reminder.id)
    assert after.status == ReminderStatus.COMPLETED
    assert after.next_execution is None
    assert after.recurrence_pattern["endDate"].startswith("2026-10-18T06:30:00")


def test_from_date_after_next_execution_deletes_series(db):
    reminder = create(db)
    result = delete_with_scope(db, reminder, DeletionScope(type="from_date", target=datetime(2026, 10, 25, 0, 0)), NOW)
    assert result.success
    assert reload(reminder.id) is None


def test_unknown_id_is_reported(db):
    result = resolve_deletion(db, "missing", {"type": "series"}, NOW)
    assert not result.success
    assert result.reason == "not_found"


def test_concurrent_change_is_reported_as_conflict(db):
    reminder = create(db)

    with database.SessionLocal() as other:
        crud.update_reminder(other, reminder.id, {"title": "Take medicine after food"})

    result = delete_with_scope(db, reminder, DeletionScope(type="single"), NOW)

    assert not result.success
    assert result.reason == "conflict"
    after = reload(reminder.id)
    assert after.title == "Take medicine after food"
    assert after.recurrence_pattern.get("exclusionDates", []) == []
