"""Tests for the reminder service layer."""

from datetime import datetime, timezone
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import pytest

import crud
import database
import reminder_service
from config import settings
from errors import NotFound, ValidationError
from schemas import RecurrencePattern, ReminderStatus, ReminderType

IST = "Asia/Kolkata"
NOW = datetime(2026, 10, 18, 10, 0, tzinfo=ZoneInfo(IST)).astimezone(timezone.utc)


def ist(*args):
    return datetime(*args, tzinfo=ZoneInfo(IST)).astimezone(timezone.utc)


def create(db, title="Take medicine", type="daily", scheduled=None, **pattern):
    pattern.setdefault("timezone", IST)
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


def test_normalize_pattern_pins_anchor_fields():
    monday = ist(2026, 10, 19, 9, 0)
    weekly = reminder_service.normalize_pattern(ReminderType.WEEKLY, None, monday)
    assert weekly.days_of_week == [1]
    assert weekly.timezone == settings.DEFAULT_TIMEZONE

    monthly = reminder_service.normalize_pattern(
        ReminderType.MONTHLY, RecurrencePattern(timezone=IST), ist(2026, 10, 31, 9, 0)
    )
    assert monthly.day_of_month == 31

    yearly = reminder_service.normalize_pattern(
        ReminderType.YEARLY, RecurrencePattern(timezone=IST), ist(2028, 2, 29, 9, 0)
    )
    assert (yearly.month_of_year, yearly.day_of_month) == (2, 29)


def test_create_stores_normalized_pattern(db):
    reminder = create(db, type="weekly", scheduled=ist(2026, 10, 19, 9, 0))

    stored = reload(reminder.id)
    assert stored.recurrence_pattern["daysOfWeek"] == [1]
    assert stored.recurrence_pattern["timezone"] == IST
    assert stored.next_execution == ist(2026, 10, 19, 9, 0)
    assert stored.scheduled_at == ist(2026, 10, 19, 9, 0)
    assert stored.status == ReminderStatus.ACTIVE


def test_create_accepts_naive_time_in_pattern_timezone(db):
    params = {
        "title": "Stand-up",
        "type": "daily",
        "scheduledAt": "2026-10-19T09:30:00",
        "recurrencePattern": {"timezone": "America/New_York"},
    }
    reminder = reminder_service.create_reminder(db, "owner-1", "chat-1", params, NOW)
    assert reminder.next_execution == datetime(2026, 10, 19, 13, 30, tzinfo=timezone.utc)


def test_create_rejects_bad_input(db):
    with pytest.raises(ValidationError):
        reminder_service.create_reminder(db, "owner-1", "chat-1", {"title": "", "scheduledAt": NOW}, NOW)
    with pytest.raises(ValidationError):
        create(db, timeOfDay="25:00")
    with pytest.raises(ValidationError):
        create(db, timezone="Mars/Olympus_Mons")
    assert crud.count_reminders(db, "owner-1") == 0


def test_create_rejects_rule_without_future_occurrence(db):
    with pytest.raises(ValidationError, match="no occurrence"):
        create(db, scheduled=ist(2026, 10, 17, 9, 0), endDate=ist(2026, 10, 17, 23, 0))


def test_owner_limit(db, monkeypatch):
    monkeypatch.setattr(settings, "MAX_REMINDERS_PER_OWNER", 1)
    create(db)
    with pytest.raises(ValidationError, match="maximum"):
        create(db, title="Another one")


def test_reschedule_keeps_original_scheduled_at(db):
    reminder = create(db)

    updated = reminder_service.update_reminder(db, reminder.id, {"scheduledAt": "2026-10-20T08:00:00"}, NOW)

    assert updated.next_execution == ist(2026, 10, 20, 8, 0)
    assert updated.scheduled_at == ist(2026, 10, 19, 9, 0)
    assert updated.version == 2


def test_update_title_and_priority(db):
    reminder = create(db)
    updated = reminder_service.update_reminder(db, reminder.id, {"title": "Vitamins", "priority": "high"}, NOW)
    assert updated.title == "Vitamins"
    assert updated.preferences == {"priority": "high"}
    assert updated.next_execution == reminder.next_execution


def test_update_unknown_reminder(db):
    with pytest.raises(NotFound):
        reminder_service.update_reminder(db, "missing", {"title": "x"}, NOW)


def test_pause_and_resume_skip_missed_occurrences(db):
    reminder = create(db, timeOfDay="09:00")

    paused = reminder_service.pause_reminder(db, reminder.id)
    assert paused.status == ReminderStatus.PAUSED
    with pytest.raises(ValidationError):
        reminder_service.pause_reminder(db, reminder.id)

    resumed = reminder_service.resume_reminder(db, reminder.id, ist(2026, 10, 21, 12, 0))
    assert resumed.status == ReminderStatus.ACTIVE
    assert resumed.next_execution == ist(2026, 10, 22, 9, 0)
    with pytest.raises(ValidationError):
        reminder_service.resume_reminder(db, reminder.id, NOW)


def test_update_status_active_resumes_with_catch_up(db):
    reminder = create(db, timeOfDay="09:00")
    reminder_service.pause_reminder(db, reminder.id)

    updated = reminder_service.update_reminder(db, reminder.id, {"status": "active"}, ist(2026, 10, 21, 12, 0))

    assert updated.status == ReminderStatus.ACTIVE
    assert updated.next_execution == ist(2026, 10, 22, 9, 0)


def test_update_cannot_reactivate_completed_reminder_without_new_time(db):
    reminder = create(db, timeOfDay="09:00", maxOccurrences=1)
    reminder_service.mark_reminder_executed(db, reminder, ist(2026, 10, 19, 9, 0))
    assert reload(reminder.id).status == ReminderStatus.COMPLETED

    with pytest.raises(ValidationError):
        reminder_service.update_reminder(db, reminder.id, {"status": "active"}, ist(2026, 10, 19, 10, 0))

    stored = reload(reminder.id)
    assert stored.status == ReminderStatus.COMPLETED
    assert stored.next_execution is None


def test_update_with_new_time_reactivates_completed_reminder(db):
    dentist = create(db, title="Dentist", type="once", scheduled=ist(2026, 10, 19, 15, 0))
    reminder_service.mark_reminder_executed(db, dentist, ist(2026, 10, 19, 15, 0))

    updated = reminder_service.update_reminder(
        db, dentist.id, {"status": "active", "scheduledAt": "2026-10-25T15:00:00"}, ist(2026, 10, 20, 9, 0)
    )

    assert updated.status == ReminderStatus.ACTIVE
    assert updated.next_execution == ist(2026, 10, 25, 15, 0)


def test_update_status_transitions_from_cancelled(db):
    reminder = create(db)
    reminder_service.cancel_reminder(db, reminder.id)

    with pytest.raises(ValidationError):
        reminder_service.update_reminder(db, reminder.id, {"status": "active"}, NOW)
    with pytest.raises(ValidationError):
        reminder_service.update_reminder(db, reminder.id, {"status": "paused"}, NOW)
    assert reload(reminder.id).status == ReminderStatus.CANCELLED


def test_update_status_pause_and_same_status(db):
    reminder = create(db)

    unchanged = reminder_service.update_reminder(db, reminder.id, {"status": "active"}, NOW)
    assert unchanged.version == 1

    paused = reminder_service.update_reminder(db, reminder.id, {"status": "paused"}, NOW)
    assert paused.status == ReminderStatus.PAUSED
    assert paused.next_execution == ist(2026, 10, 19, 9, 0)


def test_cancel(db):
    reminder = create(db)
    assert reminder_service.cancel_reminder(db, reminder.id).status == ReminderStatus.CANCELLED
    assert crud.get_due_reminders(db, ist(2026, 10, 30, 0, 0)) == []


def test_advance_skips_excluded_day():
    reminder = SimpleNamespace(
        type=ReminderType.DAILY,
        next_execution=ist(2026, 10, 19, 9, 0),
        execution_count=0,
        recurrence_pattern={"timezone": IST, "timeOfDay": "09:00", "exclusionDates": ["2026-10-20"]},
    )
    updates = reminder_service.advance_after_execution(reminder, ist(2026, 10, 19, 9, 0, 5))
    assert updates["next_execution"] == ist(2026, 10, 21, 9, 0)
    assert updates["execution_count"] == 1
    assert "status" not in updates


def test_format_reminders_list(db):
    assert reminder_service.format_reminders_list([]) == "📅 You don't have any active reminders."

    reminder = create(db, timeOfDay="09:00")
    text = reminder_service.format_reminders_list([reminder])
    assert "1. Take medicine" in text
    assert "📅 Next: Oct 19, 2026, 09:00 AM" in text
    assert "🔄 Type: daily" in text
    assert f"🆔 ID: {reminder.id}" in text


def test_smart_delete_without_match(db):
    create(db)
    response = reminder_service.smart_delete(db, "owner-1", {"description": "gym", "keywords": ["gym"]}, NOW)
    assert not response.success
    assert "couldn't find" in response.message


def test_smart_delete_with_several_strong_matches_changes_nothing(db):
    first = create(db)
    second = create(db, timeOfDay="21:00")

    response = reminder_service.smart_delete(
        db, "owner-1", {"description": "medicine", "keywords": ["medicine"], "deletionScope": "series"}, NOW
    )

    assert not response.success
    assert {m.reminder.id for m in response.matches} == {first.id, second.id}
    assert reload(first.id) is not None and reload(second.id) is not None


def test_smart_delete_one_time_reminder(db):
    dentist = create(db, title="Dentist", type="once", scheduled=ist(2026, 10, 20, 15, 0))
    response = reminder_service.smart_delete(db, "owner-1", {"description": "dentist", "keywords": ["dentist"]}, NOW)
    assert response.success
    assert response.result.deletion_type == "single"
    assert reload(dentist.id) is None


def test_smart_delete_recurring_needs_a_scope(db):
    reminder = create(db)
    response = reminder_service.smart_delete(db, "owner-1", {"description": "medicine", "keywords": ["medicine"]}, NOW)
    assert not response.success
    assert "is a recurring reminder" in response.message
    assert "reads like" not in response.message
    assert reload(reminder.id).version == 1


def test_smart_delete_recurring_options_mention_likely_scope(db):
    reminder = create(db)

    response = reminder_service.smart_delete(
        db, "owner-1", {"description": "medicine series", "keywords": ["medicine"]}, NOW
    )

    assert not response.success
    assert "is a recurring reminder" in response.message
    assert "reads like: entire series (medium confidence)" in response.message
    assert reload(reminder.id).version == 1


def test_smart_delete_recurring_single_occurrence(db):
    reminder = create(db, timeOfDay="09:00")
    criteria = {
        "description": "medicine",
        "keywords": ["medicine"],
        "deletionScope": "single",
        "scopeDate": "2026-10-20T09:00:00",
    }

    response = reminder_service.smart_delete(db, "owner-1", criteria, NOW)

    assert response.success, response.message
    stored = reload(reminder.id)
    assert stored.recurrence_pattern["exclusionDates"] == ["2026-10-20"]
    assert stored.next_execution == ist(2026, 10, 19, 9, 0)


def test_delete_reminder_by_id(db):
    reminder = create(db)
    result = reminder_service.delete_reminder(db, reminder.id, {"type": "series"}, NOW)
    assert result.success
    with pytest.raises(NotFound):
        reminder_service.delete_reminder(db, reminder.id, None, NOW)


def test_notification_message():
    assert reminder_service.notification_message(SimpleNamespace(preferences=None)) is None
    custom = SimpleNamespace(preferences={"reminderMessage": "Pills with water!"})
    assert reminder_service.notification_message(custom) == "Pills with water!"
