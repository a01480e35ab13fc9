"""Deletion scope resolver.

Turns a (reminder, DeletionScope) pair into one validated store mutation:

- once reminders are always deleted outright
- series deletes the recurring reminder outright
- from_date stops the series at a cutoff and completes it
- single excludes one future occurrence and re-computes the next execution

A single occurrence whose instant is already in the past is rejected and the
reminder is left untouched. Every call returns a DeletionResult with a
concrete message.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

import crud
from errors import AlreadyOccurred, ConcurrentModification
from logger_config import setup_logger
from recurrence import compute_next_skipping_exclusions, occurs_on
from schemas import (
    DeletionResult, DeletionScope, DeletionScopeType, RecurrencePattern,
    ReminderStatus, ReminderType, validate_model
)
from timezone_utils import (
    combine_local, ensure_utc, format_in_timezone, local_date, localize, parse_time_of_day, to_local
)

logger = setup_logger(__name__, 'deletion.log')


def delete_with_scope(db: Session, reminder, scope, now: datetime) -> DeletionResult:
    """Delete a reminder, or part of a recurring series.

    Args:
        db: Database session
        reminder: Reminder loaded from the store
        scope: DeletionScope (or a dict validating as one)
        now: reference instant

    Returns:
        DeletionResult describing what happened
    """
    scope = validate_model(DeletionScope, scope)
    now = ensure_utc(now)
    scope_type = DeletionScopeType(scope.type)

    try:
        if ReminderType(reminder.type) == ReminderType.ONCE:
            return _delete_entirely(
                db, reminder, DeletionScopeType.SINGLE,
                f'Deleted one-time reminder: "{reminder.title}"'
            )

        if scope_type == DeletionScopeType.SERIES:
            return _delete_series(db, reminder)
        if scope_type == DeletionScopeType.FROM_DATE:
            return _delete_from_date(db, reminder, scope.target, now)
        return _delete_single_occurrence(db, reminder, scope.target, now)

    except AlreadyOccurred as e:
        logger.info(f"Rejected single deletion for reminder {reminder.id}: occurrence is in the past")
        return DeletionResult(
            success=False,
            deletion_type=DeletionScopeType.SINGLE,
            reminder_id=reminder.id,
            reason="already_occurred",
            message=str(e)
        )
    except ConcurrentModification:
        logger.warning(f"Deletion of reminder {reminder.id} lost a version race")
        return DeletionResult(
            success=False,
            deletion_type=scope_type,
            reminder_id=reminder.id,
            reason="conflict",
            message=f'"{reminder.title}" changed while this request was being processed. Please try again.'
        )


def resolve_deletion(db: Session, reminder_id: str, scope, now: datetime) -> DeletionResult:
    """Look a reminder up by id, then delete it with the requested scope."""
    scope = validate_model(DeletionScope, scope)
    reminder = crud.get_reminder(db, reminder_id)
    if not reminder:
        return DeletionResult(
            success=False,
            deletion_type=scope.type,
            reminder_id=reminder_id,
            reason="not_found",
            message=f"Reminder {reminder_id} not found or already deleted."
        )
    return delete_with_scope(db, reminder, scope, now)


def _delete_entirely(db: Session, reminder, deletion_type: DeletionScopeType, message: str) -> DeletionResult:
    crud.delete_reminder(db, reminder.id, expected_version=reminder.version)
    logger.info(f"Deleted reminder {reminder.id} ({deletion_type.value})")
    return DeletionResult(success=True, deletion_type=deletion_type, reminder_id=reminder.id, message=message)


def _delete_series(db: Session, reminder) -> DeletionResult:
    return _delete_entirely(
        db, reminder, DeletionScopeType.SERIES,
        f'Deleted entire recurring series: "{reminder.title}". All future occurrences cancelled.'
    )


def _delete_from_date(db: Session, reminder, cutoff: Optional[datetime], now: datetime) -> DeletionResult:
    pattern = RecurrencePattern.from_record(reminder.recurrence_pattern)
    tz_name = pattern.tz_name
    cutoff = localize(cutoff, tz_name) if cutoff else now

    if reminder.next_execution is None or ensure_utc(reminder.next_execution) < cutoff:
        return _delete_series(db, reminder)

    updated = pattern.model_copy(update={"end_date": cutoff})
    crud.update_reminder(
        db, reminder.id,
        {
            'recurrence_pattern': updated.to_record(),
            'status': ReminderStatus.COMPLETED,
            'next_execution': None,
        },
        expected_version=reminder.version
    )
    logger.info(f"Stopped reminder {reminder.id} from {cutoff.isoformat()}")
    return DeletionResult(
        success=True,
        deletion_type=DeletionScopeType.FROM_DATE,
        reminder_id=reminder.id,
        message=(
            f'Stopped recurring reminder "{reminder.title}" from '
            f'{format_in_timezone(cutoff, tz_name)} onwards. Past occurrences remain in history.'
        )
    )


def _occurrence_time(reminder, pattern: RecurrencePattern, now: datetime):
    if pattern.time_of_day:
        return parse_time_of_day(pattern.time_of_day)
    reference = reminder.next_execution or now
    local = to_local(reference, pattern.tz_name)
    return local.time().replace(microsecond=0)


def _delete_single_occurrence(db: Session, reminder, target: Optional[datetime], now: datetime) -> DeletionResult:
    pattern = RecurrencePattern.from_record(reminder.recurrence_pattern)
    tz_name = pattern.tz_name
    execution_count = reminder.execution_count or 0

    target = target or reminder.next_execution
    if target is None:
        return DeletionResult(
            success=False,
            deletion_type=DeletionScopeType.SINGLE,
            reminder_id=reminder.id,
            reason="no_occurrence",
            message=f'"{reminder.title}" has no upcoming occurrences to delete.'
        )

    target_day = local_date(localize(target, tz_name), tz_name)
    instant = combine_local(target_day, _occurrence_time(reminder, pattern, now), tz_name)
    when = format_in_timezone(instant, tz_name)

    if instant < now:
        raise AlreadyOccurred(
            f'The occurrence of "{reminder.title}" on {when} has already occurred, '
            f'so it cannot be deleted. Only future occurrences can be removed.'
        )

    day_key = target_day.isoformat()
    if day_key in pattern.exclusion_dates:
        return DeletionResult(
            success=True,
            deletion_type=DeletionScopeType.SINGLE,
            reminder_id=reminder.id,
            message=f'The occurrence of "{reminder.title}" on {when} was already skipped.'
        )

    if not occurs_on(target_day, reminder.next_execution, reminder.type, pattern, execution_count):
        return DeletionResult(
            success=False,
            deletion_type=DeletionScopeType.SINGLE,
            reminder_id=reminder.id,
            reason="no_occurrence",
            message=f'"{reminder.title}" has no occurrence on {target_day:%b %d, %Y}, so nothing was deleted.'
        )

    updated = pattern.model_copy(update={"exclusion_dates": pattern.exclusion_dates + [day_key]})
    next_execution = compute_next_skipping_exclusions(
        reminder.next_execution, reminder.type, updated, now, execution_count
    )

    updates = {'recurrence_pattern': updated.to_record()}
    if next_execution is not None:
        updates['next_execution'] = next_execution
        tail = "Future occurrences remain active."
    else:
        updates['next_execution'] = None
        updates['status'] = ReminderStatus.COMPLETED
        tail = "No occurrences remain, so the reminder is now completed."

    crud.update_reminder(db, reminder.id, updates, expected_version=reminder.version)
    logger.info(f"Excluded {day_key} from reminder {reminder.id}; next execution {next_execution}")

    return DeletionResult(
        success=True,
        deletion_type=DeletionScopeType.SINGLE,
        reminder_id=reminder.id,
        message=f'Deleted single occurrence of "{reminder.title}" for {when}. {tail}'
    )
