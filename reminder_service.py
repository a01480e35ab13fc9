"""Reminder service layer.

Business operations shared by the REST API, the MCP tools and the scheduler:
creating and updating reminders, advancing them after they fire, and the
description-based ("delete my medicine reminder") deletion flow.

All functions take the reference instant `now` explicitly.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

import crud
from config import settings
from deletion import delete_with_scope
from errors import NotFound, ValidationError
from intent import analyze_deletion_intent
from logger_config import setup_logger
from matcher import (
    SCOPE_LABELS, categorize_matches, format_match_results, format_recurring_options, match_reminders
)
from recurrence import (
    compute_execution, compute_initial_execution, compute_next_skipping_exclusions,
    compute_subsequent_execution, is_excluded, sunday_based_weekday, Phase
)
from schemas import (
    DeletionResult, DeletionScope, DeletionScopeType, MatchCriteria, MatchResponse, Preferences, RecurrencePattern,
    ReminderCreate, ReminderResponse, ReminderStatus, ReminderType, ReminderUpdate, SmartDeleteResponse,
    validate_model
)
from timezone_utils import ensure_utc, format_in_timezone, localize, to_local

logger = setup_logger(__name__, 'service.log')


def normalize_pattern(reminder_type: ReminderType, pattern: Optional[RecurrencePattern],
                      scheduled_at: datetime) -> RecurrencePattern:
    """Pin the parts of a rule that would otherwise be read from the moving anchor.

    The timezone is always written explicitly. Weekly rules without weekdays
    take the weekday of scheduled_at, monthly rules its day of month, yearly
    rules its month and day.
    """
    pattern = pattern or RecurrencePattern()
    updates = {}
    if not pattern.timezone:
        updates['timezone'] = settings.DEFAULT_TIMEZONE
    local = to_local(scheduled_at, pattern.timezone or settings.DEFAULT_TIMEZONE)

    if reminder_type == ReminderType.WEEKLY and not pattern.days_of_week:
        updates['days_of_week'] = [sunday_based_weekday(local.date())]
    elif reminder_type == ReminderType.MONTHLY and not pattern.day_of_month:
        updates['day_of_month'] = local.day
    elif reminder_type == ReminderType.YEARLY:
        if not pattern.month_of_year:
            updates['month_of_year'] = local.month
        if not pattern.day_of_month:
            updates['day_of_month'] = local.day

    return pattern.model_copy(update=updates) if updates else pattern


def _pattern_of(reminder) -> RecurrencePattern:
    return RecurrencePattern.from_record(reminder.recurrence_pattern)


def _get_or_raise(db: Session, reminder_id: str):
    reminder = crud.get_reminder(db, reminder_id)
    if not reminder:
        raise NotFound(reminder_id)
    return reminder


def create_reminder(db: Session, owner_id: str, channel_id: str, params, now: datetime):
    """Validate parser output and store a new active reminder.

    Raises:
        ValidationError: malformed params, owner limit reached, or a rule
            with no occurrence in the future
    """
    params = validate_model(ReminderCreate, params)
    now = ensure_utc(now)

    if crud.count_reminders(db, owner_id) >= settings.MAX_REMINDERS_PER_OWNER:
        raise ValidationError(
            f"Owner {owner_id} already has the maximum of {settings.MAX_REMINDERS_PER_OWNER} reminders"
        )

    pattern = normalize_pattern(params.type, params.recurrence_pattern, params.scheduled_at)
    next_execution = compute_initial_execution(params.scheduled_at, params.type, pattern, now)
    if (next_execution is not None and params.type != ReminderType.ONCE
            and (next_execution <= now or is_excluded(next_execution, pattern))):
        next_execution = compute_next_skipping_exclusions(next_execution, params.type, pattern, now)

    if next_execution is None:
        raise ValidationError("The recurrence rule has no occurrence in the future")
    if params.type == ReminderType.ONCE and next_execution <= now:
        logger.warning(f"One-time reminder '{params.title}' is scheduled in the past and will fire immediately")

    reminder_data = {
        'owner_id': owner_id,
        'channel_id': channel_id,
        'title': params.title,
        'description': params.description,
        'type': params.type,
        'scheduled_at': params.scheduled_at,
        'next_execution': next_execution,
        'recurrence_pattern': pattern.to_record(),
        'preferences': params.preferences.model_dump(by_alias=True, exclude_none=True) if params.preferences else None,
    }
    reminder = crud.create_reminder(db, reminder_data)
    logger.info(f"Created {params.type.value} reminder {reminder.id}, next execution {next_execution.isoformat()}")
    return reminder


def update_reminder(db: Session, reminder_id: str, params, now: datetime):
    """Apply a partial update.

    A new scheduled_at reschedules: next_execution is recomputed with the
    initial-phase rule from it, while the stored scheduled_at is kept.
    """
    params = validate_model(ReminderUpdate, params)
    now = ensure_utc(now)
    reminder = _get_or_raise(db, reminder_id)
    fields = params.model_dump(exclude_unset=True)
    updates = {}

    for key in ('title', 'description'):
        if key in fields:
            updates[key] = fields[key]

    if fields.get('priority'):
        preferences = dict(reminder.preferences or {})
        preferences['priority'] = fields['priority']
        updates['preferences'] = preferences

    if fields.get('scheduled_at'):
        pattern = _pattern_of(reminder)
        target = localize(fields['scheduled_at'], pattern.tz_name)
        next_execution = compute_execution(
            target, reminder.type, pattern, Phase.INITIAL, now=now,
            execution_count=reminder.execution_count or 0
        )
        if next_execution is None:
            raise ValidationError("The new time has no occurrence in the future")
        updates['next_execution'] = next_execution
        if reminder.status == ReminderStatus.COMPLETED:
            updates['status'] = ReminderStatus.ACTIVE

    if fields.get('status'):
        updates.update(_status_change(reminder, ReminderStatus(fields['status']), updates, now))

    if not updates:
        return reminder

    updated = crud.update_reminder(db, reminder.id, updates, expected_version=reminder.version)
    logger.info(f"Updated reminder {reminder.id}: {', '.join(sorted(updates))}")
    return updated


def _status_change(reminder, target: ReminderStatus, pending: dict, now: datetime) -> dict:
    """Updates for a requested status, keeping next_execution consistent with it.

    `pending` holds the updates already collected for this request; a
    reschedule in the same request counts as the new next execution.
    """
    current = ReminderStatus(pending.get('status', reminder.status))
    if target == current:
        return {}

    if target == ReminderStatus.ACTIVE:
        if 'next_execution' in pending:
            return {'status': ReminderStatus.ACTIVE}
        if current == ReminderStatus.PAUSED:
            return _resume_updates(reminder, now)
        raise ValidationError(
            f"A {current.value} reminder can only be reactivated together with a new scheduledAt"
        )

    if target == ReminderStatus.PAUSED and current != ReminderStatus.ACTIVE:
        raise ValidationError(f"Only active reminders can be paused (status is {current.value})")

    return {'status': target}


def _resume_updates(reminder, now: datetime) -> dict:
    updates = {'status': ReminderStatus.ACTIVE}
    if reminder.type != ReminderType.ONCE and (reminder.next_execution is None or reminder.next_execution <= now):
        next_execution = compute_next_skipping_exclusions(
            reminder.next_execution, reminder.type, _pattern_of(reminder), now, reminder.execution_count or 0
        )
        updates['next_execution'] = next_execution
        if next_execution is None:
            updates['status'] = ReminderStatus.COMPLETED
    return updates


def pause_reminder(db: Session, reminder_id: str):
    reminder = _get_or_raise(db, reminder_id)
    if reminder.status != ReminderStatus.ACTIVE:
        raise ValidationError(f"Only active reminders can be paused (status is {reminder.status.value})")
    return crud.update_reminder(db, reminder.id, {'status': ReminderStatus.PAUSED}, expected_version=reminder.version)


def resume_reminder(db: Session, reminder_id: str, now: datetime):
    """Reactivate a paused reminder.

    Occurrences missed while paused are skipped: a recurring reminder whose
    next execution has passed moves to its first future occurrence.
    """
    now = ensure_utc(now)
    reminder = _get_or_raise(db, reminder_id)
    if reminder.status != ReminderStatus.PAUSED:
        raise ValidationError(f"Only paused reminders can be resumed (status is {reminder.status.value})")

    updates = _resume_updates(reminder, now)
    return crud.update_reminder(db, reminder.id, updates, expected_version=reminder.version)


def cancel_reminder(db: Session, reminder_id: str):
    reminder = _get_or_raise(db, reminder_id)
    return crud.update_reminder(db, reminder.id, {'status': ReminderStatus.CANCELLED}, expected_version=reminder.version)


def advance_after_execution(reminder, now: datetime) -> dict:
    """Compute the store updates for a reminder that has just fired.

    once reminders complete. Recurring ones move to their next occurrence,
    skipping excluded days and occurrences already in the past, and complete
    when the rule is exhausted.
    """
    now = ensure_utc(now)
    execution_count = (reminder.execution_count or 0) + 1
    updates = {'execution_count': execution_count, 'last_executed_at': now}

    if reminder.type == ReminderType.ONCE:
        updates.update(status=ReminderStatus.COMPLETED, next_execution=None)
        return updates

    pattern = _pattern_of(reminder)
    next_execution = compute_subsequent_execution(reminder.next_execution, reminder.type, pattern, execution_count)
    if next_execution is not None and (next_execution <= now or is_excluded(next_execution, pattern)):
        next_execution = compute_next_skipping_exclusions(
            next_execution, reminder.type, pattern, now, execution_count
        )

    if next_execution is None:
        updates.update(status=ReminderStatus.COMPLETED, next_execution=None)
    else:
        updates['next_execution'] = next_execution
    return updates


def mark_reminder_executed(db: Session, reminder, now: datetime):
    """Persist the advanced state of a fired reminder (version-checked)."""
    updates = advance_after_execution(reminder, now)
    updated = crud.update_reminder(db, reminder.id, updates, expected_version=reminder.version)
    if updates.get('status') == ReminderStatus.COMPLETED:
        logger.info(f"Reminder {reminder.id} completed after {updates['execution_count']} execution(s)")
    else:
        logger.info(f"Reminder {reminder.id} advanced to {updates['next_execution'].isoformat()}")
    return updated


def to_match_response(match):
    return MatchResponse(
        reminder=ReminderResponse.model_validate(match.reminder),
        score=round(match.score, 2),
        reasons=match.reasons,
        is_recurring=match.is_recurring,
        suggested_scope=match.suggested_scope,
    )


def smart_delete(db: Session, owner_id: str, criteria, now: datetime) -> SmartDeleteResponse:
    """Delete a reminder identified by a description.

    Only a single high-confidence match is acted on. Anything else returns
    the ranked options and leaves the store untouched.
    """
    criteria = validate_model(MatchCriteria, criteria)
    now = ensure_utc(now)

    candidates = crud.get_reminders_by_owner(db, owner_id, active_only=True)
    matches = match_reminders(candidates, criteria, now)
    if not matches:
        logger.info(f"No reminder matched '{criteria.description}' for owner {owner_id}")
        return SmartDeleteResponse(
            success=False,
            message=f"❌ I couldn't find any reminders matching \"{criteria.description}\"."
        )

    high = categorize_matches(matches)['high']
    if len(high) != 1:
        return SmartDeleteResponse(
            success=False,
            message=format_match_results(matches),
            matches=[to_match_response(m) for m in matches]
        )

    match = high[0]
    reminder = match.reminder
    if not match.is_recurring:
        result = delete_with_scope(db, reminder, DeletionScope(type='series'), now)
        return SmartDeleteResponse(success=result.success, message=result.message, result=result)

    scope = criteria.deletion_scope
    if scope in (None, 'ambiguous'):
        return SmartDeleteResponse(
            success=False,
            message=_recurring_options_with_hint(reminder, criteria, now),
            matches=[to_match_response(match)]
        )

    result = delete_with_scope(db, reminder, DeletionScope(type=scope, target=criteria.scope_date), now)
    return SmartDeleteResponse(success=result.success, message=result.message, result=result)


def _recurring_options_with_hint(reminder, criteria: MatchCriteria, now: datetime) -> str:
    """Scope options for a recurring reminder, led by the keyword reading of the request."""
    message = format_recurring_options(reminder, now)
    analysis = analyze_deletion_intent(criteria.description, criteria.time_context)
    if analysis.scope == 'ambiguous':
        return message
    label = SCOPE_LABELS[DeletionScopeType(analysis.scope)]
    return (
        f"{message}\n\n🤔 Your request reads like: {label} "
        f"({analysis.confidence} confidence). Reply with that scope to confirm."
    )


def delete_reminder(db: Session, reminder_id: str, scope, now: datetime) -> DeletionResult:
    """Scoped deletion by id; unknown ids raise NotFound."""
    reminder = _get_or_raise(db, reminder_id)
    return delete_with_scope(db, reminder, scope or DeletionScope(), now)


def format_reminders_list(reminders: List) -> str:
    """Listing text with each reminder's times in its own timezone."""
    if not reminders:
        return "📅 You don't have any active reminders."

    lines = ["📅 Your Active Reminders:", ""]
    for index, reminder in enumerate(reminders, 1):
        pattern = _pattern_of(reminder)
        lines.append(f"{index}. {reminder.title}")
        lines.append(f"   📅 Next: {format_in_timezone(reminder.next_execution, pattern.tz_name)}")
        lines.append(f"   🔄 Type: {ReminderType(reminder.type).value}")
        if reminder.description:
            lines.append(f"   📝 {reminder.description}")
        lines.append(f"   🆔 ID: {reminder.id}")
    return "\n".join(lines)


def notification_message(reminder) -> Optional[str]:
    """Custom notification text from the reminder's preferences, if any."""
    if not reminder.preferences:
        return None
    return Preferences.model_validate(reminder.preferences).reminder_message
