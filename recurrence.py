"""Recurrence calculator.

Pure functions computing occurrence instants. Nothing here reads a clock or
touches the store: the reference instant ("now") is always passed in.

Calendar arithmetic runs on the local calendar of the pattern's timezone and
the time of day is re-applied after every date step, so an 09:00 reminder
stays at 09:00 local across DST changes. Results are aware UTC datetimes.

Monthly and yearly rules pin the configured day of month; when the target
month is shorter the day is clamped to the month's last day (31 -> Feb 28),
and the configured day is re-applied on the next step (Feb 28 -> Mar 31).
"""

import calendar
import enum
from datetime import date, datetime, time, timedelta
from typing import List, Optional, Set

from config import settings
from errors import IterationBudgetExceeded, NoFutureOccurrence
from logger_config import setup_logger
from schemas import RecurrencePattern, ReminderType
from timezone_utils import combine_local, ensure_utc, local_date, parse_calendar_day, parse_time_of_day, to_local

logger = setup_logger(__name__, 'recurrence.log')

OCCURS_ON_SEARCH_LIMIT = 1000
CATCH_UP_LIMIT = 10000


class Phase(enum.Enum):
    """Which scheduling pass is asking.

    INITIAL allows the anchor's own period (today, this week, this month)
    when that slot is still ahead of now; SUBSEQUENT always moves forward one
    recurrence unit.
    """
    INITIAL = "initial"
    SUBSEQUENT = "subsequent"


def sunday_based_weekday(day: date) -> int:
    """0 = Sunday ... 6 = Saturday, the convention of RecurrencePattern.daysOfWeek."""
    return (day.weekday() + 1) % 7


def _add_months(year: int, month: int, months: int):
    total = (month - 1) + months
    return year + total // 12, (total % 12) + 1


def _clamped(year: int, month: int, day: int) -> date:
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


def _wall_time(anchor: datetime, pattern: RecurrencePattern) -> time:
    if pattern.time_of_day:
        return parse_time_of_day(pattern.time_of_day)
    local = to_local(anchor, pattern.tz_name)
    return time(local.hour, local.minute, local.second)


def _weekday_set(reminder_type: ReminderType, pattern: RecurrencePattern) -> List[int]:
    if reminder_type in (ReminderType.WEEKLY, ReminderType.CUSTOM):
        return pattern.days_of_week
    return []


def _fits(day: date, reminder_type: ReminderType, pattern: RecurrencePattern) -> bool:
    """Whether a local calendar day is a valid slot of the rule."""
    weekdays = _weekday_set(reminder_type, pattern)
    if weekdays:
        return sunday_based_weekday(day) in weekdays
    if reminder_type == ReminderType.MONTHLY and pattern.day_of_month:
        return day == _clamped(day.year, day.month, pattern.day_of_month)
    if reminder_type == ReminderType.YEARLY:
        if pattern.month_of_year and day.month != pattern.month_of_year:
            return False
        if pattern.day_of_month:
            return day == _clamped(day.year, day.month, pattern.day_of_month)
    return True


def _advance_day(day: date, reminder_type: ReminderType, pattern: RecurrencePattern) -> date:
    """Move a local calendar day forward by exactly one recurrence unit."""
    interval = pattern.interval or 1

    weekdays = _weekday_set(reminder_type, pattern)
    if weekdays:
        current = sunday_based_weekday(day)
        later = [d for d in weekdays if d > current]
        if later:
            return day + timedelta(days=later[0] - current)
        # wrap to the first configured weekday, `interval` weeks on
        return day + timedelta(days=7 - current + weekdays[0] + 7 * (interval - 1))

    if reminder_type in (ReminderType.DAILY, ReminderType.CUSTOM):
        return day + timedelta(days=interval)

    if reminder_type == ReminderType.WEEKLY:
        return day + timedelta(days=7 * interval)

    if reminder_type == ReminderType.MONTHLY:
        year, month = _add_months(day.year, day.month, interval)
        return _clamped(year, month, pattern.day_of_month or day.day)

    if reminder_type == ReminderType.YEARLY:
        month = pattern.month_of_year or day.month
        return _clamped(day.year + interval, month, pattern.day_of_month or day.day)

    raise ValueError(f"Cannot advance a {reminder_type.value} reminder")


def _within_bounds(candidate: datetime, pattern: RecurrencePattern, execution_count: int) -> Optional[datetime]:
    if pattern.max_occurrences is not None and execution_count >= pattern.max_occurrences:
        return None
    if pattern.end_date is not None and candidate > ensure_utc(pattern.end_date):
        return None
    return candidate


def compute_execution(
    anchor: datetime,
    reminder_type,
    pattern: Optional[RecurrencePattern],
    phase: Phase,
    now: Optional[datetime] = None,
    execution_count: int = 0
) -> Optional[datetime]:
    """Compute the next occurrence from an anchor instant.

    Args:
        anchor: scheduled_at for the INITIAL phase, the occurrence that just
            fired for the SUBSEQUENT phase
        reminder_type: ReminderType or its string value
        pattern: recurrence rule (an empty rule is used when None)
        phase: Phase.INITIAL or Phase.SUBSEQUENT
        now: reference instant, required for the INITIAL phase
        execution_count: executions already counted against maxOccurrences

    Returns:
        Aware UTC datetime, or None when the rule has no further occurrence
    """
    reminder_type = ReminderType(reminder_type)
    pattern = pattern or RecurrencePattern()
    anchor = ensure_utc(anchor)

    if reminder_type == ReminderType.ONCE:
        return anchor if phase is Phase.INITIAL else None

    if phase is Phase.INITIAL and now is None:
        raise ValueError("now is required for the initial scheduling pass")

    tz_name = pattern.tz_name
    at = _wall_time(anchor, pattern)
    day = local_date(anchor, tz_name)
    candidate = combine_local(day, at, tz_name)

    if phase is Phase.INITIAL and _fits(day, reminder_type, pattern) and candidate > ensure_utc(now):
        return _within_bounds(candidate, pattern, execution_count)

    return _within_bounds(
        combine_local(_advance_day(day, reminder_type, pattern), at, tz_name),
        pattern,
        execution_count
    )


def compute_initial_execution(scheduled_at, reminder_type, pattern, now) -> Optional[datetime]:
    """First execution of a new reminder.

    A daily 11:00 reminder created at 02:00 fires at 11:00 the same day;
    created at 14:00 it fires at 11:00 the next day.
    """
    return compute_execution(scheduled_at, reminder_type, pattern, Phase.INITIAL, now=now)


def compute_subsequent_execution(current, reminder_type, pattern, execution_count: int = 0) -> Optional[datetime]:
    """Next execution after `current` has fired; always strictly later."""
    return compute_execution(current, reminder_type, pattern, Phase.SUBSEQUENT, execution_count=execution_count)


def excluded_days(pattern: RecurrencePattern) -> Set[date]:
    return {parse_calendar_day(entry, pattern.tz_name) for entry in pattern.exclusion_dates}


def is_excluded(instant: datetime, pattern: RecurrencePattern) -> bool:
    """Whether the instant falls on an excluded local calendar day."""
    return local_date(instant, pattern.tz_name) in excluded_days(pattern)


def _first_slot_after(current, reminder_type, pattern, now, execution_count) -> Optional[datetime]:
    """First slot of the series strictly after now.

    Steps forward from `current` so the series keeps its phase (wall-clock
    time, weekday, every-other-day parity). A series that is hopelessly
    behind is re-anchored at now instead.
    """
    if current is not None:
        candidate = ensure_utc(current)
        if candidate > now:
            return _within_bounds(candidate, pattern, execution_count)
        for _ in range(CATCH_UP_LIMIT):
            candidate = compute_subsequent_execution(candidate, reminder_type, pattern, execution_count)
            if candidate is None or candidate > now:
                return candidate
        logger.warning(f"Series more than {CATCH_UP_LIMIT} steps behind {now.isoformat()}, re-anchoring")
    return compute_execution(now, reminder_type, pattern, Phase.INITIAL, now=now, execution_count=execution_count)


def search_next_occurrence(current, reminder_type, pattern, now, execution_count=0, max_iterations=None) -> datetime:
    """Like compute_next_skipping_exclusions, but an exhausted rule raises.

    Raises:
        NoFutureOccurrence: the rule has no occurrence after now
        IterationBudgetExceeded: every candidate within the budget was excluded
    """
    reminder_type = ReminderType(reminder_type)
    max_iterations = max_iterations or settings.EXCLUSION_SEARCH_LIMIT
    now = ensure_utc(now)
    excluded = excluded_days(pattern)
    candidate = _first_slot_after(current, reminder_type, pattern, now, execution_count)

    for _ in range(max_iterations):
        if candidate is None:
            raise NoFutureOccurrence("The recurrence rule has no further occurrence")
        if candidate > now and local_date(candidate, pattern.tz_name) not in excluded:
            return candidate
        candidate = compute_subsequent_execution(candidate, reminder_type, pattern, execution_count)

    raise IterationBudgetExceeded(f"No valid occurrence within {max_iterations} candidates")


def compute_next_skipping_exclusions(
    current: Optional[datetime],
    reminder_type,
    pattern: RecurrencePattern,
    now: datetime,
    execution_count: int = 0,
    max_iterations: Optional[int] = None
) -> Optional[datetime]:
    """First future occurrence at or after max(current, now) not on an excluded day.

    Returns None when the rule is exhausted or the bounded search runs out.
    """
    reminder_type = ReminderType(reminder_type)
    limit = max_iterations or settings.EXCLUSION_SEARCH_LIMIT

    if reminder_type == ReminderType.ONCE:
        if current is None or ensure_utc(current) <= ensure_utc(now) or is_excluded(current, pattern):
            return None
        return ensure_utc(current)

    try:
        return search_next_occurrence(current, reminder_type, pattern, now, execution_count, limit)
    except IterationBudgetExceeded as e:
        logger.warning(f"Exclusion search gave up: {e}")
        return None
    except NoFutureOccurrence:
        return None


def occurs_on(
    day: date,
    current: Optional[datetime],
    reminder_type,
    pattern: RecurrencePattern,
    execution_count: int = 0,
    max_iterations: int = OCCURS_ON_SEARCH_LIMIT
) -> bool:
    """Whether the series starting at `current` has an occurrence on a local day."""
    if current is None:
        return False
    reminder_type = ReminderType(reminder_type)
    tz_name = pattern.tz_name
    candidate = ensure_utc(current)

    if reminder_type == ReminderType.ONCE:
        return local_date(candidate, tz_name) == day

    for _ in range(max_iterations):
        candidate_day = local_date(candidate, tz_name)
        if candidate_day >= day:
            return candidate_day == day
        candidate = compute_subsequent_execution(candidate, reminder_type, pattern, execution_count)
        if candidate is None:
            return False
    return False


def upcoming_occurrences(
    current: Optional[datetime],
    reminder_type,
    pattern: RecurrencePattern,
    now: datetime,
    count: int = 3,
    execution_count: int = 0
) -> List[datetime]:
    """Preview the next `count` occurrences, skipping excluded days."""
    results: List[datetime] = []
    reminder_type = ReminderType(reminder_type)
    candidate = compute_next_skipping_exclusions(current, reminder_type, pattern, now, execution_count)
    while candidate is not None and len(results) < count:
        results.append(candidate)
        if reminder_type == ReminderType.ONCE:
            break
        following = compute_subsequent_execution(candidate, reminder_type, pattern, execution_count)
        if following is None:
            break
        candidate = compute_next_skipping_exclusions(following, reminder_type, pattern, candidate, execution_count)
    return results
