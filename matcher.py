"""Candidate matcher for description-based deletion.

Scores an owner's active reminders against parsed MatchCriteria. The score is
a weighted sum of independent signals, clamped to [0, 100]:

    exact phrase/token overlap   50
    title keyword fraction       40
    time context                 30
    description keyword fraction 20
    loose word overlap           15

Equal scores are ordered by earliest next execution (none last), then title,
then id.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from config import settings
from errors import ValidationError
from intent import contains_phrase, suggest_scope
from recurrence import upcoming_occurrences
from schemas import DeletionScopeType, MatchCriteria, RecurrencePattern, ReminderType
from timezone_utils import format_in_timezone, local_date, to_local

EXACT_PHRASE_WEIGHT = 50
TITLE_KEYWORD_WEIGHT = 40
TIME_CONTEXT_WEIGHT = 30
DESCRIPTION_KEYWORD_WEIGHT = 20
WORD_OVERLAP_WEIGHT = 15

HIGH_CONFIDENCE = 70
MEDIUM_CONFIDENCE = 40
LOW_CONFIDENCE = 20

# (name, start hour, end hour); night wraps midnight
PARTS_OF_DAY = [
    ('morning', 6, 12),
    ('afternoon', 12, 17),
    ('evening', 17, 21),
    ('night', 21, 6),
    ('tonight', 21, 6),
]
PART_OF_DAY_SCORE = 0.8

CLOCK_12H = re.compile(r'\b(\d{1,2})(?::(\d{2}))?\s*(am|pm)\b')
CLOCK_24H = re.compile(r'\b(\d{1,2}):(\d{2})\b')
CLOCK_BARE_HOUR = re.compile(r'\bat\s+(\d{1,2})\b')

SCOPE_LABELS = {
    DeletionScopeType.SINGLE: 'single occurrence',
    DeletionScopeType.SERIES: 'entire series',
    DeletionScopeType.FROM_DATE: 'from specific date',
}


@dataclass
class Match:
    reminder: object
    score: float
    reasons: List[str] = field(default_factory=list)
    is_recurring: bool = False
    suggested_scope: Optional[DeletionScopeType] = None


def _words(text: Optional[str]) -> List[str]:
    return [w for w in re.findall(r"[a-z0-9']+", (text or '').lower()) if len(w) > 2]


def reminder_timezone(reminder, fallback: Optional[str] = None) -> str:
    """Timezone used to read and display a reminder's instants."""
    if reminder.recurrence_pattern:
        try:
            return RecurrencePattern.from_record(reminder.recurrence_pattern).tz_name
        except ValidationError:
            pass
    return fallback or settings.DEFAULT_TIMEZONE


def keyword_score(text: str, keywords: List[str]) -> float:
    """Fraction of keywords contained in text."""
    if not keywords:
        return 0.0
    text = text.lower()
    return sum(1 for k in keywords if k.lower() in text) / len(keywords)


def parse_clock_time(time_context: str) -> Optional[Tuple[int, Optional[int]]]:
    """Extract (hour, minute) from "6pm", "7:30 am", "18:00" or a bare "at 6"."""
    text = time_context.lower()
    m = CLOCK_12H.search(text)
    if m:
        hour = int(m.group(1))
        minute = int(m.group(2)) if m.group(2) else None
        if m.group(3) == 'pm' and hour != 12:
            hour += 12
        if m.group(3) == 'am' and hour == 12:
            hour = 0
        return hour, minute
    m = CLOCK_24H.search(text)
    if m:
        return int(m.group(1)), int(m.group(2))
    m = CLOCK_BARE_HOUR.search(text)
    if m and int(m.group(1)) < 24:
        return int(m.group(1)), None
    return None


def time_score(next_execution: Optional[datetime], time_context: str, now: datetime, tz_name: str) -> float:
    """How well the reminder's next execution fits the time context, 0..1."""
    if next_execution is None or not time_context:
        return 0.0

    text = time_context.lower()
    fire_day = local_date(next_execution, tz_name)
    today = local_date(now, tz_name)

    if contains_phrase(text, 'today'):
        return 1.0 if fire_day == today else 0.0
    if contains_phrase(text, 'tomorrow'):
        return 1.0 if fire_day == today + timedelta(days=1) else 0.0

    local = to_local(next_execution, tz_name)
    clock = parse_clock_time(text)
    if clock:
        hour, minute = clock
        if local.hour != hour:
            return 0.0
        if minute is None or local.minute == minute:
            return 1.0
        return 0.5

    for name, start, end in PARTS_OF_DAY:
        if contains_phrase(text, name):
            if start < end:
                inside = start <= local.hour < end
            else:
                inside = local.hour >= start or local.hour < end
            return PART_OF_DAY_SCORE if inside else 0.0

    return 0.0


def exact_phrase_score(reminder, description: str) -> float:
    """Fraction of description tokens found verbatim in the title or description."""
    tokens = _words(description)
    if not tokens:
        return 0.0
    title = (reminder.title or '').lower()
    body = (reminder.description or '').lower()
    return sum(1 for t in tokens if t in title or t in body) / len(tokens)


def word_overlap_score(reminder, description: str) -> float:
    """Bag-of-words overlap between the request and the reminder text."""
    tokens = _words(description)
    if not tokens:
        return 0.0
    vocabulary = set(_words(reminder.title)) | set(_words(reminder.description))
    return sum(1 for t in tokens if t in vocabulary) / len(tokens)


def score_reminder(reminder, criteria: MatchCriteria, now: datetime, timezone: Optional[str] = None) -> Match:
    """Score a single reminder against the match criteria."""
    tz_name = reminder_timezone(reminder, timezone)
    score = 0.0
    reasons: List[str] = []

    exact = exact_phrase_score(reminder, criteria.description)
    if exact > 0:
        score += exact * EXACT_PHRASE_WEIGHT
        reasons.append('Exact phrase match found')

    title_hits = keyword_score(reminder.title or '', criteria.keywords)
    if title_hits > 0:
        score += title_hits * TITLE_KEYWORD_WEIGHT
        reasons.append(f"Title contains: {', '.join(criteria.keywords)}")

    if criteria.time_context:
        timing = time_score(reminder.next_execution, criteria.time_context, now, tz_name)
        if timing > 0:
            score += timing * TIME_CONTEXT_WEIGHT
            reasons.append(f"Time matches: {criteria.time_context}")

    if reminder.description:
        body_hits = keyword_score(reminder.description, criteria.keywords)
        if body_hits > 0:
            score += body_hits * DESCRIPTION_KEYWORD_WEIGHT
            reasons.append(f"Description contains: {', '.join(criteria.keywords)}")

    overlap = word_overlap_score(reminder, criteria.description)
    if overlap > 0:
        score += overlap * WORD_OVERLAP_WEIGHT
        reasons.append('Similar content detected')

    is_recurring = ReminderType(reminder.type) != ReminderType.ONCE
    suggested = suggest_scope(criteria.description, criteria.time_context) if is_recurring else None

    return Match(
        reminder=reminder,
        score=min(score, 100.0),
        reasons=reasons,
        is_recurring=is_recurring,
        suggested_scope=suggested
    )


def _sort_key(match: Match):
    next_execution = match.reminder.next_execution
    return (
        -match.score,
        next_execution is None,
        next_execution.timestamp() if next_execution else 0.0,
        (match.reminder.title or '').lower(),
        match.reminder.id,
    )


def match_reminders(reminders, criteria: MatchCriteria, now: datetime, timezone: Optional[str] = None) -> List[Match]:
    """Rank reminders against the criteria, dropping those that score 0."""
    matches = [score_reminder(r, criteria, now, timezone) for r in reminders]
    return sorted((m for m in matches if m.score > 0), key=_sort_key)


def categorize_matches(matches: List[Match]) -> Dict[str, List[Match]]:
    """Bucket matches by confidence: high >= 70, medium 40-70, low 20-40."""
    return {
        'high': [m for m in matches if m.score >= HIGH_CONFIDENCE],
        'medium': [m for m in matches if MEDIUM_CONFIDENCE <= m.score < HIGH_CONFIDENCE],
        'low': [m for m in matches if LOW_CONFIDENCE <= m.score < MEDIUM_CONFIDENCE],
    }


def format_match_results(matches: List[Match], timezone: Optional[str] = None) -> str:
    """Format ranked matches for display."""
    if not matches:
        return "❌ No matching reminders found."

    lines = [f"🔍 Found {len(matches)} matching reminder(s):", ""]
    for index, match in enumerate(matches, 1):
        reminder = match.reminder
        tz_name = reminder_timezone(reminder, timezone)
        next_time = format_in_timezone(reminder.next_execution, tz_name)
        if match.is_recurring:
            kind = f"🔄 Next: {next_time} ({ReminderType(reminder.type).value} recurring)"
        else:
            kind = f"📅 Next: {next_time} (one-time)"

        lines.append(f"{index}. {reminder.title} ({round(match.score)}% match)")
        lines.append(f"   {kind}")
        lines.append(f"   🔍 Reasons: {', '.join(match.reasons)}")
        if match.is_recurring and match.suggested_scope:
            lines.append(f"   💡 Suggested: Delete {SCOPE_LABELS[match.suggested_scope]}")
        lines.append(f"   🆔 ID: {reminder.id}")
        lines.append("")

    return "\n".join(lines).rstrip()


def format_recurring_options(reminder, now: datetime, timezone: Optional[str] = None) -> str:
    """Explain the deletion scopes available for a recurring reminder."""
    tz_name = reminder_timezone(reminder, timezone)
    pattern = RecurrencePattern.from_record(reminder.recurrence_pattern)
    upcoming = upcoming_occurrences(
        reminder.next_execution, reminder.type, pattern, now, count=3,
        execution_count=reminder.execution_count or 0
    )
    title = reminder.title.lower()

    lines = [
        f'🔄 "{reminder.title}" is a recurring reminder',
        "",
        f"📅 Next occurrence: {format_in_timezone(reminder.next_execution, tz_name)}",
        f"🔄 Type: {ReminderType(reminder.type).value}",
    ]
    if upcoming:
        lines.append("🗓 Upcoming: " + "; ".join(format_in_timezone(dt, tz_name) for dt in upcoming))
    lines += [
        "",
        "Choose deletion scope:",
        "1️⃣ Delete only next occurrence",
        "2️⃣ Delete entire recurring series",
        "3️⃣ Stop from specific date onwards",
        "",
        "💡 Use:",
        f"• \"today's {title}\" for a single occurrence",
        f"• \"all {title} reminders\" for the entire series",
        f"• the reminder ID {reminder.id} for precise control",
    ]
    return "\n".join(lines)
