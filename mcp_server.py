"""MCP Server for the reminder engine.

This module provides MCP tools for AI agents to manage recurring reminders.
Uses the same database as the REST API for data consistency.

IMPORTANT: Tools receive ISO datetime strings and convert to datetime objects.
Naive timestamps are read in the reminder's timezone (DEFAULT_TIMEZONE when
the call gives none).

Transport Support:
- stdio: Standard input/output (local process communication)
- sse: Server-Sent Events over HTTP (network access, scalable)
"""

import os
from datetime import datetime, timezone
from typing import List, Optional

from mcp.server.fastmcp import FastMCP

import crud
import database
import reminder_service
from config import settings
from errors import ReminderError
from logger_config import setup_logger
from matcher import format_match_results, match_reminders
from schemas import DeletionScope, MatchCriteria, RecurrencePattern
from timezone_utils import format_in_timezone, parse_datetime_to_utc

logger = setup_logger(__name__, 'mcp.log')
logger.info("MCP Server initialized")

# Create FastMCP server with host and port from settings
mcp = FastMCP(
    "RecurringReminderEngine",
    host=settings.MCP_HOST,
    port=settings.MCP_PORT
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _describe(reminder) -> str:
    tz_name = RecurrencePattern.from_record(reminder.recurrence_pattern).tz_name
    return (
        f"ID: {reminder.id}\n"
        f"Title: {reminder.title}\n"
        f"Type: {reminder.type.value}\n"
        f"Status: {reminder.status.value}\n"
        f"Next: {format_in_timezone(reminder.next_execution, tz_name)}"
    )


@mcp.tool()
def create_reminder(
    owner_id: str,
    channel_id: str,
    title: str,
    scheduled_at: str,
    type: str = "once",
    description: str = None,
    interval: int = 1,
    days_of_week: Optional[List[int]] = None,
    day_of_month: int = None,
    month_of_year: int = None,
    time_of_day: str = None,
    timezone_name: str = None,
    end_date: str = None,
    max_occurrences: int = None,
    priority: str = "medium",
    reminder_message: str = None
) -> str:
    """Create a new (possibly recurring) reminder.

    Args:
        owner_id: Owning user id
        channel_id: Chat/channel the reminder is delivered to
        title: Reminder title
        scheduled_at: First intended instant - ISO format (e.g., "2026-10-19T09:00:00+05:30")
        type: "once", "daily", "weekly", "monthly", "yearly" or "custom"
        description: Optional detailed description
        interval: Every N days/weeks/months/years (default: 1)
        days_of_week: Weekdays for weekly/custom rules, 0 = Sunday ... 6 = Saturday
        day_of_month: Day of month for monthly/yearly rules (1-31)
        month_of_year: Month for yearly rules (1-12)
        time_of_day: Local time "HH:MM"
        timezone_name: IANA timezone (default: the engine's default timezone)
        end_date: Optional ISO datetime after which the series stops
        max_occurrences: Optional cap on the number of firings
        priority: "low", "medium" or "high" (default: "medium")
        reminder_message: Optional custom notification text

    Returns:
        Success message with reminder ID and next execution, or error message
    """
    db = database.SessionLocal()
    try:
        logger.info(f"📝 Creating {type} reminder: {title} | Scheduled: {scheduled_at}")
        tz_name = timezone_name or settings.DEFAULT_TIMEZONE

        pattern = {
            'interval': interval,
            'daysOfWeek': days_of_week or [],
            'dayOfMonth': day_of_month,
            'monthOfYear': month_of_year,
            'timeOfDay': time_of_day,
            'timezone': tz_name,
            'maxOccurrences': max_occurrences,
        }
        if end_date:
            pattern['endDate'] = parse_datetime_to_utc(end_date, tz_name)

        params = {
            'title': title,
            'description': description,
            'type': type,
            'scheduledAt': parse_datetime_to_utc(scheduled_at, tz_name),
            'recurrencePattern': {k: v for k, v in pattern.items() if v is not None},
            'preferences': {'priority': priority, 'reminderMessage': reminder_message},
        }

        reminder = reminder_service.create_reminder(db, owner_id, channel_id, params, _now())
        return f"✓ Reminder created successfully!\n{_describe(reminder)}"
    except ReminderError as e:
        return f"✗ Error creating reminder: {str(e)}"
    finally:
        db.close()


@mcp.tool()
def list_reminders(owner_id: str, active_only: bool = True, limit: int = 50) -> str:
    """List an owner's reminders, soonest first.

    Args:
        owner_id: Owning user id
        active_only: Only list active reminders (default: True)
        limit: Maximum number of results (default: 50, max: 1000)

    Returns:
        Formatted list of reminders or message if none found
    """
    db = database.SessionLocal()
    try:
        reminders = crud.get_reminders_by_owner(db, owner_id, active_only, min(limit, 1000))
        return reminder_service.format_reminders_list(reminders)
    finally:
        db.close()


@mcp.tool()
def delete_reminder(reminder_id: str, scope: str = "series", target: str = None) -> str:
    """Delete a reminder, a single occurrence of it, or everything from a date.

    Args:
        reminder_id: Reminder UUID
        scope: "single", "series" (default) or "from_date"
        target: ISO datetime of the occurrence (single) or the cutoff (from_date).
            Defaults to the next occurrence (single) or now (from_date).

    Returns:
        Success or error message
    """
    db = database.SessionLocal()
    try:
        reminder = crud.get_reminder(db, reminder_id)
        if not reminder:
            return "✗ Reminder not found."

        tz_name = RecurrencePattern.from_record(reminder.recurrence_pattern).tz_name
        deletion_scope = DeletionScope(
            type=scope,
            target=parse_datetime_to_utc(target, tz_name) if target else None
        )
        result = reminder_service.delete_reminder(db, reminder_id, deletion_scope, _now())
        return f"{'✓' if result.success else '✗'} {result.message}"
    except (ReminderError, ValueError) as e:
        return f"✗ Error deleting reminder: {str(e)}"
    finally:
        db.close()


@mcp.tool()
def match_reminders_for_deletion(
    owner_id: str,
    description: str,
    keywords: Optional[List[str]] = None,
    time_context: str = None
) -> str:
    """Rank an owner's active reminders against a deletion request.

    Args:
        owner_id: Owning user id
        description: What the user asked to delete (e.g., "today's medicine reminder")
        keywords: Key terms extracted from the request
        time_context: Time hint such as "today", "6pm" or "morning"

    Returns:
        Ranked candidates with scores, reasons and suggested deletion scope
    """
    db = database.SessionLocal()
    try:
        criteria = MatchCriteria(description=description, keywords=keywords or [], time_context=time_context)
        candidates = crud.get_reminders_by_owner(db, owner_id, active_only=True)
        return format_match_results(match_reminders(candidates, criteria, _now()))
    finally:
        db.close()


@mcp.tool()
def smart_delete_reminder(
    owner_id: str,
    description: str,
    keywords: Optional[List[str]] = None,
    time_context: str = None,
    deletion_scope: str = None,
    scope_date: str = None
) -> str:
    """Delete the reminder a description points at.

    Acts only on a single high-confidence match; otherwise returns the
    options without deleting anything.

    Args:
        owner_id: Owning user id
        description: What the user asked to delete
        keywords: Key terms extracted from the request
        time_context: Time hint such as "today", "6pm" or "morning"
        deletion_scope: "single", "series", "from_date" or "ambiguous"
        scope_date: ISO datetime of the occurrence or cutoff

    Returns:
        Deletion outcome or the candidates to choose from
    """
    db = database.SessionLocal()
    try:
        criteria = {
            'description': description,
            'keywords': keywords or [],
            'timeContext': time_context,
            'deletionScope': deletion_scope,
            'scopeDate': scope_date,
        }
        response = reminder_service.smart_delete(db, owner_id, criteria, _now())
        if response.result is not None:
            return f"{'✓' if response.success else '✗'} {response.message}"
        return response.message
    except ReminderError as e:
        return f"✗ Error deleting reminder: {str(e)}"
    finally:
        db.close()


@mcp.tool()
def pause_reminder(reminder_id: str) -> str:
    """Pause an active reminder.

    Args:
        reminder_id: Reminder UUID

    Returns:
        Success or error message
    """
    db = database.SessionLocal()
    try:
        reminder = reminder_service.pause_reminder(db, reminder_id)
        return f"✓ Reminder paused.\n{_describe(reminder)}"
    except ReminderError as e:
        return f"✗ Error pausing reminder: {str(e)}"
    finally:
        db.close()


@mcp.tool()
def resume_reminder(reminder_id: str) -> str:
    """Resume a paused reminder, skipping occurrences missed while paused.

    Args:
        reminder_id: Reminder UUID

    Returns:
        Success or error message
    """
    db = database.SessionLocal()
    try:
        reminder = reminder_service.resume_reminder(db, reminder_id, _now())
        return f"✓ Reminder resumed.\n{_describe(reminder)}"
    except ReminderError as e:
        return f"✗ Error resuming reminder: {str(e)}"
    finally:
        db.close()


if __name__ == "__main__":
    transport = os.getenv("MCP_TRANSPORT", settings.MCP_TRANSPORT).lower()
    if transport not in ("sse", "stdio"):
        logger.error(f"Unknown MCP transport {transport!r}, expected 'sse' or 'stdio'")
        raise SystemExit(2)

    # stdout carries the protocol under stdio; the logger writes to stderr
    if transport == "sse":
        logger.info(f"MCP server on SSE: http://{settings.MCP_HOST}:{settings.MCP_PORT}/sse")
    else:
        logger.info("MCP server on stdio")
    mcp.run(transport=transport)
