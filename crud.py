"""CRUD operations for the Reminder Store.

This module provides database operations for reminders. The rest of the
engine goes through these functions and issues no queries of its own.
IMPORTANT: all datetime parameters and return values are aware datetime objects, NOT strings.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from database import Reminder
from errors import ConcurrentModification, ValidationError
from logger_config import setup_logger
from schemas import ReminderStatus, ReminderType

logger = setup_logger(__name__, 'crud.log')

# Fields no update may touch
IMMUTABLE_FIELDS = {'id', 'owner_id', 'scheduled_at', 'created_at', 'version'}

JSON_FIELDS = {'recurrence_pattern', 'preferences'}


def create_reminder(db: Session, reminder_data: dict) -> Reminder:
    """Create a new reminder in the database.

    Args:
        db: Database session
        reminder_data: Dictionary with reminder fields
            - owner_id: str
            - channel_id: str
            - title: str
            - type: ReminderType or str
            - scheduled_at: datetime (MUST be datetime object!)
            - next_execution: Optional[datetime]
            - description: Optional[str]
            - recurrence_pattern: Optional[dict] (persisted record)
            - preferences: Optional[dict]

    Returns:
        Reminder: Created reminder object

    Raises:
        SQLAlchemyError: On database errors
    """
    now = datetime.now(timezone.utc)

    reminder_type = reminder_data.get('type', ReminderType.ONCE)
    if isinstance(reminder_type, str):
        reminder_type = ReminderType(reminder_type)

    db_reminder = Reminder(
        id=str(uuid.uuid4()),
        owner_id=reminder_data['owner_id'],
        channel_id=reminder_data['channel_id'],
        title=reminder_data['title'],
        description=reminder_data.get('description'),
        type=reminder_type,
        status=ReminderStatus.ACTIVE,
        scheduled_at=reminder_data['scheduled_at'],
        next_execution=reminder_data.get('next_execution'),
        recurrence_pattern=reminder_data.get('recurrence_pattern'),
        preferences=reminder_data.get('preferences'),
        execution_count=0,
        created_at=now,
        updated_at=now,
    )

    db.add(db_reminder)
    db.commit()
    db.refresh(db_reminder)
    logger.info(f"Created reminder {db_reminder.id} for owner {db_reminder.owner_id}")
    return db_reminder


def get_reminder(db: Session, reminder_id: str) -> Optional[Reminder]:
    """Get a specific reminder by ID."""
    return db.get(Reminder, reminder_id)


def get_reminders_by_owner(
    db: Session,
    owner_id: str,
    active_only: bool = True,
    limit: Optional[int] = None
) -> List[Reminder]:
    """Get reminders for an owner, soonest next execution first.

    Reminders without a next execution sort last.
    """
    query = db.query(Reminder).filter(Reminder.owner_id == owner_id)

    if active_only:
        query = query.filter(Reminder.status == ReminderStatus.ACTIVE)

    query = query.order_by(Reminder.next_execution.is_(None), Reminder.next_execution.asc())
    if limit:
        query = query.limit(limit)
    return query.all()


def get_reminders_by_channel(db: Session, channel_id: str, active_only: bool = True) -> List[Reminder]:
    """Get the reminders delivered to a channel, soonest next execution first."""
    query = db.query(Reminder).filter(Reminder.channel_id == channel_id)

    if active_only:
        query = query.filter(Reminder.status == ReminderStatus.ACTIVE)

    return query.order_by(Reminder.next_execution.is_(None), Reminder.next_execution.asc()).all()


def get_upcoming_reminders(
    db: Session,
    now: datetime,
    hours: int = 24,
    owner_id: Optional[str] = None
) -> List[Reminder]:
    """Get active reminders firing after now and within the next `hours` hours.

    Args:
        db: Database session
        now: Reference instant
        hours: Size of the look-ahead window
        owner_id: Restrict to one owner when given

    Returns:
        List[Reminder]: Ordered ascending by next execution
    """
    query = db.query(Reminder).filter(
        Reminder.status == ReminderStatus.ACTIVE,
        Reminder.next_execution.isnot(None),
        Reminder.next_execution > now,
        Reminder.next_execution <= now + timedelta(hours=hours)
    )
    if owner_id:
        query = query.filter(Reminder.owner_id == owner_id)
    return query.order_by(Reminder.next_execution.asc()).all()


def get_due_reminders(db: Session, now: datetime) -> List[Reminder]:
    """Get all active reminders whose next execution is at or before now.

    Ordered ascending by next execution.
    """
    return db.query(Reminder).filter(
        Reminder.status == ReminderStatus.ACTIVE,
        Reminder.next_execution.isnot(None),
        Reminder.next_execution <= now
    ).order_by(Reminder.next_execution.asc()).all()


def update_reminder(
    db: Session,
    reminder_id: str,
    updates: dict,
    expected_version: Optional[int] = None
) -> Optional[Reminder]:
    """Update an existing reminder.

    Args:
        db: Database session
        reminder_id: Reminder UUID
        updates: Dictionary of fields to update. Unlike a plain PATCH, a None
            value is written (next_execution=None is meaningful).
        expected_version: Version the caller read; a mismatch is a conflict

    Returns:
        Optional[Reminder]: Updated reminder object if found, None otherwise

    Raises:
        ValidationError: On an attempt to change an immutable field
        ConcurrentModification: When the row changed since it was read
    """
    forbidden = IMMUTABLE_FIELDS.intersection(updates)
    if forbidden:
        raise ValidationError(f"Cannot update immutable field(s): {', '.join(sorted(forbidden))}")

    reminder = get_reminder(db, reminder_id)
    if not reminder:
        return None

    if expected_version is not None and reminder.version != expected_version:
        raise ConcurrentModification(reminder_id)

    for key, value in updates.items():
        if key == 'status' and isinstance(value, str):
            value = ReminderStatus(value)
        setattr(reminder, key, value)

        # CRITICAL: Flag JSON columns as modified for SQLAlchemy change tracking
        if key in JSON_FIELDS:
            flag_modified(reminder, key)

    reminder.updated_at = datetime.now(timezone.utc)

    try:
        db.commit()
    except StaleDataError as e:
        db.rollback()
        logger.warning(f"Version conflict updating reminder {reminder_id}")
        raise ConcurrentModification(reminder_id) from e

    db.refresh(reminder)
    return reminder


def delete_reminder(db: Session, reminder_id: str, expected_version: Optional[int] = None) -> bool:
    """Delete a reminder.

    Returns:
        bool: True if deleted, False if not found

    Raises:
        ConcurrentModification: When the row changed since it was read
    """
    reminder = get_reminder(db, reminder_id)
    if not reminder:
        return False

    if expected_version is not None and reminder.version != expected_version:
        raise ConcurrentModification(reminder_id)

    db.delete(reminder)
    try:
        db.commit()
    except StaleDataError as e:
        db.rollback()
        logger.warning(f"Version conflict deleting reminder {reminder_id}")
        raise ConcurrentModification(reminder_id) from e

    logger.info(f"Deleted reminder {reminder_id}")
    return True


def search_reminders(db: Session, owner_id: str, query: str) -> List[Reminder]:
    """Search an owner's reminders by title or description."""
    search_pattern = f"%{query}%"
    return db.query(Reminder).filter(
        Reminder.owner_id == owner_id,
        (
            Reminder.title.ilike(search_pattern) |
            Reminder.description.ilike(search_pattern)
        )
    ).order_by(Reminder.next_execution.is_(None), Reminder.next_execution.asc()).all()


def count_reminders(db: Session, owner_id: str) -> int:
    """Get total number of reminders for an owner."""
    return db.query(Reminder).filter(Reminder.owner_id == owner_id).count()
