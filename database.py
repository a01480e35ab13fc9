"""Database module for the reminder engine.

This module defines the SQLAlchemy model and database session management.
IMPORTANT: all instants are stored as DateTime objects, NOT strings.
"""

from sqlalchemy import create_engine, Column, String, Integer, DateTime, JSON, Enum as SQLEnum, Index
from sqlalchemy.types import TypeDecorator
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from config import settings
from schemas import ReminderStatus, ReminderType
from timezone_utils import ensure_utc

# SQLAlchemy Base
Base = declarative_base()


class UTCDateTime(TypeDecorator):
    """Timezone-aware DateTime that always round-trips as aware UTC.

    SQLite stores no offset, so values are normalized to UTC on the way in
    and tagged as UTC on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return ensure_utc(value) if value is not None else None

    def process_result_value(self, value, dialect):
        return ensure_utc(value) if value is not None else None


class Reminder(Base):
    """Reminder model - stores all reminder data.

    `version` is the optimistic-locking counter: every UPDATE is issued as
    "... WHERE id = ? AND version = ?" and bumps it, so a tick advancing the
    reminder and a user deleting it cannot silently overwrite each other.
    """

    __tablename__ = "reminders"

    # Primary Key
    id = Column(String, primary_key=True, doc="Unique reminder ID (UUID)")

    # Identity
    owner_id = Column(String, nullable=False, index=True, doc="Owning user id")
    channel_id = Column(String, nullable=False, doc="Delivery channel (chat) id")

    # Content
    title = Column(String, nullable=False)
    description = Column(String, nullable=True)

    # Scheduling
    type = Column(SQLEnum(ReminderType), nullable=False, default=ReminderType.ONCE)
    status = Column(SQLEnum(ReminderStatus), nullable=False, default=ReminderStatus.ACTIVE, index=True)
    scheduled_at = Column(
        UTCDateTime,
        nullable=False,
        doc="First intended instant; never changes after creation"
    )
    next_execution = Column(
        UTCDateTime,
        nullable=True,
        doc="Next firing instant; NULL once completed"
    )
    recurrence_pattern = Column(JSON, nullable=True, doc="RecurrencePattern record (camelCase keys)")
    preferences = Column(JSON, nullable=True)

    # Execution tracking
    execution_count = Column(Integer, nullable=False, default=0)
    last_executed_at = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False)

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    # Composite indexes for query performance
    __table_args__ = (
        Index('idx_owner_status', 'owner_id', 'status'),
        Index('idx_status_next_execution', 'status', 'next_execution'),
    )

    def __repr__(self):
        """String representation"""
        return (
            f"<Reminder(id={self.id}, owner={self.owner_id}, title={self.title}, "
            f"type={self.type.value}, next={self.next_execution}, status={self.status.value})>"
        )


def make_engine(url: str):
    """Create the engine. In-memory SQLite shares one connection across sessions."""
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=False, **kwargs)
    return create_engine(url, echo=False)


# Database Engine Setup
engine = make_engine(settings.DATABASE_URL)

# Session Factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


def init_db():
    """Create all tables."""
    Base.metadata.create_all(bind=engine)


def get_db():
    """Database session dependency for FastAPI.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


init_db()
