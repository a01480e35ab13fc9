"""Pydantic schemas for the reminder engine.

This module defines the domain enums, the persisted recurrence pattern and the
request/response schemas. Everything arriving from the intent parser is
untrusted and is re-validated here before it reaches the calculator or the
deletion resolver.
"""

import enum
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator, model_validator

from config import settings
from errors import ValidationError
from timezone_utils import ensure_utc, get_zone, parse_calendar_day


class ReminderType(str, enum.Enum):
    """Recurrence types"""
    ONCE = "once"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    CUSTOM = "custom"


class ReminderStatus(str, enum.Enum):
    """Lifecycle states"""
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class DeletionScopeType(str, enum.Enum):
    """Granularity of a deletion request"""
    SINGLE = "single"
    SERIES = "series"
    FROM_DATE = "from_date"


class RecurrencePattern(BaseModel):
    """Structured recurrence rule, persisted as JSON with camelCase keys.

    daysOfWeek uses 0 = Sunday ... 6 = Saturday.
    exclusionDates holds local calendar days ("YYYY-MM-DD") in `timezone`.
    """

    interval: int = Field(default=1, ge=1, description="Every N days/weeks/months/years")
    days_of_week: List[int] = Field(default_factory=list, alias="daysOfWeek")
    day_of_month: Optional[int] = Field(None, ge=1, le=31, alias="dayOfMonth")
    month_of_year: Optional[int] = Field(None, ge=1, le=12, alias="monthOfYear")
    time_of_day: Optional[str] = Field(
        None,
        alias="timeOfDay",
        pattern=r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$",
        description="Time in HH:MM format"
    )
    timezone: Optional[str] = Field(None, description="IANA timezone, e.g. 'America/New_York'")
    end_date: Optional[datetime] = Field(None, alias="endDate")
    max_occurrences: Optional[int] = Field(None, ge=1, alias="maxOccurrences")
    exclusion_dates: List[str] = Field(default_factory=list, alias="exclusionDates")

    class Config:
        """Pydantic config"""
        populate_by_name = True
        extra = "ignore"

    @field_validator("days_of_week")
    @classmethod
    def _check_days(cls, value: List[int]) -> List[int]:
        for day in value:
            if not 0 <= day <= 6:
                raise ValueError(f"day of week {day} outside 0..6")
        return sorted(set(value))

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            try:
                get_zone(value)
            except ValidationError as e:
                raise ValueError(str(e)) from e
        return value

    @model_validator(mode="after")
    def _normalize(self) -> "RecurrencePattern":
        if self.end_date is not None and self.end_date.tzinfo is None:
            self.end_date = self.end_date.replace(tzinfo=get_zone(self.tz_name))
        if self.end_date is not None:
            self.end_date = ensure_utc(self.end_date)
        normalized = []
        for entry in self.exclusion_dates:
            try:
                day = parse_calendar_day(entry, self.tz_name).isoformat()
            except ValidationError as e:
                raise ValueError(str(e)) from e
            if day not in normalized:
                normalized.append(day)
        self.exclusion_dates = normalized
        return self

    @property
    def tz_name(self) -> str:
        return self.timezone or settings.DEFAULT_TIMEZONE

    def to_record(self) -> Dict[str, Any]:
        """Serialize to the persisted JSON representation."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_record(cls, data: Optional[Dict[str, Any]]) -> "RecurrencePattern":
        try:
            return cls.model_validate(data or {})
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid recurrence pattern: {e}") from e


class Preferences(BaseModel):
    """Per-reminder user preferences"""

    priority: Literal["low", "medium", "high"] = "medium"
    reminder_message: Optional[str] = Field(None, alias="reminderMessage")
    snooze_minutes: Optional[int] = Field(None, ge=1, alias="snoozeMinutes")

    class Config:
        """Pydantic config"""
        populate_by_name = True
        extra = "ignore"


class ReminderCreate(BaseModel):
    """Reminder parameters as produced by the intent parser.

    Pydantic validates and parses:
    - ISO datetime strings to datetime objects
    - enum values for type
    - the recurrence pattern fields
    """

    title: str = Field(..., min_length=1, max_length=200, examples=["Take medicine"])
    description: Optional[str] = None
    type: ReminderType = ReminderType.ONCE

    # Naive values are taken in the pattern timezone (see _localize)
    scheduled_at: datetime = Field(
        ...,
        alias="scheduledAt",
        description="When the reminder should first trigger (ISO 8601)",
        examples=["2025-10-26T15:00:00Z", "2025-10-26T15:00:00+05:30"]
    )
    recurrence_pattern: Optional[RecurrencePattern] = Field(None, alias="recurrencePattern")
    preferences: Optional[Preferences] = None

    class Config:
        """Pydantic config"""
        populate_by_name = True

    @model_validator(mode="after")
    def _localize(self) -> "ReminderCreate":
        if self.scheduled_at.tzinfo is None:
            tz_name = self.recurrence_pattern.tz_name if self.recurrence_pattern else settings.DEFAULT_TIMEZONE
            self.scheduled_at = self.scheduled_at.replace(tzinfo=get_zone(tz_name))
        self.scheduled_at = ensure_utc(self.scheduled_at)
        return self


class ReminderCreateRequest(ReminderCreate):
    """REST body for creating a reminder: parser params plus identity."""

    owner_id: str = Field(..., min_length=1, description="Owning user id")
    channel_id: str = Field(..., min_length=1, description="Delivery channel (chat) id")


class ReminderUpdate(BaseModel):
    """Schema for updating an existing reminder.

    All fields are optional - only provided fields will be updated.
    scheduled_at reschedules the next execution; the original first
    instant is never rewritten.
    """

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    scheduled_at: Optional[datetime] = Field(None, alias="scheduledAt")
    status: Optional[Literal["active", "paused", "cancelled"]] = None
    priority: Optional[Literal["low", "medium", "high"]] = None

    class Config:
        """Pydantic config"""
        populate_by_name = True


class ReminderResponse(BaseModel):
    """Schema for reminder responses."""

    id: str
    owner_id: str
    channel_id: str
    title: str
    description: Optional[str] = None
    type: ReminderType
    status: ReminderStatus
    scheduled_at: datetime
    next_execution: Optional[datetime] = None
    recurrence_pattern: Optional[Dict[str, Any]] = None
    preferences: Optional[Dict[str, Any]] = None
    execution_count: int
    last_executed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    version: int

    class Config:
        """Pydantic configuration"""
        from_attributes = True  # Enable ORM mode for SQLAlchemy models


class MatchCriteria(BaseModel):
    """Deletion criteria as produced by the intent parser."""

    description: str = ""
    keywords: List[str] = Field(default_factory=list)
    time_context: Optional[str] = Field(None, alias="timeContext")
    deletion_scope: Optional[Literal["single", "series", "from_date", "ambiguous"]] = Field(
        None, alias="deletionScope"
    )
    recurring_intent: Optional[bool] = Field(None, alias="recurringIntent")
    scope_date: Optional[datetime] = Field(None, alias="scopeDate")
    confidence: Optional[float] = Field(None, ge=0, le=1)

    class Config:
        """Pydantic config"""
        populate_by_name = True

    @field_validator("keywords")
    @classmethod
    def _clean_keywords(cls, value: List[str]) -> List[str]:
        return [k.strip() for k in value if k and k.strip()]


class DeletionScope(BaseModel):
    """Requested deletion granularity.

    target is the occurrence to drop (single) or the cutoff (from_date).
    A naive target is read in the reminder's own timezone.
    """

    type: DeletionScopeType = DeletionScopeType.SERIES
    target: Optional[datetime] = None


class DeletionResult(BaseModel):
    """Outcome of a deletion request. Always carries a human-readable message."""

    success: bool
    deletion_type: DeletionScopeType
    message: str
    reminder_id: Optional[str] = None
    reason: Optional[Literal["already_occurred", "not_found", "conflict", "no_occurrence"]] = None


class MatchResponse(BaseModel):
    reminder: ReminderResponse
    score: float
    reasons: List[str]
    is_recurring: bool
    suggested_scope: Optional[DeletionScopeType] = None


class SmartDeleteRequest(BaseModel):
    owner_id: str = Field(..., min_length=1)
    criteria: MatchCriteria


class SmartDeleteResponse(BaseModel):
    """Result of a description-based deletion.

    When the target is ambiguous nothing is mutated and `matches` lists the
    ranked options.
    """

    success: bool
    message: str
    result: Optional[DeletionResult] = None
    matches: List[MatchResponse] = Field(default_factory=list)


def validate_model(model: type, data: Any):
    """Validate untrusted input, mapping pydantic errors onto ValidationError."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(str(e)) from e
