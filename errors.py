"""Error taxonomy for the reminder engine.

Every error the engine raises derives from ReminderError so callers at the
outer surfaces (REST API, MCP tools, scheduler) can catch one base class.
"""


class ReminderError(Exception):
    """Base class for reminder engine errors."""


class ValidationError(ReminderError):
    """Malformed timestamp, time of day, timezone or unknown enum value.

    Raised at the boundary, before anything touches the store.
    """


class NotFound(ReminderError):
    """Unknown reminder id."""

    def __init__(self, reminder_id: str):
        super().__init__(f"Reminder {reminder_id} not found")
        self.reminder_id = reminder_id


class AlreadyOccurred(ReminderError):
    """A single-occurrence deletion targeted an instant in the past."""


class NoFutureOccurrence(ReminderError):
    """The recurrence is exhausted. Callers complete the reminder."""


class IterationBudgetExceeded(NoFutureOccurrence):
    """The bounded exclusion-skipping search ran out of iterations."""


class DispatchFailure(ReminderError):
    """Transient failure delivering a fired reminder."""


class ConcurrentModification(ReminderError):
    """The reminder row changed between read and write."""

    def __init__(self, reminder_id: str):
        super().__init__(f"Reminder {reminder_id} was modified concurrently")
        self.reminder_id = reminder_id
