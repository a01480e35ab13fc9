"""Reminder-due events.

The scheduler publishes one ReminderDue per fired occurrence onto an
EventChannel; the dispatcher consumes them. Neither side holds a reference
to the other.
"""

import asyncio
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Optional

from logger_config import setup_logger

logger = setup_logger(__name__, 'worker.log')


@dataclass(frozen=True)
class ReminderDue:
    """A reminder occurrence that has fired and awaits delivery."""
    reminder_id: str
    owner_id: str
    channel_id: str
    title: str
    fired_at: datetime
    timezone: str
    description: Optional[str] = None
    message: Optional[str] = None
    attempt: int = 1

    def next_attempt(self) -> "ReminderDue":
        return replace(self, attempt=self.attempt + 1)

    def to_dict(self) -> dict:
        data = asdict(self)
        data['fired_at'] = self.fired_at.isoformat()
        return data


@dataclass
class EventChannel:
    """In-process queue of ReminderDue events."""
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)

    def publish(self, event: ReminderDue) -> None:
        self.queue.put_nowait(event)
        logger.debug(f"Published due event for reminder {event.reminder_id} (attempt {event.attempt})")

    async def get(self) -> ReminderDue:
        return await self.queue.get()

    def task_done(self) -> None:
        self.queue.task_done()

    def pending(self) -> int:
        return self.queue.qsize()

    def drain(self):
        """Remove and return every queued event without waiting."""
        events = []
        while not self.queue.empty():
            events.append(self.queue.get_nowait())
            self.queue.task_done()
        return events
