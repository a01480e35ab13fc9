"""Background Worker for the reminder engine.

This module implements the scheduler loop that polls the database for due
reminders and hands them to the notification dispatcher.

The worker:
- Runs continuously, checking for due reminders every 60 seconds (configurable)
- Advances each due reminder (next execution, execution count, completion)
- Publishes a ReminderDue event per fired reminder once its new state is saved
- Logs and skips a reminder that fails, without stopping the batch
- Never waits for delivery; the dispatcher retries failed deliveries itself
"""

import asyncio
import signal
import sys
from datetime import datetime, timezone
from typing import Callable, Optional

import database
import crud
import reminder_service
from config import settings
from dispatcher import run_dispatcher
from events import EventChannel, ReminderDue
from logger_config import setup_logger
from schemas import RecurrencePattern

# Configure logging
logger = setup_logger(__name__, 'worker.log')

# Global flag for graceful shutdown
shutdown_requested = False

# Serializes the periodic tick and manual triggers
_tick_lock = asyncio.Lock()


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully."""
    global shutdown_requested
    logger.info(f"Received signal {signum}, initiating graceful shutdown...")
    shutdown_requested = True


def build_due_event(reminder) -> ReminderDue:
    """Snapshot a due reminder as an event, before it is advanced."""
    pattern = RecurrencePattern.from_record(reminder.recurrence_pattern)
    return ReminderDue(
        reminder_id=reminder.id,
        owner_id=reminder.owner_id,
        channel_id=reminder.channel_id,
        title=reminder.title,
        description=reminder.description,
        fired_at=reminder.next_execution,
        timezone=pattern.tz_name,
        message=reminder_service.notification_message(reminder),
    )


def process_due_reminders(
    channel: EventChannel,
    now: Optional[datetime] = None,
    session_factory: Optional[Callable] = None
) -> int:
    """Fire every due reminder.

    For each active reminder with next_execution <= now:
    1. Snapshot it as a ReminderDue event
    2. Persist the advanced state (version-checked)
    3. Publish the event for the dispatcher

    A reminder whose state cannot be advanced (bad pattern, version conflict)
    is rolled back and logged, and no event is published for it.

    Returns:
        int: number of reminders fired
    """
    now = now or datetime.now(timezone.utc)
    db = (session_factory or database.SessionLocal)()
    fired = 0
    try:
        due_reminders = crud.get_due_reminders(db, now)

        if not due_reminders:
            logger.debug("No due reminders at this time")
            return 0

        logger.info(f"Found {len(due_reminders)} due reminder(s)")

        for reminder in due_reminders:
            reminder_id = reminder.id
            try:
                event = build_due_event(reminder)
                reminder_service.mark_reminder_executed(db, reminder, now)
                channel.publish(event)
                fired += 1
            except Exception as e:
                db.rollback()
                logger.error(f"Failed to process reminder {reminder_id}: {str(e)}", exc_info=True)

    except Exception as e:
        logger.error(f"Error in process_due_reminders: {str(e)}", exc_info=True)
    finally:
        db.close()

    return fired


async def trigger_due_reminders(
    channel: EventChannel,
    now: Optional[datetime] = None,
    session_factory: Optional[Callable] = None
) -> int:
    """Run one tick now. Never overlaps with the periodic tick."""
    async with _tick_lock:
        return process_due_reminders(channel, now, session_factory)


async def worker_loop(channel: EventChannel):
    """Main worker loop that runs continuously.

    Checks for due reminders at the configured interval and processes them.
    Each tick completes before the next sleep starts, so ticks never overlap.
    """
    logger.info("Scheduler started")
    logger.info(f"Scheduler enabled: {settings.SCHEDULER_ENABLED}")
    logger.info(f"Check interval: {settings.SCHEDULER_INTERVAL} seconds")

    if not settings.SCHEDULER_ENABLED:
        logger.warning("Scheduler is disabled in configuration. Exiting.")
        return

    iteration = 0
    while not shutdown_requested:
        try:
            iteration += 1
            logger.debug(f"Scheduler iteration {iteration} started")

            fired = await trigger_due_reminders(channel)
            if fired:
                logger.info(f"Iteration {iteration}: fired {fired} reminder(s)")

            # Break sleep into 1-second intervals to allow quick shutdown
            for _ in range(settings.SCHEDULER_INTERVAL):
                if shutdown_requested:
                    break
                await asyncio.sleep(1)

        except Exception as e:
            logger.error(f"Error in scheduler iteration {iteration}: {str(e)}", exc_info=True)
            await asyncio.sleep(5)  # Brief pause before retrying

    logger.info("Scheduler shutting down gracefully")


async def run_worker():
    """Run the scheduler loop and the dispatcher side by side."""
    channel = EventChannel()
    stop = asyncio.Event()
    dispatcher_task = asyncio.create_task(run_dispatcher(channel, stop=stop))
    try:
        await worker_loop(channel)
    finally:
        stop.set()
        await dispatcher_task


def main():
    """Main entry point for the background worker."""
    # Register signal handlers for graceful shutdown
    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    logger.info("=" * 60)
    logger.info("Recurring Reminder Engine - Scheduler")
    logger.info("=" * 60)

    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
    except Exception as e:
        logger.error(f"Fatal error in scheduler: {str(e)}", exc_info=True)
        sys.exit(1)

    logger.info("Scheduler stopped")
    sys.exit(0)


if __name__ == "__main__":
    main()
