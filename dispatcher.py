"""Notification dispatcher.

Consumes ReminderDue events and posts them to the chat gateway:

    POST {NOTIFICATION_API_URL}/api/notify
    {"channel_id": ..., "reminder_id": ..., "text": ...}

Deliveries run concurrently up to DISPATCH_CONCURRENCY, each bounded by
DISPATCH_TIMEOUT. A failed delivery is re-queued after one scheduler
interval until DISPATCH_MAX_ATTEMPTS is reached, then dropped. Delivery
outcomes never touch the stored reminder.
"""

import asyncio
from typing import Optional, Set

import httpx

from config import settings
from errors import DispatchFailure
from events import EventChannel, ReminderDue
from logger_config import setup_logger
from timezone_utils import format_in_timezone

logger = setup_logger(__name__, 'dispatch.log')

# Pending re-queue timers; held so they are not garbage collected
_retries: Set[asyncio.Task] = set()


def format_reminder_message(event: ReminderDue) -> str:
    """Notification text: title (or custom message), description, local time."""
    message = f"🔔 Reminder\n\n📝 {event.message or event.title}"
    if event.description:
        message += f"\n\n{event.description}"
    message += f"\n\n⏰ Scheduled for: {format_in_timezone(event.fired_at, event.timezone)}"
    return message


async def deliver_reminder(client: httpx.AsyncClient, event: ReminderDue) -> dict:
    """Post one notification to the gateway.

    Returns:
        dict: gateway response body (empty when it is not JSON)

    Raises:
        DispatchFailure: on timeout, network error or a non-2xx response
    """
    payload = {
        "channel_id": event.channel_id,
        "reminder_id": event.reminder_id,
        "text": format_reminder_message(event),
    }
    api_url = f"{settings.NOTIFICATION_API_URL}/api/notify"

    try:
        response = await client.post(api_url, json=payload)
    except httpx.TimeoutException as e:
        raise DispatchFailure(f"Timeout delivering reminder {event.reminder_id}") from e
    except httpx.RequestError as e:
        raise DispatchFailure(f"Network error delivering reminder {event.reminder_id}: {str(e)}") from e

    if not response.is_success:
        raise DispatchFailure(
            f"Gateway rejected reminder {event.reminder_id}. "
            f"Status: {response.status_code}, Response: {response.text}"
        )

    try:
        return response.json()
    except ValueError:
        return {}


async def _retry_later(channel: EventChannel, event: ReminderDue, delay: float):
    await asyncio.sleep(delay)
    channel.publish(event.next_attempt())


async def dispatch_one(
    client: httpx.AsyncClient,
    channel: EventChannel,
    event: ReminderDue,
    retry_delay: Optional[float] = None
) -> bool:
    """Deliver one event, scheduling a retry on failure.

    Returns:
        bool: True if delivered
    """
    try:
        await asyncio.wait_for(deliver_reminder(client, event), timeout=settings.DISPATCH_TIMEOUT)
        logger.info(f"Delivered reminder {event.reminder_id} on attempt {event.attempt}")
        return True
    except asyncio.TimeoutError:
        error = DispatchFailure(f"Delivery of reminder {event.reminder_id} exceeded {settings.DISPATCH_TIMEOUT}s")
    except DispatchFailure as e:
        error = e

    if event.attempt >= settings.DISPATCH_MAX_ATTEMPTS:
        logger.error(
            f"All {settings.DISPATCH_MAX_ATTEMPTS} attempts failed for reminder {event.reminder_id}. "
            f"Dropping notification. Last error: {error}"
        )
        return False

    delay = settings.SCHEDULER_INTERVAL if retry_delay is None else retry_delay
    logger.warning(f"Attempt {event.attempt} failed for reminder {event.reminder_id}: {error}. Retrying in {delay}s")
    task = asyncio.create_task(_retry_later(channel, event, delay))
    _retries.add(task)
    task.add_done_callback(_retries.discard)
    return False


async def run_dispatcher(
    channel: EventChannel,
    client: Optional[httpx.AsyncClient] = None,
    stop: Optional[asyncio.Event] = None,
    retry_delay: Optional[float] = None
):
    """Consume the channel until `stop` is set (or forever).

    A client is created when none is given and closed on exit.
    """
    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=settings.DISPATCH_TIMEOUT)

    semaphore = asyncio.Semaphore(settings.DISPATCH_CONCURRENCY)
    in_flight: Set[asyncio.Task] = set()

    async def _guarded(event: ReminderDue):
        async with semaphore:
            try:
                await dispatch_one(client, channel, event, retry_delay)
            except Exception as e:
                logger.error(f"Unexpected error dispatching reminder {event.reminder_id}: {str(e)}", exc_info=True)
            finally:
                channel.task_done()

    logger.info(f"Dispatcher started (concurrency {settings.DISPATCH_CONCURRENCY}, "
                f"timeout {settings.DISPATCH_TIMEOUT}s, max attempts {settings.DISPATCH_MAX_ATTEMPTS})")
    try:
        while stop is None or not stop.is_set():
            try:
                event = await asyncio.wait_for(channel.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            task = asyncio.create_task(_guarded(event))
            in_flight.add(task)
            task.add_done_callback(in_flight.discard)

        if in_flight:
            await asyncio.gather(*in_flight, return_exceptions=True)
    finally:
        if owns_client:
            await client.aclose()
        logger.info("Dispatcher stopped")
