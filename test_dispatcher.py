"""Tests for the notification dispatcher."""

import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest

import dispatcher
from config import settings
from errors import DispatchFailure
from events import EventChannel, ReminderDue


def make_event(reminder_id="r1", **kwargs):
    return ReminderDue(
        reminder_id=reminder_id,
        owner_id="owner-1",
        channel_id="chat-1",
        title="Take medicine",
        fired_at=datetime(2026, 10, 18, 3, 30, tzinfo=timezone.utc),
        timezone="Asia/Kolkata",
        **kwargs
    )


def gateway(status_code=200, seen=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(json.loads(request.content))
        return httpx.Response(status_code, json={"ok": status_code < 400})
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_message_uses_reminder_timezone():
    text = dispatcher.format_reminder_message(make_event(description="After breakfast"))
    assert text.startswith("🔔 Reminder")
    assert "📝 Take medicine" in text
    assert "After breakfast" in text
    assert "⏰ Scheduled for: Oct 18, 2026, 09:00 AM" in text


def test_custom_message_replaces_title():
    text = dispatcher.format_reminder_message(make_event(message="Pills with water!"))
    assert "📝 Pills with water!" in text
    assert "Take medicine" not in text


def test_successful_delivery_posts_payload():
    seen = []

    async def scenario():
        async with gateway(seen=seen) as client:
            return await dispatcher.dispatch_one(client, EventChannel(), make_event())

    assert asyncio.run(scenario()) is True
    [payload] = seen
    assert payload["channel_id"] == "chat-1"
    assert payload["reminder_id"] == "r1"
    assert "Take medicine" in payload["text"]


def test_failed_delivery_is_requeued_with_next_attempt():
    async def scenario():
        channel = EventChannel()
        async with gateway(status_code=500) as client:
            delivered = await dispatcher.dispatch_one(client, channel, make_event(), retry_delay=0)
        retried = await asyncio.wait_for(channel.get(), timeout=1)
        return delivered, retried

    delivered, retried = asyncio.run(scenario())
    assert delivered is False
    assert retried.reminder_id == "r1"
    assert retried.attempt == 2


def test_last_attempt_is_dropped():
    async def scenario():
        channel = EventChannel()
        event = make_event(attempt=settings.DISPATCH_MAX_ATTEMPTS)
        async with gateway(status_code=503) as client:
            delivered = await dispatcher.dispatch_one(client, channel, event, retry_delay=0)
        await asyncio.sleep(0.05)
        return delivered, channel.pending()

    assert asyncio.run(scenario()) == (False, 0)


def test_slow_gateway_counts_as_failure(monkeypatch):
    monkeypatch.setattr(settings, "DISPATCH_TIMEOUT", 0.05)

    async def slow(request):
        await asyncio.sleep(1)
        return httpx.Response(200)

    async def scenario():
        channel = EventChannel()
        async with httpx.AsyncClient(transport=httpx.MockTransport(slow)) as client:
            delivered = await dispatcher.dispatch_one(client, channel, make_event(), retry_delay=0)
        retried = await asyncio.wait_for(channel.get(), timeout=1)
        return delivered, retried.attempt

    assert asyncio.run(scenario()) == (False, 2)


def test_network_error_raises_dispatch_failure():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(refuse)) as client:
            await dispatcher.deliver_reminder(client, make_event())

    with pytest.raises(DispatchFailure, match="Network error"):
        asyncio.run(scenario())


def test_run_dispatcher_drains_channel():
    seen = []

    async def scenario():
        channel = EventChannel()
        stop = asyncio.Event()
        async with gateway(seen=seen) as client:
            task = asyncio.create_task(dispatcher.run_dispatcher(channel, client=client, stop=stop))
            channel.publish(make_event("r1"))
            channel.publish(make_event("r2"))
            await asyncio.wait_for(channel.queue.join(), timeout=2)
            stop.set()
            await asyncio.wait_for(task, timeout=3)
            assert not client.is_closed

    asyncio.run(scenario())
    assert sorted(p["reminder_id"] for p in seen) == ["r1", "r2"]
