"""Tests for the heartbeat stream and its scoped keepalive timer."""

import asyncio
import json

import pytest

from pillary_gateway.events import KeepaliveTimer, active_channels, heartbeat_stream
from pillary_gateway.main import events


@pytest.mark.asyncio
async def test_stream_sends_retry_hint_then_heartbeats():
    stream = heartbeat_stream(interval=0.01, retry_ms=5000, clock=lambda: 1_700_000_000.5)

    assert await stream.__anext__() == "retry: 5000\n\n"
    frame = await stream.__anext__()
    await stream.aclose()

    assert frame.startswith("data: ") and frame.endswith("\n\n")
    assert json.loads(frame[len("data: "):]) == {"t": 1_700_000_000_500, "type": "heartbeat"}


@pytest.mark.asyncio
async def test_timer_lives_only_while_stream_is_open():
    before = active_channels()
    stream = heartbeat_stream(interval=0.01, retry_ms=1000)

    await stream.__anext__()
    await stream.__anext__()
    assert active_channels() == before + 1

    await stream.aclose()
    assert active_channels() == before


@pytest.mark.asyncio
async def test_timer_task_cancelled_on_exit():
    async with KeepaliveTimer(0.01) as timer:
        task = timer._task
        await asyncio.sleep(0.025)
        assert timer._queue.qsize() >= 1

    assert task.cancelled()
    assert timer._task is None


@pytest.mark.asyncio
async def test_events_route_is_event_stream():
    response = await events()
    assert response.media_type == "text/event-stream"
    assert response.headers["cache-control"].startswith("no-cache")
    await response.body_iterator.aclose()
