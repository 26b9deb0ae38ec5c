import asyncio

import pytest

from neptune.models.errors import RateLimitError
from neptune.services.event_emitter import DONE_FRAME, KEEPALIVE_FRAME, EventEmitter, format_event
from neptune.tests.fakes import collect


def test_format_event_is_single_sse_record():
    frame = format_event({"content": "hi\nthere"})
    assert frame == 'data: {"content": "hi\\nthere"}\n\n'
    assert frame.count("\n\n") == 1


@pytest.mark.asyncio
async def test_events_keep_production_order_and_end_with_sentinel():
    handle = EventEmitter().open()
    handle.send_event({"conversationId": "c1"})
    handle.send_content("Hel")
    handle.send_content("lo")
    handle.close({"conversationId": "c1", "toolsExecuted": []})

    events = await collect(handle)
    assert events == [
        {"conversationId": "c1"},
        {"content": "Hel"},
        {"content": "lo"},
        {"conversationId": "c1", "toolsExecuted": [], "done": True},
        "[DONE]",
    ]


@pytest.mark.asyncio
async def test_keepalive_goes_out_before_any_event():
    handle = EventEmitter().open()
    frames = handle.frames()
    assert await frames.__anext__() == KEEPALIVE_FRAME
    handle.close()
    assert await frames.__anext__() == DONE_FRAME


@pytest.mark.asyncio
async def test_double_close_emits_single_terminal_record():
    handle = EventEmitter().open()
    handle.close({"conversationId": "c1"})
    handle.close({"conversationId": "c1"})
    handle.close()

    events = await collect(handle)
    assert events.count("[DONE]") == 1
    assert sum(1 for e in events if isinstance(e, dict) and e.get("done")) == 1


@pytest.mark.asyncio
async def test_sends_after_close_are_ignored():
    handle = EventEmitter().open()
    handle.close()
    handle.send_content("late")
    handle.send_event({"toolResults": []})
    handle.send_error("late error")

    assert await collect(handle) == ["[DONE]"]
    assert handle.closed


@pytest.mark.asyncio
async def test_empty_content_is_not_sent():
    handle = EventEmitter().open()
    handle.send_content("")
    handle.close()
    assert await collect(handle) == ["[DONE]"]


@pytest.mark.asyncio
async def test_turn_errors_carry_code():
    handle = EventEmitter().open()
    handle.send_error(RateLimitError("Slow down", retry_after=42))
    handle.send_error("plain")
    handle.close()

    events = await collect(handle)
    assert events[0] == {"error": "Slow down", "code": "rate_limited", "retryAfter": 42}
    assert events[1] == {"error": "plain"}


@pytest.mark.asyncio
async def test_consumer_leaving_cancels_producer():
    handle = EventEmitter().open()
    started = asyncio.Event()

    async def producer():
        started.set()
        await asyncio.sleep(60)

    task = asyncio.create_task(producer())
    handle.attach(task)
    await started.wait()

    frames = handle.frames()
    await frames.__anext__()
    await frames.aclose()
    await asyncio.gather(task, return_exceptions=True)
    assert task.cancelled()


@pytest.mark.asyncio
async def test_reading_to_the_end_leaves_producer_running():
    handle = EventEmitter().open()
    release = asyncio.Event()

    async def producer():
        handle.close({"conversationId": "c1"})
        # still finishing up after the stream has ended
        await release.wait()
        return "finished"

    task = asyncio.create_task(producer())
    handle.attach(task)

    events = await collect(handle)
    assert events[-1] == "[DONE]"
    assert not task.cancelled()

    release.set()
    assert await task == "finished"
