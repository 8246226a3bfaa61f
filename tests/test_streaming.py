"""Tests for the streaming response controller."""

import asyncio
from typing import List

import pytest

from chapterchat.budget import ContextBudgetPlanner
from chapterchat.streaming import (
    ChunkMode,
    StreamEvent,
    StreamEventKind,
    StreamingResponseController,
    StreamStatus,
    compute_delta,
)


def make_controller(session, budget=None, throttle_ms=16):
    controller = StreamingResponseController(
        session_provider=lambda: session,
        budget_provider=lambda: budget,
        throttle_ms=throttle_ms,
    )
    events: List[StreamEvent] = []
    controller.subscribe(events.append)
    return controller, events


async def wait_for_text(controller, text: str) -> None:
    async def poll():
        while controller.accumulated_text != text:
            await asyncio.sleep(0.001)

    await asyncio.wait_for(poll(), timeout=2)


def test_compute_delta_for_cumulative_chunks():
    chunks = ["Hello", "Hello world", "Hello world!"]
    previous = ""
    deltas = []
    for chunk in chunks:
        deltas.append(compute_delta(previous, chunk))
        previous = chunk
    assert deltas == ["Hello", " world", "!"]


def test_compute_delta_signals_replacement():
    assert compute_delta("Hello world", "Goodbye") is None


@pytest.mark.asyncio
@pytest.mark.parametrize("throttle_ms", [0, 16, 10_000])
async def test_final_text_is_complete_regardless_of_throttle(fake_session, throttle_ms):
    session = fake_session(chunks=["Hello", "Hello world", "Hello world!"])
    controller, events = make_controller(session, throttle_ms=throttle_ms)

    assert controller.send("hi") is True
    await controller.wait()

    assert controller.status is StreamStatus.IDLE
    assert controller.last_text == "Hello world!"
    assert events[-1] == StreamEvent(kind=StreamEventKind.COMPLETED, text="Hello world!")
    assert events[-2] == StreamEvent(kind=StreamEventKind.UPDATE, text="Hello world!")


@pytest.mark.asyncio
async def test_updates_are_coalesced_within_interval(fake_session):
    chunks = ["a" * n for n in range(1, 21)]
    session = fake_session(chunks=chunks)
    controller, events = make_controller(session, throttle_ms=10_000)

    controller.send("hi")
    await controller.wait()

    updates = [e for e in events if e.kind is StreamEventKind.UPDATE]
    # First chunk flushes immediately, the rest collapse into the forced final flush
    assert [u.text for u in updates] == ["a", "a" * 20]
    assert controller._timer is None


@pytest.mark.asyncio
async def test_incremental_chunks_are_appended(fake_session):
    session = fake_session(chunks=["Hel", "lo", "!"], chunk_mode=ChunkMode.INCREMENTAL)
    controller, _ = make_controller(session)

    controller.send("hi")
    await controller.wait()

    assert controller.last_text == "Hello!"


@pytest.mark.asyncio
async def test_non_prefixed_cumulative_chunk_replaces_buffer(fake_session):
    session = fake_session(chunks=["Hello", "Goodbye"])
    controller, _ = make_controller(session)

    controller.send("hi")
    await controller.wait()

    assert controller.last_text == "Goodbye"


@pytest.mark.asyncio
async def test_completion_reconciles_token_usage(fake_session):
    session = fake_session(chunks=["ok"], conversation_tokens=57)
    budget = ContextBudgetPlanner(quota=1000)
    budget.set_system_tokens(100)
    controller, _ = make_controller(session, budget=budget)

    controller.send("hi")
    await controller.wait()

    assert budget.snapshot.conversation_tokens == 57
    assert budget.snapshot.total_tokens == 157


@pytest.mark.asyncio
async def test_send_while_streaming_is_rejected(fake_session):
    session = fake_session(chunks=["Hi", "Hi there"], hang_after=True)
    controller, _ = make_controller(session)

    assert controller.send("first") is True
    await wait_for_text(controller, "Hi there")

    assert controller.send("second") is False
    assert session.prompts == ["first"]
    assert controller.accumulated_text == "Hi there"
    assert controller.status is StreamStatus.STREAMING

    controller.cancel()
    await controller.wait()


@pytest.mark.asyncio
async def test_cancel_keeps_partial_text_without_error(fake_session):
    session = fake_session(chunks=["Hi", "Hi there"], hang_after=True)
    controller, events = make_controller(session, throttle_ms=10_000)

    controller.send("hello")
    await wait_for_text(controller, "Hi there")
    controller.cancel()
    await controller.wait()

    assert controller.status is StreamStatus.IDLE
    assert controller.last_text == "Hi there"
    assert events[-1] == StreamEvent(kind=StreamEventKind.CANCELLED, text="Hi there")
    assert all(e.kind is not StreamEventKind.FAILED for e in events)


@pytest.mark.asyncio
async def test_cancel_before_first_chunk(fake_session):
    session = fake_session(chunks=[], hang_after=True)
    controller, events = make_controller(session)

    controller.send("hello")
    await asyncio.sleep(0.01)
    controller.cancel()
    await controller.wait()

    assert controller.status is StreamStatus.IDLE
    assert events[-1].kind is StreamEventKind.CANCELLED
    assert events[-1].text == ""


@pytest.mark.asyncio
async def test_generation_error_is_surfaced_and_partial_text_kept(fake_session):
    session = fake_session(chunks=["partial"], fail_with=RuntimeError("model crashed"))
    budget = ContextBudgetPlanner(quota=1000)
    controller, events = make_controller(session, budget=budget)

    controller.send("hello")
    await controller.wait()

    assert controller.status is StreamStatus.IDLE
    assert controller.last_text == "partial"
    assert events[-1] == StreamEvent(
        kind=StreamEventKind.FAILED, text="partial", error="model crashed"
    )
    assert budget.snapshot.conversation_tokens == 0


@pytest.mark.asyncio
async def test_send_without_session_is_a_no_op():
    controller, events = make_controller(None)

    assert controller.send("hello") is False
    assert controller.status is StreamStatus.IDLE
    assert events == []


@pytest.mark.asyncio
async def test_controller_is_idle_when_terminal_event_fires(fake_session):
    session = fake_session(chunks=["done"])
    controller, _ = make_controller(session)
    seen = []
    controller.subscribe(
        lambda e: seen.append(controller.status) if e.kind is StreamEventKind.COMPLETED else None
    )

    controller.send("hello")
    await controller.wait()

    assert seen == [StreamStatus.IDLE]


@pytest.mark.asyncio
async def test_trailing_flush_fires_while_stream_is_open(fake_session, monkeypatch):
    session = fake_session(chunks=["a", "ab", "abc"], hang_after=True)
    controller, events = make_controller(session, throttle_ms=50)
    loop = asyncio.get_running_loop()
    scheduled = []
    call_later = loop.call_later

    def counting_call_later(delay, callback, *args):
        if callback == controller._flush:
            scheduled.append(delay)
        return call_later(delay, callback, *args)

    monkeypatch.setattr(loop, "call_later", counting_call_later)

    controller.send("hi")
    await asyncio.sleep(0.15)

    assert controller.status is StreamStatus.STREAMING
    assert events[-1] == StreamEvent(kind=StreamEventKind.UPDATE, text="abc")
    assert [e.text for e in events] == ["a", "abc"]
    assert len(scheduled) == 1
    assert controller._timer is None

    controller.cancel()
    await controller.wait()


@pytest.mark.asyncio
async def test_failing_listener_does_not_wedge_controller(fake_session):
    session = fake_session(chunks=["x"])
    controller, events = make_controller(session)

    def broken_listener(event):
        raise RuntimeError("listener boom")

    controller.subscribe(broken_listener)

    assert controller.send("x") is True
    await controller.wait()

    assert controller.status is StreamStatus.IDLE
    assert events[-1] == StreamEvent(kind=StreamEventKind.COMPLETED, text="x")
    assert controller.send("again") is True
    await controller.wait()
    assert session.prompts == ["x", "again"]
