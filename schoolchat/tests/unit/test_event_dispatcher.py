# schoolchat/tests/unit/test_event_dispatcher.py
import asyncio
import logging

from schoolchat.domain.entities import utcnow
from schoolchat.domain.events import MessageRead, ThreadCreated
from schoolchat.infrastructure.event_dispatcher import EventDispatcher


def make_event():
    return MessageRead(
        actor_id=2,
        recipient_ids=[1],
        message_id=10,
        thread_id=3,
        user_id=2,
        read_at=utcnow(),
    )


async def test_dispatch_runs_handlers_in_background(logger):
    dispatcher = EventDispatcher(logger, timeout=1.0)
    release = asyncio.Event()
    events_received = []

    async def handler(event):
        await release.wait()
        events_received.append(event)

    dispatcher.register("MessageRead", handler)
    await dispatcher.dispatch(make_event())

    assert events_received == [], "dispatch must not wait for handlers"
    assert dispatcher.pending == 1

    release.set()
    await dispatcher.drain()

    assert len(events_received) == 1
    assert isinstance(events_received[0], MessageRead)
    assert dispatcher.pending == 0


async def test_handlers_only_receive_their_event_type(logger):
    dispatcher = EventDispatcher(logger)
    received = []

    async def handler(event):
        received.append(event)

    dispatcher.register("ThreadCreated", handler)
    await dispatcher.dispatch(make_event())
    await dispatcher.drain()

    assert received == []
    assert ThreadCreated.__name__ in dispatcher.handlers


async def test_failing_handler_is_logged_and_isolated(logger, caplog):
    dispatcher = EventDispatcher(logger, timeout=1.0)
    received = []

    async def broken(event):
        raise RuntimeError("push service down")

    async def healthy(event):
        received.append(event)

    dispatcher.register("MessageRead", broken)
    dispatcher.register("MessageRead", healthy)

    with caplog.at_level(logging.ERROR, logger=logger.name):
        await dispatcher.dispatch(make_event())
        await dispatcher.drain()

    assert len(received) == 1
    assert any("failed for MessageRead" in record.message for record in caplog.records)


async def test_slow_handler_times_out(logger, caplog):
    dispatcher = EventDispatcher(logger, timeout=0.01)

    async def slow(event):
        await asyncio.sleep(5)

    dispatcher.register("MessageRead", slow)

    with caplog.at_level(logging.WARNING, logger=logger.name):
        await dispatcher.dispatch(make_event())
        await dispatcher.drain()

    assert any("timed out" in record.message for record in caplog.records)
