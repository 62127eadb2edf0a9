# schoolchat/tests/unit/test_connection_registry.py
import pytest

from schoolchat.infrastructure.connection_registry import InMemoryConnectionRegistry
from schoolchat.tests.doubles import FakeWebSocket


@pytest.fixture
def registry(logger):
    return InMemoryConnectionRegistry(logger)


async def test_send_reaches_every_connection(registry):
    phone, laptop = FakeWebSocket(), FakeWebSocket()
    await registry.connect(1, phone)
    await registry.connect(1, laptop)

    sent = await registry.send_to_user(1, {"type": "pong"})

    assert sent == 2
    assert phone.sent == laptop.sent == [{"type": "pong"}]


async def test_send_to_offline_user(registry):
    assert await registry.send_to_user(1, {"type": "pong"}) == 0
    assert not registry.is_connected(1)


async def test_failed_connection_is_dropped(registry):
    broken, healthy = FakeWebSocket(fail=True), FakeWebSocket()
    await registry.connect(1, broken)
    await registry.connect(1, healthy)

    assert await registry.send_to_user(1, {"type": "pong"}) == 1
    assert registry.active_connections[1] == [healthy]


async def test_last_disconnect_clears_subscriptions(registry):
    first, second = FakeWebSocket(), FakeWebSocket()
    await registry.connect(1, first)
    await registry.connect(1, second)
    registry.subscribe(1, 10)
    registry.subscribe(2, 10)

    await registry.disconnect(1, first)
    assert registry.subscribers(10) == {1, 2}

    await registry.disconnect(1, second)
    assert registry.subscribers(10) == {2}
    assert not registry.is_connected(1)
    assert 1 not in registry.last_seen


async def test_unsubscribe_removes_empty_thread(registry):
    registry.subscribe(1, 10)
    registry.unsubscribe(1, 10)
    registry.unsubscribe(1, 11)

    assert registry.subscribers(10) == set()
    assert 10 not in registry.thread_subscriptions


async def test_heartbeat_only_tracks_connected_users(registry):
    await registry.connect(1, FakeWebSocket())
    before = registry.last_seen[1]

    registry.heartbeat(1)
    registry.heartbeat(2)

    assert registry.last_seen[1] >= before
    assert 2 not in registry.last_seen
    assert registry.get_connected_users() == [1]
