# schoolchat/tests/unit/test_redis_client.py
from unittest.mock import AsyncMock, patch

import pytest
import redis.asyncio as redis

from schoolchat.infrastructure.redis_client import RedisClient


@pytest.fixture
def redis_client(logger):
    return RedisClient(host="localhost", port=6379, logger=logger)


@pytest.mark.asyncio
async def test_redis_connect(redis_client):
    with patch("redis.asyncio.Redis", return_value=AsyncMock()) as mock_redis:
        mock_redis.return_value.ping.return_value = True
        await redis_client.connect()
        assert redis_client.client is not None


@pytest.mark.asyncio
async def test_redis_connect_failure_propagates(redis_client):
    with patch("redis.asyncio.Redis", return_value=AsyncMock()) as mock_redis:
        mock_redis.return_value.ping.side_effect = redis.ConnectionError("refused")
        with pytest.raises(redis.ConnectionError):
            await redis_client.connect()


@pytest.mark.asyncio
async def test_redis_disconnect(redis_client):
    client = AsyncMock()
    redis_client.client = client
    await redis_client.disconnect()
    client.aclose.assert_called_once()
    assert redis_client.client is None


@pytest.mark.asyncio
async def test_redis_publish(redis_client, mock_redis):
    redis_client.client = mock_redis
    pubsub = mock_redis.pubsub()
    await pubsub.subscribe("thread:1")

    receivers = await redis_client.publish("thread:1", "test_message")

    assert receivers == 1
    await pubsub.aclose()


@pytest.mark.asyncio
async def test_publish_requires_connection(redis_client):
    with pytest.raises(RuntimeError):
        await redis_client.publish("thread:1", "test_message")
