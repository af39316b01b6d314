"""
Unit tests for the RedisBackend.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from service_facts.app.caching.redis_backend import RedisBackend
from shared.errors import InfrastructureError


class TestRedisBackend:
    """Test cases for RedisBackend."""

    @pytest.fixture
    def mock_redis(self):
        """Mock redis.asyncio client."""
        client = AsyncMock()
        pipeline = MagicMock()
        pipeline.execute = AsyncMock(return_value=[3, True])
        client.pipeline = MagicMock()
        client.pipeline.return_value.__aenter__.return_value = pipeline
        client.pipeline.return_value.__aexit__.return_value = False
        client.mock_pipeline = pipeline
        return client

    @pytest.fixture
    def backend(self, mock_redis):
        return RedisBackend("redis://localhost:6379/0", client=mock_redis)

    @pytest.mark.asyncio
    async def test_incr_with_expiry_uses_transaction(self, backend, mock_redis):
        """Test INCRBY and EXPIRE are queued in one transaction."""
        count = await backend.incr_with_expiry("quota:rate:user-1:0", 900, 1)

        assert count == 3
        mock_redis.pipeline.assert_called_once_with(transaction=True)
        mock_redis.mock_pipeline.incrby.assert_called_once_with("quota:rate:user-1:0", 1)
        mock_redis.mock_pipeline.expire.assert_called_once_with("quota:rate:user-1:0", 900)

    @pytest.mark.asyncio
    async def test_set_with_ttl_uses_setex(self, backend, mock_redis):
        """Test TTL writes go through SETEX."""
        assert await backend.set("facts:k", "{}", 60) is True

        mock_redis.setex.assert_awaited_once_with("facts:k", 60, "{}")

    @pytest.mark.asyncio
    async def test_set_without_ttl(self, backend, mock_redis):
        """Test writes without TTL use SET."""
        await backend.set("facts:k", "{}")

        mock_redis.set.assert_awaited_once_with("facts:k", "{}")

    @pytest.mark.asyncio
    async def test_add_to_set_extends_expiry(self, backend, mock_redis):
        """Test a shorter current TTL is extended."""
        mock_redis.sadd.return_value = 1
        mock_redis.ttl.return_value = 100

        await backend.add_to_set("facts:tag:t", ["facts:k"], 300)

        mock_redis.expire.assert_awaited_once_with("facts:tag:t", 300)

    @pytest.mark.asyncio
    async def test_add_to_set_never_shortens_expiry(self, backend, mock_redis):
        """Test a longer current TTL is kept."""
        mock_redis.sadd.return_value = 0
        mock_redis.ttl.return_value = 3000

        await backend.add_to_set("facts:tag:t", ["facts:k"], 300)

        mock_redis.expire.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_add_to_set_sets_expiry_on_new_set(self, backend, mock_redis):
        """Test a set without expiry gets one."""
        mock_redis.sadd.return_value = 1
        mock_redis.ttl.return_value = -1

        await backend.add_to_set("facts:tag:t", ["facts:k"], 300)

        mock_redis.expire.assert_awaited_once_with("facts:tag:t", 300)

    @pytest.mark.asyncio
    async def test_delete_without_keys(self, backend, mock_redis):
        """Test deleting nothing skips Redis."""
        assert await backend.delete() == 0
        mock_redis.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_errors_raise_infrastructure_error(self, backend, mock_redis):
        """Test Redis failures surface as InfrastructureError."""
        mock_redis.get.side_effect = ConnectionError("connection refused")

        with pytest.raises(InfrastructureError) as exc_info:
            await backend.get("facts:k")

        assert exc_info.value.service == "redis"

    @pytest.mark.asyncio
    async def test_close(self, backend, mock_redis):
        """Test closing releases the client."""
        await backend.close()

        mock_redis.aclose.assert_awaited_once()
        assert backend._redis is None
