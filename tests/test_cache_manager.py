"""
Unit tests for the Redis status mirror.
Tests status tracking, TTL behavior, and lookup statistics.
"""
import pytest
import json
from unittest.mock import AsyncMock, patch

from app.services.cache_manager import CacheManager
from app.core.config import settings


class TestCacheManager:
    """Test suite for CacheManager class."""

    @pytest.fixture
    def cache_manager(self):
        """Create a fresh CacheManager instance for each test."""
        return CacheManager()

    @pytest.fixture
    def mock_redis(self):
        """Create a mock Redis client."""
        mock_client = AsyncMock()
        mock_client.ping = AsyncMock(return_value=True)
        mock_client.get = AsyncMock()
        mock_client.setex = AsyncMock(return_value=True)
        mock_client.info = AsyncMock(return_value={
            'redis_version': '7.0.0',
            'used_memory_human': '1.5M',
            'connected_clients': 2
        })
        mock_client.aclose = AsyncMock()
        return mock_client

    @pytest.mark.asyncio
    async def test_cache_manager_initialization(self, cache_manager):
        """Test CacheManager initialization with default values."""
        assert cache_manager.redis_client is None
        assert cache_manager.status_ttl == settings.transfer_status_ttl
        assert cache_manager.stats['hits'] == 0
        assert cache_manager.stats['misses'] == 0
        assert cache_manager.stats['errors'] == 0
        assert cache_manager.stats['total_requests'] == 0

    @pytest.mark.asyncio
    async def test_connect_success(self, cache_manager, mock_redis):
        """Test successful Redis connection."""
        with patch('redis.asyncio.from_url', return_value=mock_redis):
            result = await cache_manager.connect()
            assert result is True
            assert cache_manager.redis_client is not None
            mock_redis.ping.assert_called_once()

    @pytest.mark.asyncio
    async def test_connect_failure(self, cache_manager):
        """Test Redis connection failure handling."""
        failing = AsyncMock()
        failing.ping = AsyncMock(side_effect=ConnectionError("Connection refused"))
        with patch('redis.asyncio.from_url', return_value=failing):
            result = await cache_manager.connect()
            assert result is False
            assert cache_manager.redis_client is None

    @pytest.mark.asyncio
    async def test_disconnect(self, cache_manager, mock_redis):
        cache_manager.redis_client = mock_redis

        await cache_manager.disconnect()

        mock_redis.aclose.assert_awaited_once()
        assert cache_manager.redis_client is None

    @pytest.mark.asyncio
    async def test_track_transfer(self, cache_manager, mock_redis):
        """Test storing a transfer status snapshot with TTL."""
        cache_manager.redis_client = mock_redis

        result = await cache_manager.track_transfer("task-1", "transferring", {"bytes_confirmed": 400})

        assert result is True
        key, ttl, payload = mock_redis.setex.call_args.args
        assert key == "transfer:task-1"
        assert ttl == settings.transfer_status_ttl
        data = json.loads(payload)
        assert data['status'] == "transferring"
        assert data['snapshot'] == {"bytes_confirmed": 400}
        assert 'updated_at' in data

    @pytest.mark.asyncio
    async def test_track_transfer_without_redis(self, cache_manager):
        """Tracking degrades to a no-op when Redis is unreachable."""
        with patch.object(cache_manager, 'connect', new=AsyncMock(return_value=False)):
            result = await cache_manager.track_transfer("task-1", "pending")

        assert result is False

    @pytest.mark.asyncio
    async def test_track_transfer_error(self, cache_manager, mock_redis):
        mock_redis.setex.side_effect = Exception("Redis error")
        cache_manager.redis_client = mock_redis

        result = await cache_manager.track_transfer("task-1", "pending")

        assert result is False
        assert cache_manager.stats['errors'] == 1

    @pytest.mark.asyncio
    async def test_get_transfer_status_hit(self, cache_manager, mock_redis):
        """Test status lookup hit."""
        stored = {'task_id': 'task-1', 'status': 'complete', 'snapshot': {}}
        mock_redis.get.return_value = json.dumps(stored)
        cache_manager.redis_client = mock_redis

        result = await cache_manager.get_transfer_status("task-1")

        assert result == stored
        mock_redis.get.assert_awaited_once_with("transfer:task-1")
        assert cache_manager.stats['hits'] == 1
        assert cache_manager.stats['total_requests'] == 1

    @pytest.mark.asyncio
    async def test_get_transfer_status_miss(self, cache_manager, mock_redis):
        """Test status lookup miss."""
        mock_redis.get.return_value = None
        cache_manager.redis_client = mock_redis

        result = await cache_manager.get_transfer_status("task-1")

        assert result is None
        assert cache_manager.stats['misses'] == 1

    @pytest.mark.asyncio
    async def test_cache_stats(self, cache_manager, mock_redis):
        """Test hit/miss rate calculation."""
        cache_manager.redis_client = mock_redis
        mock_redis.get.side_effect = [json.dumps({'status': 'pending'}), None, None, json.dumps({'status': 'failed'})]

        for _ in range(4):
            await cache_manager.get_transfer_status("task-1")

        stats = cache_manager.get_cache_stats()
        assert stats['hit_rate'] == 50.0
        assert stats['miss_rate'] == 50.0
        assert stats['total_requests'] == 4

    def test_cache_stats_empty(self, cache_manager):
        stats = cache_manager.get_cache_stats()

        assert stats['hit_rate'] == 0.0
        assert stats['total_requests'] == 0

    @pytest.mark.asyncio
    async def test_health_check_healthy(self, cache_manager, mock_redis):
        """Test health check with a live connection."""
        cache_manager.redis_client = mock_redis

        health = await cache_manager.health_check()

        assert health['status'] == 'healthy'
        assert health['connected'] is True
        assert health['redis_version'] == '7.0.0'
        assert 'response_time_ms' in health

    @pytest.mark.asyncio
    async def test_health_check_unhealthy(self, cache_manager):
        """Test health check without a connection."""
        with patch.object(cache_manager, 'connect', new=AsyncMock(return_value=False)):
            health = await cache_manager.health_check()

        assert health['status'] == 'unhealthy'
        assert health['connected'] is False
