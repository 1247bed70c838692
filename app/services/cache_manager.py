"""
Redis mirror of transfer status for MediaRelay application.
Keeps TTL-bound status snapshots so they survive a worker restart.
"""
import json
import logging
import time
from typing import Optional, Dict, Any, Union
from datetime import datetime, timezone
import redis.asyncio as redis

from app.core.config import settings


logger = logging.getLogger(__name__)


class CacheManager:
    """
    Redis-based status store with TTL support.

    Redis is optional: every operation degrades to a no-op (False/None)
    when the server is unreachable, so a transfer never fails on it.
    """

    def __init__(self):
        """Initialize Redis connection and performance tracking."""
        self.redis_client: Optional[redis.Redis] = None
        self.status_ttl = settings.transfer_status_ttl

        # Performance tracking
        self.stats = {
            'hits': 0,
            'misses': 0,
            'errors': 0,
            'total_requests': 0
        }

        self.TRANSFER_PREFIX = "transfer:"

    async def connect(self) -> bool:
        """
        Establish Redis connection with error handling.

        Returns:
            bool: True if connection successful, False otherwise
        """
        try:
            if settings.redis_password:
                self.redis_client = redis.Redis(
                    host=settings.redis_host,
                    port=settings.redis_port,
                    db=settings.redis_db,
                    password=settings.redis_password,
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5
                )
            else:
                self.redis_client = redis.from_url(
                    settings.redis_url,
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5
                )

            # Test connection
            await self.redis_client.ping()
            return True

        except Exception as e:
            logger.warning(f"Redis connection failed: {e}")
            self.redis_client = None
            return False

    async def disconnect(self):
        """Close Redis connection."""
        if self.redis_client:
            await self.redis_client.aclose()
            self.redis_client = None

    def _key(self, task_id: str) -> str:
        return f"{self.TRANSFER_PREFIX}{task_id}"

    async def track_transfer(self, task_id: str, status: str, snapshot: Optional[Dict[str, Any]] = None) -> bool:
        """
        Store the latest status of a transfer.

        Args:
            task_id: Unique task identifier
            status: Transfer status (pending, transferring, complete, failed, ...)
            snapshot: Task dictionary to store alongside the status

        Returns:
            bool: True if tracked successfully, False otherwise
        """
        if not self.redis_client:
            await self.connect()

        if not self.redis_client:
            return False

        try:
            task_data = {
                'task_id': task_id,
                'status': status,
                'updated_at': datetime.now(timezone.utc).isoformat(),
                'snapshot': snapshot or {}
            }

            await self.redis_client.setex(
                self._key(task_id),
                self.status_ttl,
                json.dumps(task_data, default=str)
            )

            return True

        except Exception as e:
            logger.warning(f"Transfer tracking error for {task_id}: {e}")
            self.stats['errors'] += 1
            return False

    async def get_transfer_status(self, task_id: str) -> Optional[Dict[str, Any]]:
        """
        Get the stored status of a transfer.

        Args:
            task_id: Task identifier

        Returns:
            Dict containing task status or None if not found
        """
        if not self.redis_client:
            await self.connect()

        if not self.redis_client:
            self.stats['errors'] += 1
            return None

        try:
            self.stats['total_requests'] += 1
            cached_data = await self.redis_client.get(self._key(task_id))

            if cached_data:
                self.stats['hits'] += 1
                return json.loads(cached_data)

            self.stats['misses'] += 1
            return None

        except Exception as e:
            logger.warning(f"Transfer status get error for {task_id}: {e}")
            self.stats['errors'] += 1
            return None

    def get_cache_stats(self) -> Dict[str, Union[int, float]]:
        """
        Get lookup statistics.

        Returns:
            Dict containing hit rate, miss rate, and error rate
        """
        total = self.stats['total_requests']

        if total == 0:
            return {
                'hit_rate': 0.0,
                'miss_rate': 0.0,
                'error_rate': 0.0,
                'total_requests': 0,
                'hits': 0,
                'misses': 0,
                'errors': self.stats['errors']
            }

        return {
            'hit_rate': round((self.stats['hits'] / total) * 100, 2),
            'miss_rate': round((self.stats['misses'] / total) * 100, 2),
            'error_rate': round((self.stats['errors'] / total) * 100, 2),
            'total_requests': total,
            'hits': self.stats['hits'],
            'misses': self.stats['misses'],
            'errors': self.stats['errors']
        }

    async def health_check(self) -> Dict[str, Any]:
        """
        Perform Redis health check.

        Returns:
            Dict containing health status and connection info
        """
        try:
            if not self.redis_client:
                await self.connect()

            if not self.redis_client:
                return {
                    'status': 'unhealthy',
                    'connected': False,
                    'error': 'No Redis connection'
                }

            start_time = time.time()
            await self.redis_client.ping()
            response_time = (time.time() - start_time) * 1000  # ms

            info = await self.redis_client.info()

            return {
                'status': 'healthy',
                'connected': True,
                'response_time_ms': round(response_time, 2),
                'redis_version': info.get('redis_version', 'unknown'),
                'used_memory_human': info.get('used_memory_human', 'unknown'),
                'cache_stats': self.get_cache_stats()
            }

        except Exception as e:
            return {
                'status': 'unhealthy',
                'connected': False,
                'error': str(e)
            }


# Global cache manager instance
cache_manager = CacheManager()
