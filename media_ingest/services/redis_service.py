"""Redis-backed upload session repository."""
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import redis.asyncio as redis
from redis.asyncio.client import Redis
from redis.exceptions import ConnectionError, LockError, ResponseError

from media_ingest.core.config import RedisConfig
from media_ingest.core.exceptions import StorageException, ValidationException
from media_ingest.models.upload_session import UploadSession
from media_ingest.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)

DEFAULT_REDIS_URL = "redis://localhost:6379/0"


class RedisSessionRepository:
    """
    Upload sessions stored as Redis hashes.

    Keys (with the configured prefix, ``upload`` by default):
      ``upload:session:{id}``  session hash
      ``upload:session:index`` sorted set of ids scored by ``updated_at``
      ``upload:lock:{id}``     per-session lock
    """

    def __init__(self, config: RedisConfig, client: Optional[Redis] = None):
        self.config = config
        self.redis: Optional[Redis] = client
        self._owns_client = client is None
        self._connection_pool: Optional[redis.ConnectionPool] = None

        self.lock_timeout = config.session_lock_timeout
        self.lock_wait_timeout = config.session_lock_wait_timeout
        self.session_key_prefix = f"{config.key_prefix}:session:"
        self.index_key = f"{config.key_prefix}:session:index"
        self.lock_key_prefix = f"{config.key_prefix}:lock:"

    async def connect(self) -> None:
        """Connect to Redis (single-node configuration)."""
        if self.redis is None:
            redis_url_value = (self.config.url or "").strip()
            use_url = bool(redis_url_value and redis_url_value != DEFAULT_REDIS_URL)

            if use_url:
                url_for_log = redis_url_value.split('@')[-1]
                logger.info("Connecting to Redis via URL: %s", url_for_log)
                self.redis = redis.from_url(
                    redis_url_value,
                    encoding="utf-8",
                    decode_responses=True,
                    max_connections=self.config.max_connections,
                    socket_timeout=self.config.connection_pool_timeout,
                    socket_connect_timeout=self.config.connection_pool_timeout,
                    retry_on_timeout=True,
                    health_check_interval=30,
                )
            else:
                logger.info("Connecting to Redis via host/port %s:%s", self.config.host, self.config.port)
                self._connection_pool = redis.ConnectionPool(
                    host=self.config.host,
                    port=self.config.port,
                    db=self.config.db,
                    password=self.config.password,
                    max_connections=self.config.max_connections,
                    socket_timeout=self.config.connection_pool_timeout,
                    socket_connect_timeout=self.config.connection_pool_timeout,
                    retry_on_timeout=True,
                    health_check_interval=30,
                    encoding="utf-8",
                    decode_responses=True,
                )
                self.redis = redis.Redis(connection_pool=self._connection_pool)

        try:
            await self.redis.ping()

            # Fail fast when connected to a read-only replica
            test_key = f"__test_write_{int(time.time())}"
            await self.redis.set(test_key, "test", ex=1)
            await self.redis.delete(test_key)
            logger.info("Redis connection established (writable)")
        except ResponseError as e:
            error_msg = str(e).lower()
            await self.disconnect()
            if "read only" in error_msg or "readonly" in error_msg:
                raise ConnectionError(
                    "Redis connection failed: connected to a read-only replica. "
                    f"Check redis_url/host ({self.config.host}:{self.config.port}) targets the primary node."
                ) from e
            raise
        except Exception as e:
            logger.error(f"Redis connection failed: {e}")
            await self.disconnect()
            raise

    async def disconnect(self) -> None:
        """Close the client if this repository created it."""
        if self.redis is not None and self._owns_client:
            await self.redis.aclose()
            self.redis = None
        if self._connection_pool is not None:
            await self._connection_pool.disconnect()
            self._connection_pool = None
        logger.info("Redis connection closed")

    def _session_key(self, upload_id: str) -> str:
        return f"{self.session_key_prefix}{upload_id}"

    def _lock_key(self, upload_id: str) -> str:
        return f"{self.lock_key_prefix}{upload_id}"

    async def _write(self, session: UploadSession) -> None:
        key = self._session_key(session.upload_id)
        pipe = self.redis.pipeline()
        pipe.hset(key, mapping=session.to_redis_hash())
        pipe.zadd(self.index_key, {session.upload_id: session.updated_at.timestamp()})
        await pipe.execute()

    async def create(self, session: UploadSession) -> None:
        if await self.redis.exists(self._session_key(session.upload_id)):
            raise ValidationException(f"Upload session already exists: {session.upload_id}", field="upload_id")
        await self._write(session)
        logger.info(f"Upload session created: {session.upload_id}")

    async def get(self, upload_id: str) -> Optional[UploadSession]:
        data = await self.redis.hgetall(self._session_key(upload_id))
        if not data:
            return None
        return UploadSession.from_redis_hash(data)

    async def save(self, session: UploadSession) -> None:
        await self._write(session)

    async def delete(self, upload_id: str) -> bool:
        pipe = self.redis.pipeline()
        pipe.delete(self._session_key(upload_id))
        pipe.zrem(self.index_key, upload_id)
        deleted, _ = await pipe.execute()
        if deleted:
            logger.info(f"Session deleted: {upload_id}")
        return bool(deleted)

    @asynccontextmanager
    async def lock(self, upload_id: str) -> AsyncIterator[None]:
        """Distributed per-session lock with bounded wait."""
        lock = self.redis.lock(
            self._lock_key(upload_id),
            timeout=self.lock_timeout,
            blocking_timeout=self.lock_wait_timeout,
        )
        if not await lock.acquire():
            raise StorageException(
                f"Timed out acquiring session lock: {upload_id}",
                operation="lock",
                details={"upload_id": upload_id}
            )
        logger.debug(f"Redis session lock acquired: {upload_id}")
        try:
            yield
        finally:
            try:
                await lock.release()
                logger.debug(f"Redis session lock released: {upload_id}")
            except LockError as e:
                logger.warning(f"Session lock for {upload_id} expired before release: {e}")

    async def list_stale(self, cutoff_timestamp: float) -> List[str]:
        return list(await self.redis.zrangebyscore(self.index_key, "-inf", cutoff_timestamp))

    async def get_stats(self) -> Dict[str, Any]:
        """Return aggregate statistics about tracked sessions."""
        pipe = self.redis.pipeline()
        pipe.zcard(self.index_key)
        pipe.zcount(self.index_key, time.time() - 3600, "+inf")
        total, recently_active = await pipe.execute()
        return {
            "backend": "redis",
            "total_sessions": total,
            "active_last_hour": recently_active
        }
