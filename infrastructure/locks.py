"""
Keyed locks: Redis-backed for multi-process deployments, in-process
``asyncio.Lock`` registry otherwise.

The in-process variant only serializes callers inside one event loop /
worker process; run a single worker or configure ``REDIS__URL``.

The Redis TTL is at least one worst-case gateway call (timeouts, retries and
backoff); holders refresh it before each gateway call.
"""
from __future__ import annotations

import asyncio
import math
import socket
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from redis import asyncio as aioredis
from redis.asyncio.lock import Lock as RedisLock
from redis.exceptions import LockError, RedisError

from application.ports.locks import KeyedLock, LockLease
from core.config import settings
from core.logging_config import get_logger
from core.settings import payment_settings
from domain.common.exceptions import LockAcquisitionTimeout, LockLostError


logger = get_logger(__name__)

# 续期后剩余临界区（数据库写入等）的余量
LOCK_TTL_MARGIN_SECONDS = 5


def lock_ttl(configured: int, call_budget: float) -> int:
    """TTL covering one gateway call plus the margin, never below the configured value."""
    return max(configured, math.ceil(call_budget) + LOCK_TTL_MARGIN_SECONDS)


class _LocalLease:
    """进程内锁不会过期"""

    async def refresh(self) -> None:
        return None


class InProcessKeyedLock:
    """每个 key 一把 asyncio.Lock，无人持有时回收"""

    def __init__(self, *, blocking_timeout: float = 10.0) -> None:
        self._blocking_timeout = blocking_timeout
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[LockLease]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self._blocking_timeout)
            except asyncio.TimeoutError:
                logger.warning("lock_timeout", key=key, backend="memory")
                raise LockAcquisitionTimeout(key, self._blocking_timeout) from None
            try:
                yield _LocalLease()
            finally:
                lock.release()
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)


class RedisLease:
    def __init__(self, lock: RedisLock, key: str) -> None:
        self._lock = lock
        self._key = key

    async def refresh(self) -> None:
        try:
            # 重置为完整 TTL；锁已过期或被他人持有时抛出 LockNotOwnedError
            await self._lock.reacquire()
        except LockError as exc:
            logger.error("lock_lost", key=self._key, error=str(exc))
            raise LockLostError(self._key) from exc


class RedisKeyedLock:
    """基于 redis-py Lock 的分布式锁"""

    def __init__(
        self,
        client: aioredis.Redis,
        *,
        namespace: str,
        timeout: int = 30,
        blocking_timeout: int = 10,
    ) -> None:
        self._client = client
        self._namespace = namespace
        self._timeout = timeout
        self._blocking_timeout = blocking_timeout

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[LockLease]:
        lock_key = f"{self._namespace}:lock:{key}"
        lock = self._client.lock(
            lock_key,
            timeout=self._timeout,
            blocking_timeout=self._blocking_timeout,
            thread_local=False,
        )
        acquired = await lock.acquire()
        if not acquired:
            logger.warning("lock_timeout", key=lock_key, backend="redis")
            raise LockAcquisitionTimeout(key, self._blocking_timeout)
        try:
            yield RedisLease(lock, lock_key)
        finally:
            try:
                await lock.release()
            except LockError as exc:
                # 临界区已完成，只能记录；出款前的 refresh 已保证未被并发进入
                logger.error("lock_release_failed", key=lock_key, error=str(exc))


# ============= 单例管理 =============

_redis_client: Optional[aioredis.Redis] = None
_lock_provider: Optional[KeyedLock] = None


async def init_lock_provider() -> KeyedLock:
    """根据配置初始化锁实现：配置了 Redis 则使用 Redis"""
    global _redis_client, _lock_provider

    if _lock_provider is not None:
        return _lock_provider

    if not settings.redis.url:
        _lock_provider = InProcessKeyedLock(blocking_timeout=settings.PAYOUT_LOCK_BLOCKING_TIMEOUT)
        logger.info("lock_provider_initialized", backend="memory")
        return _lock_provider

    keepalive_opts = {}
    if hasattr(socket, "TCP_KEEPIDLE") and hasattr(socket, "TCP_KEEPINTVL") and hasattr(socket, "TCP_KEEPCNT"):
        keepalive_opts = {
            socket.TCP_KEEPIDLE: 1,
            socket.TCP_KEEPINTVL: 1,
            socket.TCP_KEEPCNT: 3,
        }
    client = aioredis.from_url(
        settings.redis.url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=settings.redis.max_connections,
        socket_keepalive=True,
        socket_keepalive_options=keepalive_opts,
    )
    try:
        await client.ping()
    except RedisError as exc:
        logger.error("redis_connect_failed", error=str(exc))
        await client.aclose()
        raise

    _redis_client = client
    _lock_provider = RedisKeyedLock(
        client,
        namespace=settings.redis.namespace,
        timeout=lock_ttl(settings.PAYOUT_LOCK_TIMEOUT, payment_settings.gateway_call_budget),
        blocking_timeout=settings.PAYOUT_LOCK_BLOCKING_TIMEOUT,
    )
    logger.info("lock_provider_initialized", backend="redis")
    return _lock_provider


def get_lock_provider() -> KeyedLock:
    if _lock_provider is None:
        raise RuntimeError("Lock provider not initialized; call init_lock_provider() at startup")
    return _lock_provider


async def shutdown_lock_provider() -> None:
    global _redis_client, _lock_provider

    if _redis_client is not None:
        try:
            await _redis_client.aclose()
            logger.info("redis_connection_closed")
        except RedisError as exc:
            logger.error("redis_close_failed", error=str(exc))
        finally:
            _redis_client = None
    _lock_provider = None
