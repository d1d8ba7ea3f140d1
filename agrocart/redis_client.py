"""
Redis access for the server-held cart.

Every command goes through ``RedisClient.execute`` so connection drops and
timeouts are retried with exponential backoff and jitter before surfacing as
``RedisConnectionError``.
"""
import logging
import random
import time
from typing import Any, Callable, Iterator, Optional

import redis
from redis.exceptions import (
    AuthenticationError,
    ConnectionError,
    RedisError,
    TimeoutError,
)

from agrocart.config import Config
from agrocart.exceptions import RedisConnectionError

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (ConnectionError, TimeoutError)


def backoff_delays(
    attempts: int,
    initial: float,
    ceiling: float
) -> Iterator[float]:
    """Sleep durations between attempts: doubling, capped, with up to 10% jitter"""
    delay = initial
    for _ in range(attempts - 1):
        yield delay + random.uniform(0, delay * 0.1)
        delay = min(delay * 2, ceiling)


class RedisClient:
    """Pooled Redis connection for cart hashes and scripts"""

    def __init__(self, url: Optional[str] = None, client: Optional[redis.Redis] = None):
        """
        Args:
            url: Connection URL, defaults to Config.redis_url()
            client: Ready-made redis client (skips pool creation, used in tests)
        """
        self.url = url or Config.redis_url()
        self.pool: Optional[redis.ConnectionPool] = None
        self.client: Optional[redis.Redis] = client
        if client is None:
            self._connect()

    def _connect(self) -> None:
        try:
            self.pool = redis.ConnectionPool.from_url(
                self.url,
                max_connections=Config.REDIS_MAX_CONNECTIONS,
                socket_connect_timeout=Config.REDIS_SOCKET_CONNECT_TIMEOUT,
                socket_timeout=Config.REDIS_SOCKET_TIMEOUT,
                retry_on_timeout=Config.REDIS_RETRY_ON_TIMEOUT,
                decode_responses=True,
            )
            self.client = redis.Redis(connection_pool=self.pool)
            self.client.ping()
        except (ConnectionError, AuthenticationError) as e:
            raise RedisConnectionError(f"Failed to connect to Redis: {e}")

    def execute(self, command: str, call: Callable[[], Any]) -> Any:
        """
        Run one Redis call with retries.

        Raises:
            RedisConnectionError: When retries are exhausted or Redis rejects the call
        """
        delays = backoff_delays(
            Config.REDIS_MAX_RETRIES,
            Config.REDIS_INITIAL_BACKOFF_SECONDS,
            Config.REDIS_MAX_BACKOFF_SECONDS,
        )
        attempt = 1
        while True:
            try:
                return call()
            except RETRYABLE_ERRORS as e:
                delay = next(delays, None)
                if delay is None:
                    raise RedisConnectionError(
                        f"Redis {command} failed after {attempt} attempts: {e}"
                    )
                logger.warning(
                    f"Redis {command} failed (attempt {attempt}), retrying in {delay:.2f}s",
                    extra={"command": command, "attempt": attempt, "error": str(e)},
                )
                time.sleep(delay)
                attempt += 1
                self._reconnect()
            except RedisError as e:
                # Script errors, wrong types: not retryable
                raise RedisConnectionError(f"Redis {command} error: {e}")

    def _reconnect(self) -> None:
        if self.pool is None:
            return
        try:
            self._connect()
        except RedisConnectionError as e:
            logger.warning(f"Redis reconnect failed: {e}")

    def hgetall(self, key: str) -> dict:
        """All lines of a cart hash"""
        return self.execute("HGETALL", lambda: self.client.hgetall(key))

    def hdel(self, key: str, *fields: str) -> int:
        return self.execute("HDEL", lambda: self.client.hdel(key, *fields))

    def delete(self, *keys: str) -> int:
        return self.execute("DEL", lambda: self.client.delete(*keys))

    def eval(self, script: str, num_keys: int, *keys_and_args) -> Any:
        """Execute a Lua script atomically"""
        return self.execute("EVAL", lambda: self.client.eval(script, num_keys, *keys_and_args))

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except RedisError:
            return False

    def close(self) -> None:
        """Close connection pool"""
        if self.pool:
            self.pool.disconnect()


_redis_client: Optional[RedisClient] = None


def get_redis_client() -> RedisClient:
    """Shared RedisClient, created on first use"""
    global _redis_client
    if _redis_client is None:
        _redis_client = RedisClient()
    return _redis_client
