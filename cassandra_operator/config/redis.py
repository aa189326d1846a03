"""
Redis connection shared by the leader election.

Only opened when ``leader_election_enabled`` is set; a single operator
replica runs without Redis.
"""
from typing import Optional

import redis.asyncio as redis
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from cassandra_operator.config.logging import get_logger
from cassandra_operator.config.settings import settings

logger = get_logger(__name__)


def redacted_url(url: str) -> str:
    """Drop credentials from a Redis URL before logging it."""
    scheme, _, rest = url.partition("://")
    return f"{scheme}://{rest.split('@')[-1]}"


def _log_reconnect(retry_state: RetryCallState) -> None:
    logger.warning(
        "redis_connection_failed",
        attempt=retry_state.attempt_number,
        retry_in_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
        error=str(retry_state.outcome.exception()),
    )


class RedisConnection:
    """Process-wide Redis client holder."""

    client: Optional[redis.Redis] = None

    @classmethod
    async def connect(cls, max_attempts: int = 10) -> None:
        """
        Open the client and wait until Redis answers a ping.

        Retries with exponential backoff capped at 30 seconds.

        Raises:
            redis.ConnectionError: When Redis stays unreachable
        """
        url = str(settings.redis_url)
        client = redis.Redis.from_url(
            url,
            max_connections=settings.redis_max_connections,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            health_check_interval=30,
        )

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=2, max=30),
            retry=retry_if_exception_type((redis.ConnectionError, redis.TimeoutError)),
            before_sleep=_log_reconnect,
            reraise=True,
        ):
            with attempt:
                await client.ping()

        cls.client = client
        logger.info("redis_connected", url=redacted_url(url))

    @classmethod
    async def close(cls) -> None:
        if cls.client is not None:
            await cls.client.aclose()
            cls.client = None
            logger.info("redis_connection_closed")

    @classmethod
    async def get_client(cls) -> redis.Redis:
        """
        Raises:
            RuntimeError: If ``connect`` has not completed
        """
        if cls.client is None:
            raise RuntimeError("Redis is not connected, call RedisConnection.connect() first")
        return cls.client

    @classmethod
    async def ping(cls) -> bool:
        """True when the client is open and Redis answers."""
        if cls.client is None:
            return False
        try:
            return bool(await cls.client.ping())
        except (redis.ConnectionError, redis.TimeoutError) as e:
            logger.warning("redis_ping_failed", error=str(e))
            return False
