"""
Redis-backed cooldown cache and alert event bus.

Redis is used for:
- Cooldown records (last-fired timestamp per alert fingerprint, with TTL)
- Pub/sub delivery of alert events to dashboards and notifiers

Both share one connection-pooled client, which is safe to use from
several project workers at once. Every command is bounded by the
client's socket timeout.

Key naming convention:
- cooldown:{fingerprint} - Unix seconds of the last delivery
"""

from typing import Optional, Sequence
import structlog

import redis

logger = structlog.get_logger(__name__)


# Atomic admission check for one fingerprint.
# KEYS[1] = cooldown key, ARGV[1] = now (unix seconds), ARGV[2] = cooldown seconds
# Returns 1 (admit, key refreshed) or 0 (suppress).
COOLDOWN_LUA_SCRIPT = """
local last = tonumber(redis.call('GET', KEYS[1]))
local now = tonumber(ARGV[1])
local cooldown = tonumber(ARGV[2])

if last and (now - last) < cooldown then
    return 0
end

redis.call('SET', KEYS[1], ARGV[1], 'EX', cooldown)
return 1
"""


def connect_redis(
    host: str = "localhost",
    port: int = 6379,
    db: int = 0,
    password: Optional[str] = None,
    socket_timeout: float = 5.0,
    max_connections: int = 20,
) -> redis.Redis:
    """
    Create a pooled Redis client and check it responds.

    Args:
        host: Redis host
        port: Redis port
        db: Redis database number
        password: Redis password (optional)
        socket_timeout: Per-command timeout in seconds
        max_connections: Pool size

    Raises:
        redis.ConnectionError: if Redis cannot be reached
    """
    pool = redis.ConnectionPool(
        host=host,
        port=port,
        db=db,
        password=password,
        socket_timeout=socket_timeout,
        socket_connect_timeout=socket_timeout,
        max_connections=max_connections,
        decode_responses=True,  # Return strings, not bytes
    )
    client = redis.Redis(connection_pool=pool)

    try:
        client.ping()
        logger.info("redis_connected", host=host, port=port, db=db)
    except redis.ConnectionError as e:
        logger.error("redis_connection_failed", host=host, port=port, error=str(e))
        raise

    return client


class RedisCooldownCache:
    """
    Cooldown records in Redis.

    Admission runs as a Lua script so the read, the comparison and the
    refresh happen atomically per key. Two workers (or two overlapping
    cycles) can never both admit the same fingerprint.
    """

    def __init__(self, client: redis.Redis):
        self.client = client

    def get_if_fresh(self, key: str, ttl_seconds: int, now: int) -> Optional[int]:
        """Last-fired timestamp if it is younger than `ttl_seconds`."""
        raw = self.client.get(key)
        if raw is None:
            return None
        try:
            last = int(float(raw))
        except (TypeError, ValueError):
            logger.warning("cooldown_value_unparseable", key=key)
            return None
        if now - last >= ttl_seconds:
            return None
        return last

    def set_with_ttl(self, key: str, value: int, ttl_seconds: int) -> None:
        self.client.setex(key, ttl_seconds, str(value))

    def check_and_set_many(
        self,
        keys: Sequence[str],
        now: int,
        ttl_seconds: int,
    ) -> list[bool]:
        """Run the admission script for every key in one round trip."""
        if not keys:
            return []

        pipe = self.client.pipeline(transaction=False)
        for key in keys:
            pipe.eval(COOLDOWN_LUA_SCRIPT, 1, key, now, ttl_seconds)
        results = pipe.execute()

        return [int(r) == 1 for r in results]


class RedisEventBus:
    """Alert delivery over Redis pub/sub."""

    def __init__(self, client: redis.Redis):
        self.client = client

    def publish_batch(self, channel: str, payloads: Sequence[str]) -> list[int]:
        """
        Publish all payloads in one MULTI/EXEC.

        Returns the subscriber count per payload. Raises if the
        transaction fails; in that case nothing is assumed delivered.
        """
        if not payloads:
            return []

        pipe = self.client.pipeline(transaction=True)
        for payload in payloads:
            pipe.publish(channel, payload)
        results = pipe.execute()

        return [int(r) for r in results]

    def publish_one(self, channel: str, payload: str) -> int:
        return int(self.client.publish(channel, payload))
