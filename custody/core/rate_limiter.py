import abc
import logging
import threading
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

from custody.errors import RateLimitedError

logger = logging.getLogger(__name__)


class LockoutStorage(abc.ABC):
    @abc.abstractmethod
    async def locked_until(self, key: str, now: float) -> Optional[float]:
        """Epoch seconds the key stays locked until, or None if not locked."""
        pass

    @abc.abstractmethod
    async def record_failure(
        self, key: str, now: float, max_attempts: int, window_seconds: int, lockout_seconds: int
    ) -> Tuple[int, Optional[float]]:
        """
        Count one failed attempt.

        Returns:
            (attempts_in_window, locked_until) where locked_until is set once
            the attempt count reaches max_attempts.
        """
        pass

    @abc.abstractmethod
    async def reset(self, key: str) -> None:
        pass


class MemoryLockoutStorage(LockoutStorage):
    def __init__(self):
        # key -> (attempts, window_start, locked_until)
        self._entries: Dict[str, Tuple[int, float, Optional[float]]] = {}
        self._lock = threading.Lock()

    async def locked_until(self, key: str, now: float) -> Optional[float]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry[2] is None:
                return None
            if entry[2] <= now:
                del self._entries[key]
                return None
            return entry[2]

    async def record_failure(
        self, key: str, now: float, max_attempts: int, window_seconds: int, lockout_seconds: int
    ) -> Tuple[int, Optional[float]]:
        with self._lock:
            self._prune(now, window_seconds)
            attempts, window_start, locked = self._entries.get(key, (0, now, None))
            if now - window_start >= window_seconds:
                attempts, window_start, locked = 0, now, None
            attempts += 1
            if attempts >= max_attempts:
                locked = now + lockout_seconds
            self._entries[key] = (attempts, window_start, locked)
            return attempts, locked

    async def reset(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def _prune(self, now: float, window_seconds: int) -> None:
        # Caller holds the lock. Drops entries whose window and lockout have both passed.
        stale = [
            k for k, (_, window_start, locked) in self._entries.items()
            if now - window_start >= window_seconds and (locked is None or locked <= now)
        ]
        for k in stale:
            del self._entries[k]


RECORD_FAILURE_SCRIPT = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local max_attempts = tonumber(ARGV[2])
local window = tonumber(ARGV[3])
local lockout = tonumber(ARGV[4])

local state = redis.call('HMGET', key, 'attempts', 'window_start')
local attempts = tonumber(state[1])
local window_start = tonumber(state[2])

if not attempts or (now - window_start) >= window then
    attempts = 0
    window_start = now
    redis.call('HDEL', key, 'locked_until')
end

attempts = attempts + 1
local locked_until = -1
if attempts >= max_attempts then
    locked_until = now + lockout
    redis.call('HSET', key, 'locked_until', locked_until)
end

redis.call('HSET', key, 'attempts', attempts, 'window_start', window_start)
redis.call('EXPIRE', key, math.ceil(math.max(window, lockout)))

return {attempts, tostring(locked_until)}
"""


class RedisLockoutStorage(LockoutStorage):
    def __init__(self, redis_client, fail_closed: bool = False):
        self.redis = redis_client
        self.fail_closed = fail_closed

    def _on_error(self, operation: str, e: Exception) -> None:
        logger.error(f"Redis lockout {operation} error: {e}")
        if self.fail_closed:
            raise RuntimeError(f"Redis lockout storage unavailable during {operation}") from e

    async def locked_until(self, key: str, now: float) -> Optional[float]:
        try:
            raw = await self.redis.hget(key, "locked_until")
        except Exception as e:
            self._on_error("read", e)
            return None
        if raw is None:
            return None
        until = float(raw)
        return until if until > now else None

    async def record_failure(
        self, key: str, now: float, max_attempts: int, window_seconds: int, lockout_seconds: int
    ) -> Tuple[int, Optional[float]]:
        try:
            result = await self.redis.eval(
                RECORD_FAILURE_SCRIPT, 1, key, now, max_attempts, window_seconds, lockout_seconds
            )
        except Exception as e:
            self._on_error("write", e)
            return 0, None
        attempts = int(result[0])
        locked = float(result[1])
        return attempts, (locked if locked >= 0 else None)

    async def reset(self, key: str) -> None:
        try:
            await self.redis.delete(key)
        except Exception as e:
            self._on_error("reset", e)


class FailedAttemptLimiter:
    """Locks a client address out of redemption after repeated failures."""

    def __init__(
        self,
        storage: LockoutStorage,
        max_attempts: int = 5,
        window_seconds: int = 3600,
        lockout_seconds: int = 900,
        key_prefix: str = "lockout:redeem",
    ):
        self.storage = storage
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.lockout_seconds = lockout_seconds
        self.key_prefix = key_prefix

    def _key(self, client_address: str) -> str:
        return f"{self.key_prefix}:{client_address}"

    async def check(self, client_address: str, now: datetime) -> None:
        """Raise RateLimitedError while the address is locked out."""
        until = await self.storage.locked_until(self._key(client_address), now.timestamp())
        if until is not None:
            raise RateLimitedError(locked_until=datetime.fromtimestamp(until, tz=timezone.utc))

    async def register_failure(self, client_address: str, now: datetime) -> Optional[datetime]:
        attempts, until = await self.storage.record_failure(
            self._key(client_address),
            now.timestamp(),
            self.max_attempts,
            self.window_seconds,
            self.lockout_seconds,
        )
        if until is None:
            return None
        logger.warning(f"Redemption locked out: address={client_address} attempts={attempts}")
        return datetime.fromtimestamp(until, tz=timezone.utc)

    async def reset(self, client_address: str) -> None:
        await self.storage.reset(self._key(client_address))
