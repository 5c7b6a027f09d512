"""Short-lived single-use keys: OAuth handshake state and session denylist.

Learn: Both concerns boil down to "remember this key for N seconds".
The handshake store additionally needs an atomic take (check + delete)
so that two concurrent callbacks carrying the same state can't both win.

Two backends:
- MemoryKeyStore: one process only. Fine for a single instance/dev.
- RedisKeyStore: shared across instances behind a load balancer.
  SET ... EX for expiry and GETDEL for a single-winner take.

Expiry is always checked on read, so correctness never depends on
when (or whether) the sweep runs.
"""

import secrets
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol

import structlog

logger = structlog.get_logger()

STATE_NAMESPACE = "agentgate:oauth:state:"
DENYLIST_NAMESPACE = "agentgate:session:revoked:"


class KeyStore(Protocol):
    async def put(self, key: str, ttl_seconds: int) -> None: ...

    async def take(self, key: str) -> bool: ...

    async def contains(self, key: str) -> bool: ...

    async def sweep(self) -> int: ...


class MemoryKeyStore:
    """In-process key store with absolute expiries."""

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sweep_interval: float = 60.0,
    ):
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._lock = threading.Lock()
        self._expiries: dict[str, float] = {}
        self._last_sweep = clock()

    async def put(self, key: str, ttl_seconds: int) -> None:
        now = self._clock()
        with self._lock:
            self._expiries[key] = now + ttl_seconds
        if now - self._last_sweep >= self._sweep_interval:
            await self.sweep()

    async def take(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            expires_at = self._expiries.pop(key, None)
        return expires_at is not None and expires_at > now

    async def contains(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            expires_at = self._expiries.get(key)
        return expires_at is not None and expires_at > now

    async def sweep(self) -> int:
        """Drop expired keys. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, exp in self._expiries.items() if exp <= now]
            for k in expired:
                del self._expiries[k]
            self._last_sweep = now
        if expired:
            logger.debug("keystore.swept", removed=len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._expiries)


class RedisKeyStore:
    """Key store backed by Redis key expiry.

    Without an explicit client it uses the process pool opened in the
    app lifespan (agentgate.db.redis).
    """

    def __init__(self, redis=None):
        self._redis = redis

    @property
    def redis(self):
        if self._redis is None:
            from agentgate.db.redis import get_redis

            return get_redis()
        return self._redis

    async def put(self, key: str, ttl_seconds: int) -> None:
        await self.redis.set(key, "1", ex=max(1, int(ttl_seconds)))

    async def take(self, key: str) -> bool:
        # GETDEL is atomic: of N concurrent callers exactly one sees the value
        value = await self.redis.getdel(key)
        return value is not None

    async def contains(self, key: str) -> bool:
        return bool(await self.redis.exists(key))

    async def sweep(self) -> int:
        return 0


class StateHandshakeStore:
    """CSRF state registry for the OAuth redirect round trip."""

    def __init__(self, keys: KeyStore, ttl_seconds: int = 600):
        self._keys = keys
        self.ttl_seconds = ttl_seconds

    async def issue(self) -> str:
        """Generate, record, and return a fresh 256-bit state token."""
        state = secrets.token_hex(32)
        await self._keys.put(STATE_NAMESPACE + state, self.ttl_seconds)
        return state

    async def consume(self, state: Optional[str]) -> bool:
        """True only for the first use of a known, unexpired state."""
        if not state:
            return False
        return await self._keys.take(STATE_NAMESPACE + state)


class SessionDenylist:
    """Revoked session token ids, kept until the token would expire anyway."""

    def __init__(self, keys: KeyStore):
        self._keys = keys

    async def revoke(self, token_id: str, expires_at: datetime) -> None:
        if not token_id:
            return
        remaining = (expires_at - datetime.now(timezone.utc)).total_seconds()
        if remaining <= 0:
            return
        await self._keys.put(DENYLIST_NAMESPACE + token_id, int(remaining) + 1)

    async def is_revoked(self, token_id: str) -> bool:
        if not token_id:
            return False
        return await self._keys.contains(DENYLIST_NAMESPACE + token_id)
