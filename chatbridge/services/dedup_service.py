"""Dedup & Cooldown Controller.

State lives behind a small key-value backend with conditional put, so that
check-then-act pairs (claim a message id, open a cooldown window) are a single
atomic step. The in-memory backend serves single-process deployments and
tests; the Redis backend is shared between instances.
"""

import time
from collections import OrderedDict
from typing import Callable, Optional, Protocol

import redis.asyncio as redis

from chatbridge.logging_config import get_logger

logger = get_logger("dedup_service")

PROCESSING = "processing"
PROCESSED = "processed"


class BridgeStateBackend(Protocol):
    async def set_if_absent(self, key: str, value: str, ttl_ms: Optional[int] = None) -> bool: ...

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl_ms: Optional[int] = None) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def close(self) -> None: ...


class InMemoryBridgeState:
    """LRU-bounded dict with per-key expiry."""

    def __init__(self, max_entries: int = 10000, clock: Callable[[], float] = time.time):
        self.max_entries = max_entries
        self.clock = clock
        self._data: OrderedDict[str, tuple[str, Optional[float]]] = OrderedDict()

    def _live(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self.clock() >= expires_at:
            del self._data[key]
            return None
        return value

    def _put(self, key: str, value: str, ttl_ms: Optional[int]) -> None:
        expires_at = self.clock() + ttl_ms / 1000 if ttl_ms else None
        self._data[key] = (value, expires_at)
        self._data.move_to_end(key)
        while len(self._data) > self.max_entries:
            self._data.popitem(last=False)

    async def set_if_absent(self, key: str, value: str, ttl_ms: Optional[int] = None) -> bool:
        # No await between the check and the put.
        if self._live(key) is not None:
            return False
        self._put(key, value, ttl_ms)
        return True

    async def get(self, key: str) -> Optional[str]:
        return self._live(key)

    async def set(self, key: str, value: str, ttl_ms: Optional[int] = None) -> None:
        self._put(key, value, ttl_ms)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def close(self) -> None:
        self._data.clear()


class RedisBridgeState:
    def __init__(self, client: redis.Redis, prefix: str = "chatbridge:"):
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str) -> "RedisBridgeState":
        return cls(redis.from_url(url, encoding="utf-8", decode_responses=True))

    async def set_if_absent(self, key: str, value: str, ttl_ms: Optional[int] = None) -> bool:
        return bool(await self.client.set(self.prefix + key, value, nx=True, px=ttl_ms or None))

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(self.prefix + key)

    async def set(self, key: str, value: str, ttl_ms: Optional[int] = None) -> None:
        await self.client.set(self.prefix + key, value, px=ttl_ms or None)

    async def delete(self, key: str) -> None:
        await self.client.delete(self.prefix + key)

    async def close(self) -> None:
        await self.client.aclose()


class DedupCooldownController:
    def __init__(
        self,
        backend: BridgeStateBackend,
        cooldown_ms: int = 5000,
        processed_ttl_seconds: int = 86400,
        clock: Callable[[], float] = time.time,
    ):
        self.backend = backend
        self.cooldown_ms = cooldown_ms
        self.processed_ttl_ms = processed_ttl_seconds * 1000
        self.clock = clock

    @staticmethod
    def _message_key(message_id: str) -> str:
        return f"msg:{message_id}"

    @staticmethod
    def _cooldown_key(conversation_id: str, destination: str) -> str:
        return f"cooldown:{destination}:{conversation_id}"

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    # Dedup

    async def is_processed(self, message_id: str) -> bool:
        return await self.backend.get(self._message_key(message_id)) is not None

    async def claim(self, message_id: str) -> bool:
        """Atomically reserve a message id. False means another pass has it."""
        return await self.backend.set_if_absent(self._message_key(message_id), PROCESSING, self.processed_ttl_ms)

    async def release(self, message_id: str) -> None:
        await self.backend.delete(self._message_key(message_id))

    async def mark_processed(self, message_id: str) -> None:
        await self.backend.set(self._message_key(message_id), PROCESSED, self.processed_ttl_ms)

    # Cooldown

    async def is_on_cooldown(
        self, conversation_id: str, cooldown_ms: Optional[int] = None, destination: str = "chatwoot"
    ) -> bool:
        last = await self.backend.get(self._cooldown_key(conversation_id, destination))
        if last is None:
            return False
        window = self.cooldown_ms if cooldown_ms is None else cooldown_ms
        return self._now_ms() - int(last) < window

    async def record_response(self, conversation_id: str, destination: str = "chatwoot") -> None:
        await self.backend.set(
            self._cooldown_key(conversation_id, destination), str(self._now_ms()), self.cooldown_ms or None
        )

    async def try_acquire_cooldown(
        self, conversation_id: str, cooldown_ms: Optional[int] = None, destination: str = "chatwoot"
    ) -> bool:
        """Open a cooldown window unless one is already open.

        Returns True when the caller may forward now. The window closes by
        key expiry, so a suppressed reply is dropped, never queued.
        """
        window = self.cooldown_ms if cooldown_ms is None else cooldown_ms
        if window <= 0:
            return True
        acquired = await self.backend.set_if_absent(
            self._cooldown_key(conversation_id, destination), str(self._now_ms()), window
        )
        if not acquired:
            logger.info(
                "AI reply suppressed by cooldown",
                extra={"context": {"conversation_id": conversation_id, "destination": destination, "cooldown_ms": window}},
            )
        return acquired

    # Echo tracking for messages the bridge itself posted to the support desk

    async def track_outgoing(self, platform_message_id: str) -> None:
        await self.backend.set(f"echo:{platform_message_id}", "1", self.processed_ttl_ms)

    async def is_own_outgoing(self, platform_message_id: str) -> bool:
        return await self.backend.get(f"echo:{platform_message_id}") is not None

    async def close(self) -> None:
        await self.backend.close()
