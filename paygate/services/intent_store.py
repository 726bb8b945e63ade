"""
In-flight Intent Storage and Webhook Idempotency.

The durable record of an intent belongs to the order collaborator; the core
only needs get/set by intent id. InMemoryIntentStore serves development and
tests. IntentLocks serialises the read-check-write of a single intent across
the gateway and the webhook dispatcher.
"""

import asyncio
import threading
import time
import weakref
from typing import Protocol

from paygate.models.domain import PaymentIntent


class IntentStore(Protocol):
    """Get/set capability for in-flight payment intents."""

    async def get(self, intent_id: str) -> PaymentIntent | None: ...

    async def set(self, intent: PaymentIntent) -> None: ...


class InMemoryIntentStore:
    """Process-local intent store."""

    def __init__(self) -> None:
        self._intents: dict[str, PaymentIntent] = {}

    async def get(self, intent_id: str) -> PaymentIntent | None:
        return self._intents.get(intent_id)

    async def set(self, intent: PaymentIntent) -> None:
        self._intents[intent.id] = intent

    def __len__(self) -> int:
        return len(self._intents)


class IntentLocks:
    """
    One asyncio.Lock per intent id.

    Locks are held weakly and disappear once no coroutine holds or awaits
    them, so the mapping stays bounded by the intents in flight.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def for_intent(self, intent_id: str) -> asyncio.Lock:
        lock = self._locks.get(intent_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[intent_id] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)


class IdempotencyRegistry:
    """
    At-most-once claims for webhook idempotency keys.

    claim() is a synchronous check-and-set, so two deliveries of the same
    event racing on the event loop (or on threads) cannot both win. Keys
    expire after ttl_seconds so the registry does not grow without bound;
    the TTL must exceed the providers' retry window.
    """

    def __init__(self, ttl_seconds: float = 7 * 24 * 3600, max_entries: int = 100_000) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._claims: dict[str, float] = {}
        self._lock = threading.Lock()

    def claim(self, key: str) -> bool:
        """Return True for the first caller of a key, False for every replay."""
        now = time.monotonic()
        with self._lock:
            claimed_at = self._claims.get(key)
            if claimed_at is not None and now - claimed_at < self.ttl_seconds:
                return False
            if len(self._claims) >= self.max_entries:
                self._evict_expired(now)
            self._claims[key] = now
            return True

    def release(self, key: str) -> None:
        """Forget a claim so a retried delivery can apply the event."""
        with self._lock:
            self._claims.pop(key, None)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._claims

    def _evict_expired(self, now: float) -> None:
        expired = [k for k, at in self._claims.items() if now - at >= self.ttl_seconds]
        for k in expired:
            del self._claims[k]
