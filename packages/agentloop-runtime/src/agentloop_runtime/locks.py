"""Lease locks on top of the state store's atomic ``update``.

A lock is a JSON document ``{"owner": ..., "expires_at": ...}`` stored
under its key. Expired leases may be taken over by any contender, so a
crashed holder never wedges the lock for longer than its TTL.
"""
from __future__ import annotations

import json
import time
import uuid
from typing import TYPE_CHECKING

from agentloop_core.logging import get_logger

if TYPE_CHECKING:
    from agentloop_runtime.protocols.state_store import StateStoreAdapter

logger = get_logger("runtime.locks")


def _decode(raw: bytes | None) -> dict | None:
    if raw is None:
        return None
    return json.loads(raw)


class KeyLock:
    """Single-holder lease lock on one key.

    Usage::

        lock = KeyLock(store, "agentloop:lock:optimize:agent-1", ttl=900)
        if not await lock.acquire():
            raise OptimizationInProgressError(...)
        try:
            ...
        finally:
            await lock.release()
    """

    def __init__(
        self,
        store: StateStoreAdapter,
        key: str,
        *,
        ttl: float,
        owner: str | None = None,
    ) -> None:
        self._store = store
        self.key = key
        self._ttl = ttl
        self.owner = owner or uuid.uuid4().hex

    async def acquire(self) -> bool:
        """Take the lease if it is free, expired, or already ours."""
        now = time.time()

        def _take(raw: bytes | None) -> bytes | None:
            current = _decode(raw)
            if (
                current is not None
                and current["owner"] != self.owner
                and current["expires_at"] > now
            ):
                return raw
            return json.dumps(
                {"owner": self.owner, "expires_at": now + self._ttl}
            ).encode("utf-8")

        stored = _decode(await self._store.update(self.key, _take))
        acquired = stored is not None and stored["owner"] == self.owner
        logger.debug("Lock %s acquire by %s: %s", self.key, self.owner, acquired)
        return acquired

    async def release(self) -> None:
        """Drop the lease if this owner still holds it."""

        def _drop(raw: bytes | None) -> bytes | None:
            current = _decode(raw)
            if current is not None and current["owner"] == self.owner:
                return None
            return raw

        await self._store.update(self.key, _drop)

    async def is_held(self) -> bool:
        """Whether any owner currently holds an unexpired lease."""
        current = _decode(await self._store.get(self.key))
        return current is not None and current["expires_at"] > time.time()
