from __future__ import annotations

from typing import TYPE_CHECKING

from agentloop_core.errors import BackendError
from agentloop_core.logging import get_logger

from agentloop_runtime.backends.redis._pool import create_pool

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from redis.asyncio import Redis

logger = get_logger("backend.redis.state_store")

_MAX_UPDATE_ATTEMPTS = 50


class RedisStateStore:
    """Redis tier state store: Redis Strings for key-value storage.

    ``update`` is an optimistic WATCH/MULTI transaction, retried when a
    concurrent writer touches the key between read and commit.
    """

    def __init__(self, client: Redis, *, prefix: str = "agentloop:") -> None:
        self._r = client
        self._prefix = prefix

    @classmethod
    async def create(
        cls, redis_url: str, *, prefix: str = "agentloop:"
    ) -> RedisStateStore:
        client = await create_pool(redis_url)
        return cls(client, prefix=prefix)

    async def close(self) -> None:
        await self._r.aclose()

    def _key(self, key: str) -> str:
        return f"{self._prefix}state:{key}"

    async def get(self, key: str) -> bytes | None:
        value = await self._r.get(self._key(key))
        return value  # type: ignore[return-value]

    async def set(self, key: str, value: bytes) -> None:
        await self._r.set(self._key(key), value)

    async def delete(self, key: str) -> None:
        await self._r.delete(self._key(key))

    async def exists(self, key: str) -> bool:
        return bool(await self._r.exists(self._key(key)))

    async def list_keys(self, prefix: str) -> AsyncIterator[str]:
        full_prefix = self._key(prefix)
        state_prefix = f"{self._prefix}state:"
        cursor: int | bytes = 0
        while True:
            cursor, keys = await self._r.scan(
                cursor=cursor, match=f"{full_prefix}*", count=100,
            )
            for key in keys:
                decoded = key.decode() if isinstance(key, bytes) else key
                yield decoded[len(state_prefix):]
            if cursor == 0:
                break

    async def update(
        self, key: str, fn: Callable[[bytes | None], bytes | None]
    ) -> bytes | None:
        from redis.exceptions import WatchError

        rk = self._key(key)
        async with self._r.pipeline(transaction=True) as pipe:
            for attempt in range(_MAX_UPDATE_ATTEMPTS):
                try:
                    await pipe.watch(rk)
                    new = fn(await pipe.get(rk))
                    pipe.multi()
                    if new is None:
                        pipe.delete(rk)
                    else:
                        pipe.set(rk, new)
                    await pipe.execute()
                    return new
                except WatchError:
                    logger.debug(
                        "Contention on %s, retrying (attempt %d)", key, attempt + 1
                    )
        msg = f"Could not update {key!r} after {_MAX_UPDATE_ATTEMPTS} attempts"
        raise BackendError(msg)
