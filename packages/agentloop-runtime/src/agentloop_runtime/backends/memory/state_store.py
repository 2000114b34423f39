from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable


class InProcessStateStore:
    """Memory tier state store: a plain dict on the event loop.

    ``update`` never awaits between read and write, so it is atomic with
    respect to every other coroutine on the same loop.
    """

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}

    async def get(self, key: str) -> bytes | None:
        return self._data.get(key)

    async def set(self, key: str, value: bytes) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def exists(self, key: str) -> bool:
        return key in self._data

    async def list_keys(self, prefix: str) -> AsyncIterator[str]:
        for key in list(self._data.keys()):
            if key.startswith(prefix):
                yield key

    async def update(
        self, key: str, fn: Callable[[bytes | None], bytes | None]
    ) -> bytes | None:
        new = fn(self._data.get(key))
        if new is None:
            self._data.pop(key, None)
        else:
            self._data[key] = new
        return new
