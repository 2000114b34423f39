from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable


@runtime_checkable
class StateStoreAdapter(Protocol):
    """Key-value state storage shared by runtimes and optimization jobs.

    ``update`` is the only compare-and-set primitive: ``fn`` receives the
    current value (or ``None``) and returns the value to store, or ``None``
    to delete the key. No other writer to the same key interleaves between
    the read and the write. ``fn`` may be invoked more than once by
    backends that retry on contention, so it must be free of side effects.
    The stored value is returned.
    """

    async def get(self, key: str) -> bytes | None: ...
    async def set(self, key: str, value: bytes) -> None: ...
    async def delete(self, key: str) -> None: ...
    async def exists(self, key: str) -> bool: ...
    async def list_keys(self, prefix: str) -> AsyncIterator[str]: ...
    async def update(
        self, key: str, fn: Callable[[bytes | None], bytes | None]
    ) -> bytes | None: ...
