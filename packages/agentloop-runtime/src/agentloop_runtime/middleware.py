"""Middleware pipeline: ordered hooks around steps, tool calls and LLM calls.

Handlers are best-effort. A handler that raises is logged and skipped,
and the remaining handlers for the hook still run. The one exception is
:class:`~agentloop_core.errors.PolicyBlockError`, which always
propagates to the caller so the refusal can be turned into a blocked
outcome.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from agentloop_core.errors import PolicyBlockError
from agentloop_core.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from agentloop_runtime.runtime import ExecutionContext

    Handler = Callable[[Any, ExecutionContext], Awaitable[Any]]

logger = get_logger("runtime.middleware")


class HookKind(StrEnum):
    BEFORE_STEP = "before_step"
    AFTER_STEP = "after_step"
    BEFORE_TOOL = "before_tool"
    AFTER_TOOL = "after_tool"
    BEFORE_LLM = "before_llm"
    AFTER_LLM = "after_llm"
    ON_ERROR = "on_error"
    ON_COMPLETION = "on_completion"


@dataclass(frozen=True, slots=True)
class Middleware:
    """A handler bound to one hook.

    The handler receives the hook payload and the execution context. It
    may return a replacement payload; returning ``None`` keeps the
    current one. Lower ``order`` runs earlier.
    """

    id: str
    hook: HookKind
    handler: Handler
    order: int = 50


class MiddlewarePipeline:
    """Dispatch table from hook kind to middleware, resolved at construction."""

    def __init__(self, middleware: Iterable[Middleware] = ()) -> None:
        ordered = sorted(middleware, key=lambda m: m.order)
        table: dict[HookKind, list[Middleware]] = {kind: [] for kind in HookKind}
        for mw in ordered:
            table[mw.hook].append(mw)
        self._table: dict[HookKind, tuple[Middleware, ...]] = {
            kind: tuple(items) for kind, items in table.items()
        }

    def handlers(self, hook: HookKind) -> tuple[Middleware, ...]:
        return self._table[hook]

    @property
    def ids(self) -> list[str]:
        return [mw.id for kind in HookKind for mw in self._table[kind]]

    async def run(self, hook: HookKind, data: Any, context: ExecutionContext) -> Any:
        """Run every handler for ``hook`` in order, threading the payload."""
        for mw in self._table[hook]:
            try:
                result = await mw.handler(data, context)
            except PolicyBlockError:
                raise
            except Exception:
                logger.exception(
                    "Middleware %s failed on %s; skipping", mw.id, hook.value
                )
                continue
            if result is not None:
                data = result
        return data
