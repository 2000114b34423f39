"""Built-in middleware and the standard presets.

Each factory returns a :class:`Middleware` bound to its hook. Policy
middleware (cost guard, safe mode) refuse by raising a
:class:`~agentloop_core.errors.PolicyBlockError` subclass; the others
only observe or rewrite the hook payload.
"""
from __future__ import annotations

import re
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from agentloop_core.errors import CostLimitError, SafeModeBlockError
from agentloop_core.logging import get_logger

from agentloop_runtime.middleware import HookKind, Middleware

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from agentloop_runtime.runtime import ExecutionContext
    from agentloop_runtime.state import (
        ExecutionState,
        LLMRequest,
        LLMResponse,
        ToolCall,
    )

    SpendLookup = Callable[[ExecutionContext], Awaitable[float]]

logger = get_logger("runtime.middleware.builtin")

SIDE_EFFECT_TOOLS: tuple[str, ...] = (
    "send_email",
    "create_calendar_event",
    "send_slack_message",
    "create_notion_page",
    "append_to_notion",
)

_EMAIL_RE = re.compile(r"[\w.+-]+@[\w-]+(?:\.[\w-]+)*\.\w+")
_PHONE_RE = re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b")
_INTL_PHONE_RE = re.compile(r"\+\d{1,3}[-.\s]?\(?\d{1,4}\)?[-.\s]?\d{1,4}[-.\s]?\d{1,9}\b")


def redact_pii(text: str) -> str:
    """Replace email addresses and phone numbers with placeholders."""
    text = _EMAIL_RE.sub("[EMAIL_REDACTED]", text)
    text = _INTL_PHONE_RE.sub("[PHONE_REDACTED]", text)
    return _PHONE_RE.sub("[PHONE_REDACTED]", text)


def _start_of_month() -> float:
    now = datetime.now(UTC)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0).timestamp()


async def monthly_spend(context: ExecutionContext) -> float:
    """Spend of the agent this calendar month, including the current run."""
    spent = context.runtime.total_cost
    if context.records is not None:
        traces = await context.records.list_traces(
            context.agent.agent_id, since=_start_of_month()
        )
        spent += sum(t.total_cost for t in traces if t.id != context.trace_id)
    return spent


# ── Factories ──────────────────────────────────────────────────


def tracing() -> Middleware:
    async def handler(data: LLMResponse, context: ExecutionContext) -> None:
        if context.tracer is not None and context.trace_id:
            await context.tracer.record_llm_call(context.trace_id, data)

    return Middleware("tracing", HookKind.AFTER_LLM, handler, order=1)


def cost_guard(
    monthly_limit: float = 100.0, spend: SpendLookup = monthly_spend
) -> Middleware:
    async def handler(data: LLMRequest, context: ExecutionContext) -> None:
        current = await spend(context)
        if current >= monthly_limit:
            msg = (
                f"Monthly usage limit of ${monthly_limit:.2f} exceeded "
                f"(current: ${current:.2f})"
            )
            raise CostLimitError(msg)

    return Middleware("cost_guard", HookKind.BEFORE_LLM, handler, order=0)


def context_compression(threshold: int = 20, keep_recent: int = 5) -> Middleware:
    async def handler(data: LLMRequest, context: ExecutionContext) -> LLMRequest | None:
        if len(data.messages) <= threshold:
            return None
        system = [m for m in data.messages[:1] if m.get("role") == "system"]
        body = data.messages[len(system):]
        recent = body[-keep_recent:]
        dropped = len(body) - len(recent)
        data.messages = [
            *system,
            {"role": "system", "content": f"[Previous {dropped} messages compressed]"},
            *recent,
        ]
        return data

    return Middleware("context_compression", HookKind.BEFORE_LLM, handler, order=1)


def pii_redaction() -> Middleware:
    async def handler(data: LLMResponse, context: ExecutionContext) -> LLMResponse:
        data.text = redact_pii(data.text)
        return data

    return Middleware("pii_redaction", HookKind.AFTER_LLM, handler, order=0)


def safe_mode(side_effect_tools: Iterable[str] = SIDE_EFFECT_TOOLS) -> Middleware:
    blocked = frozenset(side_effect_tools)

    async def handler(data: ToolCall, context: ExecutionContext) -> None:
        if context.agent.safe_mode and data.name in blocked:
            raise SafeModeBlockError(
                data.name,
                f"Tool {data.name} blocked by safe mode. User confirmation required.",
            )

    return Middleware("safe_mode", HookKind.BEFORE_TOOL, handler, order=0)


def step_logging() -> Middleware:
    async def handler(data: ExecutionState, context: ExecutionContext) -> None:
        logger.info(
            "[agent %s] step %d: %s",
            context.agent.agent_id, data.current_step, data.current_node_id,
        )

    return Middleware("logging", HookKind.AFTER_STEP, handler, order=100)


# ── Presets ────────────────────────────────────────────────────


def default_middleware(monthly_limit: float = 100.0) -> list[Middleware]:
    return [cost_guard(monthly_limit), tracing(), step_logging()]


def production_middleware(
    monthly_limit: float = 100.0,
    *,
    side_effect_tools: Iterable[str] = SIDE_EFFECT_TOOLS,
    compression_threshold: int = 20,
    compression_keep_recent: int = 5,
) -> list[Middleware]:
    return [
        cost_guard(monthly_limit),
        safe_mode(side_effect_tools),
        context_compression(compression_threshold, compression_keep_recent),
        pii_redaction(),
        tracing(),
        step_logging(),
    ]
