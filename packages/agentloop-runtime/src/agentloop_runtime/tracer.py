"""Run tracing.

A trace is opened when a run starts and finalized exactly once when it
ends. Only ``start_trace`` may raise; every later tracing call is
best-effort and logs failures instead of interrupting execution.
"""
from __future__ import annotations

import dataclasses
import time
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from agentloop_core.logging import get_logger
from agentloop_core.types import AgentTrace, TraceStatus

if TYPE_CHECKING:
    from agentloop_core.types import AgentConfig

    from agentloop_runtime.records import RecordStore
    from agentloop_runtime.state import (
        ExecutionResult,
        ExecutionState,
        LLMResponse,
        ToolResult,
    )

logger = get_logger("runtime.tracer")


@runtime_checkable
class Tracer(Protocol):
    async def start_trace(
        self,
        agent: AgentConfig,
        state: ExecutionState,
        *,
        ab_test_id: str | None = None,
        variant: str | None = None,
    ) -> str: ...

    async def record_step(
        self, trace_id: str, step: int, node_id: str, duration_ms: float
    ) -> None: ...

    async def record_llm_call(self, trace_id: str, response: LLMResponse) -> None: ...

    async def record_tool_call(self, trace_id: str, result: ToolResult) -> None: ...

    async def complete_trace(self, trace_id: str, result: ExecutionResult) -> None: ...

    async def fail_trace(self, trace_id: str, result: ExecutionResult) -> None: ...


class NullTracer:
    """Tracer that records nothing."""

    async def start_trace(self, agent, state, *, ab_test_id=None, variant=None) -> str:
        return ""

    async def record_step(self, trace_id, step, node_id, duration_ms) -> None:
        return None

    async def record_llm_call(self, trace_id, response) -> None:
        return None

    async def record_tool_call(self, trace_id, result) -> None:
        return None

    async def complete_trace(self, trace_id, result) -> None:
        return None

    async def fail_trace(self, trace_id, result) -> None:
        return None


class StoreTracer:
    """Tracer persisting :class:`AgentTrace` records through a RecordStore."""

    def __init__(self, records: RecordStore) -> None:
        self._records = records
        self._agents: dict[str, str] = {}

    async def start_trace(
        self,
        agent: AgentConfig,
        state: ExecutionState,
        *,
        ab_test_id: str | None = None,
        variant: str | None = None,
    ) -> str:
        trace = AgentTrace(
            agent_id=agent.agent_id,
            conversation_id=state.conversation_id,
            user_id=agent.user_id,
            input_messages=state.user_messages,
            ab_test_id=ab_test_id,
            variant=variant,
        )
        await self._records.save_trace(trace)
        self._agents[trace.id] = agent.agent_id
        logger.debug("Started trace %s for agent %s", trace.id, agent.agent_id)
        return trace.id

    async def _mutate(self, trace_id: str, what: str, fn) -> AgentTrace | None:
        agent_id = self._agents.get(trace_id)
        if agent_id is None:
            logger.warning("Cannot %s: unknown trace %s", what, trace_id)
            return None
        try:
            return await self._records.update_trace(agent_id, trace_id, fn)
        except Exception:
            logger.warning("Failed to %s for trace %s", what, trace_id, exc_info=True)
            return None

    async def record_step(
        self, trace_id: str, step: int, node_id: str, duration_ms: float
    ) -> None:
        entry = {"step": step, "node_id": node_id, "duration_ms": duration_ms}

        def _append(trace: AgentTrace) -> AgentTrace:
            if trace.is_final:
                return trace
            return dataclasses.replace(
                trace, steps=[*trace.steps, entry], total_steps=step + 1
            )

        await self._mutate(trace_id, "record step", _append)

    async def record_llm_call(self, trace_id: str, response: LLMResponse) -> None:
        def _add(trace: AgentTrace) -> AgentTrace:
            if trace.is_final:
                return trace
            return dataclasses.replace(
                trace,
                tokens_in=trace.tokens_in + response.tokens_in,
                tokens_out=trace.tokens_out + response.tokens_out,
                total_cost=trace.total_cost + response.cost,
            )

        await self._mutate(trace_id, "record LLM call", _add)

    async def record_tool_call(self, trace_id: str, result: ToolResult) -> None:
        entry = {
            "tool": result.name,
            "success": result.success,
            "blocked": result.blocked,
            "latency_ms": result.latency_ms,
            "error": result.error,
        }

        def _add(trace: AgentTrace) -> AgentTrace:
            if trace.is_final:
                return trace
            return dataclasses.replace(
                trace,
                tool_calls=[*trace.tool_calls, entry],
                tool_successes=trace.tool_successes + (1 if result.success else 0),
                tool_failures=trace.tool_failures + (0 if result.success else 1),
            )

        await self._mutate(trace_id, "record tool call", _add)

    async def _finalize(
        self, trace_id: str, status: TraceStatus, result: ExecutionResult
    ) -> None:
        finished_at = time.time()

        def _close(trace: AgentTrace) -> AgentTrace:
            if trace.is_final:
                return trace
            return dataclasses.replace(
                trace,
                status=status,
                total_steps=result.total_steps,
                tokens_in=result.tokens_in,
                tokens_out=result.tokens_out,
                total_cost=result.total_cost,
                tool_successes=result.tool_successes,
                tool_failures=result.tool_failures,
                latency_ms=result.latency_ms,
                output=result.output,
                blocked_reason=result.blocked_reason,
                error=result.error,
                completed_at=finished_at,
            )

        trace = await self._mutate(trace_id, "finalize", _close)
        if trace is not None and trace.completed_at != finished_at:
            logger.warning("Trace %s was already finalized", trace_id)
        self._agents.pop(trace_id, None)

    async def complete_trace(self, trace_id: str, result: ExecutionResult) -> None:
        await self._finalize(trace_id, TraceStatus.COMPLETED, result)

    async def fail_trace(self, trace_id: str, result: ExecutionResult) -> None:
        await self._finalize(trace_id, TraceStatus.FAILED, result)
