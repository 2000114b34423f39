"""Agent runtime: steps an execution graph under the middleware pipeline.

Stepping loop, per iteration while the current node is not ``end`` and
the step budget is not exhausted:

1. ``before_step`` hooks
2. look up and execute the current node
3. ``after_step`` hooks
4. pick the next node (first matching edge, else ``end``)
5. advance the runtime-owned step counter

A node that raises ends the run as *failed* after ``on_error`` hooks.
A policy block that escapes a node ends it as *blocked*. A normal exit
runs ``on_completion`` hooks and ends it as *completed*, or as *blocked*
when one of those hooks raises a policy block. The trace is finalized
either way.
"""
from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any

from agentloop_core.errors import (
    NodeExecutionError,
    PolicyBlockError,
    SafeModeBlockError,
)
from agentloop_core.logging import get_logger
from agentloop_core.types import PendingAction

from agentloop_runtime.graph import END_NODE
from agentloop_runtime.middleware import HookKind, MiddlewarePipeline
from agentloop_runtime.state import (
    ErrorEvent,
    ExecutionResult,
    ExecutionState,
    LLMRequest,
    LLMResponse,
    RunStatus,
    ToolCall,
    ToolResult,
)
from agentloop_runtime.usage import estimate_cost, estimate_tokens

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from agentloop_core.types import AgentConfig

    from agentloop_runtime.graph import ExecutionGraph
    from agentloop_runtime.llm import LLMProvider
    from agentloop_runtime.records import RecordStore
    from agentloop_runtime.tracer import Tracer

    ToolFn = Callable[[dict[str, Any]], Awaitable[Any]]

logger = get_logger("runtime.runtime")


def render_prompt(messages: list[dict[str, str]]) -> str:
    """Flatten chat messages into a single completion prompt."""
    return "\n\n".join(
        f"{m.get('role', 'user').upper()}: {m.get('content', '')}" for m in messages
    )


class ExecutionContext:
    """Handle given to nodes and middleware for one run.

    Nodes reach the model and tools only through :meth:`invoke_llm` and
    :meth:`invoke_tool`, which run the matching hooks and keep the
    runtime's usage counters current.
    """

    def __init__(
        self,
        runtime: AgentRuntime,
        state: ExecutionState,
        *,
        trace_id: str | None = None,
    ) -> None:
        self.runtime = runtime
        self.agent: AgentConfig = runtime.config
        self.state = state
        self.trace_id = trace_id

    @property
    def tracer(self) -> Tracer | None:
        return self.runtime.tracer

    @property
    def records(self) -> RecordStore | None:
        return self.runtime.records

    async def invoke_llm(
        self,
        messages: list[dict[str, str]],
        *,
        max_tokens: int = 2000,
    ) -> LLMResponse:
        """Call the model; policy blocks come back as a blocked response."""
        runtime = self.runtime
        if runtime.llm is None:
            msg = "Runtime has no LLM provider"
            raise RuntimeError(msg)

        request = LLMRequest(
            messages=list(messages),
            temperature=self.agent.temperature,
            max_tokens=max_tokens,
        )
        try:
            request = await runtime.middleware.run(HookKind.BEFORE_LLM, request, self)
        except PolicyBlockError as exc:
            logger.info("LLM call blocked for agent %s: %s", self.agent.agent_id, exc)
            return LLMResponse(text="", blocked_reason=str(exc))

        prompt = render_prompt(request.messages)
        started = time.perf_counter()
        text = await runtime.llm.complete(
            prompt, max_tokens=request.max_tokens, temperature=request.temperature
        )
        tokens_in = estimate_tokens(prompt)
        tokens_out = estimate_tokens(text)
        response = LLMResponse(
            text=text,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            cost=estimate_cost(self.agent.model, tokens_in, tokens_out),
            latency_ms=(time.perf_counter() - started) * 1000,
        )
        runtime.update_token_usage(response.tokens_in, response.tokens_out, response.cost)
        try:
            response = await runtime.middleware.run(HookKind.AFTER_LLM, response, self)
        except PolicyBlockError as exc:
            return LLMResponse(text="", blocked_reason=str(exc))
        return response

    async def invoke_tool(self, name: str, tool_input: dict[str, Any]) -> ToolResult:
        """Call a tool; policy blocks come back as a declined result."""
        runtime = self.runtime
        call = ToolCall(name=name, input=dict(tool_input))
        try:
            call = await runtime.middleware.run(HookKind.BEFORE_TOOL, call, self)
        except PolicyBlockError as exc:
            result = ToolResult(name=name, success=False, error=str(exc), blocked=True)
            if isinstance(exc, SafeModeBlockError):
                await self._hold_for_confirmation(call)
            await self._record_tool(result)
            return result

        tool = runtime.tools.get(call.name)
        if tool is None or call.name not in self.agent.tools:
            result = ToolResult(
                name=call.name, success=False, error=f"Unknown tool: {call.name}"
            )
        else:
            started = time.perf_counter()
            try:
                output = await tool(call.input)
                result = ToolResult(name=call.name, success=True, output=output)
            except Exception as exc:
                logger.warning("Tool %s failed: %s", call.name, exc)
                result = ToolResult(name=call.name, success=False, error=str(exc))
            result.latency_ms = (time.perf_counter() - started) * 1000

        runtime.update_tool_usage(success=result.success)
        try:
            result = await runtime.middleware.run(HookKind.AFTER_TOOL, result, self)
        except PolicyBlockError as exc:
            logger.info("after_tool hook blocked %s: %s", call.name, exc)
        await self._record_tool(result)
        return result

    async def _record_tool(self, result: ToolResult) -> None:
        if self.tracer is not None and self.trace_id:
            await self.tracer.record_tool_call(self.trace_id, result)

    async def _hold_for_confirmation(self, call: ToolCall) -> None:
        if self.records is None:
            return
        action = PendingAction(
            agent_id=self.agent.agent_id,
            trace_id=self.trace_id or "",
            tool_name=call.name,
            tool_input=call.input,
            conversation_id=self.state.conversation_id,
            user_id=self.agent.user_id,
        )
        await self.records.save_pending_action(action)
        self.state.metadata.setdefault("pending_actions", []).append(action.id)
        logger.info(
            "Held %s for confirmation as pending action %s", call.name, action.id
        )


class AgentRuntime:
    """Executes one agent's graph for one conversation at a time.

    Usage::

        runtime = AgentRuntime(config, graph, MiddlewarePipeline(default_middleware()),
                               llm=provider, tracer=StoreTracer(records))
        result = await runtime.execute(ExecutionState(conversation_id="c1",
                                                      agent_id=config.agent_id))
    """

    def __init__(
        self,
        config: AgentConfig,
        graph: ExecutionGraph,
        middleware: MiddlewarePipeline | None = None,
        *,
        llm: LLMProvider | None = None,
        tracer: Tracer | None = None,
        records: RecordStore | None = None,
        tools: Mapping[str, ToolFn] | None = None,
    ) -> None:
        self.config = config
        self.graph = graph
        self.middleware = middleware or MiddlewarePipeline()
        self.llm = llm
        self.tracer = tracer
        self.records = records
        self.tools: dict[str, ToolFn] = dict(tools or {})
        self._reset_counters()

    def _reset_counters(self) -> None:
        self.tokens_in = 0
        self.tokens_out = 0
        self.total_cost = 0.0
        self.tool_successes = 0
        self.tool_failures = 0

    def update_token_usage(self, tokens_in: int, tokens_out: int, cost: float) -> None:
        self.tokens_in += tokens_in
        self.tokens_out += tokens_out
        self.total_cost += cost

    def update_tool_usage(self, *, success: bool) -> None:
        if success:
            self.tool_successes += 1
        else:
            self.tool_failures += 1

    async def execute(
        self,
        initial_state: ExecutionState,
        *,
        timeout: float | None = None,
        ab_test_id: str | None = None,
        variant: str | None = None,
    ) -> ExecutionResult:
        self._reset_counters()
        state = initial_state
        started = time.perf_counter()

        trace_id: str | None = None
        if self.tracer is not None:
            trace_id = await self.tracer.start_trace(
                self.config, state, ab_test_id=ab_test_id, variant=variant
            )
        context = ExecutionContext(self, state, trace_id=trace_id)
        logger.info(
            "Run started: agent=%s conversation=%s",
            self.config.agent_id, state.conversation_id,
        )

        try:
            async with asyncio.timeout(timeout):
                status, error = await self._run_loop(context)
        except TimeoutError:
            status, error = RunStatus.TIMEOUT, f"Run exceeded {timeout}s"
        except asyncio.CancelledError:
            result = self._build_result(
                RunStatus.CANCELLED, context, started, "cancelled", trace_id
            )
            await self._finish_trace(result)
            raise

        result = self._build_result(status, context, started, error, trace_id)
        try:
            if status is RunStatus.COMPLETED:
                result = await self._complete(result, context)
        finally:
            await self._finish_trace(result)
        logger.info(
            "Run finished: agent=%s status=%s steps=%d",
            self.config.agent_id, result.status.value, result.total_steps,
        )
        return result

    async def _run_loop(self, context: ExecutionContext) -> tuple[RunStatus, str | None]:
        step = context.state.current_step
        max_steps = context.state.max_steps
        node_id = context.state.current_node_id
        try:
            while context.state.current_node_id != END_NODE and step < max_steps:
                node_id = context.state.current_node_id
                step_started = time.perf_counter()

                context.state = await self.middleware.run(
                    HookKind.BEFORE_STEP, context.state, context
                )
                node = self.graph.get_node(node_id)
                try:
                    state = await node.execute(context.state, context)
                except PolicyBlockError:
                    raise
                except Exception as exc:
                    raise NodeExecutionError(node_id, step, exc) from exc
                context.state = state
                context.state = await self.middleware.run(
                    HookKind.AFTER_STEP, context.state, context
                )

                context.state.current_node_id = self.graph.next_node(
                    node_id, context.state
                )
                step += 1
                context.state.current_step = step

                if self.tracer is not None and context.trace_id:
                    await self.tracer.record_step(
                        context.trace_id, step - 1, node_id,
                        (time.perf_counter() - step_started) * 1000,
                    )
        except PolicyBlockError as exc:
            logger.info("Run blocked at node %s: %s", node_id, exc)
            context.state.metadata["blocked_reason"] = str(exc)
            return RunStatus.BLOCKED, None
        except NodeExecutionError as exc:
            return await self._fail(context, exc.node_id, exc.step, exc.cause)
        except Exception as exc:
            return await self._fail(context, node_id, step, exc)

        if context.state.metadata.get("blocked_reason"):
            return RunStatus.BLOCKED, None
        return RunStatus.COMPLETED, None

    async def _fail(
        self, context: ExecutionContext, node_id: str, step: int, exc: Exception
    ) -> tuple[RunStatus, str | None]:
        logger.warning("Node %s failed at step %d: %s", node_id, step, exc)
        event = ErrorEvent(node_id=node_id, step=step, error=exc)
        try:
            await self.middleware.run(HookKind.ON_ERROR, event, context)
        except PolicyBlockError as block:
            logger.info("Policy block in on_error hook ignored: %s", block)
        return RunStatus.FAILED, f"{type(exc).__name__}: {exc}"

    async def _complete(
        self, result: ExecutionResult, context: ExecutionContext
    ) -> ExecutionResult:
        """Run ``on_completion`` hooks; a policy block there marks the run blocked."""
        try:
            return await self.middleware.run(HookKind.ON_COMPLETION, result, context)
        except PolicyBlockError as exc:
            logger.info("Run blocked on completion: %s", exc)
            context.state.metadata["blocked_reason"] = str(exc)
            result.status = RunStatus.BLOCKED
            result.blocked_reason = str(exc)
            return result

    def _build_result(
        self,
        status: RunStatus,
        context: ExecutionContext,
        started: float,
        error: str | None,
        trace_id: str | None,
    ) -> ExecutionResult:
        return ExecutionResult(
            status=status,
            final_state=context.state,
            total_steps=context.state.current_step,
            latency_ms=(time.perf_counter() - started) * 1000,
            tokens_in=self.tokens_in,
            tokens_out=self.tokens_out,
            total_cost=self.total_cost,
            tool_successes=self.tool_successes,
            tool_failures=self.tool_failures,
            error=error,
            blocked_reason=context.state.metadata.get("blocked_reason"),
            trace_id=trace_id,
        )

    async def _finish_trace(self, result: ExecutionResult) -> None:
        if self.tracer is None or not result.trace_id:
            return
        if result.status in (RunStatus.COMPLETED, RunStatus.BLOCKED):
            await self.tracer.complete_trace(result.trace_id, result)
        else:
            await self.tracer.fail_trace(result.trace_id, result)

