"""Reasoning node for the standard ReAct-style agent loop."""
from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from agentloop_core.logging import get_logger

from agentloop_runtime.graph import NodeKind

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from agentloop_runtime.runtime import ExecutionContext
    from agentloop_runtime.state import ExecutionState

    Retriever = Callable[[str, str], Awaitable[list[str]]]

logger = get_logger("runtime.nodes")


def parse_tool_request(text: str) -> tuple[str, dict[str, Any]] | None:
    """Detect a ``{"tool": ..., "input": {...}}`` request in model output."""
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        payload = json.loads(text[start : end + 1])
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict) or not isinstance(payload.get("tool"), str):
        return None
    tool_input = payload.get("input") or {}
    if not isinstance(tool_input, dict):
        return None
    return payload["tool"], tool_input


class ReasoningNode:
    """One LLM turn: answer directly or request a single tool call.

    The model is told which tools it may use and that a tool request is a
    JSON object ``{"tool": name, "input": {...}}``. Anything else is
    treated as the final answer and marks the state done. A blocked LLM
    call or a tool held for confirmation also ends the loop, with the
    reason kept in ``state.metadata["blocked_reason"]``.

    ``retriever`` is an optional knowledge-base lookup called once, on the
    first turn, with ``(agent_id, latest user message)``.
    """

    kind = NodeKind.REASONING

    def __init__(
        self,
        node_id: str = "reasoning",
        *,
        retriever: Retriever | None = None,
        max_tokens: int = 2000,
    ) -> None:
        self.id = node_id
        self._retriever = retriever
        self._max_tokens = max_tokens

    def _system_message(self, context: ExecutionContext, state: ExecutionState) -> str:
        parts = [context.agent.system_prompt or "You are a helpful assistant."]
        if context.agent.tools:
            parts.append(
                "Available tools: " + ", ".join(context.agent.tools) + ". "
                'To use one, reply only with JSON: {"tool": "<name>", "input": {...}}.'
            )
        if state.rag_context:
            parts.append("Relevant knowledge:\n" + "\n---\n".join(state.rag_context))
        return "\n\n".join(parts)

    async def execute(
        self, state: ExecutionState, context: ExecutionContext
    ) -> ExecutionState:
        if self._retriever is not None and not state.rag_context and state.user_messages:
            state.rag_context = await self._retriever(
                state.agent_id, state.user_messages[-1]
            )

        messages = [
            {"role": "system", "content": self._system_message(context, state)},
            *state.messages,
        ]
        response = await context.invoke_llm(messages, max_tokens=self._max_tokens)
        if response.blocked:
            state.metadata["blocked_reason"] = response.blocked_reason
            state.metadata["done"] = True
            return state

        request = parse_tool_request(response.text)
        if request is None or request[0] not in context.agent.tools:
            state.messages.append({"role": "assistant", "content": response.text})
            state.metadata["done"] = True
            return state

        name, tool_input = request
        logger.debug("Step %d requested tool %s", state.current_step, name)
        result = await context.invoke_tool(name, tool_input)
        state.tool_results.append(result)
        if result.blocked:
            state.metadata["blocked_reason"] = result.error
            state.metadata["done"] = True
            return state

        observation = result.output if result.success else f"ERROR: {result.error}"
        state.messages.append({"role": "assistant", "content": response.text})
        state.messages.append(
            {"role": "tool", "content": f"{name} returned: {observation}"}
        )
        return state
