"""Per-run execution state and the payloads passed through middleware hooks."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

# ── Execution State ────────────────────────────────────────────


@dataclass(slots=True)
class ExecutionState:
    """Mutable state of one run, owned by the runtime and the executing node.

    ``current_step`` is owned by the runtime: whatever a node writes to it
    is overwritten with the runtime's own counter after each step.
    """

    conversation_id: str
    agent_id: str
    current_node_id: str = "start"
    current_step: int = 0
    max_steps: int = 10
    messages: list[dict[str, str]] = field(default_factory=list)
    tool_results: list[ToolResult] = field(default_factory=list)
    rag_context: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def last_assistant_message(self) -> str:
        for message in reversed(self.messages):
            if message.get("role") == "assistant":
                return message.get("content", "")
        return ""

    @property
    def user_messages(self) -> list[str]:
        return [
            m.get("content", "") for m in self.messages if m.get("role") == "user"
        ]


# ── Hook Payloads ──────────────────────────────────────────────


@dataclass(slots=True)
class ToolCall:
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ToolResult:
    name: str
    success: bool
    output: Any = None
    error: str | None = None
    blocked: bool = False
    latency_ms: float = 0.0


@dataclass(slots=True)
class LLMRequest:
    messages: list[dict[str, str]]
    temperature: float
    max_tokens: int


@dataclass(slots=True)
class LLMResponse:
    text: str
    tokens_in: int = 0
    tokens_out: int = 0
    cost: float = 0.0
    latency_ms: float = 0.0
    blocked_reason: str | None = None

    @property
    def blocked(self) -> bool:
        return self.blocked_reason is not None


@dataclass(slots=True)
class ErrorEvent:
    node_id: str
    step: int
    error: BaseException


# ── Results ────────────────────────────────────────────────────


class RunStatus(StrEnum):
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class ExecutionResult:
    """Outcome of a run with the runtime's final counters."""

    status: RunStatus
    final_state: ExecutionState
    total_steps: int
    latency_ms: float
    tokens_in: int = 0
    tokens_out: int = 0
    total_cost: float = 0.0
    tool_successes: int = 0
    tool_failures: int = 0
    error: str | None = None
    blocked_reason: str | None = None
    trace_id: str | None = None

    @property
    def output(self) -> str:
        return self.final_state.last_assistant_message
