from __future__ import annotations


class AgentLoopError(Exception):
    """Base exception for all agentloop errors."""


# ── Execution Errors ─────────────────────────────────────────────────

class ExecutionError(AgentLoopError):
    """Base for graph execution errors."""


class GraphNodeNotFoundError(ExecutionError):
    """The graph references a node id that does not exist."""


class NodeExecutionError(ExecutionError):
    """A node raised while executing a step."""

    def __init__(self, node_id: str, step: int, cause: Exception) -> None:
        self.node_id = node_id
        self.step = step
        self.cause = cause
        super().__init__(f"Node '{node_id}' failed at step {step}: {cause}")


# ── Policy Blocks ────────────────────────────────────────────────────

class PolicyBlockError(AgentLoopError):
    """A middleware policy refused to let an operation proceed.

    Unlike ordinary middleware failures, policy blocks are never
    swallowed by the pipeline.
    """


class CostLimitError(PolicyBlockError):
    """Monthly spend for the agent is over its limit."""


class SafeModeBlockError(PolicyBlockError):
    """A side-effecting tool was requested while safe mode is on."""

    def __init__(self, tool_name: str, message: str | None = None) -> None:
        self.tool_name = tool_name
        super().__init__(
            message or f"Tool {tool_name!r} requires confirmation in safe mode"
        )


# ── LLM Errors ───────────────────────────────────────────────────────

class LLMError(AgentLoopError):
    """The LLM provider failed to produce a completion."""


class LLMTimeoutError(LLMError):
    """The LLM call exceeded its timeout."""


class LLMOutputParseError(LLMError):
    """LLM output did not contain the expected structured payload."""


# ── Record Errors ────────────────────────────────────────────────────

class RecordNotFoundError(AgentLoopError):
    """Base for lookups of persisted records that do not exist."""


class AgentNotFoundError(RecordNotFoundError):
    """Agent configuration not found."""


class TraceNotFoundError(RecordNotFoundError):
    """Trace not found."""


class ABTestNotFoundError(RecordNotFoundError):
    """A/B test not found."""


class ProposalNotFoundError(RecordNotFoundError):
    """Modification proposal not found."""


class PendingActionNotFoundError(RecordNotFoundError):
    """Pending confirmation action not found."""


# ── Optimization Errors ──────────────────────────────────────────────

class OptimizationError(AgentLoopError):
    """Base for optimization pipeline errors."""


class EmptyDatasetError(OptimizationError):
    """No correction feedback is available to optimize against."""


class OptimizationInProgressError(OptimizationError):
    """An optimization pass is already running for the agent."""


# ── A/B Test Errors ──────────────────────────────────────────────────

class ABTestError(AgentLoopError):
    """Base for A/B test errors."""


class ABTestStateError(ABTestError):
    """The requested transition is not valid for the test's status."""


class ABTestConflictError(ABTestError):
    """The agent already has a running A/B test."""


# ── Proposal Errors ──────────────────────────────────────────────────

class ProposalError(AgentLoopError):
    """Base for self-modification proposal errors."""


class ProposalStateError(ProposalError):
    """The proposal is not pending and cannot be reviewed."""


class PendingActionStateError(AgentLoopError):
    """The pending action has already been resolved."""


# ── Backend / Config Errors ──────────────────────────────────────────

class BackendError(AgentLoopError):
    """Error from a state store backend."""


class BackendUnavailableError(BackendError):
    """Backend is not reachable or not configured."""


class ConfigError(AgentLoopError):
    """Invalid or missing configuration."""
