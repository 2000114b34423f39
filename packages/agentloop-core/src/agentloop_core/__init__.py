"""agentloop core: shared records, config, errors, and logging."""
from __future__ import annotations

from agentloop_core._version import __version__
from agentloop_core.config import (
    ABTestConfig,
    AgentLoopConfig,
    BackendConfig,
    FeedbackConfig,
    LLMConfig,
    OptimizerConfig,
    RuntimeSettings,
    SelfModifierConfig,
)
from agentloop_core.errors import (
    ABTestConflictError,
    ABTestError,
    ABTestNotFoundError,
    ABTestStateError,
    AgentLoopError,
    AgentNotFoundError,
    BackendError,
    BackendUnavailableError,
    ConfigError,
    CostLimitError,
    EmptyDatasetError,
    ExecutionError,
    GraphNodeNotFoundError,
    LLMError,
    LLMOutputParseError,
    LLMTimeoutError,
    NodeExecutionError,
    OptimizationError,
    OptimizationInProgressError,
    PendingActionNotFoundError,
    PendingActionStateError,
    PolicyBlockError,
    ProposalError,
    ProposalNotFoundError,
    ProposalStateError,
    RecordNotFoundError,
    SafeModeBlockError,
    TraceNotFoundError,
)
from agentloop_core.logging import get_logger, setup_logging
from agentloop_core.types import (
    ABTest,
    ABTestStatus,
    AgentConfig,
    AgentInsight,
    AgentTrace,
    ConversationEvaluation,
    FeedbackRecord,
    FeedbackType,
    KnowledgeSettings,
    ModelTier,
    ModificationProposal,
    ModificationType,
    OptimizationRun,
    OptimizationStatus,
    PendingAction,
    PendingActionStatus,
    ProposalStatus,
    TraceStatus,
    Variant,
)

__all__ = [
    # Records
    "ABTest",
    # Config
    "ABTestConfig",
    # Errors
    "ABTestConflictError",
    "ABTestError",
    "ABTestNotFoundError",
    "ABTestStateError",
    "ABTestStatus",
    "AgentConfig",
    "AgentInsight",
    "AgentLoopConfig",
    "AgentLoopError",
    "AgentNotFoundError",
    "AgentTrace",
    "BackendConfig",
    "BackendError",
    "BackendUnavailableError",
    "ConfigError",
    "ConversationEvaluation",
    "CostLimitError",
    "EmptyDatasetError",
    "ExecutionError",
    "FeedbackConfig",
    "FeedbackRecord",
    "FeedbackType",
    "GraphNodeNotFoundError",
    "KnowledgeSettings",
    "LLMConfig",
    "LLMError",
    "LLMOutputParseError",
    "LLMTimeoutError",
    "ModelTier",
    "ModificationProposal",
    "ModificationType",
    "NodeExecutionError",
    "OptimizationError",
    "OptimizationInProgressError",
    "OptimizationRun",
    "OptimizationStatus",
    "OptimizerConfig",
    "PendingAction",
    "PendingActionNotFoundError",
    "PendingActionStateError",
    "PendingActionStatus",
    "PolicyBlockError",
    "ProposalError",
    "ProposalNotFoundError",
    "ProposalStateError",
    "ProposalStatus",
    "RecordNotFoundError",
    "RuntimeSettings",
    "SafeModeBlockError",
    "SelfModifierConfig",
    "TraceNotFoundError",
    "TraceStatus",
    "Variant",
    "__version__",
    # Logging
    "get_logger",
    "setup_logging",
]
