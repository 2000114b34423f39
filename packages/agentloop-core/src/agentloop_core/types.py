from __future__ import annotations

import json
import time
import uuid
from dataclasses import asdict, dataclass, field, fields
from enum import StrEnum
from typing import Any


def new_id() -> str:
    return uuid.uuid4().hex


def _dump(obj: Any) -> str:
    return json.dumps(asdict(obj), default=str)


def _known(cls: type, raw: str | bytes) -> dict[str, Any]:
    """Decode JSON and drop keys the dataclass does not declare."""
    data = json.loads(raw)
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


# ── Agent Types ──────────────────────────────────────────────────────

class ModelTier(StrEnum):
    HAIKU = "haiku"
    SONNET = "sonnet"
    OPUS = "opus"


@dataclass(frozen=True, slots=True)
class AgentConfig:
    """Durable agent configuration.

    Instances are immutable; a run reads one instance at start and
    never observes a later write.
    """
    agent_id: str
    system_prompt: str = ""
    model: ModelTier = ModelTier.SONNET
    temperature: float = 0.7
    safe_mode: bool = True
    tools: list[str] = field(default_factory=list)
    max_steps: int = 10
    user_id: str = ""
    workspace_id: str = ""
    updated_at: float = field(default_factory=time.time)

    def to_json(self) -> str:
        return _dump(self)

    @classmethod
    def from_json(cls, raw: str | bytes) -> AgentConfig:
        data = _known(cls, raw)
        data["model"] = ModelTier(data.get("model", ModelTier.SONNET))
        return cls(**data)


@dataclass(frozen=True, slots=True)
class KnowledgeSettings:
    """Retrieval-augmentation settings attached to an agent."""
    agent_id: str
    enabled: bool = True
    similarity_threshold: float = 0.7
    max_results: int = 5
    updated_at: float = field(default_factory=time.time)

    def to_json(self) -> str:
        return _dump(self)

    @classmethod
    def from_json(cls, raw: str | bytes) -> KnowledgeSettings:
        return cls(**_known(cls, raw))


# ── Trace Types ──────────────────────────────────────────────────────

class TraceStatus(StrEnum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class AgentTrace:
    """Summary of one agent run, finalized exactly once."""
    agent_id: str
    conversation_id: str
    id: str = field(default_factory=new_id)
    user_id: str = ""
    status: TraceStatus = TraceStatus.RUNNING
    total_steps: int = 0
    tokens_in: int = 0
    tokens_out: int = 0
    total_cost: float = 0.0
    tool_successes: int = 0
    tool_failures: int = 0
    tool_calls: list[dict[str, Any]] = field(default_factory=list)
    latency_ms: float = 0.0
    feedback_score: int | None = None
    user_edited: bool = False
    edit_diff: dict[str, Any] | None = None
    input_messages: list[str] = field(default_factory=list)
    output: str = ""
    steps: list[dict[str, Any]] = field(default_factory=list)
    blocked_reason: str | None = None
    error: str | None = None
    ab_test_id: str | None = None
    variant: str | None = None
    started_at: float = field(default_factory=time.time)
    completed_at: float | None = None

    @property
    def is_final(self) -> bool:
        return self.status is not TraceStatus.RUNNING

    def to_json(self) -> str:
        return _dump(self)

    @classmethod
    def from_json(cls, raw: str | bytes) -> AgentTrace:
        data = _known(cls, raw)
        data["status"] = TraceStatus(data.get("status", "running"))
        return cls(**data)


# ── Feedback Types ───────────────────────────────────────────────────

class FeedbackType(StrEnum):
    THUMBS_UP = "thumbs_up"
    THUMBS_DOWN = "thumbs_down"
    USER_EDIT = "user_edit"
    EXPLICIT_CORRECTION = "explicit_correction"
    APPROVAL_REJECT = "approval_reject"
    RETRY_REQUEST = "retry_request"


CORRECTION_TYPES = frozenset(
    {FeedbackType.USER_EDIT, FeedbackType.EXPLICIT_CORRECTION}
)


@dataclass(frozen=True, slots=True)
class FeedbackRecord:
    """A single append-only piece of user feedback on an agent output."""
    agent_id: str
    trace_id: str
    type: FeedbackType
    conversation_id: str = ""
    user_id: str = ""
    original_output: str = ""
    user_edit: str | None = None
    correction_text: str | None = None
    step_number: int | None = None
    id: str = field(default_factory=new_id)
    timestamp: float = field(default_factory=time.time)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def corrected_output(self) -> str:
        return self.user_edit or self.correction_text or ""

    def to_json(self) -> str:
        return _dump(self)

    @classmethod
    def from_json(cls, raw: str | bytes) -> FeedbackRecord:
        data = _known(cls, raw)
        data["type"] = FeedbackType(data["type"])
        return cls(**data)


# ── A/B Test Types ───────────────────────────────────────────────────

class Variant(StrEnum):
    A = "A"
    B = "B"


class ABTestStatus(StrEnum):
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class ABTest:
    """Live traffic split between the current prompt (A) and a candidate (B)."""
    agent_id: str
    variant_a_prompt: str
    variant_b_prompt: str
    traffic_split: float = 0.2
    id: str = field(default_factory=new_id)
    variant_a_traces: int = 0
    variant_b_traces: int = 0
    variant_a_score: float = 0.0
    variant_b_score: float = 0.0
    status: ABTestStatus = ABTestStatus.RUNNING
    winning_variant: Variant | None = None
    end_reason: str | None = None
    started_at: float = field(default_factory=time.time)
    ended_at: float | None = None

    @property
    def total_traces(self) -> int:
        return self.variant_a_traces + self.variant_b_traces

    def to_json(self) -> str:
        return _dump(self)

    @classmethod
    def from_json(cls, raw: str | bytes) -> ABTest:
        data = _known(cls, raw)
        data["status"] = ABTestStatus(data.get("status", "running"))
        if data.get("winning_variant") is not None:
            data["winning_variant"] = Variant(data["winning_variant"])
        return cls(**data)


# ── Optimization Run Types ───────────────────────────────────────────

class OptimizationStatus(StrEnum):
    ANALYZING = "analyzing"
    TESTING = "testing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


ACTIVE_OPTIMIZATION_STATUSES = frozenset(
    {OptimizationStatus.ANALYZING, OptimizationStatus.TESTING}
)


@dataclass(frozen=True, slots=True)
class OptimizationRun:
    """Audit record of one pass of the optimization pipeline."""
    agent_id: str
    triggered_by: str = "accumulated_feedback"
    id: str = field(default_factory=new_id)
    status: OptimizationStatus = OptimizationStatus.ANALYZING
    dataset_size: int = 0
    edit_patterns: list[dict[str, Any]] = field(default_factory=list)
    prompt_variations: list[dict[str, Any]] = field(default_factory=list)
    test_results: list[dict[str, Any]] = field(default_factory=list)
    recommendation: str = ""
    ab_test_id: str | None = None
    error: str | None = None
    triggered_at: float = field(default_factory=time.time)
    finished_at: float | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_OPTIMIZATION_STATUSES

    def to_json(self) -> str:
        return _dump(self)

    @classmethod
    def from_json(cls, raw: str | bytes) -> OptimizationRun:
        data = _known(cls, raw)
        data["status"] = OptimizationStatus(data.get("status", "analyzing"))
        return cls(**data)


# ── Self-Modification Types ──────────────────────────────────────────

class ModificationType(StrEnum):
    PROMPT_REFINEMENT = "prompt_refinement"
    MODEL_UPGRADE = "model_upgrade"
    MODEL_DOWNGRADE = "model_downgrade"
    ADD_TOOL = "add_tool"
    REMOVE_TOOL = "remove_tool"
    ADD_RAG = "add_rag"
    ADJUST_TEMPERATURE = "adjust_temperature"


class ProposalStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    APPLIED = "applied"


@dataclass(frozen=True, slots=True)
class ModificationProposal:
    """A typed configuration change awaiting human review."""
    agent_id: str
    type: ModificationType
    current: str
    proposed: str
    rationale: str
    impact: str
    estimated_savings: float | None = None
    id: str = field(default_factory=new_id)
    status: ProposalStatus = ProposalStatus.PENDING
    created_at: float = field(default_factory=time.time)
    reviewed_at: float | None = None
    applied_at: float | None = None

    def to_json(self) -> str:
        return _dump(self)

    @classmethod
    def from_json(cls, raw: str | bytes) -> ModificationProposal:
        data = _known(cls, raw)
        data["type"] = ModificationType(data["type"])
        data["status"] = ProposalStatus(data.get("status", "pending"))
        return cls(**data)


@dataclass(frozen=True, slots=True)
class ConversationEvaluation:
    """Externally produced quality assessment of one conversation."""
    agent_id: str
    conversation_id: str
    user_satisfaction_score: float
    failure_modes: list[str] = field(default_factory=list)
    id: str = field(default_factory=new_id)
    evaluated_at: float = field(default_factory=time.time)

    def to_json(self) -> str:
        return _dump(self)

    @classmethod
    def from_json(cls, raw: str | bytes) -> ConversationEvaluation:
        return cls(**_known(cls, raw))


# ── Confirmation Types ───────────────────────────────────────────────

class PendingActionStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXECUTED = "executed"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class PendingAction:
    """A side-effecting tool call held back by safe mode."""
    agent_id: str
    trace_id: str
    tool_name: str
    tool_input: dict[str, Any] = field(default_factory=dict)
    conversation_id: str = ""
    user_id: str = ""
    id: str = field(default_factory=new_id)
    status: PendingActionStatus = PendingActionStatus.PENDING
    created_at: float = field(default_factory=time.time)
    resolved_at: float | None = None
    resolved_by: str | None = None
    result: str | None = None
    error: str | None = None

    def to_json(self) -> str:
        return _dump(self)

    @classmethod
    def from_json(cls, raw: str | bytes) -> PendingAction:
        data = _known(cls, raw)
        data["status"] = PendingActionStatus(data.get("status", "pending"))
        return cls(**data)


# ── Insight Types ────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class AgentInsight:
    """Aggregated behavioral insight report for one agent and window."""
    agent_id: str
    period_start: float
    period_end: float
    clusters: list[dict[str, Any]] = field(default_factory=list)
    patterns: list[dict[str, Any]] = field(default_factory=list)
    anomalies: list[dict[str, Any]] = field(default_factory=list)
    opportunities: list[dict[str, Any]] = field(default_factory=list)
    id: str = field(default_factory=new_id)
    generated_at: float = field(default_factory=time.time)

    def to_json(self) -> str:
        return _dump(self)

    @classmethod
    def from_json(cls, raw: str | bytes) -> AgentInsight:
        return cls(**_known(cls, raw))
