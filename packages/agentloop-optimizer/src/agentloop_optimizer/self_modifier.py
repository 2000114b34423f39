"""Self-modification: periodic health audit that proposes config changes.

Independent of the feedback-driven optimizer. An audit computes a
performance analysis over a trailing window and, unless the agent is
healthy, emits typed proposals. Nothing changes until a human approves
a proposal, and approval performs exactly one configuration write.
"""
from __future__ import annotations

import asyncio
import dataclasses
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from agentloop_core.config import SelfModifierConfig
from agentloop_core.errors import LLMError, ProposalError, ProposalStateError
from agentloop_core.logging import get_logger
from agentloop_core.types import (
    AgentConfig,
    KnowledgeSettings,
    ModelTier,
    ModificationProposal,
    ModificationType,
    ProposalStatus,
    TraceStatus,
)
from agentloop_runtime.usage import DOWNGRADE_LADDER

if TYPE_CHECKING:
    from collections.abc import Sequence

    from agentloop_core.types import AgentTrace, ConversationEvaluation, FeedbackRecord
    from agentloop_runtime.llm import LLMProvider
    from agentloop_runtime.records import RecordStore

logger = get_logger("optimizer.self_modifier")

_DAY = 86_400.0

COMPLAINT_KEYWORDS: dict[str, tuple[str, ...]] = {
    "too_verbose": ("too long", "verbose"),
    "too_brief": ("too short", "more detail"),
    "too_creative": ("creative", "unpredictable"),
    "too_robotic": ("robotic", "generic"),
    "inaccurate": ("wrong", "incorrect"),
}

HEALTHY_RECOMMENDATION = "Agent is performing well. Continue monitoring."
NO_DATA_RECOMMENDATION = "Insufficient data: no agent runs in the analysis window."
REVIEW_RECOMMENDATION = (
    "Agent is underperforming but no automatic modification applies. "
    "Review recent conversations manually."
)

COMPLAINT_GUIDELINES: dict[str, str] = {
    "too_verbose": "Keep answers short and to the point.",
    "too_brief": "Give enough detail to fully answer the question.",
    "too_creative": "Stick to known facts and predictable phrasing.",
    "too_robotic": "Use a natural, conversational tone.",
    "inaccurate": "Verify facts before answering; say so when unsure.",
}

_REFINE_PROMPT = """\
Refine this AI agent system prompt based on performance analysis.

Current System Prompt:
{prompt}

Performance Issues:
- Average satisfaction: {satisfaction:.1f}/5
- Common failures: {failures}
- User complaints: {complaints}
- Hallucination rate: {hallucination:.1f}%

Instructions:
1. Address the identified issues
2. Maintain the core agent purpose
3. Add specific guidelines to prevent failures
4. Be clear and actionable
5. Keep under 500 words

Respond with the refined system prompt ONLY, no preamble."""


@dataclass(frozen=True, slots=True)
class ToolUsageStats:
    tool_name: str
    usage_count: int
    usage_rate: float
    success_rate: float
    avg_latency_ms: float


@dataclass(frozen=True, slots=True)
class PerformanceAnalysis:
    total_conversations: int = 0
    success_rate: float = 0.0
    avg_satisfaction: float = 3.0
    avg_cost: float = 0.0
    avg_latency_ms: float = 0.0
    common_failures: list[str] = field(default_factory=list)
    tool_usage: list[ToolUsageStats] = field(default_factory=list)
    top_user_complaints: list[str] = field(default_factory=list)
    hallucination_rate: float = 0.0


@dataclass(frozen=True, slots=True)
class SelfModificationResult:
    agent_id: str
    analysis: PerformanceAnalysis
    proposals: list[ModificationProposal]
    recommendation: str


# ── Metrics ────────────────────────────────────────────────────


def common_failures(
    evaluations: list[ConversationEvaluation], ratio: float = 0.1, top: int = 5
) -> list[str]:
    """Failure modes present in at least ``ratio`` of evaluations, most frequent first."""
    counts: dict[str, int] = {}
    for evaluation in evaluations:
        for mode in evaluation.failure_modes:
            counts[mode] = counts.get(mode, 0) + 1
    recurring = [
        (mode, n) for mode, n in counts.items() if n >= len(evaluations) * ratio
    ]
    recurring.sort(key=lambda item: item[1], reverse=True)
    return [mode for mode, _ in recurring[:top]]


def tool_usage(traces: list[AgentTrace], configured: list[str]) -> list[ToolUsageStats]:
    """Per-tool usage stats; configured tools that were never called report 0%."""
    stats: dict[str, dict[str, Any]] = {
        name: {"count": 0, "success": 0, "latency": []} for name in configured
    }
    for trace in traces:
        for call in trace.tool_calls:
            entry = stats.setdefault(
                call.get("tool") or "unknown", {"count": 0, "success": 0, "latency": []}
            )
            entry["count"] += 1
            if call.get("success"):
                entry["success"] += 1
            if call.get("latency_ms"):
                entry["latency"].append(call["latency_ms"])

    total = sum(s["count"] for s in stats.values())
    return [
        ToolUsageStats(
            tool_name=name,
            usage_count=s["count"],
            usage_rate=s["count"] / max(total, 1),
            success_rate=s["success"] / max(s["count"], 1),
            avg_latency_ms=sum(s["latency"]) / len(s["latency"]) if s["latency"] else 0.0,
        )
        for name, s in stats.items()
    ]


def user_complaints(
    traces: list[AgentTrace], feedback: Sequence[FeedbackRecord] = ()
) -> list[str]:
    """Complaint categories matched by keyword in user messages and feedback text."""
    texts = [m.lower() for t in traces for m in t.input_messages]
    texts.extend((f.correction_text or "").lower() for f in feedback)
    found = []
    for category, keywords in COMPLAINT_KEYWORDS.items():
        if any(k in text for text in texts for k in keywords):
            found.append(category)
    return found


def fallback_refinement(prompt: str, analysis: PerformanceAnalysis) -> str:
    """Current prompt plus guidelines targeting the observed failures."""
    guidelines = [f"Avoid this failure mode: {mode}." for mode in analysis.common_failures]
    guidelines.extend(
        COMPLAINT_GUIDELINES[c]
        for c in analysis.top_user_complaints
        if c in COMPLAINT_GUIDELINES
    )
    if analysis.hallucination_rate > 0:
        guidelines.append("Only state facts you can support; never invent details.")
    if not guidelines:
        guidelines.append("Answer the user's actual question accurately and helpfully.")
    lines = "\n".join(f"- {g}" for g in guidelines)
    return f"{prompt.rstrip()}\n\nGuidelines:\n{lines}".lstrip()


def is_performing_well(analysis: PerformanceAnalysis, config: SelfModifierConfig) -> bool:
    return (
        analysis.avg_satisfaction >= config.healthy_satisfaction
        and analysis.success_rate >= config.healthy_success_rate
        and analysis.hallucination_rate < config.hallucination_threshold
        and not analysis.common_failures
    )


class SelfModifier:
    """Audits an agent and manages the lifecycle of its modification proposals.

    Usage::

        modifier = SelfModifier(records, llm)
        result = await modifier.propose_modifications("support")
        for proposal in result.proposals:
            await modifier.apply_modification(proposal.id, approved=True)
    """

    def __init__(
        self,
        records: RecordStore,
        llm: LLMProvider | None = None,
        config: SelfModifierConfig | None = None,
    ) -> None:
        self._records = records
        self._llm = llm
        self._config = config or SelfModifierConfig()

    async def analyze_performance(
        self, agent_id: str, days: int | None = None
    ) -> PerformanceAnalysis:
        window = days if days is not None else self._config.window_days
        since = time.time() - window * _DAY
        traces = await self._records.list_traces(agent_id, since=since)
        if not traces:
            return PerformanceAnalysis()

        agent = await self._records.get_agent(agent_id)
        evaluations = await self._records.list_evaluations(agent_id, since=since)
        feedback = await self._records.list_feedback(agent_id, since=since)

        n = len(traces)
        completed = sum(1 for t in traces if t.status is TraceStatus.COMPLETED)
        hallucinations = sum(
            1 for e in evaluations if "hallucination" in e.failure_modes
        )
        return PerformanceAnalysis(
            total_conversations=n,
            success_rate=completed / n,
            avg_satisfaction=(
                sum(e.user_satisfaction_score for e in evaluations) / len(evaluations)
                if evaluations
                else 3.0
            ),
            avg_cost=sum(t.total_cost for t in traces) / n,
            avg_latency_ms=sum(t.latency_ms for t in traces) / n,
            common_failures=common_failures(
                evaluations, self._config.common_failure_ratio
            ),
            tool_usage=tool_usage(traces, agent.tools),
            top_user_complaints=user_complaints(traces, feedback),
            hallucination_rate=hallucinations / max(len(evaluations), 1),
        )

    async def propose_modifications(self, agent_id: str) -> SelfModificationResult:
        """Audit the agent and persist a pending proposal per triggered rule.

        Raises:
            AgentNotFoundError: If the agent does not exist.
            ProposalError: If the audit exceeds its timeout.
        """
        logger.info("Analyzing agent %s", agent_id)
        try:
            async with asyncio.timeout(self._config.pass_timeout_seconds):
                return await self._propose(agent_id)
        except TimeoutError as exc:
            msg = f"Self-modification audit for agent {agent_id!r} timed out"
            raise ProposalError(msg) from exc

    async def _propose(self, agent_id: str) -> SelfModificationResult:
        agent = await self._records.get_agent(agent_id)
        analysis = await self.analyze_performance(agent_id)
        if analysis.total_conversations == 0:
            return SelfModificationResult(agent_id, analysis, [], NO_DATA_RECOMMENDATION)
        if is_performing_well(analysis, self._config):
            logger.info("Agent %s performing well, no modifications needed", agent_id)
            return SelfModificationResult(agent_id, analysis, [], HEALTHY_RECOMMENDATION)

        proposals = await self._generate(agent, analysis)
        for proposal in proposals:
            await self._records.save_proposal(proposal)
        logger.info(
            "Generated %d modification proposal(s) for agent %s", len(proposals), agent_id
        )
        return SelfModificationResult(
            agent_id, analysis, proposals, self._recommendation(proposals)
        )

    async def _generate(
        self, agent: AgentConfig, analysis: PerformanceAnalysis
    ) -> list[ModificationProposal]:
        cfg = self._config
        proposals: list[ModificationProposal] = []

        def _new(type_: ModificationType, **kwargs: Any) -> None:
            proposals.append(
                ModificationProposal(agent_id=agent.agent_id, type=type_, **kwargs)
            )

        if analysis.avg_satisfaction < cfg.refine_below_satisfaction:
            refined = await self._refine_prompt(
                agent.system_prompt, analysis
            ) or fallback_refinement(agent.system_prompt, analysis)
            _new(
                ModificationType.PROMPT_REFINEMENT,
                current=agent.system_prompt,
                proposed=refined,
                rationale=(
                    f"Current satisfaction: {analysis.avg_satisfaction:.1f}/5. "
                    "Refined prompt addresses: "
                    f"{', '.join(analysis.common_failures) or 'low satisfaction'}"
                ),
                impact="Improve user satisfaction by addressing common failure modes",
            )

        cheaper = DOWNGRADE_LADDER.get(agent.model)
        if (
            cheaper is not None
            and analysis.avg_satisfaction > cfg.downgrade_above_satisfaction
            and analysis.avg_cost > cfg.downgrade_cost_threshold
        ):
            _new(
                ModificationType.MODEL_DOWNGRADE,
                current=agent.model.value,
                proposed=cheaper.value,
                rationale=(
                    f"High satisfaction ({analysis.avg_satisfaction:.1f}/5) with "
                    f"expensive model (${analysis.avg_cost:.3f}/conversation). "
                    "Cheaper model may suffice."
                ),
                impact=(
                    "Reduce cost by ~70% (estimated "
                    f"${analysis.avg_cost * 0.3:.3f}/conversation)"
                ),
                estimated_savings=analysis.avg_cost * 0.7 * analysis.total_conversations,
            )

        underused = {
            t.tool_name for t in analysis.tool_usage if t.usage_rate < cfg.tool_usage_floor
        } & set(agent.tools)
        if underused and len(agent.tools) > cfg.min_tools_for_removal:
            _new(
                ModificationType.REMOVE_TOOL,
                current=", ".join(agent.tools),
                proposed=", ".join(t for t in agent.tools if t not in underused),
                rationale=(
                    f"These tools are rarely used (<{cfg.tool_usage_floor:.0%}): "
                    f"{', '.join(sorted(underused))}"
                ),
                impact="Reduce complexity and prompt size",
            )

        if analysis.hallucination_rate > cfg.hallucination_threshold:
            _new(
                ModificationType.ADD_RAG,
                current="No knowledge base",
                proposed="Connect to knowledge base with similarityThreshold=0.7",
                rationale=(
                    f"{analysis.hallucination_rate * 100:.1f}% of conversations show "
                    "hallucination markers. RAG can ground responses in facts."
                ),
                impact="Improve accuracy and reduce hallucinations",
            )

        if (
            "too_creative" in analysis.top_user_complaints
            and agent.temperature > cfg.temperature_ceiling
        ):
            lowered = max(cfg.temperature_floor, agent.temperature - cfg.temperature_step)
            _new(
                ModificationType.ADJUST_TEMPERATURE,
                current=str(agent.temperature),
                proposed=str(round(lowered, 2)),
                rationale=(
                    "Users report outputs are too creative/unpredictable. "
                    "Lower temperature for more consistency."
                ),
                impact="More consistent, factual outputs",
            )
        return proposals

    async def _refine_prompt(
        self, current_prompt: str, analysis: PerformanceAnalysis
    ) -> str | None:
        if self._llm is None:
            return None
        prompt = _REFINE_PROMPT.format(
            prompt=current_prompt,
            satisfaction=analysis.avg_satisfaction,
            failures=", ".join(analysis.common_failures),
            complaints=", ".join(analysis.top_user_complaints),
            hallucination=analysis.hallucination_rate * 100,
        )
        try:
            text = await self._llm.complete(prompt, max_tokens=2000, temperature=0.5)
        except LLMError as exc:
            logger.warning("Prompt refinement failed, skipping proposal: %s", exc)
            return None
        return text.strip() or None

    @staticmethod
    def _recommendation(proposals: list[ModificationProposal]) -> str:
        if not proposals:
            return REVIEW_RECOMMENDATION
        priority = proposals[:2]
        return (
            f"Review and approve {len(proposals)} proposed modification(s). "
            f"Priority actions: {', '.join(p.type.value for p in priority)}. "
            f"Expected impact: {'; '.join(p.impact for p in priority)}."
        )

    # ── Review ─────────────────────────────────────────────────

    async def apply_modification(
        self, proposal_id: str, approved: bool
    ) -> ModificationProposal:
        """Reject, or approve and apply, a pending proposal.

        Raises:
            ProposalNotFoundError: If the proposal does not exist.
            ProposalStateError: If the proposal is no longer pending.
        """
        target = ProposalStatus.APPROVED if approved else ProposalStatus.REJECTED

        def _review(p: ModificationProposal) -> ModificationProposal:
            if p.status is not ProposalStatus.PENDING:
                msg = f"Proposal {proposal_id!r} is {p.status.value}, not pending"
                raise ProposalStateError(msg)
            return dataclasses.replace(p, status=target, reviewed_at=time.time())

        proposal = await self._records.update_proposal(proposal_id, _review)
        if not approved:
            logger.info("Proposal %s rejected", proposal_id)
            return proposal

        logger.info("Applying %s modification %s", proposal.type.value, proposal_id)
        await self._apply(proposal)

        def _applied(p: ModificationProposal) -> ModificationProposal:
            return dataclasses.replace(
                p, status=ProposalStatus.APPLIED, applied_at=time.time()
            )

        return await self._records.update_proposal(proposal_id, _applied)

    async def _apply(self, proposal: ModificationProposal) -> None:
        agent_id = proposal.agent_id
        kind = proposal.type
        if kind is ModificationType.ADD_RAG:
            existing = await self._records.get_knowledge_settings(agent_id)
            base = existing or KnowledgeSettings(agent_id=agent_id)
            await self._records.save_knowledge_settings(
                dataclasses.replace(
                    base, enabled=True, similarity_threshold=0.7, updated_at=time.time()
                )
            )
            return

        if kind is ModificationType.PROMPT_REFINEMENT:
            changes: dict[str, Any] = {"system_prompt": proposal.proposed}
        elif kind in (ModificationType.MODEL_DOWNGRADE, ModificationType.MODEL_UPGRADE):
            changes = {"model": ModelTier(proposal.proposed)}
        elif kind is ModificationType.ADJUST_TEMPERATURE:
            changes = {"temperature": float(proposal.proposed)}
        else:
            tools = [t.strip() for t in proposal.proposed.split(",") if t.strip()]
            changes = {"tools": tools}

        def _write(agent: AgentConfig) -> AgentConfig:
            return dataclasses.replace(agent, **changes, updated_at=time.time())

        await self._records.update_agent(agent_id, _write)

    async def get_proposals(
        self, agent_id: str, status: ProposalStatus | None = None
    ) -> list[ModificationProposal]:
        proposals = await self._records.list_proposals(agent_id)
        if status is not None:
            proposals = [p for p in proposals if p.status is status]
        return proposals
