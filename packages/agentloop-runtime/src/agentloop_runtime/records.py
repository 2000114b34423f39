"""Typed record repository over the key-value state store.

Every record kind is stored as one JSON document per key. Keys are
namespaced so that listing by prefix yields all records of a kind (and,
where the agent id is part of the key, all records of one agent).
Read-modify-write paths go through ``StateStoreAdapter.update`` so
concurrent writers to the same record never lose updates.
"""
from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, TypeVar

from agentloop_core.errors import (
    ABTestNotFoundError,
    AgentNotFoundError,
    PendingActionNotFoundError,
    ProposalNotFoundError,
    RecordNotFoundError,
    TraceNotFoundError,
)
from agentloop_core.logging import get_logger
from agentloop_core.types import (
    ABTest,
    AgentConfig,
    AgentInsight,
    AgentTrace,
    ConversationEvaluation,
    FeedbackRecord,
    FeedbackType,
    KnowledgeSettings,
    ModificationProposal,
    OptimizationRun,
    PendingAction,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from agentloop_runtime.protocols.state_store import StateStoreAdapter

logger = get_logger("runtime.records")

R = TypeVar("R")

_NS = "agentloop:"
_AGENT = f"{_NS}agent:"
_KNOWLEDGE = f"{_NS}knowledge:"
_TRACE = f"{_NS}trace:"
_FEEDBACK = f"{_NS}feedback:"
_ABTEST = f"{_NS}abtest:"
_OPTRUN = f"{_NS}optrun:"
_PROPOSAL = f"{_NS}proposal:"
_EVALUATION = f"{_NS}evaluation:"
_PENDING = f"{_NS}pending:"
_INSIGHT = f"{_NS}insight:"

_MAX_ID_LENGTH = 128
_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def _seg(value: str) -> str:
    """Validate an id used as a key segment to prevent key injection."""
    if not value or len(value) > _MAX_ID_LENGTH or not _SAFE_ID_RE.match(value):
        msg = f"Invalid record id: {value!r}"
        raise ValueError(msg)
    return value


class RecordStore:
    """Persists the runtime and optimization records.

    Usage::

        records = RecordStore(state_store)
        await records.save_agent(AgentConfig(agent_id="support", ...))
        trace = await records.get_trace("support", trace_id)
        test = await records.update_ab_test(test_id, bump)
    """

    def __init__(self, state_store: StateStoreAdapter) -> None:
        self.state_store = state_store

    # ── Generic helpers ─────────────────────────────────────────

    async def _get(self, key: str, cls: Any) -> Any:
        raw = await self.state_store.get(key)
        return cls.from_json(raw) if raw is not None else None

    async def _put(self, key: str, record: Any) -> None:
        await self.state_store.set(key, record.to_json().encode("utf-8"))

    async def _scan(self, prefix: str, cls: Any) -> list[Any]:
        keys = [key async for key in self.state_store.list_keys(prefix)]
        records = []
        for key in keys:
            raw = await self.state_store.get(key)
            if raw is not None:
                records.append(cls.from_json(raw))
        return records

    async def _update(
        self,
        key: str,
        cls: Any,
        fn: Callable[[R], R],
        not_found: type[RecordNotFoundError],
        label: str,
    ) -> R:
        def _apply(raw: bytes | None) -> bytes:
            if raw is None:
                msg = f"{label} not found"
                raise not_found(msg)
            return fn(cls.from_json(raw)).to_json().encode("utf-8")

        stored = await self.state_store.update(key, _apply)
        return cls.from_json(stored)

    # ── Agents ─────────────────────────────────────────────────

    async def save_agent(self, config: AgentConfig) -> None:
        await self._put(f"{_AGENT}{_seg(config.agent_id)}", config)

    async def find_agent(self, agent_id: str) -> AgentConfig | None:
        return await self._get(f"{_AGENT}{_seg(agent_id)}", AgentConfig)

    async def get_agent(self, agent_id: str) -> AgentConfig:
        config = await self.find_agent(agent_id)
        if config is None:
            msg = f"Agent {agent_id!r} not found"
            raise AgentNotFoundError(msg)
        return config

    async def update_agent(
        self, agent_id: str, fn: Callable[[AgentConfig], AgentConfig]
    ) -> AgentConfig:
        return await self._update(
            f"{_AGENT}{_seg(agent_id)}", AgentConfig, fn,
            AgentNotFoundError, f"Agent {agent_id!r}",
        )

    async def get_knowledge_settings(
        self, agent_id: str
    ) -> KnowledgeSettings | None:
        return await self._get(
            f"{_KNOWLEDGE}{_seg(agent_id)}", KnowledgeSettings
        )

    async def save_knowledge_settings(self, settings: KnowledgeSettings) -> None:
        await self._put(f"{_KNOWLEDGE}{_seg(settings.agent_id)}", settings)

    # ── Traces ─────────────────────────────────────────────────

    def _trace_key(self, agent_id: str, trace_id: str) -> str:
        return f"{_TRACE}{_seg(agent_id)}:{_seg(trace_id)}"

    async def save_trace(self, trace: AgentTrace) -> None:
        await self._put(self._trace_key(trace.agent_id, trace.id), trace)

    async def find_trace(self, agent_id: str, trace_id: str) -> AgentTrace | None:
        return await self._get(self._trace_key(agent_id, trace_id), AgentTrace)

    async def get_trace(self, agent_id: str, trace_id: str) -> AgentTrace:
        trace = await self.find_trace(agent_id, trace_id)
        if trace is None:
            msg = f"Trace {trace_id!r} not found for agent {agent_id!r}"
            raise TraceNotFoundError(msg)
        return trace

    async def update_trace(
        self,
        agent_id: str,
        trace_id: str,
        fn: Callable[[AgentTrace], AgentTrace],
    ) -> AgentTrace:
        return await self._update(
            self._trace_key(agent_id, trace_id), AgentTrace, fn,
            TraceNotFoundError, f"Trace {trace_id!r}",
        )

    async def list_traces(
        self, agent_id: str, *, since: float | None = None
    ) -> list[AgentTrace]:
        """All traces of an agent started at or after ``since``, oldest first."""
        traces: list[AgentTrace] = await self._scan(
            f"{_TRACE}{_seg(agent_id)}:", AgentTrace
        )
        if since is not None:
            traces = [t for t in traces if t.started_at >= since]
        return sorted(traces, key=lambda t: t.started_at)

    # ── Feedback ───────────────────────────────────────────────

    async def add_feedback(self, record: FeedbackRecord) -> None:
        key = f"{_FEEDBACK}{_seg(record.agent_id)}:{_seg(record.id)}"
        await self._put(key, record)

    async def list_feedback(
        self,
        agent_id: str,
        *,
        types: Iterable[FeedbackType] | None = None,
        since: float | None = None,
        limit: int | None = None,
    ) -> list[FeedbackRecord]:
        """Feedback for an agent, newest first."""
        records: list[FeedbackRecord] = await self._scan(
            f"{_FEEDBACK}{_seg(agent_id)}:", FeedbackRecord
        )
        if types is not None:
            wanted = set(types)
            records = [r for r in records if r.type in wanted]
        if since is not None:
            records = [r for r in records if r.timestamp >= since]
        records.sort(key=lambda r: r.timestamp, reverse=True)
        return records[:limit] if limit is not None else records

    # ── A/B tests ──────────────────────────────────────────────

    async def save_ab_test(self, test: ABTest) -> None:
        await self._put(f"{_ABTEST}{_seg(test.id)}", test)

    async def find_ab_test(self, test_id: str) -> ABTest | None:
        return await self._get(f"{_ABTEST}{_seg(test_id)}", ABTest)

    async def get_ab_test(self, test_id: str) -> ABTest:
        test = await self.find_ab_test(test_id)
        if test is None:
            msg = f"A/B test {test_id!r} not found"
            raise ABTestNotFoundError(msg)
        return test

    async def update_ab_test(
        self, test_id: str, fn: Callable[[ABTest], ABTest]
    ) -> ABTest:
        return await self._update(
            f"{_ABTEST}{_seg(test_id)}", ABTest, fn,
            ABTestNotFoundError, f"A/B test {test_id!r}",
        )

    async def list_ab_tests(self, agent_id: str) -> list[ABTest]:
        """A/B tests of an agent, newest first."""
        tests: list[ABTest] = await self._scan(_ABTEST, ABTest)
        tests = [t for t in tests if t.agent_id == agent_id]
        return sorted(tests, key=lambda t: t.started_at, reverse=True)

    # ── Optimization runs ──────────────────────────────────────

    def _run_key(self, agent_id: str, run_id: str) -> str:
        return f"{_OPTRUN}{_seg(agent_id)}:{_seg(run_id)}"

    async def save_optimization_run(self, run: OptimizationRun) -> None:
        await self._put(self._run_key(run.agent_id, run.id), run)

    async def update_optimization_run(
        self,
        agent_id: str,
        run_id: str,
        fn: Callable[[OptimizationRun], OptimizationRun],
    ) -> OptimizationRun:
        return await self._update(
            self._run_key(agent_id, run_id), OptimizationRun, fn,
            RecordNotFoundError, f"Optimization run {run_id!r}",
        )

    async def list_optimization_runs(self, agent_id: str) -> list[OptimizationRun]:
        """Optimization runs of an agent, newest first."""
        runs: list[OptimizationRun] = await self._scan(
            f"{_OPTRUN}{_seg(agent_id)}:", OptimizationRun
        )
        return sorted(runs, key=lambda r: r.triggered_at, reverse=True)

    # ── Proposals ──────────────────────────────────────────────

    async def save_proposal(self, proposal: ModificationProposal) -> None:
        await self._put(f"{_PROPOSAL}{_seg(proposal.id)}", proposal)

    async def get_proposal(self, proposal_id: str) -> ModificationProposal:
        proposal = await self._get(
            f"{_PROPOSAL}{_seg(proposal_id)}", ModificationProposal
        )
        if proposal is None:
            msg = f"Proposal {proposal_id!r} not found"
            raise ProposalNotFoundError(msg)
        return proposal

    async def update_proposal(
        self,
        proposal_id: str,
        fn: Callable[[ModificationProposal], ModificationProposal],
    ) -> ModificationProposal:
        return await self._update(
            f"{_PROPOSAL}{_seg(proposal_id)}", ModificationProposal, fn,
            ProposalNotFoundError, f"Proposal {proposal_id!r}",
        )

    async def list_proposals(self, agent_id: str) -> list[ModificationProposal]:
        """Proposals of an agent, newest first."""
        proposals: list[ModificationProposal] = await self._scan(
            _PROPOSAL, ModificationProposal
        )
        proposals = [p for p in proposals if p.agent_id == agent_id]
        return sorted(proposals, key=lambda p: p.created_at, reverse=True)

    # ── Evaluations ────────────────────────────────────────────

    async def add_evaluation(self, evaluation: ConversationEvaluation) -> None:
        key = f"{_EVALUATION}{_seg(evaluation.agent_id)}:{_seg(evaluation.id)}"
        await self._put(key, evaluation)

    async def list_evaluations(
        self, agent_id: str, *, since: float | None = None
    ) -> list[ConversationEvaluation]:
        evaluations: list[ConversationEvaluation] = await self._scan(
            f"{_EVALUATION}{_seg(agent_id)}:", ConversationEvaluation
        )
        if since is not None:
            evaluations = [e for e in evaluations if e.evaluated_at >= since]
        return sorted(evaluations, key=lambda e: e.evaluated_at)

    # ── Pending actions ────────────────────────────────────────

    async def save_pending_action(self, action: PendingAction) -> None:
        await self._put(f"{_PENDING}{_seg(action.id)}", action)

    async def get_pending_action(self, action_id: str) -> PendingAction:
        action = await self._get(f"{_PENDING}{_seg(action_id)}", PendingAction)
        if action is None:
            msg = f"Pending action {action_id!r} not found"
            raise PendingActionNotFoundError(msg)
        return action

    async def update_pending_action(
        self,
        action_id: str,
        fn: Callable[[PendingAction], PendingAction],
    ) -> PendingAction:
        return await self._update(
            f"{_PENDING}{_seg(action_id)}", PendingAction, fn,
            PendingActionNotFoundError, f"Pending action {action_id!r}",
        )

    async def list_pending_actions(self, agent_id: str) -> list[PendingAction]:
        actions: list[PendingAction] = await self._scan(_PENDING, PendingAction)
        actions = [a for a in actions if a.agent_id == agent_id]
        return sorted(actions, key=lambda a: a.created_at)

    # ── Insights ───────────────────────────────────────────────

    async def save_insight(self, insight: AgentInsight) -> None:
        key = f"{_INSIGHT}{_seg(insight.agent_id)}:{_seg(insight.id)}"
        await self._put(key, insight)

    async def latest_insight(self, agent_id: str) -> AgentInsight | None:
        insights: list[AgentInsight] = await self._scan(
            f"{_INSIGHT}{_seg(agent_id)}:", AgentInsight
        )
        if not insights:
            return None
        return max(insights, key=lambda i: i.generated_at)
