"""Insights: keyword clustering, usage patterns, anomalies and opportunities.

Clustering is keyword overlap, not embeddings: two traces belong together
when their extracted keywords share at least two words.
"""
from __future__ import annotations

import re
import time
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any

from agentloop_core.logging import get_logger
from agentloop_core.types import AgentInsight

if TYPE_CHECKING:
    from agentloop_core.types import AgentTrace
    from agentloop_runtime.records import RecordStore

logger = get_logger("optimizer.insights")

STOP_WORDS = frozenset(
    "the a an and or but in on at to for of with by from is was are were be "
    "been being have has had do does did will would could should may might "
    "must can this that these those i you he she it we they my your his her "
    "its our their".split()
)

_NON_WORD_RE = re.compile(r"[^a-z0-9\s]")


def extract_keywords(text: str, limit: int = 20) -> list[str]:
    words = _NON_WORD_RE.sub(" ", text.lower()).split()
    return [w for w in words if len(w) > 3 and w not in STOP_WORDS][:limit]


def _trace_text(trace: AgentTrace) -> str:
    return " ".join([*trace.input_messages, trace.output])


def _satisfaction(trace: AgentTrace) -> float:
    return float(trace.feedback_score or 3)


@dataclass(frozen=True, slots=True)
class ConversationCluster:
    id: str
    label: str
    size: int
    trace_ids: list[str]
    common_keywords: list[str] = field(default_factory=list)
    avg_satisfaction: float = 3.0
    avg_cost: float = 0.0


def _cluster_label(keywords: list[str]) -> str:
    if not keywords:
        return "General conversations"
    return ", ".join(keywords[:3]) + " discussions"


def cluster_traces(traces: list[AgentTrace]) -> list[ConversationCluster]:
    """Greedy keyword-overlap clustering in trace order."""
    keywords = {t.id: extract_keywords(_trace_text(t)) for t in traces}
    assigned: set[str] = set()
    clusters: list[ConversationCluster] = []

    for trace in traces:
        if trace.id in assigned:
            continue
        own = keywords[trace.id]
        members = [trace] + [
            other for other in traces
            if other.id != trace.id
            and other.id not in assigned
            and sum(1 for kw in own if kw in keywords[other.id]) >= 2
        ]
        counts = Counter(kw for m in members for kw in keywords[m.id])
        common = [kw for kw, n in counts.items() if n >= len(members) / 2][:5]
        clusters.append(ConversationCluster(
            id=f"cluster_{len(clusters) + 1}",
            label=_cluster_label(common),
            size=len(members),
            trace_ids=[m.id for m in members],
            common_keywords=common,
            avg_satisfaction=sum(_satisfaction(m) for m in members) / len(members),
            avg_cost=sum(m.total_cost for m in members) / len(members),
        ))
        assigned.update(m.id for m in members)
    return clusters


def _pattern_recommendation(
    cluster: ConversationCluster, tools: list[str], failures: list[str]
) -> str:
    if cluster.avg_satisfaction < 3:
        return "Review and improve conversation quality"
    if failures:
        return f"Fix tool failures: {', '.join(tools)}"
    if cluster.avg_cost > 0.5:
        return "Consider model downgrade to reduce costs"
    return "Performing well, continue monitoring"


def usage_patterns(
    clusters: list[ConversationCluster], traces: list[AgentTrace]
) -> list[dict[str, Any]]:
    by_id = {t.id: t for t in traces}
    patterns = []
    for cluster in clusters:
        members = [by_id[i] for i in cluster.trace_ids]
        tool_counts = Counter(
            call.get("tool") or "unknown" for t in members for call in t.tool_calls
        )
        tools = [name for name, _ in tool_counts.most_common(3)]
        failures = []
        if sum(t.tool_failures for t in members) / len(members) > 0.5:
            failures.append("high_tool_failure_rate")
        patterns.append({
            "cluster_id": cluster.id,
            "label": cluster.label,
            "frequency": cluster.size,
            "common_tools": tools,
            "common_failures": failures,
            "avg_satisfaction": cluster.avg_satisfaction,
            "recommendation": _pattern_recommendation(cluster, tools, failures),
        })
    return patterns


def detect_anomalies(traces: list[AgentTrace]) -> list[dict[str, Any]]:
    """Cost or latency above 3x the mean, >3 tool failures, feedback score <= 2."""
    n = len(traces)
    avg_cost = sum(t.total_cost for t in traces) / n
    avg_latency = sum(t.latency_ms for t in traces) / n
    anomalies: list[dict[str, Any]] = []

    def _add(kind: str, trace: AgentTrace, value: float, expected: float,
             severity: str, description: str) -> None:
        anomalies.append({
            "type": kind, "trace_id": trace.id, "value": value,
            "expected": expected, "severity": severity, "description": description,
        })

    for t in traces:
        if avg_cost > 0 and t.total_cost > avg_cost * 3:
            _add(
                "high_cost", t, t.total_cost, avg_cost,
                "high" if t.total_cost > avg_cost * 5 else "medium",
                f"Cost {t.total_cost:.2f} is {t.total_cost / avg_cost:.1f}x higher than average",
            )
        if avg_latency > 0 and t.latency_ms > avg_latency * 3:
            _add(
                "high_latency", t, t.latency_ms, avg_latency,
                "high" if t.latency_ms > avg_latency * 5 else "medium",
                f"Latency {t.latency_ms:.0f}ms is "
                f"{t.latency_ms / avg_latency:.1f}x higher than average",
            )
        if t.tool_failures > 3:
            _add(
                "tool_failures", t, t.tool_failures, 0, "high",
                f"{t.tool_failures} tool failures in single conversation",
            )
        if t.feedback_score is not None and t.feedback_score <= 2:
            _add(
                "low_satisfaction", t, t.feedback_score, 3, "medium",
                f"Low user satisfaction score: {t.feedback_score}/5",
            )
    return anomalies


def find_opportunities(
    traces: list[AgentTrace], patterns: list[dict[str, Any]]
) -> list[dict[str, Any]]:
    n = len(traces)
    opportunities: list[dict[str, Any]] = []

    simple = [
        p for p in patterns if p["avg_satisfaction"] > 4.0 and p["frequency"] > n * 0.2
    ]
    if simple:
        affected = sum(p["frequency"] for p in simple)
        avg_cost = sum(t.total_cost for t in traces) / n
        opportunities.append({
            "type": "model_downgrade",
            "impact": "Reduce cost by ~70% for high-satisfaction conversations",
            "suggestion": (
                f'Switch to a cheaper model for "{simple[0]["label"]}" pattern '
                f"({affected} conversations)"
            ),
            "estimated_savings": affected * avg_cost * 0.7,
            "affected_conversations": affected,
        })

    counts = Counter(kw for t in traces for kw in extract_keywords(_trace_text(t)))
    frequent = [(kw, c) for kw, c in counts.most_common() if c > n * 0.1][:5]
    if frequent:
        opportunities.append({
            "type": "caching",
            "impact": "Reduce latency by ~80% for frequent queries",
            "suggestion": f"Cache responses for: {', '.join(kw for kw, _ in frequent)}",
            "affected_conversations": frequent[0][1],
        })
    return opportunities


class InsightsEngine:
    """Builds and persists periodic insight reports for an agent."""

    def __init__(self, records: RecordStore) -> None:
        self._records = records

    async def generate_insights(
        self, agent_id: str, since: float, until: float | None = None
    ) -> AgentInsight:
        until = until if until is not None else time.time()
        traces = [
            t for t in await self._records.list_traces(agent_id, since=since)
            if t.started_at <= until
        ]
        if not traces:
            logger.info("No traces for agent %s in the requested window", agent_id)
            return AgentInsight(agent_id=agent_id, period_start=since, period_end=until)

        clusters = cluster_traces(traces)
        patterns = usage_patterns(clusters, traces)
        insight = AgentInsight(
            agent_id=agent_id,
            period_start=since,
            period_end=until,
            clusters=[asdict(c) for c in clusters],
            patterns=patterns,
            anomalies=detect_anomalies(traces),
            opportunities=find_opportunities(traces, patterns),
        )
        await self._records.save_insight(insight)
        logger.info(
            "Generated insights for %s: %d clusters, %d patterns, %d anomalies",
            agent_id, len(insight.clusters), len(insight.patterns), len(insight.anomalies),
        )
        return insight

    async def get_latest_insights(self, agent_id: str) -> AgentInsight | None:
        return await self._records.latest_insight(agent_id)
