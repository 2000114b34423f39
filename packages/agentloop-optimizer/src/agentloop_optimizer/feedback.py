"""Feedback collection: persists user feedback and arms the optimizer.

Every feedback record is appended to the store, the trace it refers to
gets its summary fields updated (score, edit flag, edit diff), and
corrections re-check whether the agent has accumulated enough of them
to warrant an optimization pass.
"""
from __future__ import annotations

import dataclasses
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from agentloop_core.config import FeedbackConfig, OptimizerConfig
from agentloop_core.logging import get_logger
from agentloop_core.types import (
    CORRECTION_TYPES,
    AgentTrace,
    FeedbackRecord,
    FeedbackType,
)
from agentloop_runtime.locks import KeyLock

from agentloop_optimizer.types import FeedbackDataset, FeedbackSample

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from agentloop_runtime.records import RecordStore

    ThresholdTrigger = Callable[[str], Awaitable[Any]]

logger = get_logger("optimizer.feedback")

_DAY = 86_400.0

FEEDBACK_SCORES: dict[FeedbackType, int] = {
    FeedbackType.THUMBS_UP: 5,
    FeedbackType.THUMBS_DOWN: 1,
    FeedbackType.APPROVAL_REJECT: 2,
}

_OPTIMIZATION_LOCK_PREFIX = "agentloop:lock:optimize:"


def optimization_lock(
    records: RecordStore, agent_id: str, *, ttl: float = 900.0
) -> KeyLock:
    """The per-agent lock that makes optimization passes single-flight."""
    return KeyLock(
        records.state_store, f"{_OPTIMIZATION_LOCK_PREFIX}{agent_id}", ttl=ttl
    )


def compute_edit_diff(
    original: str, edited: str, *, threshold: int = 50, snippet_chars: int = 200
) -> dict[str, Any]:
    """Summarize how a user edit changed an output."""
    if original == edited:
        return {"type": "no_change"}
    length_diff = len(edited) - len(original)
    if length_diff > threshold:
        change = "addition"
    elif length_diff < -threshold:
        change = "deletion"
    else:
        change = "modification"
    return {
        "type": change,
        "original_length": len(original),
        "edited_length": len(edited),
        "length_diff": length_diff,
        "original_snippet": original[:snippet_chars],
        "edited_snippet": edited[:snippet_chars],
    }


@dataclass(frozen=True, slots=True)
class FeedbackStats:
    total: int
    by_type: dict[str, int]
    positive_rate: float
    negative_rate: float
    edit_rate: float


class FeedbackCollector:
    """Records feedback and decides when an agent is due for optimization.

    Usage::

        collector = FeedbackCollector(records, on_threshold=optimizer.trigger)
        await collector.record_edit(trace, original, edited, user_id="u1")
        stats = await collector.get_feedback_stats("support")

    ``on_threshold`` is awaited with the agent id whenever a correction
    pushes the agent over the threshold. Failures inside it are logged,
    never raised back to the feedback caller.
    """

    def __init__(
        self,
        records: RecordStore,
        config: FeedbackConfig | None = None,
        *,
        optimizer_config: OptimizerConfig | None = None,
        on_threshold: ThresholdTrigger | None = None,
    ) -> None:
        self._records = records
        self._config = config or FeedbackConfig()
        self._lock_ttl = (optimizer_config or OptimizerConfig()).lock_ttl_seconds
        self._on_threshold = on_threshold

    async def record_feedback(self, record: FeedbackRecord) -> FeedbackRecord:
        """Persist feedback, update its trace, and re-check the threshold.

        Raises:
            TraceNotFoundError: If the referenced trace does not exist.
        """
        await self._records.get_trace(record.agent_id, record.trace_id)
        await self._records.add_feedback(record)
        logger.info(
            "Recorded %s feedback for agent %s", record.type.value, record.agent_id
        )

        await self._update_trace(record)

        if record.type in CORRECTION_TYPES and await self.check_optimization_threshold(
            record.agent_id
        ):
            await self._fire_trigger(record.agent_id)
        return record

    async def _update_trace(self, record: FeedbackRecord) -> None:
        score = FEEDBACK_SCORES.get(record.type)
        edited = record.type is FeedbackType.USER_EDIT
        if score is None and not edited:
            return

        diff = None
        if edited:
            diff = compute_edit_diff(
                record.original_output,
                record.user_edit or "",
                threshold=self._config.edit_length_threshold,
                snippet_chars=self._config.snippet_chars,
            )

        def _apply(trace: AgentTrace) -> AgentTrace:
            changes: dict[str, Any] = {}
            if score is not None:
                changes["feedback_score"] = score
            if edited:
                changes["user_edited"] = True
                changes["edit_diff"] = diff
            return dataclasses.replace(trace, **changes)

        await self._records.update_trace(record.agent_id, record.trace_id, _apply)

    async def _fire_trigger(self, agent_id: str) -> None:
        if self._on_threshold is None:
            logger.info("Optimization threshold reached for agent %s", agent_id)
            return
        try:
            await self._on_threshold(agent_id)
        except Exception:
            logger.exception("Optimization trigger failed for agent %s", agent_id)

    async def check_optimization_threshold(self, agent_id: str) -> bool:
        """Whether the agent has enough recent corrections and no pass in flight."""
        since = time.time() - self._config.window_days * _DAY
        recent = await self._records.list_feedback(
            agent_id, types=CORRECTION_TYPES, since=since
        )
        if len(recent) < self._config.threshold:
            return False

        runs = await self._records.list_optimization_runs(agent_id)
        if any(run.is_active for run in runs):
            logger.debug("Optimization already active for agent %s", agent_id)
            return False
        if await optimization_lock(self._records, agent_id, ttl=self._lock_ttl).is_held():
            return False

        logger.info(
            "Optimization threshold reached for agent %s (%d corrections)",
            agent_id, len(recent),
        )
        return True

    # ── Convenience recorders ───────────────────────────────────

    def _new(
        self, trace: AgentTrace, type_: FeedbackType, user_id: str, **kwargs: Any
    ) -> FeedbackRecord:
        return FeedbackRecord(
            agent_id=trace.agent_id,
            trace_id=trace.id,
            conversation_id=trace.conversation_id,
            user_id=user_id,
            type=type_,
            **kwargs,
        )

    async def record_rating(
        self, trace: AgentTrace, *, positive: bool, user_id: str = ""
    ) -> FeedbackRecord:
        type_ = FeedbackType.THUMBS_UP if positive else FeedbackType.THUMBS_DOWN
        return await self.record_feedback(
            self._new(trace, type_, user_id, step_number=0)
        )

    async def record_edit(
        self,
        trace: AgentTrace,
        original_output: str,
        edited_output: str,
        *,
        user_id: str = "",
        step_number: int | None = None,
    ) -> FeedbackRecord:
        return await self.record_feedback(self._new(
            trace, FeedbackType.USER_EDIT, user_id,
            original_output=original_output,
            user_edit=edited_output,
            step_number=step_number,
        ))

    async def record_correction(
        self,
        trace: AgentTrace,
        original_output: str,
        correction: str,
        *,
        user_id: str = "",
        step_number: int | None = None,
    ) -> FeedbackRecord:
        return await self.record_feedback(self._new(
            trace, FeedbackType.EXPLICIT_CORRECTION, user_id,
            original_output=original_output,
            correction_text=correction,
            step_number=step_number,
        ))

    async def record_rejection(
        self,
        trace: AgentTrace,
        rejected_output: str,
        *,
        user_id: str = "",
        step_number: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> FeedbackRecord:
        return await self.record_feedback(self._new(
            trace, FeedbackType.APPROVAL_REJECT, user_id,
            original_output=rejected_output,
            step_number=step_number,
            metadata=metadata or {},
        ))

    async def record_retry(self, trace: AgentTrace, *, user_id: str = "") -> FeedbackRecord:
        return await self.record_feedback(
            self._new(trace, FeedbackType.RETRY_REQUEST, user_id, original_output=trace.output)
        )

    # ── Queries ─────────────────────────────────────────────────

    async def get_feedback(
        self,
        agent_id: str,
        types: Iterable[FeedbackType] | None = None,
        limit: int = 100,
    ) -> list[FeedbackRecord]:
        return await self._records.list_feedback(agent_id, types=types, limit=limit)

    async def get_conversation_feedback(
        self, agent_id: str, conversation_id: str
    ) -> list[FeedbackRecord]:
        """Feedback in one conversation, oldest first."""
        records = await self._records.list_feedback(agent_id)
        return sorted(
            (r for r in records if r.conversation_id == conversation_id),
            key=lambda r: r.timestamp,
        )

    async def get_feedback_stats(self, agent_id: str, days: int = 30) -> FeedbackStats:
        since = time.time() - days * _DAY
        records = await self._records.list_feedback(agent_id, since=since)
        by_type = {t.value: 0 for t in FeedbackType}
        for record in records:
            by_type[record.type.value] += 1

        total = len(records)
        negative = (
            by_type[FeedbackType.THUMBS_DOWN]
            + by_type[FeedbackType.APPROVAL_REJECT]
            + by_type[FeedbackType.USER_EDIT]
        )

        def _rate(n: int) -> float:
            return n / total if total else 0.0

        return FeedbackStats(
            total=total,
            by_type=by_type,
            positive_rate=_rate(by_type[FeedbackType.THUMBS_UP]),
            negative_rate=_rate(negative),
            edit_rate=_rate(by_type[FeedbackType.USER_EDIT]),
        )

    async def get_edits_for_optimization(
        self, agent_id: str, limit: int = 100
    ) -> FeedbackDataset:
        """Corrections joined with the user input of their traces, newest first."""
        corrections = await self._records.list_feedback(
            agent_id, types=CORRECTION_TYPES, limit=limit
        )
        samples: list[FeedbackSample] = []
        for record in corrections:
            trace = await self._records.find_trace(agent_id, record.trace_id)
            user_input = "\n".join(trace.input_messages) if trace else ""
            samples.append(FeedbackSample(
                input=user_input,
                original_output=record.original_output,
                corrected_output=record.corrected_output,
                feedback_type=record.type.value,
            ))
        return FeedbackDataset(agent_id=agent_id, samples=samples, created_at=time.time())
