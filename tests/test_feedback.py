from __future__ import annotations

import pytest
from agentloop_core.config import FeedbackConfig
from agentloop_core.errors import OptimizationInProgressError, TraceNotFoundError
from agentloop_core.types import (
    FeedbackRecord,
    FeedbackType,
    OptimizationRun,
    OptimizationStatus,
)
from agentloop_optimizer.feedback import (
    FeedbackCollector,
    compute_edit_diff,
    optimization_lock,
)

from conftest import make_trace


class TestEditDiff:
    """Classification of a user edit by length delta."""

    def test_no_change(self):
        assert compute_edit_diff("same", "same") == {"type": "no_change"}

    def test_modification_within_threshold(self):
        diff = compute_edit_diff("a" * 100, "b" * 150)
        assert diff["type"] == "modification"
        assert diff["length_diff"] == 50

    def test_addition(self):
        diff = compute_edit_diff("a" * 100, "a" * 151)
        assert diff["type"] == "addition"

    def test_deletion(self):
        diff = compute_edit_diff("a" * 100, "a" * 49)
        assert diff["type"] == "deletion"
        assert diff["original_length"] == 100
        assert diff["edited_length"] == 49

    def test_snippets_truncated(self):
        diff = compute_edit_diff("x" * 500, "y" * 500)
        assert len(diff["original_snippet"]) == 200
        assert len(diff["edited_snippet"]) == 200


class TestRecordFeedback:
    """Persisting feedback and updating the referenced trace."""

    async def test_user_edit_marks_trace(self, records):
        trace = await make_trace(records, output="Your order shipped.")
        collector = FeedbackCollector(records)

        await collector.record_edit(
            trace, "Your order shipped.", "Your order shipped on Monday via UPS."
        )

        updated = await records.get_trace("support", trace.id)
        assert updated.user_edited is True
        assert updated.edit_diff["type"] == "modification"
        assert updated.edit_diff["edited_snippet"].endswith("via UPS.")

    @pytest.mark.parametrize(
        ("positive", "score"), [(True, 5), (False, 1)]
    )
    async def test_rating_sets_score(self, records, positive, score):
        trace = await make_trace(records)
        await FeedbackCollector(records).record_rating(trace, positive=positive)
        assert (await records.get_trace("support", trace.id)).feedback_score == score

    async def test_rejection_scores_two(self, records):
        trace = await make_trace(records)
        await FeedbackCollector(records).record_rejection(trace, "draft email")
        assert (await records.get_trace("support", trace.id)).feedback_score == 2

    async def test_correction_leaves_trace_flags(self, records):
        trace = await make_trace(records)
        await FeedbackCollector(records).record_correction(trace, "old", "new")
        updated = await records.get_trace("support", trace.id)
        assert updated.user_edited is False
        assert updated.feedback_score is None

    async def test_user_edit_without_text_still_marks_trace(self, records):
        trace = await make_trace(records, output="hello")
        record = FeedbackRecord(
            agent_id="support",
            trace_id=trace.id,
            type=FeedbackType.USER_EDIT,
            original_output="hello",
        )
        await FeedbackCollector(records).record_feedback(record)

        updated = await records.get_trace("support", trace.id)
        assert updated.user_edited is True
        assert updated.edit_diff is not None
        assert updated.edit_diff["edited_length"] == 0

    async def test_unknown_trace(self, records):
        collector = FeedbackCollector(records)
        record = FeedbackRecord(
            agent_id="support", trace_id="missing", type=FeedbackType.THUMBS_UP
        )
        with pytest.raises(TraceNotFoundError):
            await collector.record_feedback(record)
        assert await records.list_feedback("support") == []


class TestOptimizationThreshold:
    """When accumulated corrections arm an optimization pass."""

    async def _corrections(self, collector, records, n):
        for i in range(n):
            trace = await make_trace(records, input_messages=[f"question {i}"])
            await collector.record_edit(trace, f"answer {i}", f"better answer {i}")

    async def test_below_threshold(self, records):
        collector = FeedbackCollector(records)
        await self._corrections(collector, records, 9)
        assert not await collector.check_optimization_threshold("support")

    async def test_at_threshold(self, records):
        collector = FeedbackCollector(records)
        await self._corrections(collector, records, 10)
        assert await collector.check_optimization_threshold("support")

    async def test_ratings_do_not_count(self, records):
        collector = FeedbackCollector(records)
        for _ in range(12):
            trace = await make_trace(records)
            await collector.record_rating(trace, positive=False)
        assert not await collector.check_optimization_threshold("support")

    async def test_active_run_blocks(self, records):
        collector = FeedbackCollector(records)
        await self._corrections(collector, records, 10)
        await records.save_optimization_run(
            OptimizationRun(agent_id="support", status=OptimizationStatus.TESTING)
        )
        assert not await collector.check_optimization_threshold("support")

    async def test_held_lock_blocks(self, records):
        collector = FeedbackCollector(records)
        await self._corrections(collector, records, 10)
        assert await optimization_lock(records, "support").acquire()
        assert not await collector.check_optimization_threshold("support")

    async def test_trigger_fires_once_threshold_reached(self, records):
        fired = []

        async def trigger(agent_id):
            fired.append(agent_id)

        collector = FeedbackCollector(
            records, FeedbackConfig(threshold=3), on_threshold=trigger
        )
        await self._corrections(collector, records, 2)
        assert fired == []
        await self._corrections(collector, records, 1)
        assert fired == ["support"]

    async def test_trigger_errors_are_swallowed(self, records):
        async def trigger(agent_id):
            raise OptimizationInProgressError("busy")

        collector = FeedbackCollector(
            records, FeedbackConfig(threshold=1), on_threshold=trigger
        )
        trace = await make_trace(records)
        record = await collector.record_correction(trace, "a", "b")
        assert record.type is FeedbackType.EXPLICIT_CORRECTION


class TestFeedbackQueries:
    async def test_stats(self, records):
        collector = FeedbackCollector(records)
        for positive in (True, True, False):
            await collector.record_rating(await make_trace(records), positive=positive)
        await collector.record_edit(await make_trace(records), "a", "b")

        stats = await collector.get_feedback_stats("support", days=7)

        assert stats.total == 4
        assert stats.by_type["thumbs_up"] == 2
        assert stats.positive_rate == 0.5
        assert stats.negative_rate == 0.5
        assert stats.edit_rate == 0.25

    async def test_stats_empty(self, records):
        stats = await FeedbackCollector(records).get_feedback_stats("support")
        assert stats.total == 0
        assert stats.positive_rate == 0.0

    async def test_conversation_feedback(self, records):
        collector = FeedbackCollector(records)
        trace = await make_trace(records, conversation_id="conv-a")
        other = await make_trace(records, conversation_id="conv-b")
        await collector.record_rating(trace, positive=True)
        await collector.record_retry(trace)
        await collector.record_rating(other, positive=False)

        found = await collector.get_conversation_feedback("support", "conv-a")
        assert [r.type for r in found] == [
            FeedbackType.THUMBS_UP, FeedbackType.RETRY_REQUEST,
        ]

    async def test_dataset_joins_trace_input(self, records):
        collector = FeedbackCollector(records)
        trace = await make_trace(records, input_messages=["Cancel my plan"])
        await collector.record_correction(trace, "Done.", "I've cancelled your plan.")
        await collector.record_rating(trace, positive=True)

        dataset = await collector.get_edits_for_optimization("support")

        assert len(dataset) == 1
        sample = dataset.samples[0]
        assert sample.input == "Cancel my plan"
        assert sample.original_output == "Done."
        assert sample.corrected_output == "I've cancelled your plan."
        assert sample.feedback_type == "explicit_correction"

    async def test_get_feedback_filters_types(self, records):
        collector = FeedbackCollector(records)
        trace = await make_trace(records)
        await collector.record_rating(trace, positive=True)
        await collector.record_edit(trace, "a", "b")

        edits = await collector.get_feedback("support", types=[FeedbackType.USER_EDIT])
        assert [r.type for r in edits] == [FeedbackType.USER_EDIT]
