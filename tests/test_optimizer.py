"""Tests for the optimization pipeline: patterns, variations, scoring, passes."""
from __future__ import annotations

import asyncio
import json
import time

import pytest
from agentloop_core.config import OptimizerConfig
from agentloop_core.errors import (
    ABTestConflictError,
    AgentNotFoundError,
    BackendError,
    EmptyDatasetError,
    LLMError,
    OptimizationError,
    OptimizationInProgressError,
)
from agentloop_core.types import ABTestStatus, OptimizationRun, OptimizationStatus
from agentloop_optimizer.ab_testing import ABTestManager
from agentloop_optimizer.feedback import FeedbackCollector, optimization_lock
from agentloop_optimizer.optimizer import AutoOptimizer, build_recommendation
from agentloop_optimizer.patterns import PatternAnalyzer
from agentloop_optimizer.scoring import LengthRatioScorer, LLMJudgeScorer, Scorer
from agentloop_optimizer.tester import VariantTester
from agentloop_optimizer.types import (
    EditPattern,
    FeedbackDataset,
    FeedbackSample,
    PatternCategory,
    PromptVariation,
    VariationTestResult,
)
from agentloop_optimizer.variants import VariantGenerator

from conftest import make_trace

PATTERNS_REPLY = json.dumps([
    {"pattern": "Responses are too formal", "category": "tone", "example": "Dear"},
    {"pattern": "Missing order numbers", "category": "content", "example": "#123"},
    {"pattern": "Wall of text", "category": "layout", "example": ""},
])

VARIATIONS_REPLY = "Sure!\n" + json.dumps([
    {"prompt": "Be friendly.", "rationale": "Tone", "addressedPatterns": ["formal"]},
    {"prompt": "Cite order ids.", "rationale": "Content"},
    {"prompt": "Use bullets.", "rationale": "Format"},
    {"prompt": "Extra one.", "rationale": "Ignored"},
])


def _dataset(n: int = 10) -> FeedbackDataset:
    return FeedbackDataset(
        agent_id="support",
        samples=[
            FeedbackSample(
                input=f"question {i}",
                original_output=f"original answer {i}",
                corrected_output=f"corrected answer {i}",
                feedback_type="user_edit",
            )
            for i in range(n)
        ],
        created_at=time.time(),
    )


def _patterns() -> list[EditPattern]:
    return [EditPattern("Too formal", PatternCategory.TONE, 6, ["Dear"])]


class FixedScorer:
    def __init__(self, scores: dict[str, float]) -> None:
        self.scores = scores

    async def score(self, candidate: str, reference: str) -> float:
        return self.scores.get(candidate, 0.0)


# ── Patterns ───────────────────────────────────────────────────


class TestPatternAnalyzer:
    """Edit-pattern mining and its fallback."""

    async def test_parses_patterns(self, make_llm):
        llm = make_llm([PATTERNS_REPLY])
        patterns = await PatternAnalyzer(llm).analyze(_dataset(10))

        assert [p.category for p in patterns] == [
            PatternCategory.TONE, PatternCategory.CONTENT, PatternCategory.OTHER,
        ]
        assert [p.frequency for p in patterns] == [10, 6, 3]
        assert patterns[0].examples == ["Dear"]
        assert patterns[2].examples == []
        assert llm.calls[0]["temperature"] == 0.0

    async def test_prompt_uses_most_recent_samples(self, make_llm):
        llm = make_llm([PATTERNS_REPLY])
        await PatternAnalyzer(llm, sample_size=3).analyze(_dataset(10))
        prompt = llm.calls[0]["prompt"]
        assert "Example 3:" in prompt
        assert "Example 4:" not in prompt
        assert "corrected answer 0" in prompt

    async def test_keeps_at_most_five_patterns(self, make_llm):
        reply = json.dumps([
            {"pattern": f"Pattern {i}", "category": "content", "example": ""}
            for i in range(7)
        ])
        patterns = await PatternAnalyzer(make_llm([reply])).analyze(_dataset(10))

        assert [p.pattern for p in patterns] == [f"Pattern {i}" for i in range(5)]
        assert [p.frequency for p in patterns] == [10, 8, 6, 4, 2]

    @pytest.mark.parametrize(
        "reply",
        [LLMError("provider down"), "I could not find patterns.", "[]", '[{"x": 1}]'],
    )
    async def test_fallback(self, make_llm, reply):
        patterns = await PatternAnalyzer(make_llm([reply])).analyze(_dataset(4))
        assert len(patterns) == 1
        assert patterns[0].pattern == "Users frequently edit agent outputs"
        assert patterns[0].category is PatternCategory.OTHER
        assert patterns[0].frequency == 4
        assert patterns[0].examples == ["original answer 0"]


# ── Variations ─────────────────────────────────────────────────


class TestVariantGenerator:
    """Prompt variation generation and its fallback."""

    async def test_generates_numbered_variations(self, make_llm):
        llm = make_llm([VARIATIONS_REPLY])
        variations = await VariantGenerator(llm).generate("Be helpful.", _patterns())

        assert [v.id for v in variations] == [
            "variation_1", "variation_2", "variation_3",
        ]
        assert variations[0].addressed_patterns == ["formal"]
        assert "Be helpful." in llm.calls[0]["prompt"]
        assert "Too formal (occurred 6 times) [Category: tone]" in llm.calls[0]["prompt"]

    @pytest.mark.parametrize("reply", [LLMError("timeout"), "nope", "[]"])
    async def test_fallback_to_current_prompt(self, make_llm, reply):
        variations = await VariantGenerator(make_llm([reply])).generate(
            "Be helpful.", _patterns()
        )
        assert variations == [
            PromptVariation("variation_1", "Be helpful.", "Original prompt (fallback)")
        ]


# ── Scoring ────────────────────────────────────────────────────


class TestScorers:
    async def test_length_ratio(self):
        scorer = LengthRatioScorer()
        assert isinstance(scorer, Scorer)
        assert await scorer.score("abcd", "wxyz") == 100.0
        assert await scorer.score("", "") == 100.0
        assert await scorer.score("ab", "abcd") == 50.0
        assert await scorer.score("abc", "abcdef1") == 42.0
        assert await scorer.score("", "abc") == 0.0

    async def test_llm_judge(self, make_llm):
        scorer = LLMJudgeScorer(make_llm(['{"score": 91.5}']))
        assert await scorer.score("a", "b") == 91.5

    async def test_llm_judge_falls_back(self, make_llm):
        scorer = LLMJudgeScorer(make_llm(['{"score": 250}']))
        assert await scorer.score("ab", "abcd") == 50.0


class TestVariantTester:
    """Offline scoring of variations."""

    async def test_proxy_scores_without_llm(self):
        tester = VariantTester()
        variation = PromptVariation("variation_1", "p", "r")
        result = await tester.test_variation(variation, _dataset(8))

        assert result.score == 100.0
        assert len(result.improvements) == 5
        assert result.improvements[0] == "Improved output for: question 0..."

    async def test_empty_dataset_scores_zero(self):
        result = await VariantTester().test_variation(
            PromptVariation("variation_1", "p", "r"), _dataset(0)
        )
        assert result.score == 0.0
        assert result.improvements == []

    async def test_replay_with_llm_and_sorting(self, make_llm):
        llm = make_llm(["bad", "bad", "good", "good"])
        tester = VariantTester(
            scorer=FixedScorer({"good": 90.0, "bad": 40.0}), llm=llm, sample_size=2
        )
        variations = [
            PromptVariation("variation_1", "first", "r"),
            PromptVariation("variation_2", "second", "r"),
        ]

        results = await tester.test_variations(variations, _dataset(5))

        assert [r.variation_id for r in results] == ["variation_2", "variation_1"]
        assert results[0].score == 90.0
        assert results[0].improvements != []
        assert results[1].improvements == []
        assert llm.calls[0]["prompt"].startswith("first\n\nUser: question 0")

    async def test_replay_failure_scores_empty_candidate(self, make_llm):
        tester = VariantTester(llm=make_llm([LLMError("down")]), sample_size=1)
        result = await tester.test_variation(
            PromptVariation("variation_1", "p", "r"), _dataset(1)
        )
        assert result.score == 0.0


class TestRecommendation:
    @pytest.mark.parametrize(
        ("score", "prefix"),
        [(92.0, "Highly recommended"), (85.0, "Recommended"),
         (71.0, "Recommended"), (70.0, "Caution")],
    )
    def test_tiers(self, score, prefix):
        best = PromptVariation("variation_1", "p", "Fixes tone.")
        text = build_recommendation(best, VariationTestResult("variation_1", score))
        assert text.startswith(prefix)
        assert f"{round(score)}%" in text


# ── AutoOptimizer ──────────────────────────────────────────────


async def _seed_corrections(records, n: int) -> None:
    collector = FeedbackCollector(records)
    for i in range(n):
        trace = await make_trace(records, input_messages=[f"question {i}"])
        await collector.record_edit(trace, f"answer {i}", f"a much better answer {i}")


class TestAutoOptimizer:
    """Full passes, single-flight and failure bookkeeping."""

    async def test_pass_starts_ab_test(self, records, agent, make_llm):
        await _seed_corrections(records, 10)
        optimizer = AutoOptimizer(records, make_llm([PATTERNS_REPLY, VARIATIONS_REPLY]))

        result = await optimizer.optimize_agent("support", triggered_by="manual")

        assert len(result.prompt_variations) == 3
        assert result.best_variation.id == result.test_results[0].variation_id
        test = await records.get_ab_test(result.ab_test_id)
        assert test.status is ABTestStatus.RUNNING
        assert test.traffic_split == 0.2
        assert test.variant_a_prompt == agent.system_prompt
        assert test.variant_b_prompt == result.best_variation.prompt

        run = await optimizer.get_latest_run("support")
        assert run.id == result.run_id
        assert run.status is OptimizationStatus.TESTING
        assert run.triggered_by == "manual"
        assert run.dataset_size == 10
        assert run.ab_test_id == test.id
        assert run.recommendation.startswith("Highly recommended")
        assert not await optimization_lock(records, "support").is_held()

    async def test_empty_dataset_fails_run(self, records, agent, make_llm):
        optimizer = AutoOptimizer(records, make_llm())
        with pytest.raises(EmptyDatasetError):
            await optimizer.optimize_agent("support")

        run = await optimizer.get_latest_run("support")
        assert run.status is OptimizationStatus.FAILED
        assert "No correction feedback" in run.error
        assert not await optimization_lock(records, "support").is_held()

    async def test_unknown_agent(self, records, make_llm):
        with pytest.raises(AgentNotFoundError):
            await AutoOptimizer(records, make_llm()).optimize_agent("ghost")

    async def test_active_run_rejects_second_pass(self, records, agent, make_llm):
        await _seed_corrections(records, 10)
        await records.save_optimization_run(
            OptimizationRun(agent_id="support", status=OptimizationStatus.TESTING)
        )
        optimizer = AutoOptimizer(records, make_llm())

        with pytest.raises(OptimizationInProgressError):
            await optimizer.optimize_agent("support")
        assert await optimizer.trigger("support") is None
        assert len(await optimizer.get_optimization_runs("support")) == 1

    async def test_held_lock_rejects_pass(self, records, agent, make_llm):
        await _seed_corrections(records, 10)
        assert await optimization_lock(records, "support").acquire()

        with pytest.raises(OptimizationInProgressError):
            await AutoOptimizer(records, make_llm()).optimize_agent("support")

    async def test_concurrent_passes_single_flight(self, records, agent, make_llm):
        await _seed_corrections(records, 10)
        llm = make_llm(default=PATTERNS_REPLY)
        first = AutoOptimizer(records, llm)
        second = AutoOptimizer(records, llm)

        outcomes = await asyncio.gather(
            first.optimize_agent("support"),
            second.optimize_agent("support"),
            return_exceptions=True,
        )

        errors = [o for o in outcomes if isinstance(o, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], OptimizationInProgressError)
        assert len(await records.list_ab_tests("support")) == 1

    async def test_timeout_marks_run_failed(self, records, agent):
        class HangingLLM:
            async def complete(self, prompt, *, max_tokens=2000, temperature=0.7):
                await asyncio.sleep(5)
                return ""

        await _seed_corrections(records, 3)
        optimizer = AutoOptimizer(
            records, HangingLLM(), config=OptimizerConfig(pass_timeout_seconds=0.05)
        )

        with pytest.raises(OptimizationError, match="timed out"):
            await optimizer.optimize_agent("support")
        run = await optimizer.get_latest_run("support")
        assert run.status is OptimizationStatus.FAILED

    async def test_run_closes_when_test_ends(self, records, agent, make_llm):
        await _seed_corrections(records, 10)
        manager = ABTestManager(records)
        optimizer = AutoOptimizer(
            records, make_llm([PATTERNS_REPLY, VARIATIONS_REPLY]), ab_tests=manager
        )
        result = await optimizer.optimize_agent("support")

        await manager.cancel_test(result.ab_test_id)

        run = await optimizer.get_latest_run("support")
        assert run.status is OptimizationStatus.CANCELLED
        assert run.finished_at is not None

    async def test_failed_link_cancels_started_test(
        self, records, agent, make_llm, monkeypatch
    ):
        await _seed_corrections(records, 10)
        original = records.update_optimization_run

        async def unavailable_when_testing(agent_id, run_id, fn):
            def _apply(run):
                updated = fn(run)
                if updated.status is OptimizationStatus.TESTING:
                    raise BackendError("store unavailable")
                return updated

            return await original(agent_id, run_id, _apply)

        monkeypatch.setattr(records, "update_optimization_run", unavailable_when_testing)
        optimizer = AutoOptimizer(records, make_llm(default=PATTERNS_REPLY))

        with pytest.raises(BackendError):
            await optimizer.optimize_agent("support")

        [test] = await records.list_ab_tests("support")
        assert test.status is ABTestStatus.CANCELLED
        assert (await optimizer.get_latest_run("support")).status is OptimizationStatus.FAILED

        monkeypatch.undo()
        result = await optimizer.optimize_agent("support")
        assert (await records.get_ab_test(result.ab_test_id)).status is ABTestStatus.RUNNING

    async def test_timeout_after_start_cancels_test(self, records, agent, make_llm):
        class SlowStartManager(ABTestManager):
            async def start_ab_test(self, *args, **kwargs):
                test = await super().start_ab_test(*args, **kwargs)
                await asyncio.sleep(5)
                return test

        await _seed_corrections(records, 10)
        optimizer = AutoOptimizer(
            records,
            make_llm(default=PATTERNS_REPLY),
            config=OptimizerConfig(pass_timeout_seconds=0.2),
            ab_tests=SlowStartManager(records),
        )

        with pytest.raises(OptimizationError, match="timed out"):
            await optimizer.optimize_agent("support")

        [test] = await records.list_ab_tests("support")
        assert test.status is ABTestStatus.CANCELLED
        assert await ABTestManager(records).get_active_test("support") is None

    async def test_existing_test_survives_conflicting_pass(self, records, agent, make_llm):
        manager = ABTestManager(records)
        existing = await manager.start_ab_test("support", "A", "B")
        await _seed_corrections(records, 10)
        optimizer = AutoOptimizer(
            records, make_llm(default=PATTERNS_REPLY), ab_tests=manager
        )

        with pytest.raises(ABTestConflictError):
            await optimizer.optimize_agent("support")

        assert (await records.get_ab_test(existing.id)).status is ABTestStatus.RUNNING
