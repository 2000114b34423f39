"""AutoOptimizer: feedback → patterns → prompt variations → A/B test.

One pass per agent at a time. The pass is guarded by a lease lock plus a
check for runs still ``analyzing`` or ``testing``; a run stays
``testing`` until its A/B test concludes, so no new pass starts while a
candidate is on live traffic.
"""
from __future__ import annotations

import asyncio
import dataclasses
import time
from typing import TYPE_CHECKING

from agentloop_core.config import OptimizerConfig
from agentloop_core.errors import (
    AgentLoopError,
    EmptyDatasetError,
    OptimizationError,
    OptimizationInProgressError,
)
from agentloop_core.logging import get_logger
from agentloop_core.types import OptimizationRun, OptimizationStatus

from agentloop_optimizer.ab_testing import ABTestManager
from agentloop_optimizer.feedback import FeedbackCollector, optimization_lock
from agentloop_optimizer.patterns import PatternAnalyzer
from agentloop_optimizer.tester import VariantTester
from agentloop_optimizer.types import OptimizationResult
from agentloop_optimizer.variants import VariantGenerator

if TYPE_CHECKING:
    from agentloop_runtime.llm import LLMProvider
    from agentloop_runtime.records import RecordStore

    from agentloop_optimizer.types import PromptVariation, VariationTestResult

logger = get_logger("optimizer.auto")


def build_recommendation(best: PromptVariation, result: VariationTestResult) -> str:
    score = round(result.score)
    if result.score > 85:
        return (
            f"Highly recommended: This variation scored {score}% and addresses "
            f"key issues. {best.rationale}"
        )
    if result.score > 70:
        return (
            f"Recommended: This variation scored {score}% and shows improvement. "
            f"{best.rationale}"
        )
    return (
        f"Caution: This variation scored {score}%. "
        "Consider manual review before rollout."
    )


class AutoOptimizer:
    """Runs optimization passes for agents.

    Usage::

        optimizer = AutoOptimizer(records, llm, ab_tests=manager)
        collector = FeedbackCollector(records, on_threshold=optimizer.trigger)
        result = await optimizer.optimize_agent("support", triggered_by="manual")
    """

    def __init__(
        self,
        records: RecordStore,
        llm: LLMProvider,
        *,
        config: OptimizerConfig | None = None,
        ab_tests: ABTestManager | None = None,
        collector: FeedbackCollector | None = None,
        tester: VariantTester | None = None,
    ) -> None:
        self._records = records
        self._config = cfg = config or OptimizerConfig()
        self._ab_tests = ab_tests or ABTestManager(records)
        self._collector = collector or FeedbackCollector(records, optimizer_config=cfg)
        self._analyzer = PatternAnalyzer(llm, sample_size=cfg.pattern_sample_size)
        self._generator = VariantGenerator(llm, count=cfg.variation_count)
        self._tester = tester or VariantTester(
            sample_size=cfg.test_sample_size,
            improvement_threshold=cfg.improvement_threshold,
        )

    async def trigger(self, agent_id: str) -> OptimizationResult | None:
        """Threshold callback: start a pass unless one is already running."""
        try:
            return await self.optimize_agent(agent_id)
        except OptimizationInProgressError:
            logger.info("Skipping trigger for %s: optimization in progress", agent_id)
            return None

    async def optimize_agent(
        self, agent_id: str, triggered_by: str = "accumulated_feedback"
    ) -> OptimizationResult:
        """Run one full optimization pass and start an A/B test for the best variation.

        Raises:
            OptimizationInProgressError: Another pass holds the lock or a
                run is still active.
            EmptyDatasetError: The agent has no correction feedback.
            ABTestConflictError: The agent already has a running A/B test.
            AgentNotFoundError: The agent does not exist.
            OptimizationError: The pass exceeded its timeout.
        """
        lock = optimization_lock(
            self._records, agent_id, ttl=self._config.lock_ttl_seconds
        )
        if not await lock.acquire():
            msg = f"Optimization already running for agent {agent_id!r}"
            raise OptimizationInProgressError(msg)
        try:
            runs = await self._records.list_optimization_runs(agent_id)
            if any(run.is_active for run in runs):
                msg = f"Agent {agent_id!r} has an active optimization run"
                raise OptimizationInProgressError(msg)

            agent = await self._records.get_agent(agent_id)
            run = OptimizationRun(agent_id=agent_id, triggered_by=triggered_by)
            await self._records.save_optimization_run(run)
            logger.info("Starting optimization run %s for agent %s", run.id, agent_id)

            try:
                async with asyncio.timeout(self._config.pass_timeout_seconds):
                    return await self._run_pass(run, agent.system_prompt)
            except TimeoutError as exc:
                await self._abort(run, "Optimization pass timed out")
                msg = f"Optimization pass for agent {agent_id!r} timed out"
                raise OptimizationError(msg) from exc
            except asyncio.CancelledError:
                await self._abort(run, "Optimization pass cancelled")
                raise
            except Exception as exc:
                await self._abort(run, str(exc) or type(exc).__name__)
                raise
        finally:
            await lock.release()

    async def _run_pass(
        self, run: OptimizationRun, current_prompt: str
    ) -> OptimizationResult:
        agent_id = run.agent_id
        dataset = await self._collector.get_edits_for_optimization(
            agent_id, limit=self._config.dataset_limit
        )
        if not dataset.samples:
            msg = f"No correction feedback available for agent {agent_id!r}"
            raise EmptyDatasetError(msg)
        logger.info("Built dataset with %d samples", len(dataset))

        patterns = await self._analyzer.analyze(dataset)
        variations = await self._generator.generate(current_prompt, patterns)
        results = await self._tester.test_variations(variations, dataset)

        best_result = results[0]
        best = next(v for v in variations if v.id == best_result.variation_id)
        logger.info(
            "Best variation %s scored %.1f", best.id, best_result.score
        )

        test = await self._ab_tests.start_ab_test(
            agent_id, current_prompt, best.prompt, self._config.initial_traffic_split
        )
        recommendation = build_recommendation(best, best_result)

        def _testing(r: OptimizationRun) -> OptimizationRun:
            return dataclasses.replace(
                r,
                status=OptimizationStatus.TESTING,
                dataset_size=len(dataset),
                edit_patterns=[p.to_dict() for p in patterns],
                prompt_variations=[v.to_dict() for v in variations],
                test_results=[t.to_dict() for t in results],
                recommendation=recommendation,
                ab_test_id=test.id,
            )

        await self._records.update_optimization_run(agent_id, run.id, _testing)
        logger.info("Optimization run %s is now testing via %s", run.id, test.id)

        return OptimizationResult(
            run_id=run.id,
            agent_id=agent_id,
            edit_patterns=patterns,
            prompt_variations=variations,
            test_results=results,
            best_variation=best,
            recommendation=recommendation,
            ab_test_id=test.id,
        )

    async def _abort(self, run: OptimizationRun, error: str) -> None:
        """Fail the run and cancel any A/B test it started but never linked."""
        test = await self._ab_tests.get_active_test(run.agent_id)
        if test is not None and test.started_at >= run.triggered_at:
            logger.warning(
                "Cancelling A/B test %s started by failed run %s", test.id, run.id
            )
            try:
                await self._ab_tests.cancel_test(test.id)
            except AgentLoopError as exc:
                logger.error("Could not cancel A/B test %s: %s", test.id, exc)
        await self._fail(run, error)

    async def _fail(self, run: OptimizationRun, error: str) -> None:
        logger.error("Optimization run %s failed: %s", run.id, error)

        def _apply(r: OptimizationRun) -> OptimizationRun:
            return dataclasses.replace(
                r, status=OptimizationStatus.FAILED, error=error, finished_at=time.time()
            )

        await self._records.update_optimization_run(run.agent_id, run.id, _apply)

    # ── Queries ────────────────────────────────────────────────

    async def get_optimization_runs(
        self, agent_id: str, limit: int = 10
    ) -> list[OptimizationRun]:
        """Runs of an agent, newest first."""
        return (await self._records.list_optimization_runs(agent_id))[:limit]

    async def get_latest_run(self, agent_id: str) -> OptimizationRun | None:
        runs = await self.get_optimization_runs(agent_id, limit=1)
        return runs[0] if runs else None
