"""A/B testing of prompt variants on live traffic.

One test per agent runs at a time. Traffic is split probabilistically,
per-variant scores are kept as incremental means, and the test ends by
itself once both variants have enough samples and their means differ by
at least the significance threshold. A winning variant B is rolled out
by overwriting the agent's system prompt.

Every result is folded in through a single atomic record update, so the
winner, the terminal status and the end timestamp are always written
together and a test transitions out of ``running`` exactly once.
"""
from __future__ import annotations

import dataclasses
import random
import time
from typing import TYPE_CHECKING

from agentloop_core.config import ABTestConfig
from agentloop_core.errors import ABTestConflictError, ABTestStateError
from agentloop_core.logging import get_logger
from agentloop_core.types import (
    ABTest,
    ABTestStatus,
    OptimizationRun,
    OptimizationStatus,
    Variant,
)
from agentloop_runtime.locks import KeyLock

if TYPE_CHECKING:
    from agentloop_core.types import AgentConfig
    from agentloop_runtime.records import RecordStore

logger = get_logger("optimizer.ab_testing")

_DAY = 86_400.0
_START_LOCK_PREFIX = "agentloop:lock:abtest:"

END_SIGNIFICANT = "significant"
END_EXPIRED = "expired"
END_MANUAL = "manual"
END_CANCELLED = "cancelled"


def _fold(test: ABTest, variant: Variant, score: float) -> ABTest:
    """Add one score to the incremental mean of ``variant``."""
    if variant is Variant.A:
        n = test.variant_a_traces + 1
        mean = test.variant_a_score + (score - test.variant_a_score) / n
        return dataclasses.replace(test, variant_a_traces=n, variant_a_score=mean)
    n = test.variant_b_traces + 1
    mean = test.variant_b_score + (score - test.variant_b_score) / n
    return dataclasses.replace(test, variant_b_traces=n, variant_b_score=mean)


class ABTestManager:
    """Runs and concludes A/B tests for agent system prompts.

    Usage::

        manager = ABTestManager(records, config.abtest)
        test = await manager.start_ab_test("support", current, candidate, 0.2)
        variant = await manager.select_variant("support")
        prompt = await manager.get_prompt_for_variant("support", variant)
        await manager.record_trace_result("support", variant, score=82)
    """

    def __init__(
        self,
        records: RecordStore,
        config: ABTestConfig | None = None,
        *,
        rng: random.Random | None = None,
    ) -> None:
        self._records = records
        self._config = config or ABTestConfig()
        self._rng = rng or random.Random()

    # ── Lifecycle ──────────────────────────────────────────────

    async def start_ab_test(
        self,
        agent_id: str,
        variant_a_prompt: str,
        variant_b_prompt: str,
        traffic_split: float = 0.2,
    ) -> ABTest:
        """Start a test routing ``traffic_split`` of traffic to variant B.

        Raises:
            ValueError: If ``traffic_split`` is outside [0, 1].
            ABTestConflictError: If the agent already has a running test.
        """
        if not 0.0 <= traffic_split <= 1.0:
            msg = f"traffic_split must be within [0, 1], got {traffic_split}"
            raise ValueError(msg)

        lock = KeyLock(
            self._records.state_store, f"{_START_LOCK_PREFIX}{agent_id}", ttl=30.0
        )
        if not await lock.acquire():
            msg = f"A/B test for agent {agent_id!r} is already being started"
            raise ABTestConflictError(msg)
        try:
            if await self.get_active_test(agent_id) is not None:
                msg = f"Agent {agent_id!r} already has a running A/B test"
                raise ABTestConflictError(msg)
            test = ABTest(
                agent_id=agent_id,
                variant_a_prompt=variant_a_prompt,
                variant_b_prompt=variant_b_prompt,
                traffic_split=traffic_split,
            )
            await self._records.save_ab_test(test)
        finally:
            await lock.release()

        logger.info(
            "Started A/B test %s for agent %s (%.0f%% to B)",
            test.id, agent_id, traffic_split * 100,
        )
        return test

    async def select_variant(self, agent_id: str) -> Variant | None:
        """Pick the variant for the next run, or None if no test is running."""
        test = await self.get_active_test(agent_id)
        if test is None:
            return None
        return Variant.B if self._rng.random() < test.traffic_split else Variant.A

    async def get_prompt_for_variant(
        self, agent_id: str, variant: Variant | None
    ) -> str | None:
        """Prompt of ``variant`` in the running test; None when not testing."""
        if variant is None:
            return None
        test = await self.get_active_test(agent_id)
        if test is None:
            return None
        return test.variant_b_prompt if variant is Variant.B else test.variant_a_prompt

    async def record_trace_result(
        self,
        agent_id: str,
        variant: Variant,
        score: float,
        *,
        test_id: str | None = None,
    ) -> ABTest | None:
        """Fold one scored run into the test and conclude it when decided.

        Results arriving after the test has ended are ignored.
        """
        if test_id is None:
            active = await self.get_active_test(agent_id)
            if active is None:
                return None
            test_id = active.id

        ended: list[ABTest] = []

        def _apply(test: ABTest) -> ABTest:
            ended.clear()
            if test.status is not ABTestStatus.RUNNING:
                return test
            updated = self._conclude_if_decided(_fold(test, variant, score))
            if updated.status is not ABTestStatus.RUNNING:
                ended.append(updated)
            return updated

        test = await self._records.update_ab_test(test_id, _apply)
        if ended:
            await self._on_ended(test)
        return test

    def _conclude_if_decided(self, test: ABTest) -> ABTest:
        cfg = self._config
        now = time.time()
        enough = (
            test.variant_a_traces >= cfg.min_samples
            and test.variant_b_traces >= cfg.min_samples
        )
        diff = test.variant_b_score - test.variant_a_score
        if enough and abs(diff) >= cfg.significance_threshold:
            return dataclasses.replace(
                test,
                status=ABTestStatus.COMPLETED,
                winning_variant=Variant.B if diff > 0 else Variant.A,
                end_reason=END_SIGNIFICANT,
                ended_at=now,
            )
        expired = (
            now - test.started_at > cfg.max_duration_days * _DAY
            or test.total_traces >= cfg.max_total_traces
        )
        if expired:
            return dataclasses.replace(
                test, status=ABTestStatus.CANCELLED, end_reason=END_EXPIRED, ended_at=now
            )
        return test

    async def select_winner(self, test_id: str, winner: Variant) -> ABTest:
        """Manually conclude a test, bypassing the sample and significance gates.

        Selecting the same winner again is a no-op.

        Raises:
            ABTestStateError: If the test was cancelled or ended with the
                other variant.
        """
        ended: list[ABTest] = []

        def _apply(test: ABTest) -> ABTest:
            ended.clear()
            if test.status is ABTestStatus.COMPLETED and test.winning_variant is winner:
                return test
            if test.status is not ABTestStatus.RUNNING:
                msg = f"A/B test {test_id!r} already ended ({test.status.value})"
                raise ABTestStateError(msg)
            updated = dataclasses.replace(
                test,
                status=ABTestStatus.COMPLETED,
                winning_variant=winner,
                end_reason=END_MANUAL,
                ended_at=time.time(),
            )
            ended.append(updated)
            return updated

        test = await self._records.update_ab_test(test_id, _apply)
        if ended:
            await self._on_ended(test)
        return test

    async def cancel_test(self, test_id: str) -> ABTest:
        """Cancel a running test; cancelling twice is a no-op.

        Raises:
            ABTestStateError: If the test already completed.
        """
        ended: list[ABTest] = []

        def _apply(test: ABTest) -> ABTest:
            ended.clear()
            if test.status is ABTestStatus.CANCELLED:
                return test
            if test.status is ABTestStatus.COMPLETED:
                msg = f"A/B test {test_id!r} already completed"
                raise ABTestStateError(msg)
            updated = dataclasses.replace(
                test,
                status=ABTestStatus.CANCELLED,
                end_reason=END_CANCELLED,
                ended_at=time.time(),
            )
            ended.append(updated)
            return updated

        test = await self._records.update_ab_test(test_id, _apply)
        if ended:
            await self._on_ended(test)
        return test

    # ── Transition side effects ────────────────────────────────

    async def _on_ended(self, test: ABTest) -> None:
        logger.info(
            "A/B test %s ended: status=%s winner=%s reason=%s (A=%.1f/%d, B=%.1f/%d)",
            test.id, test.status.value,
            test.winning_variant.value if test.winning_variant else None,
            test.end_reason,
            test.variant_a_score, test.variant_a_traces,
            test.variant_b_score, test.variant_b_traces,
        )
        if test.winning_variant is Variant.B:
            await self._rollout(test)
        await self._close_linked_run(test)

    async def _rollout(self, test: ABTest) -> None:
        prompt = test.variant_b_prompt

        def _apply(agent: AgentConfig) -> AgentConfig:
            return dataclasses.replace(agent, system_prompt=prompt, updated_at=time.time())

        await self._records.update_agent(test.agent_id, _apply)
        logger.info("Rolled out variant B of test %s to agent %s", test.id, test.agent_id)

    async def _close_linked_run(self, test: ABTest) -> None:
        runs = await self._records.list_optimization_runs(test.agent_id)
        status = (
            OptimizationStatus.COMPLETED
            if test.status is ABTestStatus.COMPLETED
            else OptimizationStatus.CANCELLED
        )
        for run in runs:
            if run.ab_test_id != test.id or not run.is_active:
                continue

            def _apply(r: OptimizationRun) -> OptimizationRun:
                if not r.is_active:
                    return r
                return dataclasses.replace(r, status=status, finished_at=time.time())

            await self._records.update_optimization_run(test.agent_id, run.id, _apply)

    # ── Queries ────────────────────────────────────────────────

    async def get_active_test(self, agent_id: str) -> ABTest | None:
        for test in await self._records.list_ab_tests(agent_id):
            if test.status is ABTestStatus.RUNNING:
                return test
        return None

    async def get_test(self, test_id: str) -> ABTest:
        return await self._records.get_ab_test(test_id)

    async def get_tests(self, agent_id: str, limit: int = 10) -> list[ABTest]:
        """Tests of an agent, newest first."""
        return (await self._records.list_ab_tests(agent_id))[:limit]
