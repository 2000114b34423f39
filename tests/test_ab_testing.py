from __future__ import annotations

import asyncio
import dataclasses
import random
import time

import pytest
from agentloop_core.config import ABTestConfig
from agentloop_core.errors import (
    ABTestConflictError,
    ABTestNotFoundError,
    ABTestStateError,
)
from agentloop_core.types import (
    ABTestStatus,
    AgentConfig,
    OptimizationRun,
    OptimizationStatus,
    Variant,
)
from agentloop_optimizer.ab_testing import (
    END_CANCELLED,
    END_EXPIRED,
    END_MANUAL,
    END_SIGNIFICANT,
    ABTestManager,
)

CANDIDATE = "You are a friendly support agent. Always cite order numbers."


async def _feed(manager, variant, score, n, agent_id="support"):
    test = None
    for _ in range(n):
        test = await manager.record_trace_result(agent_id, variant, score)
    return test


class TestStartAndSelect:
    """Starting tests and routing traffic."""

    async def test_start(self, records, agent):
        manager = ABTestManager(records)
        test = await manager.start_ab_test("support", agent.system_prompt, CANDIDATE)

        assert test.status is ABTestStatus.RUNNING
        assert test.traffic_split == 0.2
        assert (await manager.get_active_test("support")).id == test.id
        assert (await manager.get_test(test.id)).variant_b_prompt == CANDIDATE

    @pytest.mark.parametrize("split", [-0.1, 1.01])
    async def test_invalid_split(self, records, split):
        with pytest.raises(ValueError):
            await ABTestManager(records).start_ab_test("support", "a", "b", split)

    async def test_one_running_test_per_agent(self, records, agent):
        manager = ABTestManager(records)
        await manager.start_ab_test("support", "a", "b")
        with pytest.raises(ABTestConflictError):
            await manager.start_ab_test("support", "a", "c")
        await manager.start_ab_test("billing", "a", "b")

    async def test_no_test_no_variant(self, records):
        manager = ABTestManager(records)
        assert await manager.select_variant("support") is None
        assert await manager.get_prompt_for_variant("support", Variant.A) is None
        assert await manager.record_trace_result("support", Variant.A, 90) is None

    async def test_selection_converges_to_split(self, records, agent):
        manager = ABTestManager(records, rng=random.Random(1234))
        await manager.start_ab_test("support", "a", "b", traffic_split=0.3)

        picks = [await manager.select_variant("support") for _ in range(5000)]

        share_b = picks.count(Variant.B) / len(picks)
        assert share_b == pytest.approx(0.3, abs=0.02)

    @pytest.mark.parametrize(("split", "expected"), [(0.0, Variant.A), (1.0, Variant.B)])
    async def test_extreme_splits(self, records, split, expected):
        manager = ABTestManager(records, rng=random.Random(7))
        await manager.start_ab_test("support", "a", "b", traffic_split=split)
        picks = {await manager.select_variant("support") for _ in range(200)}
        assert picks == {expected}

    async def test_prompt_for_variant(self, records, agent):
        manager = ABTestManager(records)
        await manager.start_ab_test("support", agent.system_prompt, CANDIDATE)
        assert await manager.get_prompt_for_variant("support", Variant.B) == CANDIDATE
        assert (
            await manager.get_prompt_for_variant("support", Variant.A)
            == agent.system_prompt
        )

    async def test_get_tests_newest_first(self, records):
        manager = ABTestManager(records)
        first = await manager.start_ab_test("support", "a", "b")
        await manager.cancel_test(first.id)
        second = await manager.start_ab_test("support", "a", "c")

        tests = await manager.get_tests("support")
        assert [t.id for t in tests] == [second.id, first.id]
        assert len(await manager.get_tests("support", limit=1)) == 1

    async def test_unknown_test(self, records):
        with pytest.raises(ABTestNotFoundError):
            await ABTestManager(records).get_test("missing")


class TestCompletionGates:
    """Sample-size and significance gates, evaluated on every result."""

    async def test_incremental_mean(self, records):
        manager = ABTestManager(records)
        await manager.start_ab_test("support", "a", "b")
        for score in (60, 70, 95):
            test = await manager.record_trace_result("support", Variant.A, score)
        assert test.variant_a_traces == 3
        assert test.variant_a_score == pytest.approx(75.0)
        assert test.variant_b_traces == 0

    async def test_below_min_samples_stays_running(self, records, agent):
        manager = ABTestManager(records)
        await manager.start_ab_test("support", agent.system_prompt, CANDIDATE)
        await _feed(manager, Variant.A, 60, 50)
        test = await _feed(manager, Variant.B, 90, 49)

        assert test.status is ABTestStatus.RUNNING
        assert test.winning_variant is None

    async def test_min_samples_reached_b_wins_and_rolls_out(self, records, agent):
        manager = ABTestManager(records)
        await manager.start_ab_test("support", agent.system_prompt, CANDIDATE)
        await _feed(manager, Variant.A, 60, 50)
        test = await _feed(manager, Variant.B, 90, 50)

        assert test.status is ABTestStatus.COMPLETED
        assert test.winning_variant is Variant.B
        assert test.end_reason == END_SIGNIFICANT
        assert test.ended_at is not None
        assert (await records.get_agent("support")).system_prompt == CANDIDATE

    async def test_difference_below_threshold_stays_running(self, records, agent):
        manager = ABTestManager(records)
        await manager.start_ab_test("support", agent.system_prompt, CANDIDATE)
        await _feed(manager, Variant.A, 80, 50)
        test = await _feed(manager, Variant.B, 84.9, 50)

        assert test.status is ABTestStatus.RUNNING
        assert test.winning_variant is None

    async def test_difference_at_threshold_completes(self, records, agent):
        manager = ABTestManager(records)
        await manager.start_ab_test("support", agent.system_prompt, CANDIDATE)
        await _feed(manager, Variant.A, 80, 50)
        test = await _feed(manager, Variant.B, 85, 50)

        assert test.status is ABTestStatus.COMPLETED
        assert test.winning_variant is Variant.B

    async def test_a_wins_keeps_prompt(self, records, agent):
        manager = ABTestManager(records)
        await manager.start_ab_test("support", agent.system_prompt, CANDIDATE)
        await _feed(manager, Variant.B, 50, 50)
        test = await _feed(manager, Variant.A, 90, 50)

        assert test.winning_variant is Variant.A
        assert (await records.get_agent("support")).system_prompt == agent.system_prompt

    async def test_results_after_end_are_ignored(self, records, agent):
        manager = ABTestManager(records)
        started = await manager.start_ab_test("support", agent.system_prompt, CANDIDATE)
        await manager.cancel_test(started.id)

        test = await manager.record_trace_result(
            "support", Variant.B, 100, test_id=started.id
        )
        assert test.status is ABTestStatus.CANCELLED
        assert test.variant_b_traces == 0

    async def test_custom_gates(self, records, agent):
        manager = ABTestManager(
            records, ABTestConfig(min_samples=2, significance_threshold=1.0)
        )
        await manager.start_ab_test("support", agent.system_prompt, CANDIDATE)
        await _feed(manager, Variant.A, 70, 2)
        test = await _feed(manager, Variant.B, 72, 2)
        assert test.winning_variant is Variant.B


class TestExpiry:
    """Tests that never reach significance end as expired."""

    async def test_trace_cap(self, records, agent):
        manager = ABTestManager(records, ABTestConfig(max_total_traces=10))
        await manager.start_ab_test("support", agent.system_prompt, CANDIDATE)
        test = await _feed(manager, Variant.A, 70, 10)

        assert test.status is ABTestStatus.CANCELLED
        assert test.end_reason == END_EXPIRED
        assert test.winning_variant is None
        assert (await records.get_agent("support")).system_prompt == agent.system_prompt

    async def test_max_duration(self, records, agent):
        manager = ABTestManager(records, ABTestConfig(max_duration_days=30))
        test = await manager.start_ab_test("support", agent.system_prompt, CANDIDATE)
        await records.update_ab_test(
            test.id,
            lambda t: dataclasses.replace(t, started_at=time.time() - 31 * 86_400),
        )

        test = await manager.record_trace_result("support", Variant.A, 70)

        assert test.status is ABTestStatus.CANCELLED
        assert test.end_reason == END_EXPIRED


class TestManualTransitions:
    """Human selection and cancellation are terminal and idempotent."""

    async def test_select_winner_bypasses_gates(self, records, agent):
        manager = ABTestManager(records)
        test = await manager.start_ab_test("support", agent.system_prompt, CANDIDATE)

        ended = await manager.select_winner(test.id, Variant.B)

        assert ended.status is ABTestStatus.COMPLETED
        assert ended.winning_variant is Variant.B
        assert ended.end_reason == END_MANUAL
        assert (await records.get_agent("support")).system_prompt == CANDIDATE

    async def test_select_same_winner_is_noop(self, records, agent):
        manager = ABTestManager(records)
        test = await manager.start_ab_test("support", agent.system_prompt, CANDIDATE)
        first = await manager.select_winner(test.id, Variant.A)
        again = await manager.select_winner(test.id, Variant.A)
        assert again.ended_at == first.ended_at

    async def test_select_other_winner_conflicts(self, records, agent):
        manager = ABTestManager(records)
        test = await manager.start_ab_test("support", agent.system_prompt, CANDIDATE)
        await manager.select_winner(test.id, Variant.A)
        with pytest.raises(ABTestStateError):
            await manager.select_winner(test.id, Variant.B)

    async def test_cancel_is_idempotent(self, records, agent):
        manager = ABTestManager(records)
        test = await manager.start_ab_test("support", agent.system_prompt, CANDIDATE)
        first = await manager.cancel_test(test.id)
        again = await manager.cancel_test(test.id)

        assert first.status is ABTestStatus.CANCELLED
        assert first.end_reason == END_CANCELLED
        assert again.ended_at == first.ended_at
        with pytest.raises(ABTestStateError):
            await manager.select_winner(test.id, Variant.B)

    async def test_cancel_completed_conflicts(self, records, agent):
        manager = ABTestManager(records)
        test = await manager.start_ab_test("support", agent.system_prompt, CANDIDATE)
        await manager.select_winner(test.id, Variant.A)
        with pytest.raises(ABTestStateError):
            await manager.cancel_test(test.id)

    async def test_linked_run_completes(self, records, agent):
        manager = ABTestManager(records)
        test = await manager.start_ab_test("support", agent.system_prompt, CANDIDATE)
        run = OptimizationRun(
            agent_id="support", status=OptimizationStatus.TESTING, ab_test_id=test.id
        )
        await records.save_optimization_run(run)

        await manager.select_winner(test.id, Variant.B)

        [stored] = await records.list_optimization_runs("support")
        assert stored.status is OptimizationStatus.COMPLETED
        assert stored.finished_at is not None


@pytest.fixture(params=["memory", "sqlite"])
def shared_records(request):
    from agentloop_runtime.records import RecordStore

    backends = {"memory": "memory_state_store", "sqlite": "sqlite_state_store"}
    return RecordStore(request.getfixturevalue(backends[request.param]))


class CountingManager(ABTestManager):
    """Counts terminal transitions and rollouts."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.ended: list[str] = []
        self.rollouts: list[str] = []

    async def _on_ended(self, test):
        self.ended.append(test.id)
        await super()._on_ended(test)

    async def _rollout(self, test):
        self.rollouts.append(test.id)
        await super()._rollout(test)


class TestConcurrentResults:
    """Results recorded from many runs at once are never lost."""

    async def test_gathered_results_keep_exact_counts_and_means(self, shared_records):
        manager = ABTestManager(shared_records, ABTestConfig(min_samples=1000))
        started = await manager.start_ab_test("support", "a", "b")
        calls = [
            manager.record_trace_result("support", Variant.A, float(i)) for i in range(60)
        ] + [manager.record_trace_result("support", Variant.B, 90.0) for _ in range(40)]

        await asyncio.gather(*calls)

        test = await manager.get_test(started.id)
        assert test.status is ABTestStatus.RUNNING
        assert test.variant_a_traces == 60
        assert test.variant_b_traces == 40
        assert test.total_traces == 100
        assert test.variant_a_score == pytest.approx(29.5)
        assert test.variant_b_score == pytest.approx(90.0)

    async def test_concurrent_gate_crossing_ends_once(self, shared_records):
        await shared_records.save_agent(
            AgentConfig(agent_id="support", system_prompt="You are a support agent.")
        )
        manager = CountingManager(
            shared_records, ABTestConfig(min_samples=10, significance_threshold=5.0)
        )
        started = await manager.start_ab_test(
            "support", "You are a support agent.", CANDIDATE
        )
        await shared_records.save_optimization_run(OptimizationRun(
            agent_id="support", status=OptimizationStatus.TESTING, ab_test_id=started.id
        ))
        calls = []
        for _ in range(50):
            calls.append(manager.record_trace_result("support", Variant.A, 60.0))
            calls.append(manager.record_trace_result("support", Variant.B, 90.0))

        await asyncio.gather(*calls)

        test = await manager.get_test(started.id)
        assert test.status is ABTestStatus.COMPLETED
        assert test.winning_variant is Variant.B
        assert test.total_traces == test.variant_a_traces + test.variant_b_traces
        assert manager.ended == [started.id]
        assert manager.rollouts == [started.id]
        assert (await shared_records.get_agent("support")).system_prompt == CANDIDATE
        [run] = await shared_records.list_optimization_runs("support")
        assert run.status is OptimizationStatus.COMPLETED
