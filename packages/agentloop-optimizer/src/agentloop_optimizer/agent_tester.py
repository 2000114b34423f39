"""Pre-deployment checks of an agent config against sample conversations."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from agentloop_core.errors import LLMError
from agentloop_core.logging import get_logger
from agentloop_runtime.runtime import render_prompt

from agentloop_optimizer.scoring import LLMJudgeScorer

if TYPE_CHECKING:
    from collections.abc import Sequence

    from agentloop_core.types import AgentConfig
    from agentloop_runtime.llm import LLMProvider

    from agentloop_optimizer.scoring import Scorer

logger = get_logger("optimizer.agent_tester")

PASS_THRESHOLD = 0.7

_REFINE_PROMPT = """\
Refine this AI agent system prompt based on test failures.

Current System Prompt:
{prompt}

Test Failures ({count} failed tests):
{failures}

Keep the agent's core purpose, address the specific failures and keep the
prompt under 500 words. Respond with the refined system prompt ONLY."""


@dataclass(frozen=True, slots=True)
class SampleResult:
    input: str
    expected: str
    actual: str
    score: float
    passed: bool


@dataclass(frozen=True, slots=True)
class AgentTestReport:
    """Per-sample results with scores normalized to 0-1."""

    results: list[SampleResult] = field(default_factory=list)
    avg_score: float = 0.0
    pass_rate: float = 0.0


class AgentTester:
    """Runs a config on sample inputs and grades the answers.

    Each sample is one completion with the config's system prompt and
    temperature (no tools). The answer is graded against the expected
    output by ``scorer`` (an LLM judge by default, 0-100) and passes at
    ``pass_threshold`` of the scale.
    """

    def __init__(
        self,
        llm: LLMProvider,
        *,
        scorer: Scorer | None = None,
        pass_threshold: float = PASS_THRESHOLD,
        max_tokens: int = 1000,
    ) -> None:
        self._llm = llm
        self._scorer = scorer or LLMJudgeScorer(llm)
        self._pass_threshold = pass_threshold
        self._max_tokens = max_tokens

    async def _run_sample(self, config: AgentConfig, sample_input: str) -> str:
        prompt = render_prompt([
            {"role": "system", "content": config.system_prompt},
            {"role": "user", "content": sample_input},
        ])
        return await self._llm.complete(
            prompt, max_tokens=self._max_tokens, temperature=config.temperature
        )

    async def test_agent(
        self, config: AgentConfig, samples: Sequence[tuple[str, str]]
    ) -> AgentTestReport:
        """Grade ``config`` on ``(input, expected_output)`` pairs.

        A sample whose completion fails scores 0.
        """
        if not samples:
            return AgentTestReport()

        results: list[SampleResult] = []
        for i, (sample_input, expected) in enumerate(samples, start=1):
            try:
                actual = await self._run_sample(config, sample_input)
            except LLMError as exc:
                logger.warning("Sample %d/%d failed: %s", i, len(samples), exc)
                results.append(SampleResult(
                    sample_input, expected, f"ERROR: {exc}", 0.0, passed=False
                ))
                continue
            raw = await self._scorer.score(actual, expected)
            score = min(1.0, max(0.0, raw / 100))
            results.append(SampleResult(
                sample_input, expected, actual, score,
                passed=score >= self._pass_threshold,
            ))
            logger.debug("Sample %d/%d scored %.2f", i, len(samples), score)

        report = AgentTestReport(
            results=results,
            avg_score=sum(r.score for r in results) / len(results),
            pass_rate=sum(r.passed for r in results) / len(results),
        )
        logger.info(
            "Agent %s: avg score %.2f, pass rate %.0f%%",
            config.agent_id, report.avg_score, report.pass_rate * 100,
        )
        return report

    async def refine_prompt(self, prompt: str, report: AgentTestReport) -> str:
        """Rewrite ``prompt`` from the failed samples; unchanged when passing or on error."""
        if report.pass_rate >= self._pass_threshold:
            return prompt
        failures = [r for r in report.results if not r.passed]
        listing = "\n---\n".join(
            f"Test {i}:\n- Input: {f.input}\n- Expected: {f.expected}\n"
            f"- Actual: {f.actual}\n- Score: {f.score * 100:.1f}%"
            for i, f in enumerate(failures, start=1)
        )
        try:
            text = await self._llm.complete(
                _REFINE_PROMPT.format(prompt=prompt, count=len(failures), failures=listing),
                max_tokens=2000,
                temperature=0.5,
            )
        except LLMError as exc:
            logger.warning("Prompt refinement failed, keeping prompt: %s", exc)
            return prompt
        return text.strip() or prompt
