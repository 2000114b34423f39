"""Offline evaluation of prompt variations against collected corrections."""
from __future__ import annotations

from typing import TYPE_CHECKING

from agentloop_core.errors import LLMError
from agentloop_core.logging import get_logger

from agentloop_optimizer.scoring import LengthRatioScorer
from agentloop_optimizer.types import VariationTestResult

if TYPE_CHECKING:
    from agentloop_runtime.llm import LLMProvider

    from agentloop_optimizer.scoring import Scorer
    from agentloop_optimizer.types import FeedbackDataset, FeedbackSample, PromptVariation

logger = get_logger("optimizer.tester")


class VariantTester:
    """Scores each variation on a handful of samples and ranks them.

    With an ``llm``, the variation prompt is replayed against each sample's
    input and the generated output is scored against the user's corrected
    output. Without one, the corrected output stands in for the candidate,
    so every variation receives the same proxy score.
    """

    def __init__(
        self,
        *,
        scorer: Scorer | None = None,
        llm: LLMProvider | None = None,
        sample_size: int = 5,
        improvement_threshold: float = 80,
        max_tokens: int = 2000,
    ) -> None:
        self._scorer = scorer or LengthRatioScorer()
        self._llm = llm
        self._sample_size = sample_size
        self._improvement_threshold = improvement_threshold
        self._max_tokens = max_tokens

    async def _candidate(self, variation: PromptVariation, sample: FeedbackSample) -> str:
        if self._llm is None:
            return sample.corrected_output
        prompt = f"{variation.prompt}\n\nUser: {sample.input}\n\nAssistant:"
        try:
            return await self._llm.complete(prompt, max_tokens=self._max_tokens)
        except LLMError as exc:
            logger.warning("Replay failed for %s: %s", variation.id, exc)
            return ""

    async def test_variation(
        self, variation: PromptVariation, dataset: FeedbackDataset
    ) -> VariationTestResult:
        samples = dataset.samples[: self._sample_size]
        if not samples:
            return VariationTestResult(variation_id=variation.id, score=0.0)

        total = 0.0
        improvements: list[str] = []
        for sample in samples:
            candidate = await self._candidate(variation, sample)
            score = await self._scorer.score(candidate, sample.corrected_output)
            total += score
            if score > self._improvement_threshold:
                improvements.append(f"Improved output for: {sample.input[:50]}...")

        return VariationTestResult(
            variation_id=variation.id,
            score=total / len(samples),
            improvements=improvements,
        )

    async def test_variations(
        self, variations: list[PromptVariation], dataset: FeedbackDataset
    ) -> list[VariationTestResult]:
        """Results for every variation, best score first."""
        results = [await self.test_variation(v, dataset) for v in variations]
        results.sort(key=lambda r: r.score, reverse=True)
        for result in results:
            logger.debug("Variation %s scored %.1f", result.variation_id, result.score)
        return results
