"""Edit-pattern mining: what do users keep correcting?"""
from __future__ import annotations

from typing import TYPE_CHECKING

from agentloop_core.errors import LLMError
from agentloop_core.logging import get_logger

from agentloop_optimizer.parsing import PatternPayload, parse_structured
from agentloop_optimizer.types import EditPattern, PatternCategory

if TYPE_CHECKING:
    from agentloop_runtime.llm import LLMProvider

    from agentloop_optimizer.types import FeedbackDataset

logger = get_logger("optimizer.patterns")

MAX_PATTERNS = 5

_PATTERN_PROMPT = """\
Analyze these user corrections to AI agent outputs and identify patterns.

Dataset (showing input → original output → user's corrected version):
{examples}

Identify 3-5 clear patterns in how users are correcting the agent.
For each pattern, provide:
1. Pattern description
2. Category (tone, accuracy, format, content, other)
3. Example

Respond with a JSON array:
[
  {{
    "pattern": "description of pattern",
    "category": "tone|accuracy|format|content|other",
    "example": "example of the issue"
  }}
]"""


def _category(raw: str) -> PatternCategory:
    try:
        return PatternCategory(raw.strip().lower())
    except ValueError:
        return PatternCategory.OTHER


def fallback_pattern(dataset: FeedbackDataset) -> list[EditPattern]:
    """Single generic pattern used when the LLM output is unusable."""
    first = dataset.samples[0].original_output[:100] if dataset.samples else ""
    return [
        EditPattern(
            pattern="Users frequently edit agent outputs",
            category=PatternCategory.OTHER,
            frequency=len(dataset.samples),
            examples=[first],
        )
    ]


class PatternAnalyzer:
    """Summarizes the most recent corrections into 3-5 EditPatterns.

    Never raises on LLM or parse failure: those degrade to
    :func:`fallback_pattern`.
    """

    def __init__(
        self,
        llm: LLMProvider,
        *,
        sample_size: int = 10,
        snippet_chars: int = 200,
        max_tokens: int = 2000,
    ) -> None:
        self._llm = llm
        self._sample_size = sample_size
        self._snippet_chars = snippet_chars
        self._max_tokens = max_tokens

    def build_prompt(self, dataset: FeedbackDataset) -> str:
        n = self._snippet_chars
        examples = []
        for i, sample in enumerate(dataset.samples[: self._sample_size], start=1):
            user_input = " ".join(sample.input.splitlines()[-2:])
            examples.append(
                f"Example {i}:\n"
                f"User input: {user_input}\n"
                f"Agent output: {sample.original_output[:n]}...\n"
                f"User correction: {sample.corrected_output[:n]}..."
            )
        return _PATTERN_PROMPT.format(examples="\n---\n".join(examples))

    async def analyze(self, dataset: FeedbackDataset) -> list[EditPattern]:
        try:
            text = await self._llm.complete(
                self.build_prompt(dataset), max_tokens=self._max_tokens, temperature=0.0
            )
            payloads: list[PatternPayload] = parse_structured(text, list[PatternPayload])
        except LLMError as exc:
            logger.warning("Pattern analysis fell back to generic pattern: %s", exc)
            return fallback_pattern(dataset)
        if not payloads:
            logger.warning("Pattern analysis returned no patterns; using fallback")
            return fallback_pattern(dataset)

        payloads = payloads[:MAX_PATTERNS]
        count = len(payloads)
        total = len(dataset.samples)
        patterns = [
            EditPattern(
                pattern=p.pattern,
                category=_category(p.category),
                # Earlier patterns are assumed to be the more frequent ones.
                frequency=int(total / count * (count - i)),
                examples=[p.example] if p.example else [],
            )
            for i, p in enumerate(payloads)
        ]
        logger.info("Identified %d edit patterns", len(patterns))
        return patterns
