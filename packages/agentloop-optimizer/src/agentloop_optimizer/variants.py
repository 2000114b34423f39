"""Prompt variation generation from mined edit patterns."""
from __future__ import annotations

from typing import TYPE_CHECKING

from agentloop_core.errors import LLMError
from agentloop_core.logging import get_logger

from agentloop_optimizer.parsing import VariationPayload, parse_structured
from agentloop_optimizer.types import PromptVariation

if TYPE_CHECKING:
    from agentloop_runtime.llm import LLMProvider

    from agentloop_optimizer.types import EditPattern

logger = get_logger("optimizer.variants")

_VARIATION_PROMPT = """\
Current agent system prompt:
{prompt}

Identified issues (from user corrections):
{issues}

Generate {count} improved versions of this prompt that address these issues.
Each variation should:
1. Maintain the core agent purpose
2. Address the identified patterns
3. Be clear and actionable
4. Be similar length to original

Respond with a JSON array:
[
  {{
    "prompt": "improved system prompt here",
    "rationale": "why this addresses the issues",
    "addressedPatterns": ["pattern 1", "pattern 2"]
  }}
]"""


def fallback_variation(current_prompt: str) -> list[PromptVariation]:
    return [
        PromptVariation(
            id="variation_1",
            prompt=current_prompt,
            rationale="Original prompt (fallback)",
        )
    ]


class VariantGenerator:
    """Asks the LLM for candidate prompts; degrades to the unchanged prompt."""

    def __init__(
        self, llm: LLMProvider, *, count: int = 3, max_tokens: int = 3000
    ) -> None:
        self._llm = llm
        self._count = count
        self._max_tokens = max_tokens

    def build_prompt(self, current_prompt: str, patterns: list[EditPattern]) -> str:
        issues = "\n".join(
            f"- {p.pattern} (occurred {p.frequency} times) [Category: {p.category.value}]"
            for p in patterns
        )
        return _VARIATION_PROMPT.format(
            prompt=current_prompt, issues=issues, count=self._count
        )

    async def generate(
        self, current_prompt: str, patterns: list[EditPattern]
    ) -> list[PromptVariation]:
        try:
            text = await self._llm.complete(
                self.build_prompt(current_prompt, patterns),
                max_tokens=self._max_tokens,
                temperature=0.7,
            )
            payloads: list[VariationPayload] = parse_structured(
                text, list[VariationPayload]
            )
        except LLMError as exc:
            logger.warning("Variation generation fell back to current prompt: %s", exc)
            return fallback_variation(current_prompt)
        if not payloads:
            return fallback_variation(current_prompt)

        variations = [
            PromptVariation(
                id=f"variation_{i}",
                prompt=p.prompt,
                rationale=p.rationale,
                addressed_patterns=list(p.addressed_patterns),
            )
            for i, p in enumerate(payloads[: self._count], start=1)
        ]
        logger.info("Generated %d prompt variations", len(variations))
        return variations
