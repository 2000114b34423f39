"""Scorers comparing a candidate output with a user's corrected output."""
from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from agentloop_core.errors import LLMError
from agentloop_core.logging import get_logger
from pydantic import BaseModel, Field

from agentloop_optimizer.parsing import parse_structured

if TYPE_CHECKING:
    from agentloop_runtime.llm import LLMProvider

logger = get_logger("optimizer.scoring")


@runtime_checkable
class Scorer(Protocol):
    """Rates how close ``candidate`` is to ``reference`` on a 0-100 scale."""

    async def score(self, candidate: str, reference: str) -> float: ...


class LengthRatioScorer:
    """Length similarity: 100 for equal lengths, falling linearly with the gap."""

    async def score(self, candidate: str, reference: str) -> float:
        longest = max(len(candidate), len(reference))
        if longest == 0:
            return 100.0
        gap = abs(len(candidate) - len(reference))
        return float(int((1 - gap / longest) * 100))


class _JudgePayload(BaseModel):
    score: float = Field(ge=0, le=100)


_JUDGE_PROMPT = """\
Rate how well the candidate response matches the reference response in
content, tone and format. Respond with JSON: {{"score": <0-100>}}

Reference:
{reference}

Candidate:
{candidate}"""


class LLMJudgeScorer:
    """Asks an LLM to grade semantic closeness.

    Falls back to ``fallback`` (length ratio by default) when the judge
    call fails or its output does not parse.
    """

    def __init__(
        self, llm: LLMProvider, *, fallback: Scorer | None = None, max_tokens: int = 200
    ) -> None:
        self._llm = llm
        self._fallback = fallback or LengthRatioScorer()
        self._max_tokens = max_tokens

    async def score(self, candidate: str, reference: str) -> float:
        prompt = _JUDGE_PROMPT.format(reference=reference, candidate=candidate)
        try:
            text = await self._llm.complete(
                prompt, max_tokens=self._max_tokens, temperature=0.0
            )
            payload: _JudgePayload = parse_structured(text, _JudgePayload, kind="{")
        except LLMError as exc:
            logger.debug("Judge scoring failed, using fallback: %s", exc)
            return await self._fallback.score(candidate, reference)
        return payload.score
