"""Shared data types for the feedback-driven optimization pipeline.

These types are the ephemeral intermediates of one optimization pass:
- Feedback samples: (input, original output, corrected output) triples
- Edit patterns: recurring correction themes mined from the samples
- Prompt variations: candidate system prompts addressing the patterns
- Variation test results: offline scores of each candidate
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any


class PatternCategory(StrEnum):
    TONE = "tone"
    ACCURACY = "accuracy"
    FORMAT = "format"
    CONTENT = "content"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class FeedbackSample:
    """One correction: what the user asked, what the agent said, what it should have said."""

    input: str
    original_output: str
    corrected_output: str
    feedback_type: str


@dataclass(frozen=True, slots=True)
class FeedbackDataset:
    """Corrections collected for an agent, newest first."""

    agent_id: str
    samples: list[FeedbackSample]
    created_at: float

    def __len__(self) -> int:
        return len(self.samples)


@dataclass(frozen=True, slots=True)
class EditPattern:
    pattern: str
    category: PatternCategory
    frequency: int
    examples: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class PromptVariation:
    id: str
    prompt: str
    rationale: str
    addressed_patterns: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class VariationTestResult:
    variation_id: str
    score: float  # 0-100
    improvements: list[str] = field(default_factory=list)
    regressions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class OptimizationResult:
    """Outcome of one optimization pass."""

    run_id: str
    agent_id: str
    edit_patterns: list[EditPattern]
    prompt_variations: list[PromptVariation]
    test_results: list[VariationTestResult]
    best_variation: PromptVariation
    recommendation: str
    ab_test_id: str
