"""agentloop optimizer: continuous improvement of agents from user feedback.

This package provides:
- Feedback collection and the optimization threshold trigger
- Edit-pattern mining and prompt variation generation
- Offline variation scoring
- A/B testing of prompt variants on live traffic
- Self-modification proposals from periodic health audits
- Insight reports and the safe-mode confirmation gate
- Drafting new agents from natural-language descriptions

Main Components:
    Feedback:
        - FeedbackCollector: Records feedback, arms the optimizer

    Optimization:
        - PatternAnalyzer: Mines recurring correction themes
        - VariantGenerator: Proposes improved system prompts
        - VariantTester: Ranks variations with a pluggable Scorer
        - AutoOptimizer: Runs a single-flight optimization pass
        - ABTestManager: Splits traffic and concludes tests

    Oversight:
        - SelfModifier: Audits agents and manages proposals
        - InsightsEngine: Clusters conversations, flags anomalies
        - ConfirmationGate: Resolves held side-effecting tool calls

    Building:
        - IntentAnalyzer: Turns a description into an agent intent and config
        - AgentTester: Grades a config on sample input/expected pairs
        - AgentBuilder: Drafts, tests and refines a new agent
"""
from __future__ import annotations

from agentloop_optimizer.ab_testing import ABTestManager
from agentloop_optimizer.agent_builder import AgentBuilder, BuiltAgent
from agentloop_optimizer.agent_tester import AgentTester, AgentTestReport, SampleResult
from agentloop_optimizer.confirmations import ConfirmationGate
from agentloop_optimizer.feedback import (
    FeedbackCollector,
    FeedbackStats,
    compute_edit_diff,
    optimization_lock,
)
from agentloop_optimizer.insights import InsightsEngine
from agentloop_optimizer.intent import AgentCategory, AgentIntent, IntentAnalyzer
from agentloop_optimizer.optimizer import AutoOptimizer, build_recommendation
from agentloop_optimizer.parsing import extract_json_block, parse_structured
from agentloop_optimizer.patterns import PatternAnalyzer
from agentloop_optimizer.scoring import LengthRatioScorer, LLMJudgeScorer, Scorer
from agentloop_optimizer.self_modifier import (
    PerformanceAnalysis,
    SelfModificationResult,
    SelfModifier,
    ToolUsageStats,
)
from agentloop_optimizer.tester import VariantTester
from agentloop_optimizer.types import (
    EditPattern,
    FeedbackDataset,
    FeedbackSample,
    OptimizationResult,
    PatternCategory,
    PromptVariation,
    VariationTestResult,
)
from agentloop_optimizer.variants import VariantGenerator

__all__ = [
    # Feedback
    "FeedbackCollector",
    "FeedbackStats",
    "compute_edit_diff",
    "optimization_lock",
    # Optimization
    "ABTestManager",
    "AutoOptimizer",
    "LLMJudgeScorer",
    "LengthRatioScorer",
    "PatternAnalyzer",
    "Scorer",
    "VariantGenerator",
    "VariantTester",
    "build_recommendation",
    "extract_json_block",
    "parse_structured",
    # Oversight
    "ConfirmationGate",
    "InsightsEngine",
    "PerformanceAnalysis",
    "SelfModificationResult",
    "SelfModifier",
    "ToolUsageStats",
    # Building
    "AgentBuilder",
    "AgentCategory",
    "AgentIntent",
    "AgentTestReport",
    "AgentTester",
    "BuiltAgent",
    "IntentAnalyzer",
    "SampleResult",
    # Types
    "EditPattern",
    "FeedbackDataset",
    "FeedbackSample",
    "OptimizationResult",
    "PatternCategory",
    "PromptVariation",
    "VariationTestResult",
]
