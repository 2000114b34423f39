"""Builds a new agent from a description, optionally validated on samples."""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import TYPE_CHECKING

from agentloop_core.logging import get_logger

from agentloop_optimizer.agent_tester import AgentTester
from agentloop_optimizer.intent import IntentAnalyzer

if TYPE_CHECKING:
    from collections.abc import Sequence

    from agentloop_core.types import AgentConfig
    from agentloop_runtime.llm import LLMProvider

    from agentloop_optimizer.agent_tester import AgentTestReport
    from agentloop_optimizer.intent import AgentIntent

logger = get_logger("optimizer.builder")


@dataclass(frozen=True, slots=True)
class BuiltAgent:
    config: AgentConfig
    intent: AgentIntent
    report: AgentTestReport | None = None
    refined: bool = False


class AgentBuilder:
    """Description → intent → draft config → sample test → one refinement.

    Samples are only run when an LLM is available. When the draft fails
    its samples, the prompt is refined once and re-tested, and the refined
    prompt is kept.
    """

    def __init__(
        self,
        llm: LLMProvider | None = None,
        *,
        analyzer: IntentAnalyzer | None = None,
        tester: AgentTester | None = None,
    ) -> None:
        self._analyzer = analyzer or IntentAnalyzer(llm)
        self._tester = tester or (AgentTester(llm) if llm is not None else None)

    async def build_agent(
        self,
        agent_id: str,
        description: str,
        *,
        requirements: list[str] | None = None,
        samples: Sequence[tuple[str, str]] | None = None,
    ) -> BuiltAgent:
        intent = await self._analyzer.analyze(description, requirements)
        config = self._analyzer.draft_config(agent_id, intent)
        logger.info(
            "Drafted agent %s (%s, %s, %d tools)",
            agent_id, intent.category.value, config.model.value, len(config.tools),
        )
        if not samples or self._tester is None:
            return BuiltAgent(config, intent)

        report = await self._tester.test_agent(config, samples)
        refined_prompt = await self._tester.refine_prompt(config.system_prompt, report)
        if refined_prompt == config.system_prompt:
            return BuiltAgent(config, intent, report)

        config = dataclasses.replace(config, system_prompt=refined_prompt)
        report = await self._tester.test_agent(config, samples)
        return BuiltAgent(config, intent, report, refined=True)
