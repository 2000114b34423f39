"""Tests for drafting agents from descriptions and grading them on samples."""
from __future__ import annotations

import json

import pytest
from agentloop_core.errors import LLMError
from agentloop_core.types import AgentConfig, ModelTier
from agentloop_optimizer.agent_builder import AgentBuilder
from agentloop_optimizer.agent_tester import AgentTester, AgentTestReport, SampleResult
from agentloop_optimizer.intent import (
    AgentCategory,
    AgentIntent,
    IntentAnalyzer,
    fallback_intent,
    recommended_model,
    recommended_temperature,
    suggest_tools,
)
from agentloop_optimizer.scoring import LengthRatioScorer

SUPPORT_DESCRIPTION = (
    "Answer customer support tickets from Zendesk and draft email replies. "
    "Escalate anything about legal threats."
)

INTENT_REPLY = "Here is the analysis:\n" + json.dumps({
    "agentName": "Refund Helper",
    "purpose": "Handles refund requests.",
    "capabilities": ["look up orders", "issue refunds"],
    "category": "SUPPORT",
    "dataSources": ["support_tickets", "email", "fax"],
    "outputFormat": "chat_response",
    "tone": "friendly",
})


def _intent(**kwargs) -> AgentIntent:
    kwargs.setdefault("agent_name", "Helper")
    kwargs.setdefault("purpose", "Helps.")
    kwargs.setdefault("category", AgentCategory.SUPPORT)
    return AgentIntent(**kwargs)


class TestIntentAnalyzer:
    """Structured intent extraction and its keyword fallback."""

    async def test_parses_llm_intent(self, make_llm):
        llm = make_llm([INTENT_REPLY])

        intent = await IntentAnalyzer(llm).analyze("Help customers with refunds")

        assert intent.agent_name == "Refund Helper"
        assert intent.category is AgentCategory.SUPPORT
        assert intent.data_sources == ["support_tickets", "email"]
        assert intent.capabilities == ["look up orders", "issue refunds"]
        assert intent.tone == "friendly"
        assert intent.language == "en"
        assert llm.calls[0]["temperature"] == 0.3
        assert 'Description: "Help customers with refunds"' in llm.calls[0]["prompt"]

    async def test_unknown_values_are_normalized(self, make_llm):
        reply = json.dumps({
            "agentName": "Counsel",
            "category": "LEGAL",
            "outputFormat": "fax",
            "tone": "grumpy",
            "language": None,
        })

        intent = await IntentAnalyzer(make_llm([reply])).analyze("Review contracts")

        assert intent.category is AgentCategory.PRODUCTIVITY
        assert intent.output_format == "chat_response"
        assert intent.tone == "professional"
        assert intent.language == "en"
        assert intent.purpose == "Review contracts"

    @pytest.mark.parametrize(
        "reply", [LLMError("provider down"), "no json here", '{"purpose": "x"}']
    )
    async def test_fallback(self, make_llm, reply):
        intent = await IntentAnalyzer(make_llm([reply])).analyze(SUPPORT_DESCRIPTION)
        assert intent == fallback_intent(SUPPORT_DESCRIPTION)

    async def test_requirements_reach_prompt(self, make_llm):
        llm = make_llm([INTENT_REPLY])
        await IntentAnalyzer(llm).analyze("Help", ["Reply within a day"])
        assert "- Reply within a day" in llm.calls[0]["prompt"]

    async def test_blank_description(self):
        with pytest.raises(ValueError):
            await IntentAnalyzer().analyze("   ")


class TestKeywordIntent:
    """The classifier used without a usable LLM answer."""

    def test_support_description(self):
        intent = fallback_intent(SUPPORT_DESCRIPTION)

        assert intent.category is AgentCategory.SUPPORT
        assert intent.agent_name == "Support Agent"
        assert intent.data_sources == ["email", "support_tickets"]
        assert intent.output_format == "email"
        assert intent.purpose == (
            "Answer customer support tickets from Zendesk and draft email replies."
        )
        assert intent.capabilities == [intent.purpose]

    def test_requirements_become_capabilities(self):
        intent = fallback_intent("Track invoices", ["Flag overdue invoices", " "])
        assert intent.category is AgentCategory.FINANCE
        assert intent.capabilities == ["Flag overdue invoices"]

    def test_unmatched_description_is_productivity(self):
        intent = fallback_intent("Be nice")
        assert intent.category is AgentCategory.PRODUCTIVITY
        assert intent.data_sources == []
        assert intent.output_format == "chat_response"
        assert intent.tone == "professional"

    def test_tone_and_format(self):
        intent = fallback_intent("Write a friendly weekly report for the marketing team")
        assert intent.category is AgentCategory.MARKETING
        assert intent.tone == "friendly"
        assert intent.output_format == "report"


class TestDraftConfig:
    """Deterministic derivation of tools, model and temperature."""

    def test_tools_for_sources_and_category(self):
        tools = suggest_tools(_intent(data_sources=["crm", "email", "meetings"]))
        assert tools == [
            "hubspot_search", "hubspot_update", "gmail_search", "gmail_send",
            "memory_store", "memory_retrieve", "sentiment_analysis",
        ]

    def test_research_tools(self):
        tools = suggest_tools(_intent(category=AgentCategory.RESEARCH))
        assert tools[-2:] == ["web_search", "web_scrape"]
        assert "sentiment_analysis" not in tools

    @pytest.mark.parametrize(
        ("kwargs", "tier"),
        [
            ({"category": AgentCategory.RESEARCH}, ModelTier.SONNET),
            ({"capabilities": list("abcdef")}, ModelTier.SONNET),
            ({"output_format": "notification", "capabilities": list("abc")}, ModelTier.HAIKU),
            ({"capabilities": ["one"]}, ModelTier.HAIKU),
            ({"capabilities": ["one"], "data_sources": ["crm"]}, ModelTier.SONNET),
            ({"capabilities": list("abc")}, ModelTier.SONNET),
        ],
    )
    def test_model(self, kwargs, tier):
        assert recommended_model(_intent(**kwargs)) is tier

    @pytest.mark.parametrize(
        ("kwargs", "temperature"),
        [
            ({"category": AgentCategory.MARKETING}, 0.7),
            ({"output_format": "report"}, 0.7),
            ({"category": AgentCategory.FINANCE}, 0.3),
            ({"category": AgentCategory.HR}, 0.3),
            ({}, 0.5),
        ],
    )
    def test_temperature(self, kwargs, temperature):
        assert recommended_temperature(_intent(**kwargs)) == temperature

    def test_draft_config(self):
        intent = _intent(
            agent_name="Refund Helper",
            purpose="Handles refund requests.",
            capabilities=["issue refunds"],
            data_sources=["support_tickets"],
            tone="friendly",
        )

        config = IntentAnalyzer().draft_config("refunds", intent)

        assert config.agent_id == "refunds"
        assert config.safe_mode is True
        assert config.tools[:2] == ["zendesk_search", "zendesk_update"]
        assert config.system_prompt.startswith(
            "You are Refund Helper, a support agent. Handles refund requests."
        )
        assert "- issue refunds" in config.system_prompt
        assert "zendesk_search" in config.system_prompt
        assert "friendly tone" in config.system_prompt


class TestAgentTester:
    """Grading a config on sample input/expected pairs."""

    async def test_scores_samples(self, make_llm):
        llm = make_llm(["Refund issued.", '{"score": 90}', "No idea.", '{"score": 20}'])
        config = AgentConfig(agent_id="support", system_prompt="Be helpful.", temperature=0.2)

        report = await AgentTester(llm).test_agent(
            config, [("Refund?", "Refund issued."), ("Where?", "At the depot.")]
        )

        assert [r.score for r in report.results] == pytest.approx([0.9, 0.2])
        assert [r.passed for r in report.results] == [True, False]
        assert report.avg_score == pytest.approx(0.55)
        assert report.pass_rate == 0.5
        assert report.results[1].actual == "No idea."
        assert llm.calls[0]["temperature"] == 0.2
        assert llm.calls[0]["prompt"].startswith("SYSTEM: Be helpful.")
        assert "USER: Refund?" in llm.calls[0]["prompt"]

    async def test_failed_completion_scores_zero(self, make_llm):
        llm = make_llm([LLMError("provider down"), "same"])
        tester = AgentTester(llm, scorer=LengthRatioScorer())

        report = await tester.test_agent(
            AgentConfig(agent_id="support"), [("a", "expected"), ("b", "same")]
        )

        assert report.results[0].actual == "ERROR: provider down"
        assert report.results[0].score == 0.0
        assert report.results[1].score == 1.0
        assert report.pass_rate == 0.5

    async def test_no_samples(self, make_llm):
        report = await AgentTester(make_llm()).test_agent(AgentConfig(agent_id="support"), [])
        assert report == AgentTestReport()

    async def test_refine_keeps_passing_prompt(self, make_llm):
        llm = make_llm()
        report = AgentTestReport(pass_rate=0.8)
        assert await AgentTester(llm).refine_prompt("Be helpful.", report) == "Be helpful."
        assert llm.calls == []

    async def test_refine_lists_failures(self, make_llm):
        llm = make_llm(["  Be helpful and cite the depot.  "])
        report = AgentTestReport(
            results=[SampleResult("Where?", "At the depot.", "No idea.", 0.2, passed=False)],
            avg_score=0.2,
        )

        refined = await AgentTester(llm).refine_prompt("Be helpful.", report)

        assert refined == "Be helpful and cite the depot."
        assert "Test Failures (1 failed tests)" in llm.calls[0]["prompt"]
        assert "- Actual: No idea." in llm.calls[0]["prompt"]

    async def test_refine_error_keeps_prompt(self, make_llm):
        llm = make_llm([LLMError("provider down")])
        refined = await AgentTester(llm).refine_prompt("Be helpful.", AgentTestReport())
        assert refined == "Be helpful."


class TestAgentBuilder:
    """Drafting, testing and refining end to end."""

    async def test_offline_draft(self):
        built = await AgentBuilder().build_agent(
            "helper", SUPPORT_DESCRIPTION, samples=[("hi", "hello")]
        )

        assert built.config.agent_id == "helper"
        assert built.intent.category is AgentCategory.SUPPORT
        assert built.report is None
        assert built.refined is False

    async def test_failing_draft_is_refined_once(self, make_llm):
        llm = make_llm([
            INTENT_REPLY,
            "meh", '{"score": 10}',
            "Refined prompt.",
            "Refund issued.", '{"score": 95}',
        ])

        built = await AgentBuilder(llm).build_agent(
            "refunds", "Help with refunds", samples=[("Refund?", "Refund issued.")]
        )

        assert built.refined is True
        assert built.config.system_prompt == "Refined prompt."
        assert built.report.pass_rate == 1.0
        assert len(llm.calls) == 6

    async def test_passing_draft_is_kept(self, make_llm):
        llm = make_llm([INTENT_REPLY, "Refund issued.", '{"score": 95}'])

        built = await AgentBuilder(llm).build_agent(
            "refunds", "Help with refunds", samples=[("Refund?", "Refund issued.")]
        )

        assert built.refined is False
        assert built.config.system_prompt.startswith("You are Refund Helper")
        assert built.report.pass_rate == 1.0
