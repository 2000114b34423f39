"""Intent analysis: a natural-language agent description becomes a draft config.

The LLM extracts a structured intent (name, purpose, category, data
sources, output format, tone). Without an LLM, or when its output is
unusable, a keyword classifier over the description stands in. Tools,
model tier, temperature and the system prompt are then derived from the
intent without further model calls.
"""
from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from agentloop_core.errors import LLMError
from agentloop_core.logging import get_logger
from agentloop_core.types import AgentConfig, ModelTier

from agentloop_optimizer.parsing import IntentPayload, parse_structured

if TYPE_CHECKING:
    from agentloop_runtime.llm import LLMProvider

logger = get_logger("optimizer.intent")


class AgentCategory(StrEnum):
    SALES = "sales"
    SUPPORT = "support"
    MARKETING = "marketing"
    HR = "hr"
    FINANCE = "finance"
    OPERATIONS = "operations"
    RESEARCH = "research"
    PRODUCTIVITY = "productivity"


DATA_SOURCES = (
    "crm", "email", "calendar", "documents", "spreadsheets",
    "support_tickets", "tasks", "meetings", "slack", "notion",
)
OUTPUT_FORMATS = (
    "email", "report", "notification", "task", "summary",
    "chat_response", "form_submission",
)
TONES = ("professional", "casual", "friendly", "formal")

SOURCE_TOOLS: dict[str, tuple[str, ...]] = {
    "crm": ("hubspot_search", "hubspot_update"),
    "email": ("gmail_search", "gmail_send"),
    "calendar": ("calendar_search", "calendar_create"),
    "documents": ("knowledge_base_search",),
    "spreadsheets": ("sheets_read", "sheets_write"),
    "support_tickets": ("zendesk_search", "zendesk_update"),
    "tasks": ("asana_search", "asana_create"),
    "slack": ("slack_send", "slack_search"),
    "notion": ("notion_search", "notion_create"),
}

_CATEGORY_KEYWORDS: dict[AgentCategory, tuple[str, ...]] = {
    AgentCategory.SALES: ("sales", "lead", "deal", "prospect", "pipeline", "quote"),
    AgentCategory.SUPPORT: ("support", "ticket", "customer", "refund", "complaint"),
    AgentCategory.MARKETING: ("marketing", "campaign", "newsletter", "seo", "brand"),
    AgentCategory.HR: ("hr", "hiring", "candidate", "onboarding", "employee", "recruit"),
    AgentCategory.FINANCE: ("finance", "invoice", "expense", "budget", "accounting"),
    AgentCategory.OPERATIONS: ("operations", "inventory", "logistics", "vendor", "supply"),
    AgentCategory.RESEARCH: ("research", "competitor", "investigate", "study"),
}

_SOURCE_KEYWORDS: dict[str, tuple[str, ...]] = {
    "crm": ("crm", "hubspot", "salesforce", "contact"),
    "email": ("email", "gmail", "inbox"),
    "calendar": ("calendar", "schedule"),
    "documents": ("document", "docs", "knowledge base", "wiki", "faq"),
    "spreadsheets": ("spreadsheet", "sheet", "excel", "csv"),
    "support_tickets": ("ticket", "zendesk", "helpdesk"),
    "tasks": ("task", "asana", "todo", "jira"),
    "meetings": ("meeting", "transcript"),
    "slack": ("slack",),
    "notion": ("notion",),
}

# First match wins.
_FORMAT_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("report", ("report",)),
    ("summary", ("summary", "summarize", "digest")),
    ("notification", ("notify", "notification", "alert")),
    ("form_submission", ("form",)),
    ("email", ("draft email", "send email", "reply by email", "email reply")),
    ("task", ("create task", "assign task")),
)


@dataclass(frozen=True, slots=True)
class AgentIntent:
    """What an agent is for, as understood from its description."""

    agent_name: str
    purpose: str
    category: AgentCategory
    capabilities: list[str] = field(default_factory=list)
    data_sources: list[str] = field(default_factory=list)
    output_format: str = "chat_response"
    tone: str = "professional"
    language: str = "en"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _mentions(text: str, keyword: str) -> bool:
    return re.search(rf"\b{re.escape(keyword)}", text) is not None


def _category(raw: str) -> AgentCategory:
    try:
        return AgentCategory(raw.strip().lower())
    except ValueError:
        return AgentCategory.PRODUCTIVITY


def _display_name(category: AgentCategory) -> str:
    label = "HR" if category is AgentCategory.HR else category.value.title()
    return f"{label} Agent"


def fallback_intent(description: str, requirements: list[str] | None = None) -> AgentIntent:
    """Keyword-based intent used when no LLM answer is available."""
    text = " ".join([description, *(requirements or [])]).lower()

    hits = {
        category: sum(_mentions(text, k) for k in keywords)
        for category, keywords in _CATEGORY_KEYWORDS.items()
    }
    best = max(hits, key=hits.__getitem__)
    category = best if hits[best] > 0 else AgentCategory.PRODUCTIVITY

    sources = [
        source for source, keywords in _SOURCE_KEYWORDS.items()
        if any(_mentions(text, k) for k in keywords)
    ]
    output_format = next(
        (fmt for fmt, keywords in _FORMAT_KEYWORDS if any(_mentions(text, k) for k in keywords)),
        "chat_response",
    )
    tone = next((t for t in TONES if _mentions(text, t)), "professional")

    purpose = re.split(r"(?<=[.!?])\s", description.strip(), maxsplit=1)[0][:200]
    capabilities = [r.strip() for r in requirements or [] if r.strip()] or [purpose]
    return AgentIntent(
        agent_name=_display_name(category),
        purpose=purpose,
        category=category,
        capabilities=capabilities,
        data_sources=sources,
        output_format=output_format,
        tone=tone,
    )


def _from_payload(payload: IntentPayload, description: str) -> AgentIntent:
    sources = [s.strip().lower() for s in payload.data_sources]
    output_format = (payload.output_format or "").strip().lower()
    tone = (payload.tone or "").strip().lower()
    return AgentIntent(
        agent_name=payload.agent_name.strip(),
        purpose=payload.purpose.strip() or description.strip()[:200],
        category=_category(payload.category),
        capabilities=[c.strip() for c in payload.capabilities if c.strip()],
        data_sources=list(dict.fromkeys(s for s in sources if s in DATA_SOURCES)),
        output_format=output_format if output_format in OUTPUT_FORMATS else "chat_response",
        tone=tone if tone in TONES else "professional",
        language=(payload.language or "en").strip() or "en",
    )


def suggest_tools(intent: AgentIntent) -> list[str]:
    """Tool names for the intent's data sources and category, deduplicated."""
    tools: list[str] = []
    for source in intent.data_sources:
        tools.extend(SOURCE_TOOLS.get(source, ()))
    tools.extend(("memory_store", "memory_retrieve"))
    if intent.category in (AgentCategory.SALES, AgentCategory.SUPPORT):
        tools.append("sentiment_analysis")
    if intent.category is AgentCategory.RESEARCH:
        tools.extend(("web_search", "web_scrape"))
    return list(dict.fromkeys(tools))


def recommended_model(intent: AgentIntent) -> ModelTier:
    if (
        intent.category in (AgentCategory.RESEARCH, AgentCategory.HR)
        or len(intent.capabilities) > 5
    ):
        return ModelTier.SONNET
    if intent.output_format in ("notification", "task") or (
        len(intent.capabilities) <= 2 and "crm" not in intent.data_sources
    ):
        return ModelTier.HAIKU
    return ModelTier.SONNET


def recommended_temperature(intent: AgentIntent) -> float:
    if intent.category is AgentCategory.MARKETING or intent.output_format == "report":
        return 0.7
    if intent.category in (AgentCategory.FINANCE, AgentCategory.HR):
        return 0.3
    return 0.5


def build_system_prompt(intent: AgentIntent, tools: list[str]) -> str:
    lines = [
        f"You are {intent.agent_name}, a {intent.category.value} agent. {intent.purpose}",
        "",
        "Capabilities:",
        *(f"- {c}" for c in intent.capabilities),
        "",
    ]
    if tools:
        lines.append(f"Tools available: {', '.join(tools)}.")
    lines.extend([
        f"Use a {intent.tone} tone and format answers as {intent.output_format.replace('_', ' ')}.",
        f"Reply in language: {intent.language}.",
        "Do not invent facts. Ask for clarification when a request is ambiguous.",
    ])
    return "\n".join(lines)


_INTENT_PROMPT = """\
Analyze this agent description and extract structured information.

Description: "{description}"
{requirements}
Extract the agent name (2-4 words), its purpose (1-2 sentences), 3-5 key
capabilities, exactly one category ({categories}), the data sources it needs
(from: {sources}), its output format (from: {formats}), its tone ({tones})
and its language (default "en"). If the description is vague, make
reasonable assumptions.

Respond with ONLY a JSON object:
{{
  "agentName": "...",
  "purpose": "...",
  "capabilities": ["..."],
  "category": "...",
  "dataSources": ["..."],
  "outputFormat": "...",
  "tone": "...",
  "language": "en"
}}"""


class IntentAnalyzer:
    """Turns agent descriptions into intents and draft configs."""

    def __init__(self, llm: LLMProvider | None = None, *, max_tokens: int = 2000) -> None:
        self._llm = llm
        self._max_tokens = max_tokens

    def build_prompt(self, description: str, requirements: list[str] | None = None) -> str:
        extra = ""
        if requirements:
            extra = "\nAdditional requirements:\n" + "\n".join(f"- {r}" for r in requirements)
        return _INTENT_PROMPT.format(
            description=description,
            requirements=extra,
            categories=", ".join(c.value for c in AgentCategory),
            sources=", ".join(DATA_SOURCES),
            formats=", ".join(OUTPUT_FORMATS),
            tones=", ".join(TONES),
        )

    async def analyze(
        self, description: str, requirements: list[str] | None = None
    ) -> AgentIntent:
        """Extract the intent of ``description``.

        Raises:
            ValueError: If the description is blank.
        """
        if not description.strip():
            msg = "Agent description must not be empty"
            raise ValueError(msg)
        if self._llm is None:
            return fallback_intent(description, requirements)
        try:
            text = await self._llm.complete(
                self.build_prompt(description, requirements),
                max_tokens=self._max_tokens,
                temperature=0.3,
            )
            payload: IntentPayload = parse_structured(text, IntentPayload, kind="{")
        except LLMError as exc:
            logger.warning("Intent analysis fell back to keywords: %s", exc)
            return fallback_intent(description, requirements)
        intent = _from_payload(payload, description)
        logger.info(
            "Detected %s intent with %d data sources",
            intent.category.value, len(intent.data_sources),
        )
        return intent

    def draft_config(self, agent_id: str, intent: AgentIntent) -> AgentConfig:
        """Config for a new agent serving ``intent``; safe mode stays on."""
        tools = suggest_tools(intent)
        return AgentConfig(
            agent_id=agent_id,
            system_prompt=build_system_prompt(intent, tools),
            model=recommended_model(intent),
            temperature=recommended_temperature(intent),
            tools=tools,
        )
