from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from agentloop_core.errors import ConfigError


def _load_toml(path: Path) -> dict:
    """Load a TOML file, returning empty dict if missing."""
    if not path.exists():
        return {}
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as exc:
        msg = f"Invalid TOML in {path}: {exc}"
        raise ConfigError(msg) from exc


def _deep_merge(base: dict, override: dict) -> dict:
    """Merge override into base (1 level deep for TOML sections)."""
    merged = dict(base)
    for key, val in override.items():
        if (
            key in merged
            and isinstance(merged[key], dict)
            and isinstance(val, dict)
        ):
            merged[key] = {**merged[key], **val}
        else:
            merged[key] = val
    return merged


def _pick(section: dict, dc: type) -> dict:
    fields = dc.__dataclass_fields__
    return {k: v for k, v in section.items() if k in fields}


@dataclass(frozen=True, slots=True)
class LLMConfig:
    provider: str = "anthropic"
    model: str = "claude-sonnet-4-5"
    api_key_env: str = "ANTHROPIC_API_KEY"
    base_url: str | None = None
    temperature: float = 0.7
    max_tokens: int = 2_000
    timeout_seconds: float = 60.0


@dataclass(frozen=True, slots=True)
class BackendConfig:
    tier: str = "sqlite"  # memory | sqlite | redis
    sqlite_path: str = ".agentloop/agentloop.db"
    redis_url: str = "redis://localhost:6379"
    redis_prefix: str = "agentloop:"


@dataclass(frozen=True, slots=True)
class RuntimeSettings:
    max_steps: int = 10
    monthly_cost_limit: float = 100.0
    compression_threshold: int = 20
    compression_keep_recent: int = 5
    side_effect_tools: list[str] = field(default_factory=lambda: [
        "send_email",
        "create_calendar_event",
        "send_slack_message",
        "create_notion_page",
        "append_to_notion",
    ])


@dataclass(frozen=True, slots=True)
class FeedbackConfig:
    threshold: int = 10
    window_days: int = 7
    edit_length_threshold: int = 50
    snippet_chars: int = 200


@dataclass(frozen=True, slots=True)
class OptimizerConfig:
    dataset_limit: int = 100
    pattern_sample_size: int = 10
    test_sample_size: int = 5
    variation_count: int = 3
    initial_traffic_split: float = 0.2
    improvement_threshold: float = 80.0
    pass_timeout_seconds: float = 600.0
    lock_ttl_seconds: float = 900.0


@dataclass(frozen=True, slots=True)
class ABTestConfig:
    min_samples: int = 50
    significance_threshold: float = 5.0
    max_duration_days: int = 30
    max_total_traces: int = 5_000


@dataclass(frozen=True, slots=True)
class SelfModifierConfig:
    window_days: int = 30
    healthy_satisfaction: float = 4.0
    healthy_success_rate: float = 0.8
    refine_below_satisfaction: float = 3.5
    downgrade_above_satisfaction: float = 4.0
    downgrade_cost_threshold: float = 0.5
    tool_usage_floor: float = 0.05
    min_tools_for_removal: int = 2
    hallucination_threshold: float = 0.1
    common_failure_ratio: float = 0.1
    temperature_ceiling: float = 0.5
    temperature_floor: float = 0.3
    temperature_step: float = 0.2
    pass_timeout_seconds: float = 300.0


@dataclass(frozen=True, slots=True)
class AgentLoopConfig:
    """Top-level configuration, parsed from agentloop.toml."""
    project_name: str = "agentloop-project"
    llm: LLMConfig = field(default_factory=LLMConfig)
    backend: BackendConfig = field(default_factory=BackendConfig)
    runtime: RuntimeSettings = field(default_factory=RuntimeSettings)
    feedback: FeedbackConfig = field(default_factory=FeedbackConfig)
    optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)
    abtest: ABTestConfig = field(default_factory=ABTestConfig)
    self_modifier: SelfModifierConfig = field(
        default_factory=SelfModifierConfig
    )

    @classmethod
    def from_toml(
        cls, path: Path | str = "agentloop.toml"
    ) -> AgentLoopConfig:
        path = Path(path)
        raw = _load_toml(path)
        return cls._from_raw(raw)

    @classmethod
    def load(
        cls, project_dir: Path | str | None = None
    ) -> AgentLoopConfig:
        """Load config with global → project layering.

        Resolution order (later wins):
        1. Built-in defaults
        2. ~/.agentloop/config.toml (global)
        3. .agentloop/config.toml or agentloop.toml (project)
        """
        global_path = Path.home() / ".agentloop" / "config.toml"

        project_dir = (
            Path.cwd() if project_dir is None else Path(project_dir)
        )

        project_path = project_dir / ".agentloop" / "config.toml"
        if not project_path.exists():
            project_path = project_dir / "agentloop.toml"

        merged = _deep_merge(
            _load_toml(global_path), _load_toml(project_path)
        )
        return cls._from_raw(merged)

    @classmethod
    def _from_raw(cls, raw: dict) -> AgentLoopConfig:
        """Build AgentLoopConfig from a raw TOML dict."""
        backend = BackendConfig(**_pick(raw.get("backend", {}), BackendConfig))
        if backend.tier not in ("memory", "sqlite", "redis"):
            msg = f"Unknown backend tier: {backend.tier!r}"
            raise ConfigError(msg)

        abtest = ABTestConfig(**_pick(raw.get("abtest", {}), ABTestConfig))
        optimizer = OptimizerConfig(
            **_pick(raw.get("optimizer", {}), OptimizerConfig)
        )
        if not 0.0 <= optimizer.initial_traffic_split <= 1.0:
            msg = "optimizer.initial_traffic_split must be within [0, 1]"
            raise ConfigError(msg)

        return cls(
            project_name=raw.get("project", {}).get(
                "name", "agentloop-project"
            ),
            llm=LLMConfig(**_pick(raw.get("llm", {}), LLMConfig)),
            backend=backend,
            runtime=RuntimeSettings(
                **_pick(raw.get("runtime", {}), RuntimeSettings)
            ),
            feedback=FeedbackConfig(
                **_pick(raw.get("feedback", {}), FeedbackConfig)
            ),
            optimizer=optimizer,
            abtest=abtest,
            self_modifier=SelfModifierConfig(
                **_pick(raw.get("self_modifier", {}), SelfModifierConfig)
            ),
        )
