"""LLM provider boundary.

Everything that talks to a model goes through :class:`LLMProvider`, a
single ``complete`` call returning text. Providers are injected into the
runtime and the optimization components; nothing holds a module-level
client.
"""
from __future__ import annotations

import asyncio
import os
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from agentloop_core.errors import LLMError, LLMTimeoutError
from agentloop_core.logging import get_logger

if TYPE_CHECKING:
    import dspy
    from agentloop_core.config import LLMConfig

logger = get_logger("runtime.llm")


@runtime_checkable
class LLMProvider(Protocol):
    """Text completion provider."""

    async def complete(
        self, prompt: str, *, max_tokens: int = 2000, temperature: float = 0.7
    ) -> str: ...


def _lm_model_name(config: LLMConfig) -> str:
    if config.provider == "anthropic":
        return f"anthropic/{config.model}"
    if config.provider == "openai":
        return f"openai/{config.model}"
    if config.provider == "ollama":
        return f"ollama_chat/{config.model}"
    return config.model


class DSPyProvider:
    """LLMProvider backed by a ``dspy.LM``.

    The blocking LM call runs in a worker thread and is bounded by
    ``timeout_seconds``.
    """

    def __init__(self, lm: dspy.LM, *, timeout_seconds: float = 60.0) -> None:
        self._lm = lm
        self._timeout = timeout_seconds

    @classmethod
    def from_config(cls, config: LLMConfig) -> DSPyProvider:
        import dspy

        kwargs: dict[str, Any] = {
            "temperature": config.temperature,
            "max_tokens": config.max_tokens,
        }
        api_key = os.environ.get(config.api_key_env, "")
        if config.provider == "ollama":
            api_key = "ollama"
        if api_key:
            kwargs["api_key"] = api_key
        if config.base_url:
            kwargs["api_base"] = config.base_url

        lm = dspy.LM(_lm_model_name(config), **kwargs)
        return cls(lm, timeout_seconds=config.timeout_seconds)

    async def complete(
        self, prompt: str, *, max_tokens: int = 2000, temperature: float = 0.7
    ) -> str:
        try:
            outputs = await asyncio.wait_for(
                asyncio.to_thread(
                    self._lm,
                    prompt,
                    max_tokens=max_tokens,
                    temperature=temperature,
                ),
                timeout=self._timeout,
            )
        except TimeoutError as exc:
            msg = f"LLM call exceeded {self._timeout:.0f}s"
            raise LLMTimeoutError(msg) from exc
        except Exception as exc:
            logger.warning("LLM call failed: %s", exc)
            msg = f"LLM call failed: {exc}"
            raise LLMError(msg) from exc

        if not outputs:
            msg = "LLM returned no completions"
            raise LLMError(msg)
        first = outputs[0]
        if isinstance(first, dict):
            first = first.get("text", "")
        return str(first)
