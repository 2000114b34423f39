from __future__ import annotations

from typing import TYPE_CHECKING

from agentloop_core.errors import ConfigError
from agentloop_core.logging import get_logger

from agentloop_runtime.context import RuntimeContext
from agentloop_runtime.records import RecordStore

if TYPE_CHECKING:
    from agentloop_core.config import AgentLoopConfig

    from agentloop_runtime.llm import LLMProvider
    from agentloop_runtime.protocols.state_store import StateStoreAdapter

logger = get_logger("builder")


class RuntimeBuilder:
    """Build a RuntimeContext from configuration.

    Usage:
        config = AgentLoopConfig.from_toml("agentloop.toml")
        ctx = await RuntimeBuilder(config).build()

    The LLM provider is created from ``[llm]`` unless one is injected.
    """

    def __init__(
        self,
        config: AgentLoopConfig,
        *,
        llm: LLMProvider | None = None,
        with_llm: bool = True,
    ) -> None:
        self._config = config
        self._llm = llm
        self._with_llm = with_llm

    async def build(self) -> RuntimeContext:
        tier = self._config.backend.tier
        logger.info("Building runtime with %s backend", tier)

        if tier == "memory":
            store = await self._build_memory()
        elif tier == "sqlite":
            store = await self._build_sqlite()
        elif tier == "redis":
            store = await self._build_redis()
        else:
            msg = f"Unknown backend tier: {tier!r}"
            raise ConfigError(msg)

        llm = self._llm
        if llm is None and self._with_llm:
            from agentloop_runtime.llm import DSPyProvider

            llm = DSPyProvider.from_config(self._config.llm)

        return RuntimeContext(
            state_store=store,
            records=RecordStore(store),
            config=self._config,
            llm=llm,
        )

    async def _build_memory(self) -> StateStoreAdapter:
        from agentloop_runtime.backends.memory import InProcessStateStore

        return InProcessStateStore()

    async def _build_sqlite(self) -> StateStoreAdapter:
        from agentloop_runtime.backends.sqlite import SQLiteStateStore

        return await SQLiteStateStore.create(self._config.backend.sqlite_path)

    async def _build_redis(self) -> StateStoreAdapter:
        from agentloop_runtime.backends.redis import RedisStateStore

        return await RedisStateStore.create(
            self._config.backend.redis_url,
            prefix=self._config.backend.redis_prefix,
        )
