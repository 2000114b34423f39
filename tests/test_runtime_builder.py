from __future__ import annotations

import pytest
from agentloop_core.config import AgentLoopConfig, BackendConfig
from agentloop_core.errors import ConfigError
from agentloop_core.types import AgentConfig
from agentloop_runtime.builder import RuntimeBuilder
from agentloop_runtime.context import RuntimeContext


class TestRuntimeBuilder:
    async def test_build_memory_backend(self, make_llm):
        config = AgentLoopConfig(backend=BackendConfig(tier="memory"))
        llm = make_llm()
        ctx = await RuntimeBuilder(config, llm=llm).build()
        assert isinstance(ctx, RuntimeContext)
        assert ctx.config.backend.tier == "memory"
        assert ctx.llm is llm

    async def test_without_llm(self):
        config = AgentLoopConfig(backend=BackendConfig(tier="memory"))
        ctx = await RuntimeBuilder(config, with_llm=False).build()
        assert ctx.llm is None

    async def test_build_sqlite_backend_persists(self, tmp_path):
        db_path = str(tmp_path / "nested" / "test.db")
        config = AgentLoopConfig(
            backend=BackendConfig(tier="sqlite", sqlite_path=db_path)
        )
        ctx = await RuntimeBuilder(config, with_llm=False).build()
        await ctx.records.save_agent(AgentConfig(agent_id="support"))
        await ctx.close()

        reopened = await RuntimeBuilder(config, with_llm=False).build()
        try:
            assert (await reopened.records.get_agent("support")).agent_id == "support"
        finally:
            await reopened.close()

    async def test_build_unknown_tier_raises(self):
        config = AgentLoopConfig(backend=BackendConfig(tier="unknown"))
        with pytest.raises(ConfigError, match="Unknown backend tier"):
            await RuntimeBuilder(config, with_llm=False).build()
