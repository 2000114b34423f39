from __future__ import annotations

import contextlib
import tempfile
from pathlib import Path
from uuid import uuid4

import pytest
import pytest_asyncio
from agentloop_core.types import AgentConfig, AgentTrace, TraceStatus

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeLLM:
    """Scripted LLMProvider.

    Replies are consumed in order; once exhausted, ``default`` is returned.
    An ``Exception`` instance in the script is raised instead of returned.
    Every prompt is recorded in ``calls``.
    """

    def __init__(self, replies: list | None = None, default: str = "OK") -> None:
        self.replies = list(replies or [])
        self.default = default
        self.calls: list[dict] = []

    async def complete(
        self, prompt: str, *, max_tokens: int = 2000, temperature: float = 0.7
    ) -> str:
        self.calls.append(
            {"prompt": prompt, "max_tokens": max_tokens, "temperature": temperature}
        )
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, BaseException):
            raise reply
        return reply


@pytest.fixture
def make_llm():
    return FakeLLM


# ---------------------------------------------------------------------------
# T0 In-process fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def memory_state_store():
    from agentloop_runtime.backends.memory import InProcessStateStore
    return InProcessStateStore()


@pytest_asyncio.fixture
async def records(memory_state_store):
    from agentloop_runtime.records import RecordStore
    return RecordStore(memory_state_store)


# ---------------------------------------------------------------------------
# T1 SQLite fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def sqlite_db_path():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield str(Path(tmpdir) / "test.db")


@pytest_asyncio.fixture
async def sqlite_state_store(sqlite_db_path):
    from agentloop_runtime.backends.sqlite import SQLiteStateStore
    store = await SQLiteStateStore.create(sqlite_db_path)
    yield store
    await store.close()


# ---------------------------------------------------------------------------
# T2 Redis fixtures
# ---------------------------------------------------------------------------


def _redis_prefix() -> str:
    return f"test_{uuid4().hex[:8]}:"


@pytest_asyncio.fixture
async def redis_state_store():
    pytest.importorskip("redis")
    from agentloop_runtime.backends.redis import RedisStateStore
    prefix = _redis_prefix()
    try:
        store = await RedisStateStore.create("redis://localhost:6379", prefix=prefix)
    except Exception:
        pytest.skip("Redis not available")
    yield store
    with contextlib.suppress(Exception):
        async for key in store._r.scan_iter(match=f"{prefix}*"):
            await store._r.delete(key)
    await store.close()


# ---------------------------------------------------------------------------
# Record helpers
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def agent(records) -> AgentConfig:
    config = AgentConfig(
        agent_id="support",
        system_prompt="You are a support agent.",
        tools=["search_docs", "send_email"],
    )
    await records.save_agent(config)
    return config


async def make_trace(records, agent_id: str = "support", **kwargs) -> AgentTrace:
    kwargs.setdefault("conversation_id", f"conv-{uuid4().hex[:6]}")
    kwargs.setdefault("status", TraceStatus.COMPLETED)
    trace = AgentTrace(agent_id=agent_id, **kwargs)
    await records.save_trace(trace)
    return trace
