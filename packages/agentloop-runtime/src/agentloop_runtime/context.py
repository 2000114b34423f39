from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from agentloop_core.config import AgentLoopConfig

    from agentloop_runtime.llm import LLMProvider
    from agentloop_runtime.protocols.state_store import StateStoreAdapter
    from agentloop_runtime.records import RecordStore


@dataclass(slots=True)
class RuntimeContext:
    """Shared services for runtimes and optimization jobs.

    Created once at startup by the RuntimeBuilder.
    """
    state_store: StateStoreAdapter
    records: RecordStore
    config: AgentLoopConfig
    llm: LLMProvider | None = None

    async def close(self) -> None:
        close = getattr(self.state_store, "close", None)
        if close is not None:
            await close()
