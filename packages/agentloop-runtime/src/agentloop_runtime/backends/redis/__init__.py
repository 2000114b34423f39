"""Redis Backend: shared state for multi-process deployments."""
from __future__ import annotations

from agentloop_runtime.backends.redis.state_store import RedisStateStore

__all__ = ["RedisStateStore"]
