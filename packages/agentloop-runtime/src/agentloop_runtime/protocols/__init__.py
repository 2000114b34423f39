"""Protocol interfaces for the agentloop runtime."""
from __future__ import annotations

from agentloop_runtime.protocols.state_store import StateStoreAdapter

__all__ = ["StateStoreAdapter"]
