"""SQLite Backend: persistent, zero external infrastructure."""
from __future__ import annotations

from agentloop_runtime.backends.sqlite.state_store import SQLiteStateStore

__all__ = ["SQLiteStateStore"]
