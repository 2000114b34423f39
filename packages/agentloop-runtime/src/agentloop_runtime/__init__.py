"""agentloop runtime: graph execution, middleware, tracing, and storage."""
from __future__ import annotations

from agentloop_runtime.builder import RuntimeBuilder
from agentloop_runtime.builtin_middleware import (
    default_middleware,
    production_middleware,
)
from agentloop_runtime.context import RuntimeContext
from agentloop_runtime.graph import (
    END_NODE,
    FALLBACK_TARGET,
    START_NODE,
    Edge,
    ExecutionGraph,
    Node,
    NodeKind,
    StartNode,
    build_react_graph,
)
from agentloop_runtime.llm import DSPyProvider, LLMProvider
from agentloop_runtime.locks import KeyLock
from agentloop_runtime.middleware import HookKind, Middleware, MiddlewarePipeline
from agentloop_runtime.nodes import ReasoningNode
from agentloop_runtime.protocols import StateStoreAdapter
from agentloop_runtime.records import RecordStore
from agentloop_runtime.runtime import AgentRuntime, ExecutionContext
from agentloop_runtime.state import (
    ExecutionResult,
    ExecutionState,
    LLMRequest,
    LLMResponse,
    RunStatus,
    ToolCall,
    ToolResult,
)
from agentloop_runtime.tracer import NullTracer, StoreTracer, Tracer

__all__ = [
    "END_NODE",
    "FALLBACK_TARGET",
    "START_NODE",
    "AgentRuntime",
    "DSPyProvider",
    "Edge",
    "ExecutionContext",
    "ExecutionGraph",
    "ExecutionResult",
    "ExecutionState",
    "HookKind",
    "KeyLock",
    "LLMProvider",
    "LLMRequest",
    "LLMResponse",
    "Middleware",
    "MiddlewarePipeline",
    "Node",
    "NodeKind",
    "NullTracer",
    "ReasoningNode",
    "RecordStore",
    "RunStatus",
    "RuntimeBuilder",
    "RuntimeContext",
    "StartNode",
    "StateStoreAdapter",
    "StoreTracer",
    "ToolCall",
    "ToolResult",
    "Tracer",
    "build_react_graph",
    "default_middleware",
    "production_middleware",
]
