"""Core modules for the devflow workflow engine."""

from devflow.core.context import ExecutionContext, LogEntry
from devflow.core.graph_schema import Edge, Node, NodeKind, NodeStatus, WorkflowGraph
from devflow.core.state import ExecutionStateStore

__all__ = [
    "Edge",
    "ExecutionContext",
    "ExecutionStateStore",
    "LogEntry",
    "Node",
    "NodeKind",
    "NodeStatus",
    "WorkflowGraph",
]
