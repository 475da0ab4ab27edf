"""Execution context models and their wire form.

``ExecutionContext`` is the snapshot handed to store subscribers. Across the
process boundary it travels as a plain camelCase dict with ISO-8601
timestamps (``serialize_context`` / ``deserialize_context``).
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from devflow.core.graph_schema import NodeStatus

# Reserved node id for run-level log entries
WORKFLOW_LOG_NODE = "workflow"


def _utc_now() -> datetime:
    """Get current UTC time (timezone-aware)."""
    return datetime.now(UTC)


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LogEntry(_WireModel):
    """One append-only execution log record."""

    id: str
    node_id: str
    timestamp: datetime = Field(default_factory=_utc_now)
    status: NodeStatus
    message: str
    duration: float | None = None  # Milliseconds
    result: Any = None
    error: str | None = None


class ExecutionContext(_WireModel):
    """Mutable run state as seen by subscribers (always a copy)."""

    is_running: bool = False
    current_node_id: str | None = None
    node_statuses: dict[str, NodeStatus] = Field(default_factory=dict)
    execution_log: list[LogEntry] = Field(default_factory=list)
    variables: dict[str, Any] = Field(default_factory=dict)


def serialize_context(context: ExecutionContext) -> dict[str, Any]:
    """Convert a snapshot into its JSON-safe wire form."""
    return context.model_dump(mode="json", by_alias=True)


def deserialize_context(data: dict[str, Any] | ExecutionContext) -> ExecutionContext:
    """Rebuild a snapshot from its wire form (camelCase or snake_case keys)."""
    if isinstance(data, ExecutionContext):
        return data.model_copy(deep=True)
    return ExecutionContext.model_validate(data)
