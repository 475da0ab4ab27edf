"""Host-facing workflow service.

One coroutine per verb, each returning ``{"success": bool, "error"?: str}``,
plus a push channel of serialized execution contexts. The studio server and
the CLI both go through this facade.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from devflow.config import DevflowSettings
from devflow.core.channels import SnapshotChannel
from devflow.core.context import ExecutionContext, serialize_context
from devflow.core.dispatch import Sleep
from devflow.core.exceptions import DevflowError
from devflow.core.graph_schema import Node, WorkflowGraph
from devflow.core.runner import RunState, WorkflowRunner
from devflow.core.state import ExecutionStateStore
from devflow.device.base import DeviceActions
from devflow.device.hdc import HdcDeviceActions

logger = logging.getLogger(__name__)


def _ok(**extra: Any) -> dict[str, Any]:
    return {"success": True, **extra}


def _error(error: str) -> dict[str, Any]:
    return {"success": False, "error": error}


class WorkflowService:
    """Facade over one store + runner pair."""

    def __init__(
        self,
        device: DeviceActions | None = None,
        settings: DevflowSettings | None = None,
        store: ExecutionStateStore | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.settings = settings or DevflowSettings()
        self.store = store or ExecutionStateStore()
        self.device = device or HdcDeviceActions(self.settings)
        self.runner = WorkflowRunner(self.store, self.device, self.settings, sleep=sleep)

    async def execute_workflow(
        self,
        nodes: list[dict[str, Any]],
        edges: list[dict[str, Any]],
        connection_key: str,
        name: str | None = None,
    ) -> dict[str, Any]:
        try:
            graph = WorkflowGraph(nodes=nodes, edges=edges, **({"name": name} if name else {}))
        except ValidationError as e:
            logger.error(f"Rejected workflow: {e}")
            return _error(f"Invalid workflow: {e}")
        return await self.execute_graph(graph, connection_key)

    async def execute_graph(self, graph: WorkflowGraph, connection_key: str) -> dict[str, Any]:
        try:
            state = await self.runner.run(graph, connection_key)
        except DevflowError as e:
            logger.error(f"Workflow execution rejected: {e}")
            return _error(str(e))
        except Exception as e:
            logger.exception(f"Workflow execution crashed: {e}")
            return _error(str(e))

        if state == RunState.COMPLETED:
            return _ok()
        if state == RunState.ABORTED:
            return _error("Workflow stopped by user")
        return _error(self.runner.failure or "Workflow failed")

    async def stop_workflow(self) -> dict[str, Any]:
        if self.runner.stop():
            return _ok()
        return _error("No workflow is running")

    async def execute_single_node(
        self, node: dict[str, Any] | Node, connection_key: str
    ) -> dict[str, Any]:
        try:
            parsed = node if isinstance(node, Node) else Node.model_validate(node)
            result = await self.runner.execute_single_node(parsed, connection_key)
        except ValidationError as e:
            return _error(f"Invalid node: {e}")
        except DevflowError as e:
            logger.error(f"Single node execution rejected: {e}")
            return _error(str(e))
        except Exception as e:
            logger.exception(f"Single node execution crashed: {e}")
            return _error(str(e))

        if result.success:
            return _ok()
        return _error(result.error or "Node execution failed")

    def get_workflow_context(self) -> dict[str, Any]:
        return serialize_context(self.store.snapshot())

    def on_workflow_context_update(
        self, callback: Callable[[dict[str, Any]], None]
    ) -> Callable[[], None]:
        """Push the serialized context to ``callback`` on every mutation."""

        def forward(snapshot: ExecutionContext) -> None:
            callback(serialize_context(snapshot))

        return self.store.subscribe(forward)

    def open_channel(self) -> SnapshotChannel:
        """Async queue of serialized contexts. Must be called inside a running loop."""
        return SnapshotChannel(self.store)

    def cleanup(self) -> None:
        self.store.cleanup()
