"""Workflow runner: owns the lifecycle of one workflow run.

    idle -> running -> completed | failed | aborted

The runner drives the walker/dispatch loop one node per ``step()``. Only
graph validation errors, a busy store and device connectivity errors raised
before the first node propagate to the caller; everything that happens inside
a node is recorded in the execution log instead.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

from devflow.config import DevflowSettings
from devflow.core.cancellation import CancellationToken
from devflow.core.context import WORKFLOW_LOG_NODE
from devflow.core.dispatch import NodeExecutor, NodeResult, Sleep
from devflow.core.exceptions import ExecutionAborted, GraphValidationError, WorkflowBusyError
from devflow.core.graph_schema import Node, NodeKind, NodeStatus, WorkflowGraph
from devflow.core.node_config import LoopConfig
from devflow.core.state import ExecutionStateStore
from devflow.core.walker import GraphWalker
from devflow.device.base import DeviceActions

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    """Lifecycle states of a workflow run"""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


TERMINAL_STATES = {RunState.COMPLETED, RunState.FAILED, RunState.ABORTED}


@dataclass
class RunStats:
    total: int = 0
    executed: int = 0
    succeeded: int = 0
    failed: int = 0

    @property
    def summary(self) -> str:
        return f"({self.succeeded}/{self.executed} successful)"


class WorkflowRunner:
    """Runs workflow graphs and single nodes against one device adapter."""

    def __init__(
        self,
        store: ExecutionStateStore,
        device: DeviceActions,
        settings: DevflowSettings | None = None,
        sleep: Sleep = asyncio.sleep,
        executor: NodeExecutor | None = None,
    ):
        self.store = store
        self.device = device
        self.executor = executor or NodeExecutor(store, device, settings, sleep=sleep)
        self.state = RunState.IDLE
        self.graph: WorkflowGraph | None = None
        self.walker: GraphWalker | None = None
        self.connection_key: str | None = None
        self.token = CancellationToken()
        self.stats = RunStats()
        self.failure: str | None = None

    @property
    def is_busy(self) -> bool:
        return self.store.is_running or self.state == RunState.RUNNING

    def _ensure_idle(self) -> None:
        if self.is_busy:
            raise WorkflowBusyError("A workflow is already running")

    # ------------------------------------------------------------------
    # Full runs
    # ------------------------------------------------------------------

    def start(self, graph: WorkflowGraph, connection_key: str) -> None:
        """Validate the graph and prepare a fresh run.

        Raises:
            WorkflowBusyError: If a run or single-node execution is in progress
            GraphValidationError: If the graph is malformed (run stays idle)
        """
        self._ensure_idle()
        errors = graph.validate_graph()
        if errors:
            raise GraphValidationError(errors)

        start_node = graph.start_node
        unreachable = graph.unreachable_nodes()
        if unreachable:
            logger.warning(f"Nodes unreachable from start will not run: {sorted(unreachable)}")

        self.graph = graph
        self.walker = GraphWalker(graph)
        self.walker.reset()
        self.connection_key = connection_key
        self.token = CancellationToken()
        self.stats = RunStats(total=len(graph.nodes))
        self.failure = None

        self.store.reset()
        self.store.set_running(True)
        self.store.set_current_node(start_node.id)
        self.store.add_execution_log(
            WORKFLOW_LOG_NODE,
            NodeStatus.RUNNING,
            f"Workflow '{graph.name}' started on device {connection_key}",
        )
        self.state = RunState.RUNNING

    async def step(self) -> bool:
        """Execute the current node and advance. Returns False once terminal."""
        if self.state != RunState.RUNNING:
            return False
        if self.token.cancelled:
            self._abort()
            return False

        node = self.graph.get_node(self.store.current_node_id)
        try:
            result = await self.executor.execute(node, self.connection_key, self.token)
        except ExecutionAborted:
            self._abort()
            return False

        self.stats.executed += 1
        if not result.success:
            self.stats.failed += 1
            self._fail(node, result)
            return False
        self.stats.succeeded += 1

        if node.type == NodeKind.LOOP:
            next_id = self._advance_loop(node, result)
        else:
            next_id = self.walker.next_node(node.id, result.output)

        if self.token.cancelled:
            self._abort()
            return False
        if next_id is None:
            self._complete()
            return False

        self.store.set_current_node(next_id)
        return True

    def _advance_loop(self, node: Node, result: NodeResult) -> str | None:
        config: LoopConfig = result.config
        decision = self.walker.advance_loop(node.id, config, condition_holds=result.output)
        variables = {f"{node.id}_iteration": decision.iteration}
        if decision.continues and config.type == "foreach":
            variables[config.item_variable] = decision.item
        self.store.update_variables(variables)
        logger.debug(f"Loop {node.id}: {decision.handle} ({decision.reason})")
        return decision.target

    async def run(self, graph: WorkflowGraph, connection_key: str) -> RunState:
        """Check the device, start the run and step until it is terminal.

        Raises:
            WorkflowBusyError, GraphValidationError: See ``start``
            DeviceConnectionError: If the device is unreachable before the run starts
        """
        self._ensure_idle()
        errors = graph.validate_graph()
        if errors:
            raise GraphValidationError(errors)
        await self.device.check_connection(connection_key)
        self.start(graph, connection_key)

        try:
            while await self.step():
                pass
        except Exception as e:
            logger.error(f"Workflow run crashed: {e}")
            self._fail_run(f"Internal error: {e}")
            raise
        finally:
            if self.state == RunState.RUNNING:
                logger.warning("Workflow run cancelled before reaching a terminal state")
                self._abort()
        return self.state

    def stop(self) -> bool:
        """Request cooperative abort. Returns False when nothing is running."""
        if not self.is_busy:
            return False
        self.token.cancel()
        logger.info("Stop requested for running workflow")
        return True

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def _complete(self) -> None:
        self.state = RunState.COMPLETED
        self.store.set_current_node(None)
        self.store.set_running(False)
        self.store.add_execution_log(
            WORKFLOW_LOG_NODE,
            NodeStatus.SUCCESS,
            f"Workflow completed {self.stats.summary}",
        )

    def _fail(self, node: Node, result: NodeResult) -> None:
        self.failure = f"Node '{node.display_name}' failed: {result.error}"
        self._fail_run(self.failure)

    def _fail_run(self, message: str) -> None:
        self.state = RunState.FAILED
        self.failure = message
        self.store.set_running(False)
        self.store.add_execution_log(
            WORKFLOW_LOG_NODE,
            NodeStatus.ERROR,
            f"Workflow failed {self.stats.summary}",
            error=message,
        )

    def _abort(self) -> None:
        self.state = RunState.ABORTED
        self.store.set_running(False)
        self.store.add_execution_log(
            WORKFLOW_LOG_NODE,
            NodeStatus.IDLE,
            f"Workflow stopped {self.stats.summary}",
        )

    # ------------------------------------------------------------------
    # Single-node (debug) execution
    # ------------------------------------------------------------------

    async def execute_single_node(self, node: Node, connection_key: str) -> NodeResult:
        """Run one node in isolation without touching other nodes or the walker.

        Raises:
            WorkflowBusyError: If a run or another single node is in progress
        """
        self._ensure_idle()
        self.state = RunState.IDLE
        self.token = CancellationToken()
        try:
            return await self.executor.execute(node, connection_key, self.token, single=True)
        except ExecutionAborted as e:
            self.store.set_current_node(None)
            self.store.set_running(False)
            self.store.add_execution_log(node.id, NodeStatus.IDLE, "Node execution stopped")
            return NodeResult(node_id=node.id, success=False, error=str(e))
        finally:
            if self.store.is_running:
                self.store.set_current_node(None)
                self.store.set_running(False)
