"""Execution state store.

Holds the execution context of one workflow run and publishes a full
snapshot to every subscriber after each mutation. Only the runner and the
node dispatcher mutate it; everyone else reads snapshots.

Mutations hold an RLock. Snapshots are taken under the lock and delivered
outside it, so a listener may call back into the store.
"""

import itertools
import logging
import secrets
import threading
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from devflow.core.context import (
    WORKFLOW_LOG_NODE,
    ExecutionContext,
    LogEntry,
    _utc_now,
    deserialize_context,
)
from devflow.core.graph_schema import NodeStatus

logger = logging.getLogger(__name__)

Listener = Callable[[ExecutionContext], None]
StatusSync = Callable[[str, NodeStatus], None]


class ExecutionStateStore:
    """Single source of truth for a run's execution context."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._context = ExecutionContext()
        self._listeners: dict[int, Listener] = {}
        self._listener_ids = itertools.count()
        self._status_sync: StatusSync | None = None
        self._last_timestamp: datetime | None = None
        self._log_ids: set[str] = set()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener. Returns an idempotent unsubscribe function."""
        with self._lock:
            key = next(self._listener_ids)
            self._listeners[key] = listener

        def unsubscribe() -> None:
            with self._lock:
                self._listeners.pop(key, None)

        return unsubscribe

    def set_status_sync(self, callback: StatusSync | None) -> None:
        """Register a callback invoked for every node status change.

        It runs before subscribers are notified, so an external node
        renderer can update badges ahead of the snapshot fan-out.
        """
        with self._lock:
            self._status_sync = callback

    def cleanup(self) -> None:
        """Drop all subscribers and the status callback. Safe to call twice."""
        with self._lock:
            self._listeners.clear()
            self._status_sync = None

    def _notify(self) -> None:
        with self._lock:
            snapshot = self._context.model_copy(deep=True)
            listeners = list(self._listeners.items())

        for key, listener in listeners:
            # Skip listeners removed by an earlier listener in this fan-out
            if key not in self._listeners:
                continue
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Execution state listener failed: {e}")

    def _sync_status(self, node_id: str, status: NodeStatus) -> None:
        callback = self._status_sync
        if callback is None:
            return
        try:
            callback(node_id, status)
        except Exception as e:
            logger.error(f"Status sync callback failed for {node_id}: {e}")

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    def snapshot(self) -> ExecutionContext:
        with self._lock:
            return self._context.model_copy(deep=True)

    @property
    def is_running(self) -> bool:
        return self._context.is_running

    @property
    def current_node_id(self) -> str | None:
        return self._context.current_node_id

    def get_node_status(self, node_id: str) -> NodeStatus:
        with self._lock:
            return self._context.node_statuses.get(node_id, NodeStatus.IDLE)

    def get_all_node_statuses(self) -> dict[str, NodeStatus]:
        with self._lock:
            return dict(self._context.node_statuses)

    def get_execution_log(self) -> list[LogEntry]:
        with self._lock:
            return [entry.model_copy(deep=True) for entry in self._context.execution_log]

    def get_variables(self) -> dict[str, Any]:
        with self._lock:
            return dict(self._context.variables)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def reset(self) -> None:
        with self._lock:
            self._context = ExecutionContext()
            self._last_timestamp = None
            self._log_ids.clear()
        self._notify()

    def set_running(self, running: bool) -> None:
        with self._lock:
            self._context.is_running = running
        self._notify()

    def set_current_node(self, node_id: str | None) -> None:
        with self._lock:
            self._context.current_node_id = node_id
        self._notify()

    def update_node_status(self, node_id: str, status: NodeStatus) -> None:
        with self._lock:
            self._context.node_statuses[node_id] = status
        self._sync_status(node_id, status)
        self._notify()

    def update_multiple_node_statuses(self, statuses: Mapping[str, NodeStatus]) -> None:
        """Apply a batch of status changes with a single notification."""
        with self._lock:
            self._context.node_statuses.update(statuses)
        for node_id, status in statuses.items():
            self._sync_status(node_id, status)
        self._notify()

    def add_execution_log(
        self,
        node_id: str,
        status: NodeStatus,
        message: str,
        duration: float | None = None,
        result: Any = None,
        error: str | None = None,
    ) -> LogEntry:
        """Append a log entry stamped with a unique id and timestamp."""
        with self._lock:
            entry = self._append_log(node_id, status, message, duration, result, error)
        self._notify()
        return entry

    def _append_log(
        self,
        node_id: str,
        status: NodeStatus,
        message: str,
        duration: float | None = None,
        result: Any = None,
        error: str | None = None,
    ) -> LogEntry:
        # Caller holds the lock
        timestamp = _utc_now()
        if self._last_timestamp is not None and timestamp < self._last_timestamp:
            timestamp = self._last_timestamp
        self._last_timestamp = timestamp

        millis = int(timestamp.timestamp() * 1000)
        entry_id = f"log-{millis}-{secrets.token_hex(4)}"
        while entry_id in self._log_ids:
            entry_id = f"log-{millis}-{secrets.token_hex(4)}"
        self._log_ids.add(entry_id)

        entry = LogEntry(
            id=entry_id,
            node_id=node_id,
            timestamp=timestamp,
            status=status,
            message=message,
            duration=duration,
            result=result,
            error=error,
        )
        self._context.execution_log.append(entry)

        if node_id == WORKFLOW_LOG_NODE:
            logger.info(message)
        elif status == NodeStatus.ERROR:
            logger.warning(f"[{node_id}] {message}" + (f": {error}" if error else ""))
        else:
            logger.debug(f"[{node_id}] {message}")
        return entry

    def update_variables(self, variables: Mapping[str, Any]) -> None:
        """Shallow-merge into the run's variable bag."""
        with self._lock:
            self._context.variables.update(variables)
        self._notify()

    # ------------------------------------------------------------------
    # Single-node (debug) execution
    # ------------------------------------------------------------------

    def start_single_node_execution(self, node_id: str, message: str | None = None) -> None:
        with self._lock:
            self._context.is_running = True
            self._context.current_node_id = node_id
            self._context.node_statuses[node_id] = NodeStatus.RUNNING
            self._append_log(node_id, NodeStatus.RUNNING, message or "Executing node")
        self._sync_status(node_id, NodeStatus.RUNNING)
        self._notify()

    def complete_single_node_execution(
        self,
        node_id: str,
        result: Any = None,
        message: str | None = None,
        duration: float | None = None,
    ) -> None:
        with self._lock:
            self._context.is_running = False
            self._context.current_node_id = None
            self._context.node_statuses[node_id] = NodeStatus.SUCCESS
            self._append_log(
                node_id,
                NodeStatus.SUCCESS,
                message or "Node executed successfully",
                duration=duration,
                result=result,
            )
        self._sync_status(node_id, NodeStatus.SUCCESS)
        self._notify()

    def fail_single_node_execution(
        self,
        node_id: str,
        error: str,
        message: str | None = None,
        duration: float | None = None,
    ) -> None:
        with self._lock:
            self._context.is_running = False
            self._context.current_node_id = None
            self._context.node_statuses[node_id] = NodeStatus.ERROR
            self._append_log(
                node_id,
                NodeStatus.ERROR,
                message or "Node execution failed",
                duration=duration,
                error=error,
            )
        self._sync_status(node_id, NodeStatus.ERROR)
        self._notify()

    # ------------------------------------------------------------------
    # Remote sync
    # ------------------------------------------------------------------

    def update_from_execution_context(
        self, external: Mapping[str, Any] | ExecutionContext
    ) -> None:
        """Replace local state with a context received over the wire."""
        incoming = deserialize_context(dict(external) if isinstance(external, Mapping) else external)
        statuses = dict(incoming.node_statuses)
        if incoming.is_running and incoming.current_node_id:
            statuses[incoming.current_node_id] = NodeStatus.RUNNING

        with self._lock:
            self._context = ExecutionContext(
                is_running=incoming.is_running,
                current_node_id=incoming.current_node_id,
                node_statuses=statuses,
                execution_log=incoming.execution_log,
                variables=dict(incoming.variables),
            )
            self._log_ids = {entry.id for entry in incoming.execution_log}
            self._last_timestamp = (
                incoming.execution_log[-1].timestamp if incoming.execution_log else None
            )
        self._notify()
