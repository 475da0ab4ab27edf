"""Graph traversal for workflow runs.

The walker answers one question: given the node that just finished and its
outcome, which node runs next? It owns the per-loop iteration counters so
loop bookkeeping never leaks into the run's variable bag.
"""

import logging
from dataclasses import dataclass
from typing import Any

from devflow.core.graph_schema import BRANCH_HANDLES, NodeKind, WorkflowGraph
from devflow.core.node_config import LoopConfig

logger = logging.getLogger(__name__)


@dataclass
class LoopDecision:
    """Result of consulting a loop node."""

    handle: str  # "loop" or "end"
    target: str | None
    iteration: int  # 1-based iteration being entered, or iterations completed on "end"
    item: Any = None
    reason: str = ""

    @property
    def continues(self) -> bool:
        return self.handle == "loop"


class GraphWalker:
    """Selects successors by edge handle and tracks loop iterations."""

    def __init__(self, graph: WorkflowGraph):
        self._kinds = {node.id: node.type for node in graph.nodes}
        self._handle_targets: dict[tuple[str, str | None], str] = {}
        self._linear_targets: dict[str, str] = {}
        for edge in graph.edges:
            kind = self._kinds.get(edge.source)
            if kind in BRANCH_HANDLES:
                self._handle_targets[(edge.source, edge.source_handle)] = edge.target
            else:
                self._linear_targets[edge.source] = edge.target
        self._loop_counters: dict[str, int] = {}

    def reset(self) -> None:
        self._loop_counters.clear()

    def iterations(self, node_id: str) -> int:
        return self._loop_counters.get(node_id, 0)

    def next_node(self, node_id: str, outcome: Any = None) -> str | None:
        """Return the successor of a non-loop node, or None when the run is done.

        CONDITION nodes follow the ``true``/``false`` edge matching ``outcome``.
        A missing branch edge is a dead end, not an error.
        """
        kind = self._kinds.get(node_id)
        if kind is None:
            raise KeyError(f"Unknown node: {node_id}")
        if kind == NodeKind.LOOP:
            raise ValueError(f"Loop node '{node_id}' must be advanced with advance_loop()")
        if kind == NodeKind.CONDITION:
            handle = "true" if outcome else "false"
            target = self._handle_targets.get((node_id, handle))
            if target is None:
                logger.debug(f"Condition {node_id} has no '{handle}' edge, run ends here")
            return target
        return self._linear_targets.get(node_id)

    def advance_loop(
        self, node_id: str, config: LoopConfig, condition_holds: bool | None = None
    ) -> LoopDecision:
        """Decide whether a loop node iterates again or exits.

        The counter increments on every ``loop`` decision and resets on ``end``
        so the loop can be re-entered later. ``max_iterations`` forces ``end``
        regardless of loop type.
        """
        completed = self._loop_counters.get(node_id, 0)
        item = None

        if completed >= config.max_iterations:
            proceed = False
            reason = f"max iterations ({config.max_iterations}) reached"
        elif config.type == "count":
            proceed = completed < config.count
            reason = f"iteration {completed + 1}/{config.count}" if proceed else "count exhausted"
        elif config.type == "condition":
            proceed = bool(condition_holds)
            reason = "condition holds" if proceed else "condition no longer holds"
        else:
            proceed = completed < len(config.items)
            if proceed:
                item = config.items[completed]
                reason = f"item {completed + 1}/{len(config.items)}"
            else:
                reason = "items exhausted"

        loop_target = self._handle_targets.get((node_id, "loop"))
        if proceed and loop_target is None:
            proceed = False
            reason = "no loop body connected"

        if proceed:
            self._loop_counters[node_id] = completed + 1
            return LoopDecision("loop", loop_target, completed + 1, item, reason)

        self._loop_counters.pop(node_id, None)
        return LoopDecision("end", self._handle_targets.get((node_id, "end")), completed, None, reason)
