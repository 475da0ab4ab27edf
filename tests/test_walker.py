"""Tests for graph traversal and loop bookkeeping.

Tests cover:
- Linear successors and dead ends
- Condition branch selection
- Count, condition and foreach loops
- max_iterations ceiling and counter reset on exit
"""

import pytest

from devflow.core.node_config import LoopConfig
from devflow.core.walker import GraphWalker


@pytest.fixture
def branching_graph(graph_factory):
    """start -> cond (true: yes, false: <none>), yes -> end"""
    return graph_factory(
        [
            {"id": "start", "type": "start"},
            {"id": "cond", "type": "condition", "config": {"selector": "OK"}},
            {"id": "yes", "type": "wait"},
        ],
        [("start", "cond"), ("cond", "yes", "true")],
    )


@pytest.fixture
def loop_graph(graph_factory):
    """start -> loop (loop: body, end: after), body -> loop"""
    return graph_factory(
        [
            {"id": "start", "type": "start"},
            {"id": "loop", "type": "loop"},
            {"id": "body", "type": "click", "config": {"x": 1, "y": 1}},
            {"id": "after", "type": "wait"},
        ],
        [("start", "loop"), ("loop", "body", "loop"), ("body", "loop"), ("loop", "after", "end")],
    )


def _drive(walker: GraphWalker, config: LoopConfig, conditions=None) -> list:
    """Consult the loop until it ends, returning every decision."""
    decisions = []
    conditions = list(conditions or [])
    while True:
        holds = conditions.pop(0) if conditions else None
        decision = walker.advance_loop("loop", config, holds)
        decisions.append(decision)
        if not decision.continues:
            return decisions


# =============================================================================
# Successor Selection
# =============================================================================


class TestNextNode:
    """Test successor lookup for non-loop nodes."""

    def test_linear_successor(self, linear_graph):
        walker = GraphWalker(linear_graph)

        assert walker.next_node("start") == "click"
        assert walker.next_node("click") == "shot"
        assert walker.next_node("shot") is None

    def test_condition_true_branch(self, branching_graph):
        assert GraphWalker(branching_graph).next_node("cond", True) == "yes"

    def test_condition_missing_branch_ends_run(self, branching_graph):
        assert GraphWalker(branching_graph).next_node("cond", False) is None

    def test_unknown_node(self, linear_graph):
        with pytest.raises(KeyError):
            GraphWalker(linear_graph).next_node("ghost")

    def test_loop_node_needs_advance_loop(self, loop_graph):
        with pytest.raises(ValueError, match="advance_loop"):
            GraphWalker(loop_graph).next_node("loop")


# =============================================================================
# Loops
# =============================================================================


class TestLoops:
    """Test loop decisions."""

    def test_count_loop(self, loop_graph):
        decisions = _drive(GraphWalker(loop_graph), LoopConfig(count=3))

        assert [d.handle for d in decisions] == ["loop", "loop", "loop", "end"]
        assert [d.iteration for d in decisions] == [1, 2, 3, 3]
        assert decisions[0].target == "body"
        assert decisions[-1].target == "after"

    def test_zero_count_exits_immediately(self, loop_graph):
        decisions = _drive(GraphWalker(loop_graph), LoopConfig(count=0))

        assert [d.handle for d in decisions] == ["end"]

    def test_max_iterations_caps_count(self, loop_graph):
        decisions = _drive(GraphWalker(loop_graph), LoopConfig(count=3, max_iterations=2))

        assert [d.handle for d in decisions] == ["loop", "loop", "end"]
        assert "max iterations" in decisions[-1].reason

    def test_condition_loop(self, loop_graph):
        config = LoopConfig(type="condition", condition={"selector": "#more"})

        decisions = _drive(GraphWalker(loop_graph), config, [True, True, False])

        assert [d.handle for d in decisions] == ["loop", "loop", "end"]

    def test_condition_loop_capped(self, loop_graph):
        config = LoopConfig(type="condition", condition={"selector": "#more"}, max_iterations=3)

        decisions = _drive(GraphWalker(loop_graph), config, [True] * 10)

        assert len([d for d in decisions if d.continues]) == 3

    def test_foreach_binds_items(self, loop_graph):
        config = LoopConfig(type="foreach", items=["a", "b"])

        decisions = _drive(GraphWalker(loop_graph), config)

        assert [d.item for d in decisions] == ["a", "b", None]

    def test_counter_resets_after_end(self, loop_graph):
        walker = GraphWalker(loop_graph)
        config = LoopConfig(count=2)

        _drive(walker, config)
        assert walker.iterations("loop") == 0

        second = _drive(walker, config)
        assert [d.handle for d in second] == ["loop", "loop", "end"]

    def test_loop_without_body_ends(self, graph_factory):
        graph = graph_factory(
            [{"id": "start", "type": "start"}, {"id": "loop", "type": "loop"}],
            [("start", "loop")],
        )

        decision = GraphWalker(graph).advance_loop("loop", LoopConfig(count=5))

        assert decision.handle == "end"
        assert decision.target is None
        assert decision.reason == "no loop body connected"

    def test_reset_clears_counters(self, loop_graph):
        walker = GraphWalker(loop_graph)
        walker.advance_loop("loop", LoopConfig(count=5))

        walker.reset()

        assert walker.iterations("loop") == 0
