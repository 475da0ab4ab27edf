"""Workflow graph schema definitions using Pydantic models.

A workflow is a directed graph of typed device automation steps. Nodes carry
an untyped ``config`` dict that is resolved into a typed config only at
dispatch time (see ``devflow.core.node_config``), so a bad config fails that
node instead of the whole graph.

Branching is expressed through edge handles:
- CONDITION nodes route on ``true`` / ``false``
- LOOP nodes route on ``loop`` (iterate again) / ``end`` (exit)

Structural checks run before execution via ``WorkflowGraph.validate_graph``.
"""

import json
from enum import Enum
from pathlib import Path
from typing import Any

import networkx as nx
import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class NodeKind(str, Enum):
    """Supported node kinds in device workflows"""

    START = "start"  # Launch the app under test
    CLOSE = "close"  # Stop the app or press back
    CLICK = "click"  # Tap / double tap / long press
    INPUT = "input"  # Type text into a field
    SWIPE = "swipe"  # Swipe, fling or drag gesture
    SCROLL = "scroll"  # Directional scroll
    WAIT = "wait"  # Fixed delay or wait for element to appear/vanish
    SCREENSHOT = "screenshot"  # Capture the screen
    CONDITION = "condition"  # Evaluate a UI predicate, branch true/false
    LOOP = "loop"  # Repeat a body by count, condition or item list


class NodeStatus(str, Enum):
    """Execution status for nodes"""

    IDLE = "idle"
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


# Legacy kind names used by the visual editor
KIND_ALIASES = {"print": NodeKind.INPUT.value}

# Handle labels accepted on the outgoing edges of branching nodes
BRANCH_HANDLES: dict[NodeKind, tuple[str, str]] = {
    NodeKind.CONDITION: ("true", "false"),
    NodeKind.LOOP: ("loop", "end"),
}


class Edge(BaseModel):
    """Directed edge between nodes, optionally tagged with a source handle"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    source: str
    target: str
    source_handle: str | None = Field(default=None, alias="sourceHandle")
    target_handle: str | None = Field(default=None, alias="targetHandle")


class Node(BaseModel):
    """Workflow node with kind-specific, not-yet-resolved configuration"""

    model_config = ConfigDict(extra="ignore")

    id: str
    type: NodeKind
    label: str | None = None
    config: dict[str, Any] = Field(default_factory=dict)

    # UI metadata (position) for the visual editor, ignored by the engine
    position: dict | None = None

    @model_validator(mode="before")
    @classmethod
    def lift_editor_layout(cls, data: Any) -> Any:
        """Accept the editor's ``{id, type, data: {label, config}}`` layout."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        editor_data = data.pop("data", None)
        if isinstance(editor_data, dict):
            data.setdefault("label", editor_data.get("label"))
            data.setdefault("config", editor_data.get("config") or {})
        if data.get("config") is None:
            data["config"] = {}
        return data

    @field_validator("type", mode="before")
    @classmethod
    def resolve_kind_alias(cls, v):
        if isinstance(v, str):
            return KIND_ALIASES.get(v, v)
        return v

    @property
    def display_name(self) -> str:
        return self.label or self.id


class WorkflowGraph(BaseModel):
    """Complete workflow definition"""

    id: str = "workflow"
    name: str = "Untitled workflow"
    description: str | None = None

    nodes: list[Node]
    edges: list[Edge] = Field(default_factory=list)

    def get_node(self, node_id: str) -> Node | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def start_nodes(self) -> list[Node]:
        return [n for n in self.nodes if n.type == NodeKind.START]

    @property
    def start_node(self) -> Node:
        """The unique START node. Call ``validate_graph`` first."""
        starts = self.start_nodes()
        if len(starts) != 1:
            raise ValueError(f"Expected exactly one start node, found {len(starts)}")
        return starts[0]

    def validate_graph(self) -> list[str]:
        """
        Validate graph structure using NetworkX.
        Returns list of validation errors.
        """
        errors = []

        seen_node_ids = set()
        for node in self.nodes:
            if node.id in seen_node_ids:
                errors.append(f"Duplicate node ID: '{node.id}'")
            seen_node_ids.add(node.id)
        node_ids = seen_node_ids

        seen_edge_ids = set()
        for edge in self.edges:
            if edge.id in seen_edge_ids:
                errors.append(f"Duplicate edge ID: '{edge.id}'")
            seen_edge_ids.add(edge.id)

        starts = self.start_nodes()
        if not starts:
            errors.append("No start node found")
        elif len(starts) > 1:
            errors.append(
                f"Multiple start nodes found: {', '.join(n.id for n in starts)}"
            )

        for edge in self.edges:
            if edge.source not in node_ids:
                errors.append(f"Edge {edge.id}: source '{edge.source}' not found")
            if edge.target not in node_ids:
                errors.append(f"Edge {edge.id}: target '{edge.target}' not found")

        errors.extend(self._validate_outgoing_edges())

        # Every cycle must be closed by a LOOP node's "loop" edge, so the graph
        # without those edges has to be acyclic
        G = nx.DiGraph()
        G.add_nodes_from(node_ids)
        for edge in self.edges:
            if edge.source_handle == "loop" and self._kind_of(edge.source) == NodeKind.LOOP:
                continue
            G.add_edge(edge.source, edge.target)
        if not nx.is_directed_acyclic_graph(G):
            cycle = nx.find_cycle(G)
            errors.append(
                f"Cycle without loop node: {' -> '.join(u for u, _ in cycle)} -> {cycle[0][0]}"
            )

        return errors

    def _validate_outgoing_edges(self) -> list[str]:
        errors = []
        outgoing: dict[str, list[Edge]] = {}
        for edge in self.edges:
            outgoing.setdefault(edge.source, []).append(edge)

        for node in self.nodes:
            edges = outgoing.get(node.id, [])
            handles = BRANCH_HANDLES.get(node.type)
            if handles is None:
                if len(edges) > 1:
                    errors.append(
                        f"Node '{node.id}' ({node.type.value}) has {len(edges)} outgoing "
                        f"edges; only branching nodes may have more than one"
                    )
                continue

            seen = set()
            for edge in edges:
                if edge.source_handle not in handles:
                    errors.append(
                        f"Edge {edge.id}: {node.type.value} node '{node.id}' requires "
                        f"handle {' or '.join(repr(h) for h in handles)}, "
                        f"got {edge.source_handle!r}"
                    )
                elif edge.source_handle in seen:
                    errors.append(
                        f"Node '{node.id}' has more than one '{edge.source_handle}' edge"
                    )
                seen.add(edge.source_handle)
        return errors

    def _kind_of(self, node_id: str) -> NodeKind | None:
        node = self.get_node(node_id)
        return node.type if node else None

    def _to_networkx(self) -> nx.DiGraph:
        """Convert to NetworkX DiGraph for analysis"""
        G = nx.DiGraph()
        for node in self.nodes:
            G.add_node(node.id)
        for edge in self.edges:
            G.add_edge(edge.source, edge.target)
        return G

    def unreachable_nodes(self) -> set[str]:
        """Nodes that can never execute because no path leads from START."""
        starts = self.start_nodes()
        if len(starts) != 1:
            return set()
        G = self._to_networkx()
        reachable = nx.descendants(G, starts[0].id) | {starts[0].id}
        return {n.id for n in self.nodes} - reachable


def load_graph(path: Path) -> WorkflowGraph:
    """Load a workflow graph from a YAML or JSON file.

    Raises:
        pydantic.ValidationError: If the document does not match the schema
        ValueError: If the document is not a mapping
    """
    text = Path(path).read_text()
    if Path(path).suffix.lower() == ".json":
        data = json.loads(text)
    else:
        data = yaml.safe_load(text)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping with 'nodes' and 'edges'")
    return WorkflowGraph(**data)
