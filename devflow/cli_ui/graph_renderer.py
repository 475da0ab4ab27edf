"""Terminal rendering of workflow graphs and execution state.

Provides a tree view of the graph (with branch handle labels), a node
status table and an execution log table using Rich.
"""

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from devflow.core.context import WORKFLOW_LOG_NODE, LogEntry
from devflow.core.graph_schema import Edge, Node, NodeKind, NodeStatus, WorkflowGraph


def _status_value(status: NodeStatus | str | None) -> str:
    if isinstance(status, NodeStatus):
        return status.value
    return str(status) if status else "idle"


class TerminalGraphRenderer:
    """
    Renders workflow graphs as a Rich tree rooted at the start node.

    Condition and loop edges are labelled with their handle. Nodes already
    shown on the current path are rendered as back references so loops
    terminate.
    """

    NODE_STYLES = {
        NodeKind.START: ("[>]", "green"),
        NodeKind.CLOSE: ("[X]", "red"),
        NodeKind.CLICK: ("[*]", "cyan"),
        NodeKind.INPUT: ("[T]", "cyan"),
        NodeKind.SWIPE: ("[~]", "cyan"),
        NodeKind.SCROLL: ("[|]", "cyan"),
        NodeKind.WAIT: ("[.]", "yellow"),
        NodeKind.SCREENSHOT: ("[P]", "blue"),
        NodeKind.CONDITION: ("[?]", "magenta"),
        NodeKind.LOOP: ("[L]", "magenta"),
    }

    STATUS_COLORS = {
        "idle": "dim",
        "pending": "yellow",
        "running": "blue bold",
        "success": "green",
        "error": "red bold",
    }

    STATUS_ICONS = {"running": " ⟳", "success": " ✓", "error": " ✗"}

    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    def render_as_tree(
        self,
        workflow: WorkflowGraph,
        statuses: dict[str, NodeStatus | str] | None = None,
        max_depth: int = 50,
    ) -> Tree:
        """
        Render workflow as a Rich Tree.

        Returns a tree with an error line if the graph has no single start node.
        """
        tree = Tree(f"[bold]{escape(workflow.name)}[/]")

        node_map = {n.id: n for n in workflow.nodes}
        edge_map: dict[str, list[Edge]] = {n.id: [] for n in workflow.nodes}
        for edge in workflow.edges:
            if edge.source in edge_map:
                edge_map[edge.source].append(edge)

        starts = workflow.start_nodes()
        if len(starts) != 1:
            tree.add("[red]Error: workflow needs exactly one start node[/]")
            return tree

        self._add_node_to_tree(
            tree, starts[0], statuses, node_map, edge_map, visited=set(), depth=0, max_depth=max_depth
        )
        return tree

    def _add_node_to_tree(
        self,
        parent: Tree,
        node: Node,
        statuses: dict[str, NodeStatus | str] | None,
        node_map: dict[str, Node],
        edge_map: dict[str, list[Edge]],
        visited: set,
        depth: int = 0,
        max_depth: int = 50,
    ):
        if depth >= max_depth:
            parent.add("[dim]... (max depth reached)[/]")
            return
        # Escape user strings to prevent Rich markup injection
        safe_label = escape(node.display_name)

        if node.id in visited:
            parent.add(f"[dim]↩ {safe_label}[/]")
            return
        visited.add(node.id)

        symbol, color = self.NODE_STYLES.get(node.type, ("[ ]", "white"))
        status = _status_value(statuses.get(node.id)) if statuses else None
        if status and status != "idle":
            status_color = self.STATUS_COLORS.get(status, "white")
            icon = self.STATUS_ICONS.get(status, "")
            branch = parent.add(f"[{status_color}]{symbol} {safe_label}{icon}[/]")
        else:
            branch = parent.add(f"[{color}]{symbol} {safe_label}[/]")

        for edge in edge_map.get(node.id, []):
            child = node_map.get(edge.target)
            if not child:
                continue
            target = branch
            if node.type in (NodeKind.CONDITION, NodeKind.LOOP) and edge.source_handle:
                target = branch.add(f"[dim]({escape(edge.source_handle)})[/]")
            self._add_node_to_tree(
                target, child, statuses, node_map, edge_map, visited.copy(), depth + 1, max_depth
            )


class StatusTableRenderer:
    """Renders node statuses and the execution log as Rich tables."""

    STATUS_TEXT = {
        "success": "[green]✓ Success[/]",
        "error": "[red]✗ Error[/]",
        "running": "[blue]⟳ Running[/]",
        "pending": "[yellow]○ Pending[/]",
    }

    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    def render_status_table(
        self,
        workflow: WorkflowGraph,
        statuses: dict[str, NodeStatus | str],
        title: str = "Node Status",
    ) -> Table:
        table = Table(title=escape(title))
        table.add_column("Node", style="cyan")
        table.add_column("Type", style="magenta")
        table.add_column("Status", justify="center")

        for node in workflow.nodes:
            status = _status_value(statuses.get(node.id))
            status_text = self.STATUS_TEXT.get(status, "[dim]○ Idle[/]")
            table.add_row(escape(node.display_name), node.type.value, status_text)
        return table

    def render_log_table(self, entries: list[LogEntry], limit: int | None = None) -> Table:
        table = Table(title="Execution Log")
        table.add_column("Time", style="dim", no_wrap=True)
        table.add_column("Node", style="cyan")
        table.add_column("Status", justify="center")
        table.add_column("Message", max_width=60)

        shown = entries[-limit:] if limit else entries
        for entry in shown:
            status = _status_value(entry.status)
            color = TerminalGraphRenderer.STATUS_COLORS.get(status, "white")
            message = entry.message
            if entry.error:
                message = f"{message}: {entry.error}"
            elif entry.duration is not None:
                message = f"{message} ({entry.duration:.0f} ms)"
            node_label = "[bold]workflow[/]" if entry.node_id == WORKFLOW_LOG_NODE else escape(entry.node_id)
            table.add_row(
                entry.timestamp.strftime("%H:%M:%S.%f")[:-3],
                node_label,
                f"[{color}]{status}[/]",
                escape(message),
            )
        return table
