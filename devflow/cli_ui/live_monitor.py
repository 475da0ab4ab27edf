"""Live execution monitoring for workflows.

Redraws the terminal on every execution snapshot pushed by the store.
"""

import asyncio

from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn

from devflow.cli_ui.graph_renderer import StatusTableRenderer, TerminalGraphRenderer
from devflow.core.channels import SnapshotChannel
from devflow.core.context import ExecutionContext
from devflow.core.graph_schema import NodeStatus, WorkflowGraph
from devflow.core.state import ExecutionStateStore


class LiveExecutionMonitor:
    """
    Real-time terminal UI for a running workflow.

    Subscribes to the store through a ``SnapshotChannel`` so every snapshot is
    drawn in order; no polling.
    """

    LOG_ROWS = 8

    def __init__(self, store: ExecutionStateStore, console: Console | None = None):
        self.store = store
        self.console = console or Console()
        self.graph_renderer = TerminalGraphRenderer(self.console)
        self.status_renderer = StatusTableRenderer(self.console)
        self._stop = asyncio.Event()

    def create_layout(self) -> Layout:
        layout = Layout()
        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="main"),
            Layout(name="log", size=self.LOG_ROWS + 6),
            Layout(name="footer", size=3),
        )
        layout["main"].split_row(Layout(name="graph", ratio=1), Layout(name="status", ratio=1))
        return layout

    def cancel(self):
        """Signal the monitor to stop after the run finishes."""
        self._stop.set()

    def _draw(
        self,
        layout: Layout,
        progress: Progress,
        task_id: int,
        workflow: WorkflowGraph,
        context: ExecutionContext,
    ) -> None:
        safe_name = escape(workflow.name)
        if context.is_running:
            header = f"[bold blue]⟳ Executing:[/] {safe_name}"
        else:
            header = f"[bold]{safe_name}[/]"
        layout["header"].update(Panel(header, style="bold"))

        statuses = context.node_statuses
        layout["graph"].update(
            Panel(self.graph_renderer.render_as_tree(workflow, statuses), title="Workflow Graph")
        )
        layout["status"].update(
            Panel(self.status_renderer.render_status_table(workflow, statuses), title="Nodes")
        )
        layout["log"].update(
            self.status_renderer.render_log_table(context.execution_log, limit=self.LOG_ROWS)
        )

        done = sum(1 for s in statuses.values() if s in (NodeStatus.SUCCESS, NodeStatus.ERROR))
        progress.update(task_id, completed=done, description=f"Nodes: {done}/{len(workflow.nodes)}")
        layout["footer"].update(progress)

    async def monitor(self, workflow: WorkflowGraph) -> None:
        """Draw snapshots until ``cancel()`` is called."""
        layout = self.create_layout()
        progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
        )
        task_id = progress.add_task("Nodes: 0/0", total=len(workflow.nodes))
        self._draw(layout, progress, task_id, workflow, self.store.snapshot())

        channel = SnapshotChannel(self.store)
        try:
            with Live(layout, console=self.console, refresh_per_second=4):
                await self._pump(channel, layout, progress, task_id, workflow)
        finally:
            channel.close()

    async def _pump(
        self,
        channel: SnapshotChannel,
        layout: Layout,
        progress: Progress,
        task_id: int,
        workflow: WorkflowGraph,
    ) -> None:
        while not self._stop.is_set():
            get_task = asyncio.ensure_future(channel.get())
            stop_task = asyncio.ensure_future(self._stop.wait())
            done, _ = await asyncio.wait({get_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
            if get_task in done:
                context = ExecutionContext.model_validate(get_task.result())
                self._draw(layout, progress, task_id, workflow, context)
            else:
                get_task.cancel()
            if stop_task not in done:
                stop_task.cancel()

        # Drain what was queued before the stop so the final state is shown
        while channel.pending():
            context = ExecutionContext.model_validate(channel.get_nowait())
            self._draw(layout, progress, task_id, workflow, context)
