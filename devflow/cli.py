"""CLI entry point for devflow.

Commands:
- devflow init: Create .devflow/config.yaml and an example workflow
- devflow validate: Check a workflow file and show its graph
- devflow run: Run a workflow against a device
- devflow node: Run one node of a workflow in isolation (debug)
- devflow studio: Serve the studio API for the visual editor
- devflow version: Show version information
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from pathlib import Path

import click
import pydantic
import yaml
from rich.console import Console
from rich.markup import escape

from devflow import __version__
from devflow.cli_ui.graph_renderer import StatusTableRenderer, TerminalGraphRenderer
from devflow.cli_ui.live_monitor import LiveExecutionMonitor
from devflow.config import CONFIG_DIR, CONFIG_FILE, default_config_yaml, load_settings
from devflow.core.graph_schema import WorkflowGraph, load_graph
from devflow.core.service import WorkflowService

console = Console()

EXAMPLE_WORKFLOW = """# Example devflow workflow
name: Login smoke test
nodes:
  - id: start
    type: start
    config:
      appName: com.example.app
      startingMode: coldBoot
  - id: wait_login
    type: wait
    config:
      waitType: arise
      selector: "#login_button"
      duration: 10
      unit: s
  - id: username
    type: input
    config:
      selector: "#username"
      text: demo
      clearFirst: true
  - id: login
    type: click
    config:
      selector: "#login_button"
      retryCount: 2
      waitTime: 500
  - id: shot
    type: screenshot
    config:
      filename: after_login
edges:
  - {id: e1, source: start, target: wait_login}
  - {id: e2, source: wait_login, target: username}
  - {id: e3, source: username, target: login}
  - {id: e4, source: login, target: shot}
"""


def get_repo_path() -> Path:
    """Get the repository path (current directory)."""
    return Path.cwd()


def _load_workflow_or_exit(workflow_file: str) -> WorkflowGraph:
    """Load a workflow file, printing schema errors and exiting on failure."""
    try:
        return load_graph(Path(workflow_file))
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        console.print(f"[red]Error parsing '{escape(workflow_file)}':[/red]")
        console.print(f"  {escape(str(e))}")
        sys.exit(1)
    except pydantic.ValidationError as e:
        console.print("[red]Error validating workflow schema:[/red]")
        for err in e.errors():
            loc = ".".join(str(x) for x in err["loc"])
            console.print(f"  - {escape(loc)}: {escape(err['msg'])}")
        sys.exit(1)
    except (ValueError, TypeError) as e:
        console.print("[red]Error validating workflow:[/red]")
        console.print(f"  {escape(str(e))}")
        sys.exit(1)


def _print_validation_errors_or_exit(workflow: WorkflowGraph) -> None:
    errors = workflow.validate_graph()
    if errors:
        console.print("[red]Validation errors:[/red]")
        for error in errors:
            console.print(f"  - {escape(error)}")
        sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(verbose: bool) -> None:
    """devflow - graph workflow engine for device test automation."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command()
def init() -> None:
    """Initialize project for devflow."""
    devflow_dir = get_repo_path() / CONFIG_DIR

    if devflow_dir.exists():
        console.print("[yellow]Project already initialized[/yellow]")
        return

    (devflow_dir / "workflows").mkdir(parents=True)
    (devflow_dir / CONFIG_FILE).write_text(
        "# devflow configuration for this project\n" + default_config_yaml()
    )
    (devflow_dir / "workflows" / "example.yaml").write_text(EXAMPLE_WORKFLOW)

    console.print(f"[green]Initialized devflow in {escape(str(devflow_dir))}[/green]")
    console.print(f"  Config: {CONFIG_DIR}/{CONFIG_FILE}")
    console.print(f"  Example workflow: {CONFIG_DIR}/workflows/example.yaml")


@main.command()
@click.argument("workflow_file", type=click.Path(exists=True))
def validate(workflow_file: str) -> None:
    """Validate a workflow file and show its graph."""
    workflow = _load_workflow_or_exit(workflow_file)

    console.print(TerminalGraphRenderer(console).render_as_tree(workflow))
    console.print()
    console.print(f"[bold]Nodes:[/] {len(workflow.nodes)}")
    console.print(f"[bold]Edges:[/] {len(workflow.edges)}")

    _print_validation_errors_or_exit(workflow)

    unreachable = workflow.unreachable_nodes()
    if unreachable:
        names = ", ".join(escape(n) for n in sorted(unreachable))
        console.print(f"[yellow]Unreachable nodes (will not run):[/] {names}")
    console.print("[green]✓ Graph is valid[/]")


@main.command()
@click.argument("workflow_file", type=click.Path(exists=True))
@click.option("--device", "-d", "connection_key", required=True, help="Device connection key")
@click.option("--live", is_flag=True, help="Show a live execution monitor")
def run(workflow_file: str, connection_key: str, live: bool) -> None:
    """Run a workflow against a connected device."""
    workflow = _load_workflow_or_exit(workflow_file)
    _print_validation_errors_or_exit(workflow)

    service = WorkflowService(settings=load_settings(get_repo_path()))

    async def execute():
        if not live:
            return await service.execute_graph(workflow, connection_key)

        monitor = LiveExecutionMonitor(service.store, console)

        async def run_and_cancel_monitor():
            try:
                return await service.execute_graph(workflow, connection_key)
            finally:
                monitor.cancel()

        results = await asyncio.gather(
            run_and_cancel_monitor(), monitor.monitor(workflow), return_exceptions=True
        )
        if isinstance(results[0], Exception):
            raise results[0]
        return results[0]

    try:
        result = asyncio.run(execute())
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")
        sys.exit(130)

    renderer = StatusTableRenderer(console)
    snapshot = service.store.snapshot()
    console.print(renderer.render_status_table(workflow, snapshot.node_statuses))
    console.print(renderer.render_log_table(snapshot.execution_log))

    if result["success"]:
        console.print("[green]✓ Workflow completed[/green]")
    else:
        console.print(f"[red]✗ {escape(result['error'])}[/red]")
        sys.exit(1)


@main.command()
@click.argument("workflow_file", type=click.Path(exists=True))
@click.argument("node_id")
@click.option("--device", "-d", "connection_key", required=True, help="Device connection key")
def node(workflow_file: str, node_id: str, connection_key: str) -> None:
    """Run a single node of a workflow in isolation."""
    workflow = _load_workflow_or_exit(workflow_file)
    target = workflow.get_node(node_id)
    if target is None:
        console.print(f"[red]Node '{escape(node_id)}' not found in workflow[/red]")
        sys.exit(1)

    service = WorkflowService(settings=load_settings(get_repo_path()))
    result = asyncio.run(service.execute_single_node(target, connection_key))

    console.print(StatusTableRenderer(console).render_log_table(service.store.get_execution_log()))
    if result["success"]:
        console.print(f"[green]✓ Node {escape(node_id)} succeeded[/green]")
    else:
        console.print(f"[red]✗ {escape(result['error'])}[/red]")
        sys.exit(1)


@main.command()
@click.option("--host", default=None, help="Bind address (default from config)")
@click.option("--port", type=int, default=None, help="Port (default from config)")
def studio(host: str | None, port: int | None) -> None:
    """Serve the studio API for the visual workflow editor."""
    import uvicorn

    settings = load_settings(get_repo_path())
    host = host or settings.studio_host
    port = port or settings.studio_port
    # Allowed origins are computed at import time from this variable
    os.environ["DEVFLOW_STUDIO_PORT"] = str(port)

    from devflow.studio.server import app, set_service

    set_service(WorkflowService(settings=settings))
    console.print(f"[blue]devflow studio listening on http://{host}:{port}[/blue]")
    uvicorn.run(app, host=host, port=port)


@main.command()
def version() -> None:
    """Show version information."""
    console.print(f"devflow v{__version__}")
    console.print("Device workflow engine")


if __name__ == "__main__":
    main()
