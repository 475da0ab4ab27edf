"""CLI UI components for terminal-based workflow visualization.

This package provides rich terminal UI capabilities for:
- Rendering workflow graphs as trees with branch handles
- Node status and execution log tables
- Real-time execution monitoring driven by store snapshots
"""

from devflow.cli_ui.graph_renderer import StatusTableRenderer, TerminalGraphRenderer
from devflow.cli_ui.live_monitor import LiveExecutionMonitor

__all__ = [
    "TerminalGraphRenderer",
    "StatusTableRenderer",
    "LiveExecutionMonitor",
]
