# conftest.py - Shared pytest fixtures for all tests
"""Shared pytest fixtures for the devflow test suite.

This module provides foundational fixtures used across all test modules:
- A scripted fake device implementing the DeviceActions protocol
- A recording sleep so retries, waits and polls never really wait
- Store, executor and runner instances wired to the fakes
- Graph builders for common workflow shapes

Usage:
    Import fixtures implicitly via pytest's fixture discovery.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from devflow.config import DevflowSettings
from devflow.core.dispatch import NodeExecutor
from devflow.core.exceptions import DeviceConnectionError, DeviceError
from devflow.core.graph_schema import WorkflowGraph
from devflow.core.runner import WorkflowRunner
from devflow.core.state import ExecutionStateStore
from devflow.device.base import UiElement


# =============================================================================
# Fakes
# =============================================================================


class FakeDevice:
    """In-memory device that records every call.

    Attributes:
        calls: List of (method, args) tuples in call order
        failures: method name -> number of upcoming calls that raise DeviceError
        elements: selector -> elements returned by find_elements
        element_script: selector -> list of successive find_elements results;
            once exhausted the last result repeats
        on_find: Optional hook called with the poll count after each lookup
    """

    def __init__(self):
        self.calls: list[tuple[str, tuple]] = []
        self.failures: dict[str, int] = {}
        self.elements: dict[str, list[UiElement]] = {}
        self.element_script: dict[str, list[list[UiElement]]] = {}
        self.on_find: Callable[[int], None] | None = None
        self.connected = True
        self.size = (1080, 2400)
        self.find_count = 0

    def _record(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        remaining = self.failures.get(method, 0)
        if remaining:
            self.failures[method] = remaining - 1
            raise DeviceError(f"{method} failed on device")

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    async def check_connection(self, connection_key: str) -> None:
        if not self.connected:
            raise DeviceConnectionError(f"Device '{connection_key}' is not connected")

    async def screen_size(self, connection_key: str) -> tuple[int, int]:
        self._record("screen_size")
        return self.size

    async def tap(self, connection_key, x, y):
        self._record("tap", x, y)

    async def double_tap(self, connection_key, x, y):
        self._record("double_tap", x, y)

    async def long_tap(self, connection_key, x, y):
        self._record("long_tap", x, y)

    async def swipe(self, connection_key, x1, y1, x2, y2, duration_ms):
        self._record("swipe", x1, y1, x2, y2, duration_ms)

    async def fling(self, connection_key, x1, y1, x2, y2, velocity):
        self._record("fling", x1, y1, x2, y2, velocity)

    async def drag(self, connection_key, x1, y1, x2, y2, velocity):
        self._record("drag", x1, y1, x2, y2, velocity)

    async def input_text(self, connection_key, x, y, text):
        self._record("input_text", x, y, text)

    async def type_text(self, connection_key, text):
        self._record("type_text", text)

    async def clear_text(self, connection_key, x, y):
        self._record("clear_text", x, y)

    async def key_event(self, connection_key, key):
        self._record("key_event", key)

    async def go_back(self, connection_key):
        self._record("go_back")

    async def go_home(self, connection_key):
        self._record("go_home")

    async def launch_app(self, connection_key, package):
        self._record("launch_app", package)

    async def stop_app(self, connection_key, package):
        self._record("stop_app", package)

    async def screenshot(self, connection_key, filename, save_dir: Path) -> Path:
        self._record("screenshot", filename, save_dir)
        return Path(save_dir) / f"{filename}.jpeg"

    async def find_elements(self, connection_key, selector) -> list[UiElement]:
        self._record("find_elements", selector)
        self.find_count += 1
        if selector in self.element_script:
            script = self.element_script[selector]
            result = script.pop(0) if len(script) > 1 else script[0]
        else:
            result = self.elements.get(selector, [])
        if self.on_find is not None:
            self.on_find(self.find_count)
        return list(result)


class RecordingSleep:
    """Async sleep replacement that records requested durations."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        await asyncio.sleep(0)

    @property
    def total(self) -> float:
        return round(sum(self.calls), 6)


def element(text: str = "", bounds: str = "[0,0][100,50]", **attrs: str) -> UiElement:
    """Build a UiElement the way a layout dump would describe it."""
    return UiElement.from_attributes({"text": text, "bounds": bounds, **attrs})


# =============================================================================
# Engine Fixtures
# =============================================================================


@pytest.fixture
def fake_device() -> FakeDevice:
    return FakeDevice()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def settings(tmp_path: Path) -> DevflowSettings:
    return DevflowSettings(poll_interval=0.5, screenshot_dir=tmp_path / "shots")


@pytest.fixture
def store() -> ExecutionStateStore:
    store = ExecutionStateStore()
    yield store
    store.cleanup()


@pytest.fixture
def executor(store, fake_device, settings, recording_sleep) -> NodeExecutor:
    return NodeExecutor(store, fake_device, settings, sleep=recording_sleep)


@pytest.fixture
def runner(store, fake_device, settings, recording_sleep) -> WorkflowRunner:
    return WorkflowRunner(store, fake_device, settings, sleep=recording_sleep)


# =============================================================================
# Graph Builders
# =============================================================================


def make_graph(nodes: list[dict], edges: list[tuple] | None = None, **kwargs) -> WorkflowGraph:
    """Build a graph from node dicts and (source, target[, handle]) tuples."""
    edge_dicts = []
    for i, edge in enumerate(edges or []):
        source, target = edge[0], edge[1]
        handle = edge[2] if len(edge) > 2 else None
        edge_dicts.append(
            {"id": f"e{i}", "source": source, "target": target, "sourceHandle": handle}
        )
    return WorkflowGraph(nodes=nodes, edges=edge_dicts, **kwargs)


@pytest.fixture
def linear_graph() -> WorkflowGraph:
    """start -> click -> screenshot"""
    return make_graph(
        [
            {"id": "start", "type": "start", "config": {"appName": "com.example.app", "waitTime": 0}},
            {"id": "click", "type": "click", "config": {"x": 100, "y": 200}},
            {"id": "shot", "type": "screenshot", "config": {"filename": "final"}},
        ],
        [("start", "click"), ("click", "shot")],
    )


@pytest.fixture
def graph_factory() -> Callable[..., WorkflowGraph]:
    return make_graph


@pytest.fixture
def make_element() -> Callable[..., UiElement]:
    return element
