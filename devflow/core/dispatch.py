"""Node executor dispatch.

Maps a node's kind to its handler, resolves its config, drives the device
adapter and applies the retry policy. Status transitions and log entries go
through the ``ExecutionStateStore``:

    running (1 entry) -> [failed attempt, retrying (1 entry each)] -> success | error (1 entry)

Node-local failures never escape ``NodeExecutor.execute``; they come back as a
failed ``NodeResult``. ``ExecutionAborted`` is the only exception raised, and
it leaves the node at whatever status it had reached.
"""

import asyncio
import logging
import math
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from devflow.config import DevflowSettings
from devflow.core.cancellation import CancellationToken
from devflow.core.exceptions import (
    ConfigurationError,
    DeviceError,
    DeviceTimeoutError,
    ElementNotFoundError,
    EvaluationError,
    ExecutionAborted,
)
from devflow.core.graph_schema import Node, NodeKind, NodeStatus
from devflow.core.node_config import (
    ClickConfig,
    CloseConfig,
    ConditionConfig,
    InputConfig,
    LoopConfig,
    NodeConfig,
    ScreenshotConfig,
    ScrollConfig,
    StartConfig,
    SwipeConfig,
    TargetedConfig,
    WaitConfig,
    resolve_config,
)
from devflow.core.state import ExecutionStateStore
from devflow.device.base import DeviceActions

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

# Kinds that manage their own timing and skip the post-action settle delay
NO_SETTLE_KINDS = {NodeKind.WAIT, NodeKind.CONDITION, NodeKind.LOOP}

SCROLL_DURATION_MS = 300


@dataclass
class NodeResult:
    """Outcome of dispatching one node."""

    node_id: str
    success: bool
    output: Any = None  # Condition result, screenshot path, status note
    error: str | None = None
    attempts: int = 0
    duration: float = 0.0  # Milliseconds
    config: NodeConfig | None = None


class NodeExecutor:
    """Executes single nodes against a device with retries."""

    def __init__(
        self,
        store: ExecutionStateStore,
        device: DeviceActions,
        settings: DevflowSettings | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.device = device
        self.settings = settings or DevflowSettings()
        self._sleep = sleep
        self._clock = clock
        self._screen_sizes: dict[str, tuple[int, int]] = {}
        self._handlers = {
            NodeKind.START: self._run_start,
            NodeKind.CLOSE: self._run_close,
            NodeKind.CLICK: self._run_click,
            NodeKind.INPUT: self._run_input,
            NodeKind.SWIPE: self._run_swipe,
            NodeKind.SCROLL: self._run_scroll,
            NodeKind.WAIT: self._run_wait,
            NodeKind.SCREENSHOT: self._run_screenshot,
            NodeKind.CONDITION: self._run_condition,
            NodeKind.LOOP: self._run_loop,
        }

    async def execute(
        self,
        node: Node,
        connection_key: str,
        token: CancellationToken,
        *,
        single: bool = False,
    ) -> NodeResult:
        """Run one node to a terminal status.

        Raises:
            ExecutionAborted: If the token is cancelled before the node starts,
                between retry attempts or during a poll
        """
        token.raise_if_cancelled()
        started = self._clock()
        label = node.display_name

        if single:
            self.store.start_single_node_execution(
                node.id, f"Executing {node.type.value} node: {label}"
            )
        else:
            self.store.update_node_status(node.id, NodeStatus.RUNNING)
            self.store.add_execution_log(
                node.id, NodeStatus.RUNNING, f"Executing {node.type.value} node: {label}"
            )

        try:
            config = resolve_config(node)
        except ConfigurationError as e:
            return self._fail(node, single, str(e), started, attempts=0, message="Configuration error")

        handler = self._handlers.get(node.type)
        if handler is None:
            return self._fail(
                node, single, f"Unknown node type: {node.type}", started, attempts=0, config=config
            )

        max_attempts = 1 + config.retry_count
        last_error = ""
        for attempt in range(1, max_attempts + 1):
            try:
                output = await handler(config, connection_key, token)
            except ExecutionAborted:
                raise
            except DeviceError as e:
                last_error = str(e)
                if attempt < max_attempts:
                    self.store.add_execution_log(
                        node.id,
                        NodeStatus.RUNNING,
                        f"Attempt {attempt}/{max_attempts} failed, retrying",
                        error=last_error,
                    )
                    token.raise_if_cancelled()
                    await self._pause(config.wait_time / 1000, token)
                    token.raise_if_cancelled()
                    continue
                return self._fail(
                    node,
                    single,
                    last_error,
                    started,
                    attempts=attempt,
                    config=config,
                    message=f"Failed after {attempt} attempt(s)",
                )
            except ConfigurationError as e:
                return self._fail(
                    node, single, str(e), started, attempts=attempt, config=config,
                    message="Configuration error",
                )
            except Exception as e:
                logger.error(f"Node {node.id} failed: {e}")
                return self._fail(
                    node, single, f"{type(e).__name__}: {e}", started, attempts=attempt, config=config
                )

            if config.wait_time and node.type not in NO_SETTLE_KINDS:
                await self._pause(config.wait_time / 1000)
            return self._succeed(node, single, output, started, attempt, config)

        # Unreachable: the loop always returns
        raise AssertionError("retry loop exited without a result")

    # ------------------------------------------------------------------
    # Status reporting
    # ------------------------------------------------------------------

    def _elapsed_ms(self, started: float) -> float:
        return round((self._clock() - started) * 1000, 3)

    def _succeed(
        self,
        node: Node,
        single: bool,
        output: Any,
        started: float,
        attempts: int,
        config: NodeConfig,
    ) -> NodeResult:
        duration = self._elapsed_ms(started)
        if node.type in (NodeKind.CONDITION, NodeKind.LOOP) and isinstance(output, bool):
            message = f"Condition evaluated to {str(output).lower()}"
        else:
            message = f"Completed {node.type.value} node: {node.display_name}"

        if single:
            self.store.complete_single_node_execution(
                node.id, result=output, message=message, duration=duration
            )
        else:
            self.store.update_node_status(node.id, NodeStatus.SUCCESS)
            self.store.add_execution_log(
                node.id, NodeStatus.SUCCESS, message, duration=duration, result=output
            )
        return NodeResult(
            node_id=node.id,
            success=True,
            output=output,
            attempts=attempts,
            duration=duration,
            config=config,
        )

    def _fail(
        self,
        node: Node,
        single: bool,
        error: str,
        started: float,
        attempts: int,
        config: NodeConfig | None = None,
        message: str = "Node execution failed",
    ) -> NodeResult:
        duration = self._elapsed_ms(started)
        if single:
            self.store.fail_single_node_execution(
                node.id, error, message=message, duration=duration
            )
        else:
            self.store.update_node_status(node.id, NodeStatus.ERROR)
            self.store.add_execution_log(
                node.id, NodeStatus.ERROR, message, duration=duration, error=error
            )
        return NodeResult(
            node_id=node.id,
            success=False,
            error=error,
            attempts=attempts,
            duration=duration,
            config=config,
        )

    async def _pause(self, seconds: float, token: CancellationToken | None = None) -> None:
        """Sleep in poll-interval slices, checking the token between slices."""
        remaining = seconds
        while remaining > 1e-9:
            if token is not None:
                token.raise_if_cancelled()
            chunk = min(self.settings.poll_interval, remaining)
            await self._sleep(chunk)
            remaining -= chunk

    # ------------------------------------------------------------------
    # Element helpers
    # ------------------------------------------------------------------

    async def _resolve_point(self, config: TargetedConfig, key: str) -> tuple[int, int]:
        """Selector wins over coordinates when both are set."""
        if config.selector:
            elements = await self.device.find_elements(key, config.selector)
            if not elements:
                raise ElementNotFoundError(f"No element matches selector '{config.selector}'")
            return elements[0].center
        return config.x, config.y

    async def _screen_size(self, key: str) -> tuple[int, int]:
        if key not in self._screen_sizes:
            self._screen_sizes[key] = await self.device.screen_size(key)
        return self._screen_sizes[key]

    async def evaluate_condition(self, config: ConditionConfig, key: str) -> bool:
        """Evaluate a UI predicate.

        ``exists``/``not_exists``/``visible`` tolerate a missing element. The
        other operators need exactly one match.

        Raises:
            EvaluationError: If the element is missing or ambiguous, or a
                numeric comparison gets a non-numeric value
        """
        elements = await self.device.find_elements(key, config.selector)
        operator = config.operator

        if operator == "exists":
            return bool(elements)
        if operator == "not_exists":
            return not elements
        if operator == "visible":
            return any(element.is_visible for element in elements)

        if not elements:
            raise EvaluationError(f"No element matches selector '{config.selector}'")
        if len(elements) > 1:
            raise EvaluationError(
                f"Selector '{config.selector}' is ambiguous ({len(elements)} matches)"
            )
        element = elements[0]

        if operator == "enabled":
            return element.flag("enabled")

        actual = element.get(config.attribute)
        expected = _as_text(config.value)
        match operator:
            case "equals":
                return actual == expected
            case "contains":
                return expected in actual
            case "greater" | "less":
                try:
                    left, right = float(actual), float(expected)
                except ValueError as e:
                    raise EvaluationError(
                        f"Cannot compare '{actual}' with '{expected}' numerically"
                    ) from e
                return left > right if operator == "greater" else left < right
        raise EvaluationError(f"Unsupported operator: {operator}")

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _run_start(self, config: StartConfig, key: str, token: CancellationToken) -> str:
        if not config.app_name:
            return "No app configured, start skipped"
        if config.starting_mode == "coldBoot":
            await self.device.stop_app(key, config.app_name)
        await self.device.launch_app(key, config.app_name)
        return f"Launched {config.app_name} ({config.starting_mode})"

    async def _run_close(self, config: CloseConfig, key: str, token: CancellationToken) -> str:
        if config.method == "back":
            await self.device.go_back(key)
            return "Pressed back"
        await self.device.stop_app(key, config.target)
        return f"Stopped {config.target}"

    async def _run_click(self, config: ClickConfig, key: str, token: CancellationToken) -> dict:
        x, y = await self._resolve_point(config, key)
        if config.click_type == "double":
            await self.device.double_tap(key, x, y)
        elif config.click_type == "long":
            await self.device.long_tap(key, x, y)
        else:
            await self.device.tap(key, x, y)
        return {"x": x, "y": y, "clickType": config.click_type}

    async def _run_input(self, config: InputConfig, key: str, token: CancellationToken) -> dict:
        x, y = await self._resolve_point(config, key)
        if config.clear_first:
            await self.device.clear_text(key, x, y)
        await self.device.input_text(key, x, y, config.text)
        return {"x": x, "y": y, "text": config.text}

    async def _run_swipe(self, config: SwipeConfig, key: str, token: CancellationToken) -> str:
        points = (config.start_x, config.start_y, config.end_x, config.end_y)
        if config.swipe_type == "fling":
            await self.device.fling(key, *points, config.velocity)
        elif config.swipe_type == "drag":
            await self.device.drag(key, *points, config.velocity)
        else:
            await self.device.swipe(key, *points, config.duration)
        return f"{config.swipe_type} ({config.start_x},{config.start_y}) -> ({config.end_x},{config.end_y})"

    async def _run_scroll(self, config: ScrollConfig, key: str, token: CancellationToken) -> str:
        width, height = await self._screen_size(key)
        cx, cy = width // 2, height // 2
        # Finger movement is opposite to the scroll direction
        dx, dy = {
            "down": (0, -config.distance),
            "up": (0, config.distance),
            "left": (config.distance, 0),
            "right": (-config.distance, 0),
        }[config.direction]
        await self.device.swipe(
            key, cx - dx // 2, cy - dy // 2, cx + dx // 2, cy + dy // 2, SCROLL_DURATION_MS
        )
        return f"Scrolled {config.direction} {config.distance}px"

    async def _run_wait(self, config: WaitConfig, key: str, token: CancellationToken) -> str:
        if config.wait_type == "fixed":
            await self._pause(config.seconds, token)
            return f"Waited {config.duration:g}{config.unit}"

        want_present = config.wait_type == "arise"
        interval = self.settings.poll_interval
        max_polls = max(1, math.ceil(config.seconds / interval))
        polls = 0
        while True:
            polls += 1
            present = bool(await self.device.find_elements(key, config.selector))
            if present == want_present:
                state = "appeared" if want_present else "vanished"
                return f"Element '{config.selector}' {state} after {polls} poll(s)"
            token.raise_if_cancelled()
            if polls > max_polls:
                state = "appear" if want_present else "vanish"
                raise DeviceTimeoutError(
                    f"Element '{config.selector}' did not {state} within "
                    f"{config.duration:g}{config.unit}"
                )
            await self._sleep(interval)

    async def _run_screenshot(
        self, config: ScreenshotConfig, key: str, token: CancellationToken
    ) -> str:
        filename = config.filename or f"screenshot_{int(time.time() * 1000)}"
        if config.save_to_local:
            save_dir = Path(config.save_path).expanduser() if config.save_path else Path.home()
        else:
            save_dir = self.settings.screenshot_dir
        path = await self.device.screenshot(key, filename, save_dir)
        return str(path)

    async def _run_condition(
        self, config: ConditionConfig, key: str, token: CancellationToken
    ) -> bool:
        return await self.evaluate_condition(config, key)

    async def _run_loop(self, config: LoopConfig, key: str, token: CancellationToken) -> bool | None:
        if config.type == "condition":
            return await self.evaluate_condition(config.condition, key)
        return None


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
