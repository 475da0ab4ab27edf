"""HarmonyOS device actions over the ``hdc`` command-line bridge.

Each action runs ``hdc -t <connection key> shell <command>`` in a worker
thread so the event loop is never blocked. ``uitest uiInput`` drives input;
element lookups parse the ``uitest dumpLayout`` JSON tree.
"""

import asyncio
import json
import logging
import math
import secrets
import shlex
import subprocess
from pathlib import Path

from devflow.config import DevflowSettings
from devflow.core.exceptions import DeviceConnectionError, DeviceError, DeviceTimeoutError
from devflow.device.base import UiElement
from devflow.device.selector import find_in_layout, iter_layout

logger = logging.getLogger(__name__)

# Output fragments uitest/aa print instead of failing with a non-zero exit code
ERROR_INDICATORS = ("failed", "not found", "timeout", "error")

# uitest keyEvent codes
KEY_CTRL_LEFT = 2072
KEY_A = 2017
KEY_DEL = 2055

MIN_VELOCITY = 200
MAX_VELOCITY = 40000


def has_error_indicator(output: str) -> bool:
    lowered = output.lower()
    return any(indicator in lowered for indicator in ERROR_INDICATORS)


def swipe_velocity(x1: int, y1: int, x2: int, y2: int, duration_ms: int) -> int:
    """Convert a gesture duration into the px/s velocity uitest expects."""
    distance = math.hypot(x2 - x1, y2 - y1)
    if duration_ms <= 0:
        return MAX_VELOCITY
    velocity = int(distance / (duration_ms / 1000))
    return max(MIN_VELOCITY, min(MAX_VELOCITY, velocity))


class HdcDeviceActions:
    """``DeviceActions`` implementation backed by the hdc CLI."""

    def __init__(self, settings: DevflowSettings | None = None):
        self.settings = settings or DevflowSettings()

    async def _run(self, args: list[str]) -> str:
        logger.debug(f"Executing: {' '.join(args)}")
        try:
            result = await asyncio.to_thread(
                subprocess.run,
                args,
                capture_output=True,
                text=True,
                timeout=self.settings.shell_timeout,
            )
        except FileNotFoundError as e:
            raise DeviceConnectionError(
                f"hdc binary not found at '{self.settings.hdc_path}'"
            ) from e
        except subprocess.TimeoutExpired as e:
            raise DeviceTimeoutError(
                f"Command timed out after {self.settings.shell_timeout}s: {' '.join(args)}"
            ) from e

        if result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip()
            raise DeviceError(f"hdc exited with code {result.returncode}: {detail}")
        return (result.stdout or "").strip()

    async def _shell(self, connection_key: str, command: str) -> str:
        return await self._run([self.settings.hdc_path, "-t", connection_key, "shell", command])

    async def _action(self, connection_key: str, command: str, description: str) -> str:
        output = await self._shell(connection_key, command)
        if has_error_indicator(output):
            raise DeviceError(f"{description} failed: {output}")
        return output

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def check_connection(self, connection_key: str) -> None:
        output = await self._run([self.settings.hdc_path, "list", "targets"])
        targets = {line.strip() for line in output.splitlines() if line.strip()}
        if connection_key not in targets:
            raise DeviceConnectionError(f"Device '{connection_key}' is not connected")

    async def screen_size(self, connection_key: str) -> tuple[int, int]:
        layout = await self.dump_layout(connection_key)
        root = next(iter_layout(layout))
        left, top, right, bottom = root.bounds
        if right <= left or bottom <= top:
            raise DeviceError("Could not determine screen size from layout")
        return right - left, bottom - top

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    async def tap(self, connection_key: str, x: int, y: int) -> None:
        await self._action(connection_key, f"uitest uiInput click {x} {y}", "Click")

    async def double_tap(self, connection_key: str, x: int, y: int) -> None:
        await self._action(connection_key, f"uitest uiInput doubleClick {x} {y}", "Double click")

    async def long_tap(self, connection_key: str, x: int, y: int) -> None:
        await self._action(connection_key, f"uitest uiInput longClick {x} {y}", "Long click")

    async def swipe(
        self, connection_key: str, x1: int, y1: int, x2: int, y2: int, duration_ms: int
    ) -> None:
        velocity = swipe_velocity(x1, y1, x2, y2, duration_ms)
        await self._action(
            connection_key, f"uitest uiInput swipe {x1} {y1} {x2} {y2} {velocity}", "Swipe"
        )

    async def fling(
        self, connection_key: str, x1: int, y1: int, x2: int, y2: int, velocity: int | None
    ) -> None:
        command = f"uitest uiInput fling {x1} {y1} {x2} {y2}"
        if velocity:
            command += f" {velocity}"
        await self._action(connection_key, command, "Fling")

    async def drag(
        self, connection_key: str, x1: int, y1: int, x2: int, y2: int, velocity: int | None
    ) -> None:
        command = f"uitest uiInput drag {x1} {y1} {x2} {y2}"
        if velocity:
            command += f" {velocity}"
        await self._action(connection_key, command, "Drag")

    async def input_text(self, connection_key: str, x: int, y: int, text: str) -> None:
        await self._action(
            connection_key, f"uitest uiInput inputText {x} {y} {shlex.quote(text)}", "Input text"
        )

    async def type_text(self, connection_key: str, text: str) -> None:
        await self._action(connection_key, f"uitest uiInput text {shlex.quote(text)}", "Type text")

    async def clear_text(self, connection_key: str, x: int, y: int) -> None:
        await self.tap(connection_key, x, y)
        await self._action(
            connection_key, f"uitest uiInput keyEvent {KEY_CTRL_LEFT} {KEY_A}", "Select all"
        )
        await self._action(connection_key, f"uitest uiInput keyEvent {KEY_DEL}", "Clear text")

    async def key_event(self, connection_key: str, key: str) -> None:
        await self._action(connection_key, f"uitest uiInput keyEvent {key}", f"Key {key}")

    async def go_back(self, connection_key: str) -> None:
        await self.key_event(connection_key, "Back")

    async def go_home(self, connection_key: str) -> None:
        await self.key_event(connection_key, "Home")

    # ------------------------------------------------------------------
    # Apps
    # ------------------------------------------------------------------

    async def launch_app(self, connection_key: str, package: str) -> None:
        await self._action(
            connection_key, f"aa start -a EntryAbility -b {shlex.quote(package)}", "Launch app"
        )

    async def stop_app(self, connection_key: str, package: str) -> None:
        await self._action(connection_key, f"aa force-stop {shlex.quote(package)}", "Stop app")

    # ------------------------------------------------------------------
    # Screen and layout
    # ------------------------------------------------------------------

    async def screenshot(self, connection_key: str, filename: str, save_dir: Path) -> Path:
        remote_path = f"{self.settings.remote_tmp_dir}/{filename}.jpeg"
        local_path = Path(save_dir) / f"{filename}.jpeg"
        local_path.parent.mkdir(parents=True, exist_ok=True)

        await self._action(
            connection_key, f"snapshot_display -i 0 -f {remote_path}", "Screenshot"
        )
        try:
            await self._run(
                [self.settings.hdc_path, "-t", connection_key, "file", "recv", remote_path, str(local_path)]
            )
        finally:
            await self._cleanup_remote(connection_key, remote_path)

        if not local_path.exists():
            raise DeviceError(f"Screenshot download failed: {local_path} missing")
        return local_path

    async def dump_layout(self, connection_key: str) -> dict:
        remote_path = f"{self.settings.remote_tmp_dir}/devflow_layout_{secrets.token_hex(4)}.json"
        await self._action(connection_key, f"uitest dumpLayout -p {remote_path}", "Dump layout")
        try:
            raw = await self._shell(connection_key, f"cat {remote_path}")
        finally:
            await self._cleanup_remote(connection_key, remote_path)
        try:
            layout = json.loads(raw)
        except json.JSONDecodeError as e:
            raise DeviceError(f"Invalid layout dump: {e}") from e
        if not isinstance(layout, dict):
            raise DeviceError("Invalid layout dump: expected a JSON object")
        return layout

    async def find_elements(self, connection_key: str, selector: str) -> list[UiElement]:
        layout = await self.dump_layout(connection_key)
        return find_in_layout(layout, selector)

    async def _cleanup_remote(self, connection_key: str, remote_path: str) -> None:
        try:
            await self._shell(connection_key, f"rm -f {remote_path}")
        except DeviceError as e:
            logger.warning(f"Failed to remove {remote_path} on {connection_key}: {e}")
