"""Device action protocol and UI element model.

Every call takes the device connection key first and is a suspension point.
Implementations raise ``DeviceError`` subclasses on failure.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, runtime_checkable

_BOUNDS_RE = re.compile(r"\[(-?\d+),(-?\d+)\]\[(-?\d+),(-?\d+)\]")


@dataclass
class UiElement:
    """A node of the device's UI hierarchy."""

    attributes: dict[str, str] = field(default_factory=dict)
    bounds: tuple[int, int, int, int] = (0, 0, 0, 0)  # left, top, right, bottom

    @classmethod
    def from_attributes(cls, attributes: dict) -> "UiElement":
        attrs = {str(k): "" if v is None else str(v) for k, v in attributes.items()}
        bounds = (0, 0, 0, 0)
        match = _BOUNDS_RE.search(attrs.get("bounds", ""))
        if match:
            bounds = tuple(int(g) for g in match.groups())
        return cls(attributes=attrs, bounds=bounds)

    @property
    def center(self) -> tuple[int, int]:
        left, top, right, bottom = self.bounds
        return (left + right) // 2, (top + bottom) // 2

    @property
    def text(self) -> str:
        return self.attributes.get("text", "")

    def get(self, name: str, default: str = "") -> str:
        return self.attributes.get(name, default)

    def flag(self, name: str, default: bool = True) -> bool:
        """Read a boolean attribute such as ``enabled`` or ``visible``."""
        raw = self.attributes.get(name)
        if raw is None or raw == "":
            return default
        return raw.strip().lower() == "true"

    @property
    def is_visible(self) -> bool:
        left, top, right, bottom = self.bounds
        has_area = right > left and bottom > top
        return self.flag("visible") and has_area


@runtime_checkable
class DeviceActions(Protocol):
    """Primitive actions against a connected device session."""

    async def check_connection(self, connection_key: str) -> None: ...

    async def screen_size(self, connection_key: str) -> tuple[int, int]: ...

    async def tap(self, connection_key: str, x: int, y: int) -> None: ...

    async def double_tap(self, connection_key: str, x: int, y: int) -> None: ...

    async def long_tap(self, connection_key: str, x: int, y: int) -> None: ...

    async def swipe(
        self, connection_key: str, x1: int, y1: int, x2: int, y2: int, duration_ms: int
    ) -> None: ...

    async def fling(
        self, connection_key: str, x1: int, y1: int, x2: int, y2: int, velocity: int | None
    ) -> None: ...

    async def drag(
        self, connection_key: str, x1: int, y1: int, x2: int, y2: int, velocity: int | None
    ) -> None: ...

    async def input_text(self, connection_key: str, x: int, y: int, text: str) -> None: ...

    async def type_text(self, connection_key: str, text: str) -> None: ...

    async def clear_text(self, connection_key: str, x: int, y: int) -> None: ...

    async def key_event(self, connection_key: str, key: str) -> None: ...

    async def go_back(self, connection_key: str) -> None: ...

    async def go_home(self, connection_key: str) -> None: ...

    async def launch_app(self, connection_key: str, package: str) -> None: ...

    async def stop_app(self, connection_key: str, package: str) -> None: ...

    async def screenshot(self, connection_key: str, filename: str, save_dir: Path) -> Path: ...

    async def find_elements(self, connection_key: str, selector: str) -> list[UiElement]: ...
