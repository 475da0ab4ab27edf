"""Element selectors evaluated against a UI layout dump.

Selector forms:
- ``#login``       element whose ``id`` or ``key`` is ``login``
- ``text=Sign in`` exact attribute match (any attribute name)
- ``text*=Sign``   substring attribute match
- ``Sign in``      bare string, exact text match
"""

import re
from collections.abc import Iterator
from dataclasses import dataclass

from devflow.core.exceptions import ConfigurationError
from devflow.device.base import UiElement

_ATTR_RE = re.compile(r"^(?P<name>[A-Za-z_][\w-]*)(?P<op>\*?=)(?P<value>.*)$", re.DOTALL)


@dataclass(frozen=True)
class Selector:
    attribute: str | None  # None means "id or key"
    value: str
    partial: bool = False

    def matches(self, element: UiElement) -> bool:
        if self.attribute is None:
            return self.value in (element.get("id"), element.get("key"))
        actual = element.get(self.attribute)
        if self.partial:
            return self.value in actual
        return actual == self.value


def parse_selector(raw: str) -> Selector:
    text = raw.strip()
    if not text:
        raise ConfigurationError("Empty selector")
    if text.startswith("#") and len(text) > 1:
        return Selector(attribute=None, value=text[1:])
    match = _ATTR_RE.match(text)
    if match:
        return Selector(
            attribute=match.group("name"),
            value=match.group("value").strip().strip("\"'"),
            partial=match.group("op") == "*=",
        )
    return Selector(attribute="text", value=text)


def iter_layout(layout: dict) -> Iterator[UiElement]:
    """Walk a ``{attributes, children}`` layout tree depth-first."""
    stack = [layout]
    while stack:
        current = stack.pop()
        if not isinstance(current, dict):
            continue
        yield UiElement.from_attributes(current.get("attributes") or {})
        children = current.get("children") or []
        stack.extend(reversed(children))


def find_in_layout(layout: dict, selector: str) -> list[UiElement]:
    parsed = parse_selector(selector)
    return [element for element in iter_layout(layout) if parsed.matches(element)]
