"""Typed, per-kind node configuration.

The editor stores node settings as a loose camelCase dict. ``resolve_config``
turns that dict into the config model for the node's kind, applying the
documented defaults and rejecting missing required fields with
``ConfigurationError``. Empty strings from blank form fields count as unset.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from devflow.core.exceptions import ConfigurationError
from devflow.core.graph_schema import Node, NodeKind


class _EditorConfig(BaseModel):
    """Base for configs coming from the editor (camelCase or snake_case keys)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def drop_blank_fields(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None and v != ""}
        return data


class ActionConfig(_EditorConfig):
    """Settings shared by every kind.

    ``wait_time`` (ms) is both the settle delay after a successful action and
    the delay between retry attempts.
    """

    wait_time: int = Field(default=0, ge=0)
    retry_count: int = Field(default=0, ge=0)


class TargetedConfig(ActionConfig):
    """An action aimed at an element (by selector) or a screen point."""

    selector: str | None = None
    x: int | None = None
    y: int | None = None

    @model_validator(mode="after")
    def check_target(self) -> "TargetedConfig":
        if not self.selector and (self.x is None or self.y is None):
            raise ValueError("requires a selector or both x and y coordinates")
        return self


class StartConfig(ActionConfig):
    app_name: str | None = None
    starting_mode: Literal["hotBoot", "coldBoot"] = "hotBoot"
    wait_time: int = Field(default=2000, ge=0)


class CloseConfig(ActionConfig):
    method: Literal["app", "back"] = "app"
    target: str | None = None

    @model_validator(mode="after")
    def check_target(self) -> "CloseConfig":
        if self.method == "app" and not self.target:
            raise ValueError("method 'app' requires a target package name")
        return self


class ClickConfig(TargetedConfig):
    click_type: Literal["click", "double", "long"] = "click"


class InputConfig(TargetedConfig):
    text: str = ""
    clear_first: bool = False


class SwipeConfig(ActionConfig):
    start_x: int = 500
    start_y: int = 1000
    end_x: int = 500
    end_y: int = 500
    duration: int = Field(default=500, ge=0)
    swipe_type: Literal["swipe", "fling", "drag"] = "swipe"
    velocity: int | None = None


class ScrollConfig(ActionConfig):
    direction: Literal["up", "down", "left", "right"] = "down"
    distance: int = Field(default=300, gt=0)


class WaitConfig(ActionConfig):
    duration: float = Field(default=1000, ge=0)
    unit: Literal["ms", "s", "min"] = "ms"
    wait_type: Literal["fixed", "arise", "vanish"] = "fixed"
    selector: str | None = None

    @model_validator(mode="after")
    def check_selector(self) -> "WaitConfig":
        if self.wait_type != "fixed" and not self.selector:
            raise ValueError(f"wait type '{self.wait_type}' requires a selector")
        return self

    @property
    def seconds(self) -> float:
        factor = {"ms": 0.001, "s": 1.0, "min": 60.0}[self.unit]
        return self.duration * factor


class ScreenshotConfig(ActionConfig):
    filename: str | None = None
    save_to_local: bool = False
    save_path: str | None = None


VALUE_OPERATORS = {"equals", "contains", "greater", "less"}


class ConditionConfig(ActionConfig):
    selector: str
    operator: Literal[
        "equals", "contains", "exists", "not_exists", "greater", "less", "visible", "enabled"
    ] = "exists"
    value: str | float | None = None
    attribute: str = "text"

    @model_validator(mode="after")
    def check_value(self) -> "ConditionConfig":
        if self.operator in VALUE_OPERATORS and self.value is None:
            raise ValueError(f"operator '{self.operator}' requires a value")
        return self


class LoopConfig(ActionConfig):
    type: Literal["count", "condition", "foreach"] = "count"
    count: int = Field(default=1, ge=0)
    max_iterations: int = Field(default=100, ge=1)  # Hard ceiling for every loop type
    condition: ConditionConfig | None = None
    items: list[Any] = Field(default_factory=list)
    item_variable: str = "item"

    @model_validator(mode="after")
    def check_type_fields(self) -> "LoopConfig":
        if self.type == "condition" and self.condition is None:
            raise ValueError("condition loop requires a 'condition'")
        if self.type == "foreach" and not self.items:
            raise ValueError("foreach loop requires a non-empty 'items' list")
        return self


NodeConfig = (
    StartConfig
    | CloseConfig
    | ClickConfig
    | InputConfig
    | SwipeConfig
    | ScrollConfig
    | WaitConfig
    | ScreenshotConfig
    | ConditionConfig
    | LoopConfig
)

CONFIG_MODELS: dict[NodeKind, type[ActionConfig]] = {
    NodeKind.START: StartConfig,
    NodeKind.CLOSE: CloseConfig,
    NodeKind.CLICK: ClickConfig,
    NodeKind.INPUT: InputConfig,
    NodeKind.SWIPE: SwipeConfig,
    NodeKind.SCROLL: ScrollConfig,
    NodeKind.WAIT: WaitConfig,
    NodeKind.SCREENSHOT: ScreenshotConfig,
    NodeKind.CONDITION: ConditionConfig,
    NodeKind.LOOP: LoopConfig,
}


def resolve_config(node: Node) -> NodeConfig:
    """Resolve a node's raw config dict into its typed config.

    Raises:
        ConfigurationError: If a required field is missing or a value is invalid
    """
    model = CONFIG_MODELS[node.type]
    try:
        return model.model_validate(node.config)
    except ValidationError as e:
        problems = []
        for err in e.errors():
            loc = ".".join(str(part) for part in err["loc"])
            problems.append(f"{loc}: {err['msg']}" if loc else err["msg"])
        raise ConfigurationError(
            f"Invalid config for {node.type.value} node '{node.id}': {'; '.join(problems)}"
        ) from e
