"""Tests for per-kind node configuration resolution.

Tests cover:
- Defaults for every kind
- camelCase and snake_case keys, blank form fields
- Required fields and cross-field rules
- Error messages raised as ConfigurationError
"""

import pytest

from devflow.core.exceptions import ConfigurationError
from devflow.core.graph_schema import Node, NodeKind
from devflow.core.node_config import (
    CONFIG_MODELS,
    ClickConfig,
    ConditionConfig,
    LoopConfig,
    ScrollConfig,
    StartConfig,
    SwipeConfig,
    WaitConfig,
    resolve_config,
)


def _node(kind: str, **config) -> Node:
    return Node(id=f"{kind}_1", type=kind, config=config)


# =============================================================================
# Defaults
# =============================================================================


class TestDefaults:
    """Test documented defaults."""

    def test_every_kind_has_a_model(self):
        assert set(CONFIG_MODELS) == set(NodeKind)

    def test_start_defaults(self):
        config = resolve_config(_node("start"))

        assert isinstance(config, StartConfig)
        assert config.app_name is None
        assert config.starting_mode == "hotBoot"
        assert config.wait_time == 2000
        assert config.retry_count == 0

    def test_swipe_defaults(self):
        config = resolve_config(_node("swipe"))

        assert isinstance(config, SwipeConfig)
        assert (config.start_x, config.start_y, config.end_x, config.end_y) == (500, 1000, 500, 500)
        assert config.duration == 500
        assert config.swipe_type == "swipe"

    def test_scroll_defaults(self):
        config = resolve_config(_node("scroll"))

        assert isinstance(config, ScrollConfig)
        assert config.direction == "down"
        assert config.distance == 300

    def test_wait_defaults(self):
        config = resolve_config(_node("wait"))

        assert isinstance(config, WaitConfig)
        assert config.wait_type == "fixed"
        assert config.seconds == pytest.approx(1.0)

    def test_loop_defaults(self):
        config = resolve_config(_node("loop"))

        assert isinstance(config, LoopConfig)
        assert config.type == "count"
        assert config.count == 1
        assert config.max_iterations == 100
        assert config.item_variable == "item"


# =============================================================================
# Key Styles and Blank Fields
# =============================================================================


class TestKeys:
    """Test camelCase keys and blank values."""

    def test_camel_case_keys(self):
        config = resolve_config(
            _node("click", selector="#ok", clickType="long", retryCount=2, waitTime=250)
        )

        assert isinstance(config, ClickConfig)
        assert config.click_type == "long"
        assert config.retry_count == 2
        assert config.wait_time == 250

    def test_snake_case_keys(self):
        config = resolve_config(_node("click", selector="#ok", click_type="double"))

        assert config.click_type == "double"

    def test_blank_fields_count_as_unset(self):
        config = resolve_config(_node("start", appName="", startingMode="", waitTime=None))

        assert config.app_name is None
        assert config.starting_mode == "hotBoot"
        assert config.wait_time == 2000

    def test_unknown_keys_ignored(self):
        config = resolve_config(_node("scroll", direction="up", color="red"))

        assert config.direction == "up"

    @pytest.mark.parametrize(
        "unit,duration,seconds",
        [("ms", 1500, 1.5), ("s", 2, 2.0), ("min", 0.5, 30.0)],
    )
    def test_wait_units(self, unit, duration, seconds):
        config = resolve_config(_node("wait", duration=duration, unit=unit))

        assert config.seconds == pytest.approx(seconds)


# =============================================================================
# Required Fields
# =============================================================================


class TestRequiredFields:
    """Test rejection of incomplete configs."""

    def test_click_needs_target(self):
        with pytest.raises(ConfigurationError, match="selector or both x and y"):
            resolve_config(_node("click", x=10))

    def test_click_with_coordinates_only(self):
        config = resolve_config(_node("click", x=10, y=20))

        assert (config.x, config.y) == (10, 20)

    def test_close_app_needs_target(self):
        with pytest.raises(ConfigurationError, match="requires a target package"):
            resolve_config(_node("close"))

    def test_close_back_needs_nothing(self):
        assert resolve_config(_node("close", method="back")).method == "back"

    def test_wait_for_element_needs_selector(self):
        with pytest.raises(ConfigurationError, match="wait type 'arise' requires a selector"):
            resolve_config(_node("wait", waitType="arise"))

    def test_condition_needs_selector(self):
        with pytest.raises(ConfigurationError, match="selector"):
            resolve_config(_node("condition"))

    @pytest.mark.parametrize("operator", ["equals", "contains", "greater", "less"])
    def test_value_operators_need_value(self, operator):
        with pytest.raises(ConfigurationError, match=f"operator '{operator}' requires a value"):
            resolve_config(_node("condition", selector="#n", operator=operator))

    @pytest.mark.parametrize("operator", ["exists", "not_exists", "visible", "enabled"])
    def test_presence_operators_need_no_value(self, operator):
        config = resolve_config(_node("condition", selector="#n", operator=operator))

        assert isinstance(config, ConditionConfig)
        assert config.value is None

    def test_condition_loop_needs_condition(self):
        with pytest.raises(ConfigurationError, match="condition loop requires"):
            resolve_config(_node("loop", type="condition"))

    def test_condition_loop_nested_condition_is_typed(self):
        config = resolve_config(
            _node("loop", type="condition", condition={"selector": "#more", "operator": "visible"})
        )

        assert isinstance(config.condition, ConditionConfig)
        assert config.condition.operator == "visible"

    def test_foreach_needs_items(self):
        with pytest.raises(ConfigurationError, match="non-empty 'items'"):
            resolve_config(_node("loop", type="foreach", items=[]))

    def test_max_iterations_must_be_positive(self):
        with pytest.raises(ConfigurationError, match="maxIterations|max_iterations"):
            resolve_config(_node("loop", maxIterations=0))

    def test_error_names_node(self):
        with pytest.raises(ConfigurationError) as exc_info:
            resolve_config(Node(id="tap_login", type="click"))

        assert "click node 'tap_login'" in str(exc_info.value)
