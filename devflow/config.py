"""Engine settings loaded from ``.devflow/config.yaml``.

Environment variables override the file:
- ``DEVFLOW_HDC_PATH``: path to the hdc binary
- ``DEVFLOW_STUDIO_PORT``: studio server port
"""

import logging
import os
import tempfile
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

CONFIG_DIR = ".devflow"
CONFIG_FILE = "config.yaml"


class DevflowSettings(BaseModel):
    """Runtime settings for the device adapter and host surfaces."""

    hdc_path: str = "hdc"
    shell_timeout: float = Field(default=30.0, gt=0)  # Seconds per hdc invocation
    poll_interval: float = Field(default=0.5, gt=0)  # Seconds between wait-for-element polls
    screenshot_dir: Path = Field(default_factory=lambda: Path(tempfile.gettempdir()))
    remote_tmp_dir: str = "/data/local/tmp"
    studio_host: str = "127.0.0.1"
    studio_port: int = 8765


def load_settings(repo_path: Path | None = None) -> DevflowSettings:
    """Load settings from the project config file, then apply env overrides."""
    repo_path = repo_path or Path.cwd()
    config_path = repo_path / CONFIG_DIR / CONFIG_FILE
    data: dict = {}

    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring {config_path}: expected a mapping")
            data = {}

    if hdc_path := os.environ.get("DEVFLOW_HDC_PATH"):
        data["hdc_path"] = hdc_path
    if port := os.environ.get("DEVFLOW_STUDIO_PORT"):
        data["studio_port"] = port

    return DevflowSettings(**data)


def default_config_yaml() -> str:
    """Default config file contents written by ``devflow init``."""
    settings = DevflowSettings()
    data = settings.model_dump(mode="json", exclude={"screenshot_dir"})
    return yaml.safe_dump(data, sort_keys=False)
