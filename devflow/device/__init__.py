"""Device action adapters."""

from devflow.device.base import DeviceActions, UiElement
from devflow.device.hdc import HdcDeviceActions

__all__ = ["DeviceActions", "HdcDeviceActions", "UiElement"]
