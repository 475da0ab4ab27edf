"""devflow - graph workflow engine for device test automation.

Runs workflows of typed device steps (launch, click, input, swipe, wait,
screenshot, condition, loop) against HarmonyOS devices over hdc.
"""

__version__ = "0.1.0"
