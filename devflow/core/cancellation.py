"""Cooperative cancellation token shared by the runner and node handlers."""

import threading

from devflow.core.exceptions import ExecutionAborted


class CancellationToken:
    """Set once by ``stop()``, polled at every suspension point."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "Workflow stopped by user") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ExecutionAborted(self.reason or "Execution aborted")
