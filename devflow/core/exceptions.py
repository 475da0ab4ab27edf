"""Exception hierarchy for the workflow engine.

Only ``ExecutionAborted`` and the startup errors (``GraphValidationError``,
``WorkflowBusyError``, ``DeviceConnectionError`` raised outside a node) escape
the runner. Everything raised inside a node handler is converted into a failed
node result by the dispatcher.
"""


class DevflowError(Exception):
    """Base class for all engine errors."""

    pass


class ConfigurationError(DevflowError):
    """Node config is missing a required field or has an invalid value.

    Deterministic, so never retried.
    """

    pass


class GraphValidationError(DevflowError):
    """Workflow graph is malformed and cannot be run."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("Invalid workflow graph: " + "; ".join(self.errors))


class DeviceError(DevflowError):
    """A device action failed. Retryable."""

    pass


class DeviceConnectionError(DeviceError):
    """Device session is unreachable."""

    pass


class DeviceTimeoutError(DeviceError):
    """Device command or element wait timed out."""

    pass


class ElementNotFoundError(DeviceError):
    """No UI element matched the selector."""

    pass


class EvaluationError(DeviceError):
    """A condition could not be evaluated (ambiguous or missing element)."""

    pass


class ExecutionAborted(DevflowError):
    """Cooperative cancellation signal. Not a failure."""

    pass


class WorkflowBusyError(DevflowError):
    """A workflow is already running."""

    pass
