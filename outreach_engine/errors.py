"""
Engine Errors
=============
Exception taxonomy shared by the controller, the tool layer, and the store.
"""


class EngineError(Exception):
    """Base class for all engine errors."""


class NotFoundError(EngineError):
    """A campaign, task, or other entity does not exist."""

    def __init__(self, resource: str, resource_id: str):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} '{resource_id}' not found")


class InvalidTransitionError(EngineError):
    """A campaign status change outside the legal transition table."""

    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(
            f"Invalid status transition: {getattr(current, 'value', current)} "
            f"-> {getattr(target, 'value', target)}"
        )


class StoreError(EngineError):
    """The persistent store could not complete a read or write."""


class StaleTaskError(StoreError):
    """A compare-and-set task update lost the race to another writer."""

    def __init__(self, task_id: str, expected, actual):
        self.task_id = task_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Task '{task_id}' changed concurrently: expected status "
            f"{getattr(expected, 'value', expected)}, found {getattr(actual, 'value', actual)}"
        )


class RegistryError(EngineError):
    """Duplicate or unknown tool server id."""


class TransportError(EngineError):
    """The tool channel failed: process exited, connection refused, bad response."""


class ToolExecutionError(EngineError):
    """A tool provider reported an error for a call."""

    def __init__(self, message: str, tool_name: str = "", server_id: str = ""):
        self.tool_name = tool_name
        self.server_id = server_id
        super().__init__(message)


class ProposalValidationError(EngineError):
    """A model proposal was rejected before any external call."""
