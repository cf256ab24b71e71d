"""
Exception types for Pi Browser.

Tool-level errors (ToolError and subclasses) are turned into error tool
results by the agent loop and shown to the model. ModelClientError aborts
the mission it belongs to.
"""


class PiBrowserError(Exception):
    """Base class for all Pi Browser errors."""


class ToolError(PiBrowserError):
    """A tool call could not be carried out."""


class UnknownTool(ToolError):
    """The model asked for a tool that is not in the registry."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown tool: {name}")


class ActionFailed(ToolError):
    """The backend failed to perform the action (element missing, timeout...)."""


class ActuatorUnavailable(ToolError):
    """No browser extension is connected to the remote command channel."""


class RemoteTimeout(ToolError):
    """A remote command got no reply within the timeout window."""

    def __init__(self, command: str, timeout: float):
        self.command = command
        self.timeout = timeout
        super().__init__(f"Command timed out after {timeout:g}s: {command}")


class ModelClientError(PiBrowserError):
    """The language model call itself failed."""


class SessionProvisioningError(PiBrowserError):
    """No browser session could be started."""
