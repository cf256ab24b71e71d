"""
Tool router for Pi Browser.

Routes tool calls from the model to the backend chosen at construction
(DirectBackend or RemoteBackend).
"""

import logging
from typing import Any, Optional

from pydantic import ValidationError

from .conversation import ToolOutput
from .errors import ActionFailed, ToolError, UnknownTool
from .tool_schemas import TOOLS_BY_NAME

logger = logging.getLogger(__name__)


class ActionDispatcher:
    """Validates tool calls and executes them on one backend.

    Provides a single interface for executing actions regardless of whether
    the browser is driven directly or through the extension.
    """

    def __init__(self, backend: Any):
        """Initialize the dispatcher.

        Args:
            backend: DirectBackend or RemoteBackend instance
        """
        self.backend = backend

    async def execute(self, name: str, args: Optional[dict[str, Any]] = None) -> ToolOutput:
        """Execute a tool call.

        Args:
            name: Tool name from the model
            args: Raw argument mapping from the model

        Returns:
            ToolOutput with text and optional image

        Raises:
            UnknownTool: If the name is not a browser tool
            ActionFailed: If arguments are invalid or the action fails
            ActuatorUnavailable: If the extension is not connected
            RemoteTimeout: If the extension did not answer in time
        """
        spec = TOOLS_BY_NAME.get(name)
        if spec is None:
            raise UnknownTool(name)

        try:
            validated = spec.args_model.model_validate(args or {})
        except ValidationError as e:
            raise ActionFailed(f"Invalid arguments for {name}: {e}") from e

        logger.debug("Executing %s %s", name, validated.model_dump(exclude_none=True))
        try:
            return await self.backend.execute(name, validated.model_dump())
        except ToolError:
            raise
        except Exception as e:
            raise ActionFailed(f"{type(e).__name__}: {e}") from e
