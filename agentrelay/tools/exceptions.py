from __future__ import annotations

from ..core.errors import ToolExecutionError


class ToolError(ToolExecutionError):
    """Base class for tooling-related failures."""


class ToolNotFoundError(ToolError):
    """Raised when a requested tool cannot be resolved."""

    kind = "tool_not_found"


class ToolValidationError(ToolError):
    """Raised for malformed tool definitions or arguments that fail the tool's own checks."""

    kind = "validation_error"
