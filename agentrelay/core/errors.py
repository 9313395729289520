from __future__ import annotations


class OrchestrationError(RuntimeError):
    """Base class for failures raised by the orchestration core."""

    kind: str = "orchestration_error"


class ValidationError(OrchestrationError):
    """Raised for a malformed handoff target or malformed tool arguments."""

    kind = "validation_error"


class CircularHandoffError(OrchestrationError):
    """Raised when the handoff legality predicate rejects a target."""

    kind = "circular_handoff"


class MaxIterationsExceeded(OrchestrationError):
    """Raised when the tool-resolution loop exhausts its iteration bound."""

    kind = "max_iterations_exceeded"


class ToolExecutionError(OrchestrationError):
    """Raised when an individual tool fails; always contained by the loop."""

    kind = "tool_execution_error"


class TransportError(OrchestrationError):
    """Raised when a reasoning backend round-trip fails."""

    kind = "transport_error"


class ConfigurationError(OrchestrationError):
    """Raised for references to agents or scenarios that are not configured."""

    kind = "configuration_error"


class SessionNotFoundError(OrchestrationError):
    """Raised when a lookup must not create the requested session."""

    kind = "session_not_found"


__all__ = [
    "OrchestrationError",
    "ValidationError",
    "CircularHandoffError",
    "MaxIterationsExceeded",
    "ToolExecutionError",
    "TransportError",
    "ConfigurationError",
    "SessionNotFoundError",
]
