from __future__ import annotations

import inspect
import json
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from ..core import metrics
from ..core.errors import ToolExecutionError, ValidationError
from ..core.logging import get_logger
from .exceptions import ToolError, ToolValidationError

__all__ = [
    "ToolParameters",
    "ToolInvocation",
    "Tool",
    "ToolOk",
    "ToolErr",
    "ToolResult",
    "invoke_tool",
    "parse_arguments",
    "json_safe",
]

logger = get_logger(name=__name__)


class ToolParameters(BaseModel):
    """JSON-schema-like parameter block every tool must declare."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    type: Literal["object"] = "object"
    properties: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    required: list[str] = Field(default_factory=list)
    additional_properties: Literal[False] = Field(False, alias="additionalProperties")

    @model_validator(mode="after")
    def _required_are_declared(self) -> "ToolParameters":
        missing = [name for name in self.required if name not in self.properties]
        if missing:
            raise ValueError(f"required parameters not declared in properties: {', '.join(missing)}")
        return self

    def to_schema(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


@dataclass(slots=True)
class ToolInvocation:
    """Details handed to a tool handler next to its parsed input."""
    session_id: str
    agent_name: str | None = None
    call_id: str | None = None
    extras: Dict[str, Any] = field(default_factory=dict)


ToolHandler = Callable[[Dict[str, Any], ToolInvocation], Union[Any, Awaitable[Any]]]


@dataclass(slots=True)
class Tool:
    name: str
    description: str
    parameters: ToolParameters
    handler: ToolHandler

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ToolValidationError("Tool name is required")
        if not self.description:
            raise ToolValidationError(f"Tool '{self.name}' needs a description")
        if not isinstance(self.parameters, ToolParameters):
            try:
                self.parameters = ToolParameters.model_validate(self.parameters)
            except PydanticValidationError as exc:
                raise ToolValidationError(f"Tool '{self.name}' has an invalid parameter schema: {exc}") from exc

    def request_schema(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters.to_schema(),
        }


@dataclass(frozen=True, slots=True)
class ToolOk:
    value: Any

    @property
    def ok(self) -> bool:
        return True

    def to_output(self) -> str:
        return json.dumps(json_safe(self.value))


@dataclass(frozen=True, slots=True)
class ToolErr:
    kind: str
    message: str

    @property
    def ok(self) -> bool:
        return False

    def to_output(self) -> str:
        return json.dumps({"error": self.message})


ToolResult = Union[ToolOk, ToolErr]


def json_safe(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return json_safe(value.model_dump(mode="json"))
    if isinstance(value, Mapping):
        return {str(key): json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_safe(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return [json_safe(item) for item in sorted(value, key=lambda item: repr(item))]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return str(value)


def parse_arguments(arguments: str | Mapping[str, Any] | None) -> Dict[str, Any]:
    """Decode the JSON argument string a backend sends with a function call."""
    if arguments is None:
        return {}
    if isinstance(arguments, str):
        if not arguments.strip():
            return {}
        try:
            decoded = json.loads(arguments)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"Invalid tool arguments: {exc.msg}") from exc
    else:
        decoded = arguments
    if not isinstance(decoded, Mapping):
        raise ValidationError("Tool arguments must be a JSON object")
    return dict(decoded)


async def invoke_tool(
    tool: Tool,
    arguments: str | Mapping[str, Any] | None,
    details: ToolInvocation,
) -> ToolResult:
    """Run a tool handler and fold every ordinary failure into a ``ToolErr``.

    Cancellation is not an ordinary failure and propagates to the caller.
    """
    try:
        payload = parse_arguments(arguments)
    except ValidationError as exc:
        metrics.observe_tool_invocation(tool=tool.name, outcome="invalid_arguments")
        return ToolErr(kind=exc.kind, message=str(exc))

    start = time.perf_counter()
    try:
        result = tool.handler(payload, details)
        if inspect.isawaitable(result):
            result = await result
    except ToolError as exc:
        metrics.observe_tool_invocation(tool=tool.name, outcome="failure", latency=time.perf_counter() - start)
        logger.warning("tool_failed", tool=tool.name, kind=exc.kind, error=str(exc))
        return ToolErr(kind=exc.kind, message=str(exc))
    except Exception as exc:
        metrics.observe_tool_invocation(tool=tool.name, outcome="failure", latency=time.perf_counter() - start)
        logger.warning("tool_failed", tool=tool.name, kind=ToolExecutionError.kind, error=str(exc))
        return ToolErr(kind=ToolExecutionError.kind, message=str(exc))

    metrics.observe_tool_invocation(tool=tool.name, outcome="success", latency=time.perf_counter() - start)
    return ToolOk(value=result)
