"""
Tool-Resolution Loop

Resolves the function calls a reasoning backend asks for. Each iteration
executes every requested call in order, appends the call and its result to
the outgoing request body, and re-issues the request. The loop stops on a
plain answer, a backend failure, or after ``max_iterations`` round-trips.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

from ..core import metrics
from ..core.clock import TimestampFactory, resolve_clock
from ..core.config import ToolLoopSettings
from ..core.errors import MaxIterationsExceeded, TransportError
from ..core.logging import get_logger
from ..schemas.events import EventType
from ..services.backend import ReasoningBackend
from ..tools.base import ToolErr, ToolInvocation, ToolResult, invoke_tool
from ..tools.exceptions import ToolNotFoundError
from ..tools.registry import ToolRegistry
from .context import ContextStore
from .events import EventLog

logger = get_logger(name=__name__)

GENERIC_FAILURE = "Something went wrong."
API_CALL_FAILED = "API call failed"
MAX_ITERATIONS_MESSAGE = "Maximum iterations exceeded"


@dataclass(slots=True)
class LoopOutcome:
    success: bool
    text: str | None = None
    error: str | None = None
    error_kind: str | None = None
    round_trips: int = 0
    tool_calls: int = 0


def extract_output_text(items: list[dict[str, Any]]) -> str:
    """Join ``output_text`` parts per message and messages with newlines."""
    messages: list[str] = []
    for item in items:
        if item.get("type") != "message":
            continue
        parts = [
            str(part.get("text", ""))
            for part in item.get("content") or []
            if isinstance(part, dict) and part.get("type") == "output_text"
        ]
        messages.append("".join(parts))
    return "\n".join(messages)


class ToolResolutionLoop:
    def __init__(
        self,
        backend: ReasoningBackend,
        tools: ToolRegistry,
        *,
        event_log: EventLog,
        contexts: ContextStore | None = None,
        settings: ToolLoopSettings | None = None,
        now: TimestampFactory | None = None,
    ) -> None:
        self._backend = backend
        self._tools = tools
        self._event_log = event_log
        self._contexts = contexts
        self._settings = settings or ToolLoopSettings()
        self._now = resolve_clock(now)

    @property
    def max_iterations(self) -> int:
        return self._settings.max_iterations

    async def run(
        self,
        body: dict[str, Any],
        response: dict[str, Any],
        *,
        session_id: str,
        agent_name: str = "supervisor",
    ) -> LoopOutcome:
        """Resolve tool calls starting from ``response``, the reply to ``body``.

        ``body["input"]`` is extended in place, so the transcript stays
        inspectable even if the surrounding task is cancelled mid-loop.
        """
        transcript: list[dict[str, Any]] = body.setdefault("input", [])
        current = response
        round_trips = 0
        tool_calls = 0

        while True:
            if current.get("error"):
                logger.warning("tool_loop_backend_error", session_id=session_id, error=str(current.get("error")))
                self._event_log.record(
                    EventType.ERROR,
                    agent_name,
                    {"session_id": session_id, "operation": "tool_loop"},
                    error=str(current["error"]),
                )
                return self._finish(
                    LoopOutcome(
                        success=False,
                        error=GENERIC_FAILURE,
                        error_kind=TransportError.kind,
                        round_trips=round_trips,
                        tool_calls=tool_calls,
                    )
                )

            items = [item for item in current.get("output") or [] if isinstance(item, dict)]
            calls = [item for item in items if item.get("type") == "function_call"]
            if not calls:
                self._mark_resolved(session_id)
                return self._finish(
                    LoopOutcome(
                        success=True,
                        text=extract_output_text(items),
                        round_trips=round_trips,
                        tool_calls=tool_calls,
                    )
                )

            if round_trips >= self._settings.max_iterations:
                logger.warning("tool_loop_exhausted", session_id=session_id, round_trips=round_trips)
                return self._finish(
                    LoopOutcome(
                        success=False,
                        error=MAX_ITERATIONS_MESSAGE,
                        error_kind=MaxIterationsExceeded.kind,
                        round_trips=round_trips,
                        tool_calls=tool_calls,
                    )
                )

            for call in calls:
                await self._execute_call(call, transcript, session_id=session_id, agent_name=agent_name)
                tool_calls += 1

            try:
                current = await self._backend(body)
            except Exception as exc:
                round_trips += 1
                self._record_transport_failure(exc, session_id=session_id, agent_name=agent_name)
                return self._finish(
                    LoopOutcome(
                        success=False,
                        error=API_CALL_FAILED,
                        error_kind=TransportError.kind,
                        round_trips=round_trips,
                        tool_calls=tool_calls,
                    )
                )
            round_trips += 1

    async def _execute_call(
        self,
        call: dict[str, Any],
        transcript: list[dict[str, Any]],
        *,
        session_id: str,
        agent_name: str,
    ) -> ToolResult:
        name = str(call.get("name") or "")
        call_id = call.get("call_id")
        arguments = call.get("arguments") or "{}"

        start = time.perf_counter()
        tool = self._tools.get(name) if name else None
        if tool is None:
            result: ToolResult = ToolErr(kind=ToolNotFoundError.kind, message=f"Tool '{name}' not found")
        else:
            details = ToolInvocation(session_id=session_id, agent_name=agent_name, call_id=call_id)
            result = await invoke_tool(tool, arguments, details)
        duration_ms = (time.perf_counter() - start) * 1000

        transcript.append(
            {
                "type": "function_call",
                "call_id": call_id,
                "name": name,
                "arguments": arguments,
            }
        )
        transcript.append(
            {
                "type": "function_call_output",
                "call_id": call_id,
                "output": result.to_output(),
            }
        )

        error_message = result.message if isinstance(result, ToolErr) else None
        self._event_log.record(
            EventType.TOOL_CALL,
            agent_name,
            {
                "session_id": session_id,
                "tool": name,
                "call_id": call_id,
                "success": result.ok,
                "error_kind": result.kind if isinstance(result, ToolErr) else None,
            },
            error=error_message,
        )
        if self._contexts is not None:
            self._contexts.record_tool_call(session_id, name, result.ok, duration_ms)
            if error_message is not None:
                self._contexts.update(session_id, {"metadata": {"last_error": error_message}}, snapshot=False)
        return result

    def _record_transport_failure(self, exc: Exception, *, session_id: str, agent_name: str) -> None:
        logger.warning("tool_loop_reissue_failed", session_id=session_id, error=str(exc))
        self._event_log.record(
            EventType.ERROR,
            agent_name,
            {"session_id": session_id, "operation": "tool_loop"},
            error=str(exc),
        )
        if self._contexts is not None:
            self._contexts.increment_counter(session_id, "api_errors")

    def _mark_resolved(self, session_id: str) -> None:
        if self._contexts is None:
            return
        self._contexts.update(
            session_id,
            {"metadata": {"issue_resolved": True, "completion_time": self._now()}},
            snapshot=False,
        )

    def _finish(self, outcome: LoopOutcome) -> LoopOutcome:
        metrics.observe_tool_loop(
            outcome="success" if outcome.success else (outcome.error_kind or "failure"),
            round_trips=outcome.round_trips,
        )
        return outcome
