"""
Handoff Coordinator

Validates and executes a single agent-to-agent handoff for a session. A
handoff either completes fully (requested event, history record, agent
shift, completed event) or leaves the session exactly as it was.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from ..core import metrics
from ..core.errors import CircularHandoffError, ConfigurationError, OrchestrationError, ValidationError
from ..core.logging import get_logger
from ..schemas.events import EventType
from ..schemas.session import HandoffRecord
from .events import EventLog
from .session import SessionRegistry, SessionState
from .synchronizer import StateSynchronizer

logger = get_logger(name=__name__)

CIRCULAR_HANDOFF_MESSAGE = "Handoff not allowed: would create circular loop"


@dataclass(slots=True)
class HandoffOutcome:
    """Result of a handoff request."""
    success: bool
    error: str | None = None
    error_kind: str | None = None
    record: HandoffRecord | None = None

    @classmethod
    def failure(cls, exc: OrchestrationError) -> "HandoffOutcome":
        return cls(success=False, error=str(exc), error_kind=exc.kind)

    def model_dump(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success}
        if self.error is not None:
            payload["error"] = self.error
        return payload


class HandoffCoordinator:
    def __init__(
        self,
        sessions: SessionRegistry,
        event_log: EventLog,
        *,
        synchronizer: StateSynchronizer | None = None,
        agents: Iterable[str] | None = None,
    ) -> None:
        self._sessions = sessions
        self._event_log = event_log
        self._synchronizer = synchronizer
        self._agents: frozenset[str] | None = frozenset(agents) if agents is not None else None

    @property
    def agents(self) -> frozenset[str] | None:
        return self._agents

    def configure_agents(self, agents: Iterable[str] | None) -> None:
        self._agents = frozenset(agents) if agents is not None else None

    def validate_handoff(self, state: SessionState, source: str, target: str) -> None:
        """Raise the matching ``OrchestrationError`` when the handoff may not proceed."""
        if not isinstance(target, str) or not target.strip():
            raise ValidationError("Handoff target must be a non-empty agent name")
        if not isinstance(source, str) or not source.strip():
            raise ValidationError("Handoff source must be a non-empty agent name")
        if target == source:
            raise ValidationError("Cannot hand off to self")
        if target == state.current_agent:
            raise ValidationError(f"Agent '{target}' is already the current agent")
        if self._agents is not None and target not in self._agents:
            raise ConfigurationError(f"Target agent '{target}' is not configured")
        if not state.can_handoff_to(target):
            raise CircularHandoffError(CIRCULAR_HANDOFF_MESSAGE)

    def request_handoff(
        self,
        session_id: str,
        source: str,
        target: str,
        trigger: str | None = None,
        conditions: dict[str, Any] | None = None,
        preserve_context: bool = True,
    ) -> HandoffOutcome:
        state = self._sessions.get(session_id)
        try:
            self.validate_handoff(state, source, target)
        except OrchestrationError as exc:
            metrics.increment_handoff(outcome=exc.kind)
            logger.info(
                "handoff_rejected",
                session_id=session_id,
                source=source,
                target=target,
                reason=exc.kind,
            )
            return HandoffOutcome.failure(exc)

        record = HandoffRecord(
            source_agent=source,
            target_agent=target,
            trigger=trigger,
            conditions=dict(conditions or {}),
            preserve_context=preserve_context,
        )
        captured = self._capture(session_id, state)
        try:
            self._event_log.record(
                EventType.HANDOFF_REQUESTED,
                source,
                {
                    "session_id": session_id,
                    "target_agent": target,
                    "trigger": trigger,
                    "conditions": dict(conditions or {}),
                },
            )
            stamped = self._apply(session_id, state, record)
            self._event_log.record(
                EventType.HANDOFF_COMPLETED,
                target,
                {
                    "session_id": session_id,
                    "source_agent": source,
                    "preserve_context": preserve_context,
                },
            )
        except Exception as exc:
            self._restore(session_id, state, captured)
            logger.exception("handoff_failed", session_id=session_id, source=source, target=target)
            self._event_log.record(
                EventType.ERROR,
                source,
                {"session_id": session_id, "target_agent": target, "operation": "handoff"},
                error=str(exc),
            )
            metrics.increment_handoff(outcome="error")
            return HandoffOutcome(success=False, error=str(exc), error_kind="orchestration_error")

        if self._synchronizer is not None:
            self._synchronizer.publish_handoff(session_id, stamped)
        metrics.increment_handoff(outcome="success")
        logger.info("handoff_completed", session_id=session_id, source=source, target=target, trigger=trigger)
        return HandoffOutcome(success=True, record=stamped)

    def get_handoff_options(self, session_id: str, current: str, available: Iterable[str]) -> list[str]:
        state = self._sessions.get(session_id)
        return [agent for agent in available if agent != current and state.can_handoff_to(agent)]

    def _apply(self, session_id: str, state: SessionState, record: HandoffRecord) -> HandoffRecord:
        if self._synchronizer is not None:
            if state.current_agent is None:
                self._synchronizer.sync_current_agent(session_id, record.source_agent)
            return self._synchronizer.sync_handoff(session_id, record, notify=False)
        if state.current_agent is None:
            state.set_current_agent(record.source_agent)
        stamped = state.add_handoff(record)
        state.set_current_agent(record.target_agent)
        return stamped

    def _capture(self, session_id: str, state: SessionState) -> Any:
        if self._synchronizer is not None:
            return self._synchronizer.capture(session_id)
        return state.snapshot()

    def _restore(self, session_id: str, state: SessionState, captured: Any) -> None:
        if self._synchronizer is not None:
            self._synchronizer.restore(session_id, captured)
        else:
            state.restore(captured)
