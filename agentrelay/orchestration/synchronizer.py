from __future__ import annotations

from datetime import datetime
from typing import Any, Callable

from pydantic import BaseModel, Field

from ..core import metrics
from ..core.clock import TimestampFactory, resolve_clock
from ..core.logging import get_logger
from ..schemas.context import ConversationContext
from ..schemas.session import ContextValue, HandoffRecord, Session
from .context import CapturedContext, ContextStore
from .session import SessionRegistry

logger = get_logger(name=__name__)

Subscriber = Callable[[dict[str, Any]], Any]

AGENT_HANDOFF = "agent_handoff"
CONTEXT_UPDATE = "context_update"
STATE_RESET = "state_reset"

LAST_HANDOFF_CONTEXT = "last_handoff_context"


class SynchronizedState(BaseModel):
    """Read-only combined view of session state and conversation context."""

    context: ConversationContext
    current_agent: str | None = None
    previous_agent: str | None = None
    handoff_history: list[HandoffRecord] = Field(default_factory=list)
    shared_context: dict[str, ContextValue] = Field(default_factory=dict)
    last_activity: datetime


class StateSynchronizer:
    """Writes agent and shared-context changes through to both stores and notifies subscribers."""

    def __init__(
        self,
        sessions: SessionRegistry,
        contexts: ContextStore,
        *,
        now: TimestampFactory | None = None,
    ) -> None:
        self._sessions = sessions
        self._contexts = contexts
        self._now = resolve_clock(now)
        self._subscribers: dict[str, list[Subscriber]] = {}

    def subscribe(self, event_name: str, callback: Subscriber) -> Callable[[], None]:
        callbacks = self._subscribers.setdefault(event_name, [])
        callbacks.append(callback)

        def unsubscribe() -> None:
            registered = self._subscribers.get(event_name, [])
            if callback in registered:
                registered.remove(callback)

        return unsubscribe

    def subscriber_count(self, event_name: str) -> int:
        return len(self._subscribers.get(event_name, ()))

    def sync_handoff(self, session_id: str, record: HandoffRecord, *, notify: bool = True) -> HandoffRecord:
        """Apply a handoff to both stores; ``notify=False`` leaves publishing to the caller."""
        state = self._sessions.get(session_id)
        stamped = state.add_handoff(record)
        state.set_current_agent(stamped.target_agent)
        self._contexts.set_current_agent(session_id, stamped.target_agent)

        if stamped.preserve_context:
            self._contexts.set_shared_variable(
                session_id,
                LAST_HANDOFF_CONTEXT,
                {
                    "source_agent": stamped.source_agent,
                    "target_agent": stamped.target_agent,
                    "trigger": stamped.trigger,
                    "conditions": dict(stamped.conditions),
                    "timestamp": stamped.timestamp.isoformat() if stamped.timestamp else None,
                },
            )

        if notify:
            self.publish_handoff(session_id, stamped)
        return stamped

    def publish_handoff(self, session_id: str, record: HandoffRecord) -> None:
        self._emit(
            AGENT_HANDOFF,
            {
                "session_id": session_id,
                "handoff": record.model_dump(),
                "timestamp": self._now(),
            },
        )

    def sync_current_agent(self, session_id: str, agent_name: str) -> None:
        """Seed the current agent in both stores without recording a handoff."""
        self._sessions.get(session_id).set_current_agent(agent_name)
        self._contexts.set_current_agent(session_id, agent_name)

    def sync_shared_context(self, session_id: str, key: str, value: Any, agent_name: str) -> None:
        self._sessions.get(session_id).update_shared_context(key, value)
        self._contexts.set_shared_variable(session_id, key, value)
        self._emit(
            CONTEXT_UPDATE,
            {
                "session_id": session_id,
                "agent_name": agent_name,
                "key": key,
                "value": value,
                "timestamp": self._now(),
            },
        )

    def get_synchronized_state(self, session_id: str) -> SynchronizedState:
        state = self._sessions.get(session_id)
        context = self._contexts.get_or_create(session_id)
        return SynchronizedState(
            context=context,
            current_agent=state.current_agent,
            previous_agent=state.previous_agent,
            handoff_history=state.handoff_history,
            shared_context=state.shared_context,
            last_activity=context.metadata.last_activity,
        )

    def reset_state(self, session_id: str) -> None:
        self._sessions.reset(session_id)
        self._contexts.reset_session(session_id)
        self._emit(STATE_RESET, {"session_id": session_id, "timestamp": self._now()})

    def capture(self, session_id: str) -> tuple[Session, CapturedContext]:
        return self._sessions.get(session_id).snapshot(), self._contexts.capture(session_id)

    def restore(self, session_id: str, captured: tuple[Session, CapturedContext]) -> None:
        session, context = captured
        self._sessions.get(session_id).restore(session)
        self._contexts.restore(session_id, context)

    def clear_subscribers(self) -> None:
        self._subscribers.clear()

    def _emit(self, event_name: str, payload: dict[str, Any]) -> None:
        for callback in list(self._subscribers.get(event_name, ())):
            try:
                callback(payload)
            except Exception:
                metrics.increment_subscriber_failure(event=event_name)
                logger.exception("state_subscriber_failed", event_name=event_name, session_id=payload.get("session_id"))
