from __future__ import annotations

import copy
from typing import Any

from ..core.clock import TimestampFactory, resolve_clock
from ..core.config import HandoffSettings
from ..core.logging import get_logger
from ..schemas.session import ContextValue, HandoffRecord, Session

logger = get_logger(name=__name__)


class SessionState:
    """Current/previous agent, handoff history and shared context for one session.

    Legality is not enforced here; ``set_current_agent`` and ``add_handoff``
    trust the caller (normally the handoff coordinator) to have checked
    ``can_handoff_to`` first.
    """

    def __init__(
        self,
        session_id: str,
        *,
        settings: HandoffSettings | None = None,
        now: TimestampFactory | None = None,
    ) -> None:
        self._settings = settings or HandoffSettings()
        self._now = resolve_clock(now)
        self._session = Session(session_id=session_id)

    @property
    def session_id(self) -> str:
        return self._session.session_id

    @property
    def current_agent(self) -> str | None:
        return self._session.current_agent

    @property
    def previous_agent(self) -> str | None:
        return self._session.previous_agent

    @property
    def handoff_history(self) -> list[HandoffRecord]:
        return list(self._session.handoff_history)

    @property
    def shared_context(self) -> dict[str, ContextValue]:
        return {key: value.model_copy(deep=True) for key, value in self._session.shared_context.items()}

    def set_current_agent(self, name: str) -> None:
        self._session.previous_agent = self._session.current_agent
        self._session.current_agent = name

    def add_handoff(self, record: HandoffRecord) -> HandoffRecord:
        stamped = record.model_copy(update={"timestamp": self._now()})
        self._session.handoff_history.append(stamped)
        return stamped

    def update_shared_context(self, key: str, value: Any) -> None:
        self._session.shared_context[key] = ContextValue(
            value=copy.deepcopy(value),
            produced_at=self._now(),
            value_type=type(value).__name__,
        )

    def get_shared_context(self, key: str) -> Any | None:
        entry = self._session.shared_context.get(key)
        if entry is None:
            return None
        return entry.value

    def clear_shared_context(self) -> None:
        self._session.shared_context.clear()

    def can_handoff_to(self, target_agent: str) -> bool:
        """Return whether ``target_agent`` may become current without creating a loop.

        Two overlapping checks apply: an immediate bounce back to the previous
        agent is refused, and a target that already received
        ``loop_threshold`` of the last ``loop_window`` handoffs is refused.
        """
        if self._settings.prevent_bounce_back and target_agent == self._session.previous_agent:
            return False
        recent = self._session.handoff_history[-self._settings.loop_window :]
        occurrences = sum(1 for record in recent if record.target_agent == target_agent)
        return occurrences < self._settings.loop_threshold

    def snapshot(self) -> Session:
        return self._session.model_copy(deep=True)

    def restore(self, snapshot: Session) -> None:
        if snapshot.session_id != self.session_id:
            raise ValueError("Snapshot belongs to a different session")
        self._session = snapshot.model_copy(deep=True)

    def reset(self) -> None:
        self._session = Session(session_id=self.session_id)


class SessionRegistry:
    """Owns one ``SessionState`` per session id, created on first access."""

    def __init__(
        self,
        *,
        settings: HandoffSettings | None = None,
        now: TimestampFactory | None = None,
    ) -> None:
        self._settings = settings or HandoffSettings()
        self._now = resolve_clock(now)
        self._sessions: dict[str, SessionState] = {}

    def get(self, session_id: str) -> SessionState:
        state = self._sessions.get(session_id)
        if state is None:
            state = SessionState(session_id, settings=self._settings, now=self._now)
            self._sessions[session_id] = state
            logger.debug("session_state_created", session_id=session_id)
        return state

    def peek(self, session_id: str) -> SessionState | None:
        return self._sessions.get(session_id)

    def reset(self, session_id: str) -> None:
        state = self._sessions.get(session_id)
        if state is not None:
            state.reset()

    def drop(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def session_ids(self) -> list[str]:
        return list(self._sessions)

    def clear(self) -> None:
        self._sessions.clear()

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
