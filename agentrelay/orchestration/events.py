from __future__ import annotations

from collections import Counter
from typing import Any

from ..core import metrics
from ..core.clock import TimestampFactory, resolve_clock
from ..core.logging import get_logger
from ..schemas.events import EventType, OrchestrationEvent

logger = get_logger(name=__name__)


class EventLog:
    """Append-only, in-memory record of orchestration events.

    Growth is unbounded; callers that keep a log alive for a long time are
    expected to call ``clear`` themselves.
    """

    def __init__(self, *, now: TimestampFactory | None = None) -> None:
        self._events: list[OrchestrationEvent] = []
        self._now = resolve_clock(now)

    def record(
        self,
        type: EventType | str,
        agent_name: str,
        data: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> OrchestrationEvent:
        event = OrchestrationEvent(
            type=EventType(type),
            timestamp=self._now(),
            agent_name=agent_name,
            data=dict(data or {}),
            error=error,
        )
        self._events.append(event)
        metrics.increment_event(event_type=event.type.value)
        logger.debug(
            "orchestration_event_recorded",
            event_type=event.type.value,
            agent=agent_name,
            error=error,
        )
        return event

    def query(self, agent_name: str | None = None) -> list[OrchestrationEvent]:
        if agent_name is None:
            return list(self._events)
        return [event for event in self._events if event.agent_name == agent_name]

    def query_by_type(self, type: EventType | str) -> list[OrchestrationEvent]:
        wanted = EventType(type)
        return [event for event in self._events if event.type is wanted]

    def latest(self, agent_name: str | None = None) -> OrchestrationEvent | None:
        for event in reversed(self._events):
            if agent_name is None or event.agent_name == agent_name:
                return event
        return None

    def for_session(self, session_id: str) -> list[OrchestrationEvent]:
        return [event for event in self._events if event.data.get("session_id") == session_id]

    def count_by_type(self) -> dict[str, int]:
        counts = Counter(event.type.value for event in self._events)
        return dict(counts)

    def clear(self) -> None:
        self._events.clear()

    def __len__(self) -> int:
        return len(self._events)
