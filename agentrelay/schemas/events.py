from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class EventType(str, Enum):
    AGENT_START = "agent-start"
    AGENT_END = "agent-end"
    TOOL_CALL = "tool-call"
    HANDOFF_REQUESTED = "handoff-requested"
    HANDOFF_COMPLETED = "handoff-completed"
    ESCALATION = "escalation"
    ERROR = "error"


class OrchestrationEvent(BaseModel):
    """Single immutable entry in the orchestration event log."""

    model_config = ConfigDict(frozen=True)

    type: EventType
    timestamp: datetime
    agent_name: str
    data: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
