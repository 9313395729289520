from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class HandoffRecord(BaseModel):
    """A single transfer of the current-agent role.

    The timestamp is assigned by the session when the record is appended,
    so callers normally leave it unset.
    """

    model_config = ConfigDict(frozen=True)

    source_agent: str = Field(..., min_length=1)
    target_agent: str = Field(..., min_length=1)
    trigger: str | None = None
    conditions: dict[str, Any] = Field(default_factory=dict)
    preserve_context: bool = True
    timestamp: datetime | None = None


class ContextValue(BaseModel):
    value: Any = None
    produced_at: datetime
    value_type: str


class Session(BaseModel):
    session_id: str
    current_agent: str | None = None
    previous_agent: str | None = None
    handoff_history: list[HandoffRecord] = Field(default_factory=list)
    shared_context: dict[str, ContextValue] = Field(default_factory=dict)
