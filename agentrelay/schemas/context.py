from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

CONTEXT_METADATA_VERSION = "1.0"


class Message(BaseModel):
    role: Literal["user", "assistant", "system", "tool"]
    content: str
    agent: str | None = None
    timestamp: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class SharedVariable(BaseModel):
    value: Any = None
    timestamp: datetime
    type: str


class ToolCallRecord(BaseModel):
    tool_name: str
    success: bool
    duration_ms: float | None = None
    timestamp: datetime


class ContextMetadata(BaseModel):
    """Closed, versioned counter record attached to every conversation context."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    version: Literal["1.0"] = CONTEXT_METADATA_VERSION
    created_at: datetime
    last_activity: datetime
    message_count: int = Field(0, ge=0)
    handoff_count: int = Field(0, ge=0)
    tool_call_count: int = Field(0, ge=0)
    error_count: int = Field(0, ge=0)
    failed_tool_calls: int = Field(0, ge=0)
    api_errors: int = Field(0, ge=0)
    failed_attempts: int = Field(0, ge=0)
    issue_resolved: bool = False
    completion_time: datetime | None = None
    last_tool_call: datetime | None = None
    last_error: str | None = None
    complexity: str | None = None
    sentiment: str | None = None


class ConversationContext(BaseModel):
    session_id: str
    user_id: str | None = None
    current_agent: str | None = None
    conversation_history: list[Message] = Field(default_factory=list)
    shared_variables: dict[str, SharedVariable] = Field(default_factory=dict)
    metadata: ContextMetadata


class ContextUpdate(BaseModel):
    """Partial update accepted by ``ContextStore.update``.

    Metadata keys are merged over the current metadata and re-validated, so
    unknown counters are rejected at the boundary.
    """

    model_config = ConfigDict(extra="forbid")

    user_id: str | None = None
    current_agent: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class SessionSummary(BaseModel):
    id: str
    duration_ms: int
    duration_formatted: str
    message_count: int
    handoff_count: int
    current_agent: str | None = None


class ToolSummary(BaseModel):
    total_calls: int
    successful_calls: int
    failed_calls: int
    success_rate: float


class SatisfactionIndicators(BaseModel):
    positive_keywords: int = 0
    negative_keywords: int = 0
    escalations_requested: int = 0
    questions_resolved: int = 0


class EngagementSummary(BaseModel):
    average_response_time_ms: float
    complexity_score: float
    user_satisfaction_indicators: SatisfactionIndicators


class ContextSummary(BaseModel):
    shared_variables_count: int
    last_activity: datetime
    context_size_kb: int


class SessionAnalytics(BaseModel):
    session: SessionSummary
    tools: ToolSummary
    engagement: EngagementSummary
    context: ContextSummary
