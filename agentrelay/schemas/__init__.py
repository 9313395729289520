from .context import (
    ContextMetadata,
    ContextUpdate,
    ConversationContext,
    Message,
    SessionAnalytics,
    SharedVariable,
    ToolCallRecord,
)
from .escalation import EscalationAction, EscalationDecision, EscalationRule
from .events import EventType, OrchestrationEvent
from .scenario import AgentProfile, Scenario, ScenarioMetadata
from .session import ContextValue, HandoffRecord, Session

__all__ = [
    "ContextMetadata",
    "ContextUpdate",
    "ConversationContext",
    "Message",
    "SessionAnalytics",
    "SharedVariable",
    "ToolCallRecord",
    "EscalationAction",
    "EscalationDecision",
    "EscalationRule",
    "EventType",
    "OrchestrationEvent",
    "AgentProfile",
    "Scenario",
    "ScenarioMetadata",
    "ContextValue",
    "HandoffRecord",
    "Session",
]
