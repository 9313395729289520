"""
Orchestration Package

Core components for coordinating a team of conversational agents:
- Event log of orchestration activity
- Per-session handoff state with loop suppression
- Rule-based escalation and message routing
- Conversation context store with analytics and snapshots
- Handoff coordination and cross-store synchronization
- Tool-resolution loop against a reasoning backend
- Supervisor and the integrated orchestration system
"""

from .context import ContextStore
from .escalation import EscalationEngine
from .events import EventLog
from .handoff import HandoffCoordinator, HandoffOutcome
from .rules import DEFAULT_ESCALATION_RULES, route_message
from .scenarios import default_scenarios
from .session import SessionRegistry, SessionState
from .supervisor import Supervisor, SupervisorReply
from .synchronizer import StateSynchronizer, SynchronizedState
from .system import OrchestrationSystem, SessionBootstrap
from .tool_loop import LoopOutcome, ToolResolutionLoop

__all__ = [
    "ContextStore",
    "EscalationEngine",
    "EventLog",
    "HandoffCoordinator",
    "HandoffOutcome",
    "DEFAULT_ESCALATION_RULES",
    "route_message",
    "default_scenarios",
    "SessionRegistry",
    "SessionState",
    "Supervisor",
    "SupervisorReply",
    "StateSynchronizer",
    "SynchronizedState",
    "OrchestrationSystem",
    "SessionBootstrap",
    "LoopOutcome",
    "ToolResolutionLoop",
]
