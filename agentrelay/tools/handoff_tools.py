"""
Built-in handoff tools

Tools an agent can call to transfer the conversation, pick an escalation
path, preserve context for the next agent, or inspect the handoff state of
its session. Every tool resolves the session from the invocation details,
so one set of tools serves every session of an orchestration system.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Mapping, Sequence

from ..core import metrics
from ..core.clock import TimestampFactory, resolve_clock
from ..core.config import EscalationSettings
from ..core.logging import get_logger
from ..schemas.events import EventType
from ..schemas.scenario import AgentProfile
from .base import Tool, ToolInvocation, ToolParameters
from .exceptions import ToolValidationError

if TYPE_CHECKING:
    from ..orchestration.events import EventLog
    from ..orchestration.handoff import HandoffCoordinator
    from ..orchestration.session import SessionRegistry
    from ..orchestration.synchronizer import StateSynchronizer

logger = get_logger(name=__name__)

ISSUE_TYPES = ("billing", "technical", "account", "complaint", "general")
URGENCY_LEVELS = ("low", "medium", "high", "critical")
SENTIMENTS = ("calm", "frustrated", "angry", "urgent")
ISSUE_STATUSES = ("new", "in_progress", "escalated", "resolved", "pending")
STATUS_ACTIONS = ("check_current", "get_history", "get_context", "validate_target")

UNKNOWN_AGENT = "unknown"


def _require_text(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ToolValidationError(f"'{key}' is required")
    return value


def _choice(payload: Mapping[str, Any], key: str, options: Sequence[str], default: str) -> str:
    value = payload.get(key, default)
    if value not in options:
        raise ToolValidationError(f"'{key}' must be one of: {', '.join(options)}")
    return value


def _string_list(payload: Mapping[str, Any], key: str) -> list[str]:
    value = payload.get(key) or []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ToolValidationError(f"'{key}' must be a list of strings")
    return list(value)


def _millis(now: TimestampFactory) -> int:
    return int(now().timestamp() * 1000)


def create_agent_transfer_tool(
    agents: Sequence[AgentProfile],
    *,
    sessions: "SessionRegistry",
    coordinator: "HandoffCoordinator",
    synchronizer: "StateSynchronizer",
    now: TimestampFactory | None = None,
) -> Tool:
    clock = resolve_clock(now)
    by_name = {agent.name: agent for agent in agents}

    def execute(payload: Dict[str, Any], details: ToolInvocation) -> Dict[str, Any]:
        target = _require_text(payload, "target_agent")
        reason = _require_text(payload, "reason")
        context_summary = payload.get("context_summary")
        urgent = bool(payload.get("urgent", False))

        profile = by_name.get(target)
        if profile is None:
            return {"success": False, "error": f"Agent '{target}' not found"}

        current = sessions.get(details.session_id).current_agent or UNKNOWN_AGENT
        outcome = coordinator.request_handoff(
            details.session_id,
            current,
            target,
            reason,
            {"context_summary": context_summary, "urgent": urgent},
            True,
        )
        if not outcome.success:
            return {"success": False, "error": outcome.error or "Transfer failed"}

        synchronizer.sync_shared_context(
            details.session_id,
            "last_handoff",
            {
                "from": current,
                "to": target,
                "reason": reason,
                "timestamp": _millis(clock),
                "context_summary": context_summary,
            },
            target,
        )
        logger.info("agent_transfer_completed", session_id=details.session_id, source=current, target=target)
        briefing = " They have been briefed on your situation." if context_summary else ""
        return {
            "success": True,
            "message": f"Transferring you to {profile.handoff_description or target}.{briefing}",
            "new_agent": target,
            "handoff_context": context_summary,
        }

    return Tool(
        name="agent_transfer",
        description=(
            "Transfer the conversation to another specialized agent. Use this when the current agent "
            "cannot adequately handle the user's request."
        ),
        parameters=ToolParameters(
            properties={
                "target_agent": {
                    "type": "string",
                    "description": "Name of the agent to transfer to",
                    "enum": list(by_name),
                },
                "reason": {"type": "string", "description": "Brief explanation for why this transfer is needed"},
                "context_summary": {
                    "type": "string",
                    "description": "Summary of conversation context to preserve for the target agent",
                },
                "urgent": {
                    "type": "boolean",
                    "description": "Whether this transfer requires immediate attention",
                    "default": False,
                },
            },
            required=["target_agent", "reason"],
        ),
        handler=execute,
    )


def create_smart_escalation_tool(
    escalation_paths: Mapping[str, str],
    *,
    sessions: "SessionRegistry",
    synchronizer: "StateSynchronizer",
    event_log: "EventLog",
    now: TimestampFactory | None = None,
) -> Tool:
    clock = resolve_clock(now)
    paths = dict(escalation_paths)

    def execute(payload: Dict[str, Any], details: ToolInvocation) -> Dict[str, Any]:
        issue_type = _choice(payload, "issue_type", ISSUE_TYPES, "")
        description = _require_text(payload, "issue_description")
        urgency = _choice(payload, "urgency", URGENCY_LEVELS, "medium")
        sentiment = _choice(payload, "customer_sentiment", SENTIMENTS, "calm")
        attempts = payload.get("previous_attempts", 0)
        if not isinstance(attempts, (int, float)) or isinstance(attempts, bool) or attempts < 0:
            raise ToolValidationError("'previous_attempts' must be a non-negative number")

        target = paths.get(issue_type) or paths.get("general")
        if urgency == "critical" or sentiment == "angry":
            target = paths.get("supervisor") or target
        if attempts > 2:
            target = paths.get("specialist") or target

        current = sessions.get(details.session_id).current_agent or UNKNOWN_AGENT
        event_log.record(
            EventType.ESCALATION,
            current,
            {
                "session_id": details.session_id,
                "trigger": "smart_escalation",
                "issue_type": issue_type,
                "urgency": urgency,
                "customer_sentiment": sentiment,
                "previous_attempts": attempts,
                "target": target,
                "issue_description": description,
            },
        )
        metrics.increment_escalation(trigger="smart_escalation", target=target)
        synchronizer.sync_shared_context(
            details.session_id,
            "escalation_context",
            {
                "issue_type": issue_type,
                "urgency": urgency,
                "customer_sentiment": sentiment,
                "previous_attempts": attempts,
                "issue_description": description,
                "escalated_at": _millis(clock),
                "escalated_to": target,
            },
            current,
        )

        logger.info(
            "smart_escalation_selected",
            session_id=details.session_id,
            issue_type=issue_type,
            target=target,
        )

        message = f"I understand this {issue_type} issue needs specialized attention. "
        if sentiment in ("frustrated", "angry"):
            message += f"I'm connecting you with a {target} who can provide immediate assistance. "
        if attempts > 1:
            message += "Given the complexity of this issue, they'll have the expertise to resolve it. "
        message += "They'll have all the context from our conversation."

        return {
            "success": True,
            "escalation_target": target,
            "escalation_message": message,
            "issue_context": {
                "type": issue_type,
                "urgency": urgency,
                "sentiment": sentiment,
                "attempts": attempts,
                "description": description,
            },
        }

    return Tool(
        name="smart_escalation",
        description=(
            "Escalate to appropriate specialist based on issue type and context. "
            "Analyzes conversation to determine best escalation path."
        ),
        parameters=ToolParameters(
            properties={
                "issue_type": {
                    "type": "string",
                    "enum": list(ISSUE_TYPES),
                    "description": "Type of issue requiring escalation",
                },
                "urgency": {
                    "type": "string",
                    "enum": list(URGENCY_LEVELS),
                    "description": "Urgency level of the issue",
                },
                "customer_sentiment": {
                    "type": "string",
                    "enum": list(SENTIMENTS),
                    "description": "Current customer emotional state",
                },
                "previous_attempts": {
                    "type": "number",
                    "description": "Number of previous resolution attempts",
                    "minimum": 0,
                },
                "issue_description": {
                    "type": "string",
                    "description": "Brief description of the issue for escalation context",
                },
            },
            required=["issue_type", "issue_description"],
        ),
        handler=execute,
    )


def create_preserve_context_tool(
    *,
    sessions: "SessionRegistry",
    synchronizer: "StateSynchronizer",
    now: TimestampFactory | None = None,
) -> Tool:
    clock = resolve_clock(now)

    def execute(payload: Dict[str, Any], details: ToolInvocation) -> Dict[str, Any]:
        if "key_points" not in payload:
            raise ToolValidationError("'key_points' is required")
        key_points = _string_list(payload, "key_points")
        customer_info = payload.get("customer_info")
        if customer_info is not None and not isinstance(customer_info, dict):
            raise ToolValidationError("'customer_info' must be an object")

        state = sessions.get(details.session_id)
        preserving_agent = state.current_agent
        data = {
            "key_points": key_points,
            "customer_info": customer_info,
            "issue_status": _choice(payload, "issue_status", ISSUE_STATUSES, "in_progress"),
            "actions_taken": _string_list(payload, "actions_taken"),
            "next_steps": _string_list(payload, "next_steps"),
            "preserved_at": _millis(clock),
            "preserving_agent": preserving_agent,
        }
        agent_label = preserving_agent or UNKNOWN_AGENT
        synchronizer.sync_shared_context(details.session_id, "preserved_context", data, agent_label)

        history = state.handoff_history
        if history:
            synchronizer.sync_shared_context(
                details.session_id,
                f"handoff_context_{history[-1].target_agent}",
                data,
                agent_label,
            )

        logger.debug("context_preserved", session_id=details.session_id, items=len(key_points))
        return {
            "success": True,
            "preserved_items": len(key_points),
            "context_id": f"ctx_{data['preserved_at']}",
            "message": "Context has been preserved for the next agent",
        }

    return Tool(
        name="preserve_context",
        description="Save important conversation context before handoff to ensure continuity",
        parameters=ToolParameters(
            properties={
                "key_points": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Important points from the conversation to preserve",
                },
                "customer_info": {
                    "type": "object",
                    "properties": {
                        "name": {"type": "string"},
                        "account_id": {"type": "string"},
                        "phone": {"type": "string"},
                        "preferences": {"type": "object"},
                    },
                    "description": "Customer information to preserve",
                },
                "issue_status": {
                    "type": "string",
                    "enum": list(ISSUE_STATUSES),
                    "description": "Current status of the issue",
                },
                "actions_taken": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Actions already taken to resolve the issue",
                },
                "next_steps": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Recommended next steps for the receiving agent",
                },
            },
            required=["key_points"],
        ),
        handler=execute,
    )


def create_handoff_status_tool(*, sessions: "SessionRegistry") -> Tool:
    def execute(payload: Dict[str, Any], details: ToolInvocation) -> Dict[str, Any]:
        action = _choice(payload, "action", STATUS_ACTIONS, "")
        state = sessions.get(details.session_id)

        if action == "check_current":
            return {
                "current_agent": state.current_agent,
                "previous_agent": state.previous_agent,
                "session_id": state.session_id,
            }

        if action == "get_history":
            history = [record.model_dump(mode="json") for record in state.handoff_history]
            return {
                "handoff_count": len(history),
                "history": history[-5:],
                "most_recent": history[-1] if history else None,
            }

        if action == "get_context":
            return {
                "shared_context": {key: entry.value for key, entry in state.shared_context.items()},
                "preserved_context": state.get_shared_context("preserved_context"),
                "escalation_context": state.get_shared_context("escalation_context"),
            }

        target = payload.get("target_agent")
        if not isinstance(target, str) or not target:
            return {"valid": False, "error": "Target agent name required"}
        allowed = state.can_handoff_to(target)
        return {
            "valid": allowed,
            "target_agent": target,
            "reason": "Handoff allowed" if allowed else "Would create circular handoff or too many recent handoffs",
        }

    return Tool(
        name="handoff_status",
        description="Check handoff history and current agent status",
        parameters=ToolParameters(
            properties={
                "action": {
                    "type": "string",
                    "enum": list(STATUS_ACTIONS),
                    "description": "Type of handoff status check to perform",
                },
                "target_agent": {
                    "type": "string",
                    "description": "Agent name to validate (for validate_target action)",
                },
            },
            required=["action"],
        ),
        handler=execute,
    )


def create_handoff_tools(
    agents: Sequence[AgentProfile],
    *,
    sessions: "SessionRegistry",
    coordinator: "HandoffCoordinator",
    synchronizer: "StateSynchronizer",
    event_log: "EventLog",
    escalation_paths: Mapping[str, str] | None = None,
    now: TimestampFactory | None = None,
) -> list[Tool]:
    """Build the four handoff tools sharing one set of orchestration services."""
    paths = dict(EscalationSettings().escalation_paths)
    paths.update(escalation_paths or {})
    return [
        create_agent_transfer_tool(
            agents,
            sessions=sessions,
            coordinator=coordinator,
            synchronizer=synchronizer,
            now=now,
        ),
        create_smart_escalation_tool(
            paths,
            sessions=sessions,
            synchronizer=synchronizer,
            event_log=event_log,
            now=now,
        ),
        create_preserve_context_tool(sessions=sessions, synchronizer=synchronizer, now=now),
        create_handoff_status_tool(sessions=sessions),
    ]
