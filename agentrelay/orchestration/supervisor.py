from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Literal

from ..core.config import BackendSettings
from ..core.logging import get_logger
from ..schemas.context import ContextMetadata, ConversationContext
from ..schemas.escalation import EscalationAction, EscalationDecision
from ..schemas.events import EventType
from ..services.backend import ReasoningBackend
from ..tools.registry import ToolRegistry
from .context import ContextStore
from .escalation import EscalationEngine
from .events import EventLog
from .tool_loop import GENERIC_FAILURE, ToolResolutionLoop

logger = get_logger(name=__name__)

Complexity = Literal["simple", "moderate", "complex"]
Sentiment = Literal["positive", "neutral", "frustrated", "angry"]

SUPERVISOR_INSTRUCTIONS = """You are an expert customer service supervisor agent. Provide accurate, helpful responses using the available tools and decide when a conversation needs escalation or a handoff.

# Routing Rules
- Simple greetings and chitchat: handle directly
- Account-specific queries: use tools first, then respond
- Policy questions: look up documents before responding
- Complex technical issues: escalate after an initial assessment
- Billing disputes: require human intervention after fact-gathering
- Multiple failed attempts or frustrated customers: escalate to a human

# Response Quality
- Cite sources when using retrieved information
- Keep a professional but empathetic tone
- Offer next steps or alternatives and acknowledge limitations"""


@dataclass(slots=True)
class SupervisorReply:
    text: str | None = None
    error: str | None = None
    escalation_required: bool = False
    escalation_target: str | None = None
    metadata: ContextMetadata | None = None

    @property
    def success(self) -> bool:
        return self.error is None


def escalation_reply(decision: EscalationDecision) -> str:
    if decision.action is EscalationAction.ESCALATE:
        target = decision.target or "a specialist"
        return f"I understand this requires specialized assistance. Let me connect you with {target} who can better help you."
    return "Let me transfer you to someone who can better assist with this request."


class Supervisor:
    """Answers a turn either by escalating or by resolving it through the backend and tool loop."""

    def __init__(
        self,
        *,
        contexts: ContextStore,
        escalation: EscalationEngine,
        loop: ToolResolutionLoop,
        backend: ReasoningBackend,
        tools: ToolRegistry,
        event_log: EventLog,
        settings: BackendSettings | None = None,
        instructions: str = SUPERVISOR_INSTRUCTIONS,
    ) -> None:
        self._contexts = contexts
        self._escalation = escalation
        self._loop = loop
        self._backend = backend
        self._tools = tools
        self._event_log = event_log
        self._settings = settings or BackendSettings()
        self._instructions = instructions

    async def respond(
        self,
        session_id: str,
        message: str,
        *,
        complexity: Complexity = "moderate",
        sentiment: Sentiment = "neutral",
        agent_name: str = "supervisor",
    ) -> SupervisorReply:
        self._contexts.add_message(session_id, {"role": "user", "content": message})
        context = self._contexts.update(
            session_id,
            {"metadata": {"complexity": complexity, "sentiment": sentiment}},
            snapshot=False,
        )

        decision = self._escalation.handle_escalation(message, context, agent_name)
        if decision.escalated:
            return SupervisorReply(
                text=escalation_reply(decision),
                escalation_required=True,
                escalation_target=decision.target,
            )

        body = self.build_request(context, message, complexity=complexity, sentiment=sentiment)
        self._event_log.record(EventType.AGENT_START, agent_name, {"session_id": session_id})
        try:
            response = await self._backend(body)
        except Exception as exc:
            logger.warning("supervisor_backend_failed", session_id=session_id, error=str(exc))
            self._event_log.record(
                EventType.ERROR,
                agent_name,
                {"session_id": session_id, "operation": "supervisor"},
                error=str(exc),
            )
            self._contexts.increment_counter(session_id, "api_errors")
            return SupervisorReply(error=GENERIC_FAILURE)

        outcome = await self._loop.run(body, response, session_id=session_id, agent_name=agent_name)
        if not outcome.success:
            self._contexts.increment_counter(session_id, "failed_attempts")
            self._event_log.record(
                EventType.AGENT_END,
                agent_name,
                {"session_id": session_id, "success": False, "reason": outcome.error},
            )
            return SupervisorReply(error=GENERIC_FAILURE)

        self._contexts.add_message(
            session_id,
            {"role": "assistant", "content": outcome.text or "", "agent": agent_name},
        )
        self._event_log.record(
            EventType.AGENT_END,
            agent_name,
            {"session_id": session_id, "success": True, "round_trips": outcome.round_trips},
        )
        final = self._contexts.get_or_create(session_id)
        return SupervisorReply(text=outcome.text, metadata=final.metadata)

    def build_request(
        self,
        context: ConversationContext,
        message: str,
        *,
        complexity: str,
        sentiment: str,
    ) -> dict[str, Any]:
        history = [entry.model_dump(mode="json") for entry in context.conversation_history]
        system = (
            f"{self._instructions}\n\n"
            "# Current Context\n"
            f"- Conversation Complexity: {complexity}\n"
            f"- User Sentiment: {sentiment}\n"
            f"- Message Count: {len(history)}\n"
            f"- Session ID: {context.session_id}\n\n"
            "# Instructions\n"
            "Based on the context above, provide an appropriate response that matches the complexity level and user sentiment."
        )
        user = (
            "==== Conversation History ====\n"
            f"{json.dumps(history, indent=2)}\n\n"
            "==== Current Request Context ====\n"
            f"{message}\n\n"
            "Please provide a helpful response using available tools if needed."
        )
        return {
            "model": self._settings.model,
            "input": [
                {"type": "message", "role": "system", "content": system},
                {"type": "message", "role": "user", "content": user},
            ],
            "tools": self._tools.request_schemas(),
        }
