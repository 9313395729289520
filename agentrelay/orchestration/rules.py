"""Default escalation rules and the keyword routing classifier for customer support sessions."""

from __future__ import annotations

import re
from typing import Iterable, Literal

from ..schemas.context import ConversationContext
from ..schemas.escalation import EscalationAction, EscalationRule

RouteTarget = Literal["chat", "supervisor"]

BILLING_KEYWORDS: tuple[str, ...] = ("refund", "charge", "overcharged", "dispute", "incorrect bill")
FRUSTRATION_KEYWORDS: tuple[str, ...] = ("frustrated", "angry", "ridiculous", "terrible", "awful", "horrible")

_SIMPLE_PATTERNS = (
    re.compile(r"^(hi|hello|hey|good morning|good afternoon)$"),
    re.compile(r"^(thank you|thanks|ok|okay|great)$"),
    re.compile(r"^(yes|no|sure|absolutely)$"),
)

_COMPLEX_PATTERNS = (
    re.compile(r"billing|payment|charge|invoice"),
    re.compile(r"policy|procedure|rule|regulation"),
    re.compile(r"technical|error|broken|not working"),
    re.compile(r"escalate|supervisor|manager|human"),
    re.compile(r"account|profile|information|details"),
    re.compile(r"cancel|disconnect|terminate|close"),
)

LONG_CONVERSATION_MESSAGES = 6


def _recent_mentions(context: ConversationContext, keywords: Iterable[str], *, window: int) -> bool:
    recent = context.conversation_history[-window:]
    lowered = [message.content.lower() for message in recent if message.content]
    return any(keyword in text for text in lowered for keyword in keywords)


def _billing_dispute(context: ConversationContext) -> bool:
    return _recent_mentions(context, BILLING_KEYWORDS, window=3)


def _technical_complexity(context: ConversationContext) -> bool:
    metadata = context.metadata
    if metadata.failed_tool_calls > 2:
        return True
    return len(context.conversation_history) > 10 and not metadata.issue_resolved


def _customer_frustration(context: ConversationContext) -> bool:
    return _recent_mentions(context, FRUSTRATION_KEYWORDS, window=2)


def _repeated_requests(context: ConversationContext) -> bool:
    return context.metadata.handoff_count > 2


DEFAULT_ESCALATION_RULES: tuple[EscalationRule, ...] = (
    EscalationRule(
        trigger="billing_dispute",
        condition=_billing_dispute,
        action=EscalationAction.ESCALATE,
        target="human_billing_specialist",
        message="Let me connect you with a billing specialist who can help resolve this issue.",
    ),
    EscalationRule(
        trigger="technical_complexity",
        condition=_technical_complexity,
        action=EscalationAction.ESCALATE,
        target="technical_support",
        message="This seems like a technical issue that would be better handled by our technical support team.",
    ),
    EscalationRule(
        trigger="customer_frustration",
        condition=_customer_frustration,
        action=EscalationAction.ESCALATE,
        target="supervisor_human",
        message="I understand your frustration. Let me connect you with a supervisor who can help.",
    ),
    EscalationRule(
        trigger="repeated_requests",
        condition=_repeated_requests,
        action=EscalationAction.ESCALATE,
        target="human_agent",
        message="Let me connect you with a human agent who can provide more personalized assistance.",
    ),
)


def route_message(message: str, context: ConversationContext) -> RouteTarget:
    """Classify a user message as chat-level small talk or supervisor work."""
    text = message.lower()
    if any(pattern.match(text) for pattern in _SIMPLE_PATTERNS):
        return "chat"
    if any(pattern.search(text) for pattern in _COMPLEX_PATTERNS):
        return "supervisor"
    if len(context.conversation_history) > LONG_CONVERSATION_MESSAGES:
        return "supervisor"
    if context.metadata.failed_attempts > 1:
        return "supervisor"
    return "chat"
