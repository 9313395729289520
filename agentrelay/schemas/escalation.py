from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable

from pydantic import BaseModel

if TYPE_CHECKING:
    from .context import ConversationContext


class EscalationAction(str, Enum):
    ESCALATE = "escalate"
    HANDOFF = "handoff"
    REDIRECT = "redirect"


@dataclass(frozen=True, slots=True)
class EscalationRule:
    """Ordered escalation rule; ``condition`` receives a read-only context snapshot."""

    trigger: str
    condition: Callable[["ConversationContext"], bool]
    action: EscalationAction
    target: str | None = None
    message: str | None = None


class EscalationDecision(BaseModel):
    escalated: bool
    action: EscalationAction | None = None
    target: str | None = None
    trigger: str | None = None
    message: str | None = None
