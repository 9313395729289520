from __future__ import annotations

from typing import Callable, Sequence

from ..core import metrics
from ..core.config import EscalationSettings
from ..core.logging import get_logger
from ..schemas.context import ConversationContext
from ..schemas.escalation import EscalationAction, EscalationDecision, EscalationRule
from ..schemas.events import EventType
from .events import EventLog

logger = get_logger(name=__name__)

RoutingClassifier = Callable[[str, ConversationContext], str]

SUPERVISOR_TARGET = "supervisor"
SUPERVISOR_TRIGGER = "supervisor_escalation"


class EscalationEngine:
    """Evaluates escalation rules and the supervisor fallback for a conversation.

    The engine only decides. It records every positive decision in the event
    log but never changes session state; acting on the returned target is up
    to the caller.
    """

    def __init__(
        self,
        event_log: EventLog,
        *,
        rules: Sequence[EscalationRule] = (),
        router: RoutingClassifier | None = None,
        settings: EscalationSettings | None = None,
    ) -> None:
        self._event_log = event_log
        self._rules: tuple[EscalationRule, ...] = tuple(rules)
        self._router = router
        self._settings = settings or EscalationSettings()

    @property
    def rules(self) -> tuple[EscalationRule, ...]:
        return self._rules

    def check_escalation_rules(self, context: ConversationContext) -> EscalationRule | None:
        for rule in self._rules:
            snapshot = context.model_copy(deep=True)
            try:
                matched = bool(rule.condition(snapshot))
            except Exception as exc:
                logger.warning("escalation_rule_failed", trigger=rule.trigger, error=str(exc))
                continue
            if matched:
                return rule
        return None

    def should_escalate_to_supervisor(self, message: str, context: ConversationContext) -> bool:
        if self._router is not None:
            return self._router(message, context.model_copy(deep=True)) == SUPERVISOR_TARGET
        text = message.lower()
        return any(word.lower() in text for word in self._settings.trigger_words)

    def handle_escalation(
        self,
        message: str,
        context: ConversationContext,
        agent_name: str,
    ) -> EscalationDecision:
        if not self._settings.enabled:
            return EscalationDecision(escalated=False)

        rule = self.check_escalation_rules(context)
        if rule is not None:
            self._event_log.record(
                EventType.ESCALATION,
                agent_name,
                {
                    "session_id": context.session_id,
                    "trigger": rule.trigger,
                    "action": rule.action.value,
                    "target": rule.target,
                },
            )
            metrics.increment_escalation(trigger=rule.trigger, target=rule.target)
            logger.info(
                "escalation_rule_matched",
                session_id=context.session_id,
                trigger=rule.trigger,
                target=rule.target,
            )
            return EscalationDecision(
                escalated=True,
                action=rule.action,
                target=rule.target,
                trigger=rule.trigger,
                message=rule.message,
            )

        if self.should_escalate_to_supervisor(message, context):
            self._event_log.record(
                EventType.ESCALATION,
                agent_name,
                {
                    "session_id": context.session_id,
                    "trigger": SUPERVISOR_TRIGGER,
                    "action": EscalationAction.ESCALATE.value,
                    "target": SUPERVISOR_TARGET,
                    "message": message,
                },
            )
            metrics.increment_escalation(trigger=SUPERVISOR_TRIGGER, target=SUPERVISOR_TARGET)
            logger.info("escalation_to_supervisor", session_id=context.session_id, agent=agent_name)
            return EscalationDecision(
                escalated=True,
                action=EscalationAction.ESCALATE,
                target=SUPERVISOR_TARGET,
                trigger=SUPERVISOR_TRIGGER,
            )

        return EscalationDecision(escalated=False)
