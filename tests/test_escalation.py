from __future__ import annotations

import pytest
from prometheus_client import REGISTRY

from agentrelay.core.config import EscalationSettings
from agentrelay.orchestration.escalation import SUPERVISOR_TARGET, SUPERVISOR_TRIGGER, EscalationEngine
from agentrelay.orchestration.events import EventLog
from agentrelay.orchestration.rules import DEFAULT_ESCALATION_RULES, route_message
from agentrelay.schemas.context import ContextMetadata, ConversationContext, Message
from agentrelay.schemas.escalation import EscalationAction, EscalationRule
from agentrelay.schemas.events import EventType
from tests.helpers.stubs import EPOCH


def _context(*messages: str, **metadata) -> ConversationContext:
    return ConversationContext(
        session_id="s1",
        conversation_history=[Message(role="user", content=text) for text in messages],
        metadata=ContextMetadata(created_at=EPOCH, last_activity=EPOCH, **metadata),
    )


def _rule(trigger: str, condition, target: str = "human") -> EscalationRule:
    return EscalationRule(trigger=trigger, condition=condition, action=EscalationAction.ESCALATE, target=target)


def test_first_matching_rule_wins():
    rules = [
        _rule("never", lambda context: False),
        _rule("first", lambda context: True, target="first_target"),
        _rule("second", lambda context: True, target="second_target"),
    ]
    engine = EscalationEngine(EventLog(), rules=rules)

    matched = engine.check_escalation_rules(_context("hello"))

    assert matched is not None
    assert matched.trigger == "first"


def test_failing_rule_is_skipped():
    def explode(context):
        raise RuntimeError("bad rule")

    engine = EscalationEngine(EventLog(), rules=[_rule("broken", explode), _rule("ok", lambda context: True)])

    assert engine.check_escalation_rules(_context()).trigger == "ok"


def test_rule_cannot_mutate_live_context():
    def mutate(context):
        context.conversation_history.clear()
        context.metadata.handoff_count = 99
        return False

    context = _context("hello")
    engine = EscalationEngine(EventLog(), rules=[_rule("mutating", mutate)])

    engine.check_escalation_rules(context)

    assert len(context.conversation_history) == 1
    assert context.metadata.handoff_count == 0


def test_default_rules_are_ordered_by_priority():
    assert [rule.trigger for rule in DEFAULT_ESCALATION_RULES] == [
        "billing_dispute",
        "technical_complexity",
        "customer_frustration",
        "repeated_requests",
    ]


@pytest.mark.parametrize(
    ("context", "trigger"),
    [
        (_context("I was overcharged last month"), "billing_dispute"),
        (_context("hi", failed_tool_calls=3), "technical_complexity"),
        (_context(*["still here"] * 11), "technical_complexity"),
        (_context("this is ridiculous"), "customer_frustration"),
        (_context("hello", handoff_count=3), "repeated_requests"),
    ],
)
def test_default_rules_match_expected_trigger(context, trigger):
    engine = EscalationEngine(EventLog(), rules=DEFAULT_ESCALATION_RULES)

    assert engine.check_escalation_rules(context).trigger == trigger


def test_billing_rule_only_inspects_last_three_messages():
    context = _context("I want a refund", "ok", "thanks", "anything else?")
    engine = EscalationEngine(EventLog(), rules=DEFAULT_ESCALATION_RULES)

    assert engine.check_escalation_rules(context) is None


def test_route_message_classification():
    assert route_message("Hello", _context()) == "chat"
    assert route_message("hello there friend", _context()) == "chat"
    assert route_message("My invoice looks wrong", _context()) == "supervisor"
    assert route_message("what's up", _context(*["x"] * 7)) == "supervisor"
    assert route_message("what's up", _context(failed_attempts=2)) == "supervisor"


def test_supervisor_fallback_uses_router_when_configured():
    engine = EscalationEngine(EventLog(), router=lambda message, context: "supervisor")

    assert engine.should_escalate_to_supervisor("hi", _context()) is True


def test_supervisor_fallback_uses_trigger_words_without_router():
    engine = EscalationEngine(EventLog(), settings=EscalationSettings(trigger_words=("manager",)))

    assert engine.should_escalate_to_supervisor("Let me talk to your MANAGER", _context()) is True
    assert engine.should_escalate_to_supervisor("hello", _context()) is False


def test_handle_escalation_records_rule_event():
    log = EventLog()
    engine = EscalationEngine(log, rules=DEFAULT_ESCALATION_RULES, router=route_message)
    labels = {"trigger": "billing_dispute", "target": "human_billing_specialist"}
    before = REGISTRY.get_sample_value("agentrelay_escalations_total", labels) or 0.0

    decision = engine.handle_escalation("refund please", _context("refund please"), "chat_agent")

    assert decision.escalated is True
    assert decision.target == "human_billing_specialist"
    assert decision.action is EscalationAction.ESCALATE
    assert decision.message.startswith("Let me connect you with a billing specialist")
    events = log.query_by_type(EventType.ESCALATION)
    assert len(events) == 1
    assert events[0].agent_name == "chat_agent"
    assert events[0].data["trigger"] == "billing_dispute"
    assert events[0].data["session_id"] == "s1"
    after = REGISTRY.get_sample_value("agentrelay_escalations_total", labels)
    assert after == pytest.approx(before + 1.0)


def test_handle_escalation_falls_back_to_supervisor():
    log = EventLog()
    engine = EscalationEngine(log, rules=DEFAULT_ESCALATION_RULES, router=route_message)

    decision = engine.handle_escalation("Can I cancel my plan?", _context("Can I cancel my plan?"), "chat_agent")

    assert decision.escalated is True
    assert decision.target == SUPERVISOR_TARGET
    assert decision.trigger == SUPERVISOR_TRIGGER
    assert log.latest().data["trigger"] == SUPERVISOR_TRIGGER


def test_handle_escalation_without_match_records_nothing():
    log = EventLog()
    engine = EscalationEngine(log, rules=DEFAULT_ESCALATION_RULES, router=route_message)

    decision = engine.handle_escalation("hi", _context("hi"), "chat_agent")

    assert decision.escalated is False
    assert len(log) == 0


def test_disabled_engine_never_escalates():
    log = EventLog()
    engine = EscalationEngine(
        log,
        rules=[_rule("always", lambda context: True)],
        settings=EscalationSettings(enabled=False),
    )

    assert engine.handle_escalation("escalate!", _context(), "chat_agent").escalated is False
    assert len(log) == 0
