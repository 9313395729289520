from __future__ import annotations

import pytest

from agentrelay.core.config import ContextSettings, Settings
from agentrelay.core.errors import ConfigurationError
from agentrelay.orchestration.system import CONFIGURATION_VERSION, OrchestrationSystem
from agentrelay.schemas.events import EventType
from agentrelay.schemas.scenario import AgentProfile, Scenario
from agentrelay.services.backend import HttpReasoningBackend
from tests.helpers.stubs import MutableClock, StubBackend, answer_response


def _system(backend=None, clock=None, **settings) -> OrchestrationSystem:
    return OrchestrationSystem(
        Settings(**settings),
        backend=backend or StubBackend([answer_response("Hello from the supervisor")]),
        now=clock or MutableClock(),
    )


def test_default_scenarios_are_registered_and_valid():
    system = _system()

    assert set(system.scenarios()) == {"chat_supervisor", "customer_service_retail", "simple_handoff", "test"}
    for scenario in system.scenarios().values():
        valid, errors = system.validate_scenario(scenario)
        assert valid, errors
    assert [scenario.name for scenario in system.scenarios_by_pattern("multi-agent")] == ["Customer Service Retail"]
    assert system.get_scenario("missing") is None


def test_create_session_seeds_entry_agent_and_shared_context():
    system = _system()

    bootstrap = system.create_session("customer_service_retail", "s1", user_id="u1")

    assert bootstrap.state.current_agent == "authentication"
    assert bootstrap.state.handoff_history == []
    assert bootstrap.context.user_id == "u1"
    assert bootstrap.context.current_agent == "authentication"
    assert bootstrap.context.metadata.handoff_count == 0
    assert system.contexts.get_shared_variable("s1", "scenario") == "customer_service_retail"
    assert system.sessions.get("s1").get_shared_context("company") == "Snowy Peak Boards"
    start = system.event_log.query_by_type(EventType.AGENT_START)[0]
    assert start.agent_name == "authentication"
    assert start.data == {"session_id": "s1", "scenario": "customer_service_retail"}


def test_create_session_rejects_unknown_scenario():
    with pytest.raises(ConfigurationError):
        _system().create_session("nope", "s1")


def test_handoffs_between_scenario_agents():
    system = _system()
    system.create_session("simple_handoff", "s1")

    forward = system.handle_agent_handoff("s1", "greeter", "poet", "wants a haiku")
    back = system.handle_agent_handoff("s1", "poet", "greeter")
    unknown = system.handle_agent_handoff("s1", "poet", "wizard")

    assert forward.success is True
    assert forward.record.trigger == "wants a haiku"
    assert back.error_kind == "circular_handoff"
    assert unknown.error_kind == "configuration_error"
    completed = [event for event in system.event_log.query_by_type(EventType.HANDOFF_COMPLETED) if event.agent_name == "poet"]
    assert len(completed) == 1
    assert system.contexts.get("s1").metadata.handoff_count == 1


@pytest.mark.asyncio
async def test_respond_runs_supervisor_turn():
    backend = StubBackend([answer_response("Hello from the supervisor")])
    system = _system(backend)
    system.create_session("chat_supervisor", "s1")

    reply = await system.respond("s1", "hi")

    assert reply.text == "Hello from the supervisor"
    assert backend.calls == 1
    tool_names = {tool["name"] for tool in backend.bodies[0]["tools"]}
    assert tool_names == {"agent_transfer", "smart_escalation", "preserve_context", "handoff_status"}


def test_session_analytics_includes_event_summary():
    system = _system()
    system.create_session("simple_handoff", "s1")
    system.handle_agent_handoff("s1", "greeter", "poet")

    analytics = system.session_analytics("s1")

    assert analytics["session"]["handoff_count"] == 1
    assert analytics["session"]["current_agent"] == "poet"
    assert analytics["events"]["total"] == 3
    assert analytics["events"]["by_type"] == {"agent-start": 1, "handoff-requested": 1, "handoff-completed": 1}
    assert analytics["events"]["recent"][-1]["type"] == "handoff-completed"


def test_system_health_status_follows_error_rate():
    system = _system()
    assert system.system_health()["status"] == "healthy"

    for _ in range(7):
        system.event_log.record(EventType.AGENT_START, "a")
    system.event_log.record(EventType.ERROR, "a", error="boom")
    assert system.system_health()["status"] == "degraded"

    system.event_log.record(EventType.ERROR, "a", error="boom")
    system.event_log.record(EventType.ERROR, "a", error="boom")
    health = system.system_health()
    assert health["status"] == "unhealthy"
    assert health["performance"]["error_rate"] == pytest.approx(0.3)
    assert health["scenarios"]["total"] == 4
    assert health["scenarios"]["by_pattern"]["simple"] == 1


def test_system_health_runs_expiry_sweep():
    clock = MutableClock()
    system = _system(clock=clock, context=ContextSettings(expiry_seconds=60))
    system.create_session("test", "s1")
    clock.advance(seconds=30)
    system.create_session("test", "s2")

    clock.advance(seconds=31)
    health = system.system_health()

    assert health["last_cleanup"] == 1
    assert health["performance"]["active_contexts"] == 1
    assert system.sessions.peek("s1") is None
    assert system.sessions.peek("s2").current_agent is not None


def test_validate_scenario_reports_problems():
    system = _system()
    scenario = Scenario(
        name="",
        description="broken",
        default_agent="ghost",
        agents=[
            AgentProfile(name="bad name!", instructions="short", tools=["teleport"], handoffs=["nobody"]),
        ],
    )

    valid, errors = system.validate_scenario(scenario)

    assert valid is False
    assert "Scenario name is required" in errors
    assert "Default agent 'ghost' is not part of the scenario" in errors
    agent_error = next(error for error in errors if error.startswith("Agent 1"))
    assert "Invalid agent name" in agent_error
    assert "Invalid instructions" in agent_error
    assert "Unknown tools: teleport" in agent_error
    assert "Unknown handoff targets: nobody" in agent_error


def test_validate_scenario_requires_agents():
    valid, errors = _system().validate_scenario(Scenario(name="Empty", description="No agents"))

    assert valid is False
    assert errors == ["Scenario must have at least one agent"]


def test_export_configuration_summarizes_scenarios():
    exported = _system().export_configuration()

    assert exported["version"] == CONFIGURATION_VERSION
    assert exported["scenarios"]["simple_handoff"]["default_agent"] == "greeter"
    assert exported["system_health"]["status"] == "healthy"
    assert "agent_transfer" in exported["tools"]


def test_reset_drops_sessions_but_keeps_backend():
    backend = StubBackend([answer_response("ok")])
    system = _system(backend)
    system.create_session("simple_handoff", "s1")

    system.reset()

    assert system.backend is backend
    assert len(system.event_log) == 0
    assert system.contexts.get("s1") is None
    assert system.sessions.peek("s1") is None


@pytest.mark.asyncio
async def test_aclose_closes_owned_http_backend():
    system = OrchestrationSystem(Settings())
    assert isinstance(system.backend, HttpReasoningBackend)

    await system.aclose()

    assert system.backend._client.is_closed is True
