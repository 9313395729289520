from __future__ import annotations

import json

import pytest
from prometheus_client import REGISTRY

from agentrelay.orchestration.context import ContextStore
from agentrelay.orchestration.events import EventLog
from agentrelay.orchestration.handoff import HandoffCoordinator
from agentrelay.orchestration.session import SessionRegistry
from agentrelay.orchestration.synchronizer import StateSynchronizer
from agentrelay.schemas.events import EventType
from agentrelay.schemas.scenario import AgentProfile
from agentrelay.tools.base import Tool, ToolErr, ToolInvocation, ToolOk, ToolParameters, invoke_tool, json_safe
from agentrelay.tools.exceptions import ToolNotFoundError, ToolValidationError
from agentrelay.tools.handoff_tools import create_handoff_tools
from agentrelay.tools.registry import ToolRegistry, normalize_tool_name
from tests.helpers.stubs import EPOCH, MutableClock, make_tool

DETAILS = ToolInvocation(session_id="s1", agent_name="greeter", call_id="call_1")


def test_normalize_tool_name_collapses_separators():
    assert normalize_tool_name("  Search/Web  ") == "search.web"
    assert normalize_tool_name("finance\\\\lookup..quote") == "finance.lookup.quote"


def test_registry_register_get_and_aliases():
    registry = ToolRegistry()
    tool = make_tool("Agent_Transfer")

    registry.register(tool, aliases=["transfer"])

    assert registry.get("agent_transfer") is tool
    assert registry.get("TRANSFER") is tool
    assert "transfer" in registry
    assert registry.list() == ["Agent_Transfer"]
    assert registry.aliases() == {"transfer": "Agent_Transfer"}
    assert len(registry) == 1


def test_registry_alias_for_unknown_tool_raises():
    with pytest.raises(ToolNotFoundError):
        ToolRegistry().register_alias("x", "missing")


def test_registry_unregister_drops_aliases_and_clear_empties():
    registry = ToolRegistry([make_tool("lookup"), make_tool("ping")])
    registry.register_alias("find", "lookup")

    registry.unregister("find")

    assert registry.get("lookup") is None
    assert registry.aliases() == {}
    with pytest.raises(ToolNotFoundError):
        registry.require("lookup")
    registry.clear()
    assert len(registry) == 0


def test_request_schemas_describe_each_tool():
    registry = ToolRegistry([make_tool("lookup", properties={"q": {"type": "string"}}, required=["q"])])

    schema = registry.request_schemas()[0]

    assert schema["type"] == "function"
    assert schema["name"] == "lookup"
    assert schema["parameters"] == {
        "type": "object",
        "properties": {"q": {"type": "string"}},
        "required": ["q"],
        "additionalProperties": False,
    }


def test_tool_parameters_require_declared_properties():
    with pytest.raises(ValueError):
        ToolParameters(properties={}, required=["missing"])


def test_tool_parameters_reject_additional_properties():
    with pytest.raises(ValueError):
        ToolParameters.model_validate({"type": "object", "additionalProperties": True})


def test_tool_definition_is_validated():
    with pytest.raises(ToolValidationError):
        Tool(name="", description="x", parameters=ToolParameters(), handler=lambda payload, details: None)
    with pytest.raises(ToolValidationError):
        Tool(name="x", description="", parameters=ToolParameters(), handler=lambda payload, details: None)
    with pytest.raises(ToolValidationError):
        Tool(name="x", description="d", parameters={"type": "array"}, handler=lambda payload, details: None)

    tool = Tool(name="x", description="d", parameters={"properties": {}}, handler=lambda payload, details: None)
    assert isinstance(tool.parameters, ToolParameters)


@pytest.mark.asyncio
async def test_invoke_tool_wraps_success_and_records_metric():
    labels = {"tool": "lookup", "outcome": "success"}
    before = REGISTRY.get_sample_value("agentrelay_tool_invocations_total", labels) or 0.0

    result = await invoke_tool(make_tool("lookup"), '{"q": "boards"}', DETAILS)

    assert isinstance(result, ToolOk)
    assert result.ok is True
    assert result.value["input"] == {"q": "boards"}
    after = REGISTRY.get_sample_value("agentrelay_tool_invocations_total", labels)
    assert after == pytest.approx(before + 1.0)


@pytest.mark.asyncio
async def test_invoke_tool_folds_failures_into_tool_err():
    def explode(payload, details):
        raise ValueError("bad input")

    def reject(payload, details):
        raise ToolValidationError("'q' is required")

    failed = await invoke_tool(make_tool("explode", explode), {}, DETAILS)
    rejected = await invoke_tool(make_tool("reject", reject), None, DETAILS)
    not_an_object = await invoke_tool(make_tool("lookup"), "[1, 2]", DETAILS)

    assert failed == ToolErr(kind="tool_execution_error", message="bad input")
    assert rejected == ToolErr(kind="validation_error", message="'q' is required")
    assert not_an_object.kind == "validation_error"
    assert json.loads(failed.to_output()) == {"error": "bad input"}


def test_json_safe_handles_models_and_sets():
    assert json_safe({"when": EPOCH, "tags": {"b", "a"}}) == {"when": str(EPOCH), "tags": ["a", "b"]}
    assert json_safe(AgentProfile(name="greeter"))["name"] == "greeter"


AGENTS = [
    AgentProfile(name="greeter", instructions="Greet the user warmly.", handoff_description="Greeting agent"),
    AgentProfile(name="poet", instructions="Write haikus on request.", handoff_description="Poetry agent"),
]


def _tools():
    clock = MutableClock()
    sessions = SessionRegistry(now=clock)
    contexts = ContextStore(now=clock)
    synchronizer = StateSynchronizer(sessions, contexts, now=clock)
    log = EventLog(now=clock)
    coordinator = HandoffCoordinator(sessions, log, synchronizer=synchronizer, agents=[agent.name for agent in AGENTS])
    registry = ToolRegistry(
        create_handoff_tools(
            AGENTS,
            sessions=sessions,
            coordinator=coordinator,
            synchronizer=synchronizer,
            event_log=log,
            escalation_paths={"billing": "billing_team"},
            now=clock,
        )
    )
    return registry, sessions, contexts, log


def test_handoff_tool_set_is_registered():
    registry, _, _, _ = _tools()

    assert registry.list() == ["agent_transfer", "handoff_status", "preserve_context", "smart_escalation"]


@pytest.mark.asyncio
async def test_agent_transfer_moves_session_and_records_last_handoff():
    registry, sessions, contexts, _ = _tools()
    sessions.get("s1").set_current_agent("greeter")

    result = await invoke_tool(
        registry.require("agent_transfer"),
        {"target_agent": "poet", "reason": "wants a haiku", "context_summary": "likes autumn"},
        DETAILS,
    )

    assert result.value["success"] is True
    assert result.value["new_agent"] == "poet"
    assert result.value["message"] == "Transferring you to Poetry agent. They have been briefed on your situation."
    assert sessions.get("s1").current_agent == "poet"
    last = contexts.get_shared_variable("s1", "last_handoff")
    assert last["from"] == "greeter"
    assert last["reason"] == "wants a haiku"


@pytest.mark.asyncio
async def test_agent_transfer_reports_unknown_and_illegal_targets():
    registry, sessions, _, _ = _tools()
    sessions.get("s1").set_current_agent("greeter")
    transfer = registry.require("agent_transfer")

    unknown = await invoke_tool(transfer, {"target_agent": "wizard", "reason": "magic"}, DETAILS)
    await invoke_tool(transfer, {"target_agent": "poet", "reason": "haiku"}, DETAILS)
    bounce = await invoke_tool(transfer, {"target_agent": "greeter", "reason": "back"}, DETAILS)
    missing_reason = await invoke_tool(transfer, {"target_agent": "poet"}, DETAILS)

    assert unknown.value == {"success": False, "error": "Agent 'wizard' not found"}
    assert bounce.value["success"] is False
    assert "circular" in bounce.value["error"]
    assert isinstance(missing_reason, ToolErr)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("arguments", "target"),
    [
        ({"issue_type": "billing", "issue_description": "double charge"}, "billing_team"),
        ({"issue_type": "technical", "issue_description": "no signal"}, "technical_support"),
        ({"issue_type": "technical", "issue_description": "down", "urgency": "critical"}, "human_supervisor"),
        ({"issue_type": "account", "issue_description": "locked", "customer_sentiment": "angry"}, "human_supervisor"),
        ({"issue_type": "billing", "issue_description": "again", "previous_attempts": 3}, "expert_agent"),
    ],
)
async def test_smart_escalation_selects_path(arguments, target):
    registry, sessions, _, log = _tools()
    sessions.get("s1").set_current_agent("greeter")

    result = await invoke_tool(registry.require("smart_escalation"), arguments, DETAILS)

    assert result.value["escalation_target"] == target
    event = log.query_by_type(EventType.ESCALATION)[0]
    assert event.data["trigger"] == "smart_escalation"
    assert event.agent_name == "greeter"
    assert sessions.get("s1").get_shared_context("escalation_context")["escalated_to"] == target


@pytest.mark.asyncio
async def test_smart_escalation_rejects_unknown_issue_type():
    registry, _, _, log = _tools()

    result = await invoke_tool(
        registry.require("smart_escalation"),
        {"issue_type": "weather", "issue_description": "rain"},
        DETAILS,
    )

    assert isinstance(result, ToolErr)
    assert result.kind == "validation_error"
    assert len(log) == 0


@pytest.mark.asyncio
async def test_preserve_context_stores_for_next_agent():
    registry, sessions, _, _ = _tools()
    sessions.get("s1").set_current_agent("greeter")
    await invoke_tool(registry.require("agent_transfer"), {"target_agent": "poet", "reason": "haiku"}, DETAILS)

    result = await invoke_tool(
        registry.require("preserve_context"),
        {"key_points": ["likes autumn", "prefers short poems"], "customer_info": {"name": "Ada"}},
        DETAILS,
    )

    assert result.value["preserved_items"] == 2
    assert result.value["context_id"] == f"ctx_{int(EPOCH.timestamp() * 1000)}"
    state = sessions.get("s1")
    assert state.get_shared_context("preserved_context")["preserving_agent"] == "poet"
    assert state.get_shared_context("handoff_context_poet")["key_points"] == ["likes autumn", "prefers short poems"]


@pytest.mark.asyncio
async def test_preserve_context_requires_key_points():
    registry, _, _, _ = _tools()

    result = await invoke_tool(registry.require("preserve_context"), {}, DETAILS)

    assert isinstance(result, ToolErr)


@pytest.mark.asyncio
async def test_handoff_status_actions():
    registry, sessions, _, _ = _tools()
    sessions.get("s1").set_current_agent("greeter")
    status = registry.require("handoff_status")
    await invoke_tool(registry.require("agent_transfer"), {"target_agent": "poet", "reason": "haiku"}, DETAILS)

    current = await invoke_tool(status, {"action": "check_current"}, DETAILS)
    history = await invoke_tool(status, {"action": "get_history"}, DETAILS)
    context = await invoke_tool(status, {"action": "get_context"}, DETAILS)
    bounce = await invoke_tool(status, {"action": "validate_target", "target_agent": "greeter"}, DETAILS)
    missing = await invoke_tool(status, {"action": "validate_target"}, DETAILS)
    invalid = await invoke_tool(status, {"action": "dance"}, DETAILS)

    assert current.value == {"current_agent": "poet", "previous_agent": "greeter", "session_id": "s1"}
    assert history.value["handoff_count"] == 1
    assert history.value["most_recent"]["target_agent"] == "poet"
    assert "last_handoff" in context.value["shared_context"]
    assert bounce.value["valid"] is False
    assert missing.value == {"valid": False, "error": "Target agent name required"}
    assert isinstance(invalid, ToolErr)
