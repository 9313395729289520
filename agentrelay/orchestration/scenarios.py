"""Built-in scenario catalog registered with every orchestration system."""

from __future__ import annotations

from ..schemas.scenario import AgentProfile, Scenario, ScenarioMetadata

HANDOFF_TOOL_NAMES = ["agent_transfer", "smart_escalation", "preserve_context", "handoff_status"]


def _chat_supervisor() -> Scenario:
    return Scenario(
        name="Chat-Supervisor",
        description="Chat agent backed by a supervisor with intelligent routing and rule-based escalation",
        company_name="NewTelco",
        default_agent="chat_agent",
        agents=[
            AgentProfile(
                name="chat_agent",
                instructions=(
                    "You are a junior customer service agent working alongside a supervisor. Handle greetings "
                    "and basic questions directly and route account, billing and technical issues to the supervisor."
                ),
                handoff_description="Front-line chat agent",
            ),
        ],
        metadata=ScenarioMetadata(
            industry="telecommunications",
            use_case="customer service with intelligent supervision",
            complexity="advanced",
            pattern="chat-supervisor",
            tags=["intelligent routing", "escalation", "analytics"],
        ),
    )


def _customer_service_retail() -> Scenario:
    return Scenario(
        name="Customer Service Retail",
        description="Retail scenario with authentication and personalized sales agents that hand off to each other",
        company_name="Snowy Peak Boards",
        default_agent="authentication",
        agents=[
            AgentProfile(
                name="authentication",
                instructions=(
                    "Verify the customer's identity before anything else, then hand off to the agent best suited "
                    "to their request."
                ),
                handoff_description="Authentication agent with state management and error handling",
                tools=list(HANDOFF_TOOL_NAMES),
                handoffs=["sales"],
            ),
            AgentProfile(
                name="sales",
                instructions=(
                    "Recommend products based on the customer's preferences and the context preserved by "
                    "previous agents."
                ),
                handoff_description="Sales agent with personalization and product management",
                tools=list(HANDOFF_TOOL_NAMES),
                handoffs=["authentication"],
            ),
        ],
        metadata=ScenarioMetadata(
            industry="retail",
            use_case="snowboard equipment sales and support",
            complexity="advanced",
            pattern="multi-agent",
            tags=["personalization", "analytics", "authentication"],
        ),
    )


def _simple_handoff() -> Scenario:
    return Scenario(
        name="Simple Handoff",
        description="Greeting agent that routes users to a poetry agent while preserving context",
        default_agent="greeter",
        agents=[
            AgentProfile(
                name="greeter",
                instructions=(
                    "Greet the user, understand what they need and use the handoff tools to route them to the "
                    "right specialist."
                ),
                handoff_description="Greeting agent with intelligent routing",
                tools=list(HANDOFF_TOOL_NAMES),
                handoffs=["poet"],
            ),
            AgentProfile(
                name="poet",
                instructions=(
                    "Write haikus on any topic and use preserved context from handoffs to personalize them."
                ),
                handoff_description="Poetry agent with personalization",
                tools=list(HANDOFF_TOOL_NAMES),
                handoffs=["greeter"],
            ),
        ],
        metadata=ScenarioMetadata(
            industry="creative",
            use_case="interactive poetry creation with smart handoffs",
            complexity="intermediate",
            pattern="sequential-handoff",
            tags=["creative writing", "handoffs", "context preservation"],
        ),
    )


def _test_scenario() -> Scenario:
    return Scenario(
        name="Test Scenario",
        description="Scenario for testing and validating agent behaviors",
        default_agent="test_agent",
        agents=[
            AgentProfile(
                name="test_agent",
                instructions="Test agent for validating system functionality and running behavior tests.",
                handoff_description="Test agent for system validation",
            ),
        ],
        metadata=ScenarioMetadata(
            industry="testing",
            use_case="system validation and behavior testing",
            complexity="basic",
            pattern="simple",
            tags=["testing", "validation"],
        ),
    )


def default_scenarios() -> dict[str, Scenario]:
    return {
        "chat_supervisor": _chat_supervisor(),
        "customer_service_retail": _customer_service_retail(),
        "simple_handoff": _simple_handoff(),
        "test": _test_scenario(),
    }
