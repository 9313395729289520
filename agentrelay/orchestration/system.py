"""
Orchestration System

Builds every orchestration service once from ``Settings`` and hands the
instances to each other by reference. ``reset()`` rebuilds the in-memory
services; the reasoning backend survives a reset.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from ..core.clock import TimestampFactory, resolve_clock
from ..core.config import Settings, get_settings
from ..core.errors import ConfigurationError
from ..core.logging import configure_logging, get_logger
from ..schemas.context import ConversationContext
from ..schemas.escalation import EscalationRule
from ..schemas.events import EventType
from ..schemas.scenario import AgentProfile, Scenario
from ..schemas.session import Session
from ..services.backend import HttpBackendConfig, HttpReasoningBackend, ReasoningBackend
from ..tools.handoff_tools import create_handoff_tools
from ..tools.registry import ToolRegistry
from .context import ContextStore
from .escalation import EscalationEngine, RoutingClassifier
from .events import EventLog
from .handoff import HandoffCoordinator, HandoffOutcome
from .rules import DEFAULT_ESCALATION_RULES, route_message
from .scenarios import default_scenarios
from .session import SessionRegistry
from .supervisor import Supervisor, SupervisorReply
from .synchronizer import StateSynchronizer
from .tool_loop import ToolResolutionLoop

logger = get_logger(name=__name__)

CONFIGURATION_VERSION = "2.0.0"
RECENT_EVENT_LIMIT = 10

_AGENT_NAME = re.compile(r"^[a-zA-Z0-9_-]{1,50}$")


@dataclass(slots=True)
class SessionBootstrap:
    scenario_key: str
    scenario: Scenario
    context: ConversationContext
    state: Session


class OrchestrationSystem:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        backend: ReasoningBackend | None = None,
        scenarios: Mapping[str, Scenario] | None = None,
        rules: Sequence[EscalationRule] = DEFAULT_ESCALATION_RULES,
        router: RoutingClassifier | None = route_message,
        now: TimestampFactory | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        configure_logging(self.settings.observability.log_level, environment=self.settings.environment)
        self._now = resolve_clock(now)
        self._rules = tuple(rules)
        self._router = router
        self._scenarios: dict[str, Scenario] = dict(scenarios) if scenarios is not None else default_scenarios()
        self._owns_backend = backend is None
        self.backend: ReasoningBackend = backend or HttpReasoningBackend(
            HttpBackendConfig.from_settings(self.settings.backend, self.settings.tool_loop)
        )
        self._build()

    def _build(self) -> None:
        settings = self.settings
        self.event_log = EventLog(now=self._now)
        self.sessions = SessionRegistry(settings=settings.handoff, now=self._now)
        self.contexts = ContextStore(settings=settings.context, now=self._now)
        self.synchronizer = StateSynchronizer(self.sessions, self.contexts, now=self._now)
        self.coordinator = HandoffCoordinator(
            self.sessions,
            self.event_log,
            synchronizer=self.synchronizer,
            agents=[agent.name for agent in self._all_agents()],
        )
        self.escalation = EscalationEngine(
            self.event_log,
            rules=self._rules,
            router=self._router,
            settings=settings.escalation,
        )
        self.tools = ToolRegistry(
            create_handoff_tools(
                self._all_agents(),
                sessions=self.sessions,
                coordinator=self.coordinator,
                synchronizer=self.synchronizer,
                event_log=self.event_log,
                escalation_paths=settings.escalation.escalation_paths,
                now=self._now,
            )
        )
        self.loop = ToolResolutionLoop(
            self.backend,
            self.tools,
            event_log=self.event_log,
            contexts=self.contexts,
            settings=settings.tool_loop,
            now=self._now,
        )
        self.supervisor = Supervisor(
            contexts=self.contexts,
            escalation=self.escalation,
            loop=self.loop,
            backend=self.backend,
            tools=self.tools,
            event_log=self.event_log,
            settings=settings.backend,
        )

    # ------------------------------------------------------------------
    # scenarios
    # ------------------------------------------------------------------
    def get_scenario(self, key: str) -> Scenario | None:
        return self._scenarios.get(key)

    def scenarios(self) -> dict[str, Scenario]:
        return dict(self._scenarios)

    def scenarios_by_pattern(self, pattern: str) -> list[Scenario]:
        return [scenario for scenario in self._scenarios.values() if scenario.metadata.pattern == pattern]

    def validate_scenario(self, scenario: Scenario) -> tuple[bool, list[str]]:
        """Check a scenario definition; returns (is_valid, errors)."""
        errors: list[str] = []
        if not scenario.name:
            errors.append("Scenario name is required")
        if not scenario.description:
            errors.append("Scenario description is required")
        if not scenario.agents:
            errors.append("Scenario must have at least one agent")

        names = scenario.agent_names()
        if len(set(names)) != len(names):
            errors.append("Agent names must be unique")
        if scenario.default_agent and scenario.default_agent not in names:
            errors.append(f"Default agent '{scenario.default_agent}' is not part of the scenario")

        for index, agent in enumerate(scenario.agents, start=1):
            problems = self._validate_agent(agent, names)
            if problems:
                errors.append(f"Agent {index} ({agent.name}): {', '.join(problems)}")
        return not errors, errors

    def _validate_agent(self, agent: AgentProfile, names: list[str]) -> list[str]:
        problems: list[str] = []
        if not _AGENT_NAME.match(agent.name):
            problems.append("Invalid agent name: must be 1-50 characters, alphanumeric, underscore, or hyphen only")
        if not 10 <= len(agent.instructions) <= 10000:
            problems.append("Invalid instructions: must be 10-10000 characters")
        unknown_tools = [name for name in agent.tools if name not in self.tools]
        if unknown_tools:
            problems.append(f"Unknown tools: {', '.join(unknown_tools)}")
        unknown_handoffs = [name for name in agent.handoffs if name not in names]
        if unknown_handoffs:
            problems.append(f"Unknown handoff targets: {', '.join(unknown_handoffs)}")
        return problems

    # ------------------------------------------------------------------
    # sessions
    # ------------------------------------------------------------------
    def create_session(self, scenario_key: str, session_id: str, user_id: str | None = None) -> SessionBootstrap:
        scenario = self._scenarios.get(scenario_key)
        if scenario is None:
            raise ConfigurationError(f"Scenario '{scenario_key}' not found")
        entry_agent = scenario.entry_agent()
        if entry_agent is None:
            raise ConfigurationError(f"Scenario '{scenario_key}' has no agents")

        self.contexts.get_or_create(session_id, user_id)
        if self.sessions.get(session_id).current_agent != entry_agent:
            self.synchronizer.sync_current_agent(session_id, entry_agent)
        self.synchronizer.sync_shared_context(session_id, "scenario", scenario_key, entry_agent)
        if scenario.company_name:
            self.synchronizer.sync_shared_context(session_id, "company", scenario.company_name, entry_agent)
        self.event_log.record(
            EventType.AGENT_START,
            entry_agent,
            {"session_id": session_id, "scenario": scenario_key},
        )
        logger.info("session_created", session_id=session_id, scenario=scenario_key, agent=entry_agent)

        return SessionBootstrap(
            scenario_key=scenario_key,
            scenario=scenario,
            context=self.contexts.get_or_create(session_id),
            state=self.sessions.get(session_id).snapshot(),
        )

    def handle_agent_handoff(
        self,
        session_id: str,
        source_agent: str,
        target_agent: str,
        reason: str | None = None,
    ) -> HandoffOutcome:
        return self.coordinator.request_handoff(
            session_id,
            source_agent,
            target_agent,
            trigger=reason,
            preserve_context=True,
        )

    async def respond(self, session_id: str, message: str, **options: Any) -> SupervisorReply:
        return await self.supervisor.respond(session_id, message, **options)

    # ------------------------------------------------------------------
    # analytics & health
    # ------------------------------------------------------------------
    def session_analytics(self, session_id: str) -> dict[str, Any]:
        analytics = self.contexts.get_analytics(session_id).model_dump(mode="json")
        events = self.event_log.for_session(session_id)
        by_type: dict[str, int] = {}
        for event in events:
            by_type[event.type.value] = by_type.get(event.type.value, 0) + 1
        analytics["events"] = {
            "total": len(events),
            "by_type": by_type,
            "recent": [event.model_dump(mode="json") for event in events[-RECENT_EVENT_LIMIT:]],
        }
        return analytics

    def error_rate(self) -> float:
        counts = self.event_log.count_by_type()
        total = sum(counts.values())
        if not total:
            return 0.0
        return counts.get(EventType.ERROR.value, 0) / total

    def system_health(self) -> dict[str, Any]:
        thresholds = self.settings.observability
        expired = self.contexts.sweep_expired()
        for session_id in expired:
            self.sessions.drop(session_id)
        error_rate = self.error_rate()

        status = "healthy"
        if error_rate > thresholds.degraded_error_rate:
            status = "degraded"
        if error_rate > thresholds.unhealthy_error_rate:
            status = "unhealthy"

        patterns: dict[str, int] = {}
        for scenario in self._scenarios.values():
            pattern = scenario.metadata.pattern or "unknown"
            patterns[pattern] = patterns.get(pattern, 0) + 1

        if status != "healthy":
            logger.warning("system_health_degraded", status=status, error_rate=error_rate)
        return {
            "status": status,
            "scenarios": {"total": len(self._scenarios), "by_pattern": patterns},
            "performance": {
                **self.contexts.global_stats(),
                "error_rate": error_rate,
                "average_session_duration_ms": self._average_session_duration_ms(),
            },
            "events": self.event_log.count_by_type(),
            "last_cleanup": len(expired),
            "timestamp": self._now().isoformat(),
        }

    def export_configuration(self) -> dict[str, Any]:
        return {
            "version": CONFIGURATION_VERSION,
            "exported_at": self._now().isoformat(),
            "scenarios": {key: scenario.summary() for key, scenario in self._scenarios.items()},
            "tools": self.tools.list(),
            "system_health": self.system_health(),
        }

    def reset(self) -> None:
        """Drop every session, context and event and rebuild the services."""
        self.synchronizer.clear_subscribers()
        self._build()
        logger.info("orchestration_system_reset")

    async def aclose(self) -> None:
        if self._owns_backend and isinstance(self.backend, HttpReasoningBackend):
            await self.backend.aclose()

    def _all_agents(self) -> list[AgentProfile]:
        seen: dict[str, AgentProfile] = {}
        for scenario in self._scenarios.values():
            for agent in scenario.agents:
                seen.setdefault(agent.name, agent)
        return list(seen.values())

    def _average_session_duration_ms(self) -> float:
        now = self._now()
        durations = []
        for session_id in self.contexts.session_ids():
            context = self.contexts.get(session_id)
            if context is not None:
                durations.append((now - context.metadata.created_at).total_seconds() * 1000)
        if not durations:
            return 0.0
        return sum(durations) / len(durations)
