from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class AgentProfile(BaseModel):
    name: str = Field(..., min_length=1)
    instructions: str = ""
    handoff_description: str | None = None
    tools: list[str] = Field(default_factory=list)
    handoffs: list[str] = Field(default_factory=list)


class ScenarioMetadata(BaseModel):
    industry: str | None = None
    use_case: str | None = None
    complexity: str | None = None
    pattern: str | None = None
    tags: list[str] = Field(default_factory=list)


class Scenario(BaseModel):
    name: str
    description: str
    agents: list[AgentProfile] = Field(default_factory=list)
    company_name: str | None = None
    default_agent: str | None = None
    metadata: ScenarioMetadata = Field(default_factory=ScenarioMetadata)

    def agent_names(self) -> list[str]:
        return [agent.name for agent in self.agents]

    def get_agent(self, name: str) -> AgentProfile | None:
        for agent in self.agents:
            if agent.name == name:
                return agent
        return None

    def entry_agent(self) -> str | None:
        if self.default_agent:
            return self.default_agent
        return self.agents[0].name if self.agents else None

    def summary(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "company_name": self.company_name,
            "default_agent": self.default_agent,
            "metadata": self.metadata.model_dump(),
            "agents": [
                {
                    "name": agent.name,
                    "handoff_description": agent.handoff_description,
                    "tool_count": len(agent.tools),
                    "handoff_count": len(agent.handoffs),
                }
                for agent in self.agents
            ],
        }
