from __future__ import annotations

from functools import lru_cache
from typing import Any, Literal, Mapping

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_TRIGGER_WORDS: tuple[str, ...] = (
    "supervisor",
    "escalate",
    "complex",
    "help",
    "manager",
    "billing",
    "account",
    "technical",
    "policy",
    "document",
)


class HandoffSettings(BaseModel):
    loop_window: int = Field(5, ge=1, description="Number of most recent handoffs inspected for loop suppression.")
    loop_threshold: int = Field(
        3,
        ge=1,
        description="Occurrences of a target inside the window that block another handoff to it.",
    )
    prevent_bounce_back: bool = Field(
        True,
        description="Reject a handoff straight back to the previous agent.",
    )

    @model_validator(mode="after")
    def _threshold_fits_window(self) -> "HandoffSettings":
        if self.loop_threshold > self.loop_window:
            raise ValueError("loop_threshold cannot exceed loop_window")
        return self


class ContextSettings(BaseModel):
    expiry_seconds: int = Field(24 * 60 * 60, ge=1, description="Idle time after which a context is swept.")
    max_history: int = Field(50, ge=1, description="Snapshots retained per session.")


class ToolLoopSettings(BaseModel):
    max_iterations: int = Field(5, ge=1, description="Backend round-trips allowed while resolving tool calls.")
    parallel_tool_calls: bool = Field(False, description="Forwarded to the backend with every request.")


class BackendSettings(BaseModel):
    base_url: str = Field("http://localhost:3000", description="Base URL of the reasoning backend proxy.")
    responses_path: str = Field("/api/responses", description="Relative path for the responses endpoint.")
    model: str = Field("gpt-4.1", min_length=1)
    timeout_seconds: float = Field(30.0, ge=0.1)
    extra_headers: dict[str, str] = Field(default_factory=dict)


class EscalationSettings(BaseModel):
    enabled: bool = Field(True)
    trigger_words: tuple[str, ...] = Field(
        DEFAULT_TRIGGER_WORDS,
        description="Fallback keywords that route a message to the supervisor.",
    )
    escalation_paths: dict[str, str] = Field(
        default_factory=lambda: {
            "billing": "billing_specialist",
            "technical": "technical_support",
            "account": "account_specialist",
            "complaint": "supervisor",
            "general": "human_agent",
            "supervisor": "human_supervisor",
            "specialist": "expert_agent",
        },
        description="Issue type to escalation target mapping used by the smart escalation tool.",
    )


class ObservabilitySettings(BaseModel):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    degraded_error_rate: float = Field(0.1, ge=0.0, le=1.0)
    unhealthy_error_rate: float = Field(0.25, ge=0.0, le=1.0)


class Settings(BaseSettings):
    environment: Literal["local", "test", "production"] = Field("local")

    handoff: HandoffSettings = Field(default_factory=HandoffSettings)  # type: ignore[arg-type]
    context: ContextSettings = Field(default_factory=ContextSettings)  # type: ignore[arg-type]
    tool_loop: ToolLoopSettings = Field(default_factory=ToolLoopSettings)  # type: ignore[arg-type]
    backend: BackendSettings = Field(default_factory=BackendSettings)  # type: ignore[arg-type]
    escalation: EscalationSettings = Field(default_factory=EscalationSettings)  # type: ignore[arg-type]
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)  # type: ignore[arg-type]

    model_config = SettingsConfigDict(
        env_prefix="AGENTRELAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )


@lru_cache(maxsize=1)
def _get_cached_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


def get_settings(overrides: Mapping[str, Any] | None = None) -> Settings:
    """Return settings, using cached defaults unless overrides are provided."""
    if overrides:
        return Settings(**dict(overrides))
    return _get_cached_settings()
