from __future__ import annotations

import copy
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Mapping

from pydantic import ValidationError as PydanticValidationError

from ..core import metrics
from ..core.clock import TimestampFactory, resolve_clock
from ..core.config import ContextSettings
from ..core.errors import SessionNotFoundError, ValidationError
from ..core.logging import get_logger
from ..schemas.context import (
    ContextMetadata,
    ContextSummary,
    ContextUpdate,
    ConversationContext,
    EngagementSummary,
    Message,
    SatisfactionIndicators,
    SessionAnalytics,
    SessionSummary,
    SharedVariable,
    ToolCallRecord,
    ToolSummary,
)

logger = get_logger(name=__name__)

TOOL_CALLS_VARIABLE = "toolCalls"

POSITIVE_WORDS: tuple[str, ...] = ("thank", "great", "perfect", "excellent", "good", "helpful")
NEGATIVE_WORDS: tuple[str, ...] = ("frustrated", "angry", "terrible", "awful", "bad", "horrible")
ESCALATION_WORDS: tuple[str, ...] = ("escalate", "supervisor")

_COUNTER_FIELDS = frozenset(
    {
        "message_count",
        "handoff_count",
        "tool_call_count",
        "error_count",
        "failed_tool_calls",
        "api_errors",
        "failed_attempts",
    }
)


def _format_duration(duration: timedelta) -> str:
    total_ms = max(0, int(duration.total_seconds() * 1000))
    minutes, remainder = divmod(total_ms, 60_000)
    return f"{minutes}m {remainder // 1000}s"


def _context_size_kb(context: ConversationContext) -> int:
    return round(len(context.model_dump_json()) * 2 / 1024)


@dataclass(frozen=True, slots=True)
class CapturedContext:
    context: ConversationContext | None
    history: list[ConversationContext] | None


class ContextStore:
    """Per-session conversation context with analytics, snapshots and expiry.

    Public reads hand out deep copies; every mutation goes through a store
    method so ``last_activity`` and the snapshot history stay accurate.
    """

    def __init__(
        self,
        *,
        settings: ContextSettings | None = None,
        now: TimestampFactory | None = None,
    ) -> None:
        self._settings = settings or ContextSettings()
        self._now = resolve_clock(now)
        self._contexts: dict[str, ConversationContext] = {}
        self._history: dict[str, deque[ConversationContext]] = {}

    # ------------------------------------------------------------------
    # lookup
    # ------------------------------------------------------------------
    def get_or_create(self, session_id: str, user_id: str | None = None) -> ConversationContext:
        context = self._ensure(session_id, user_id)
        self._touch(context)
        return context.model_copy(deep=True)

    def get(self, session_id: str) -> ConversationContext | None:
        context = self._contexts.get(session_id)
        if context is None:
            return None
        return context.model_copy(deep=True)

    def require(self, session_id: str) -> ConversationContext:
        context = self.get(session_id)
        if context is None:
            raise SessionNotFoundError(f"No conversation context for session '{session_id}'")
        return context

    def session_ids(self) -> list[str]:
        return list(self._contexts)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._contexts

    # ------------------------------------------------------------------
    # mutation
    # ------------------------------------------------------------------
    def update(
        self,
        session_id: str,
        partial: ContextUpdate | Mapping[str, Any],
        *,
        snapshot: bool = True,
    ) -> ConversationContext:
        try:
            changes = partial if isinstance(partial, ContextUpdate) else ContextUpdate.model_validate(dict(partial))
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid context update: {exc}") from exc

        context = self._ensure(session_id)
        if "user_id" in changes.model_fields_set:
            context.user_id = changes.user_id
        if "current_agent" in changes.model_fields_set:
            context.current_agent = changes.current_agent
        if changes.metadata:
            merged = {**context.metadata.model_dump(), **changes.metadata}
            try:
                context.metadata = ContextMetadata.model_validate(merged)
            except PydanticValidationError as exc:
                raise ValidationError(f"Invalid context metadata: {exc}") from exc
        self._touch(context)
        if snapshot:
            self._save_snapshot(context)
        return context.model_copy(deep=True)

    def increment_counter(self, session_id: str, name: str, amount: int = 1) -> int:
        if name not in _COUNTER_FIELDS:
            raise ValidationError(f"Unknown context counter '{name}'")
        context = self._ensure(session_id)
        value = getattr(context.metadata, name) + amount
        setattr(context.metadata, name, value)
        self._touch(context)
        return value

    def add_message(self, session_id: str, message: Message | Mapping[str, Any]) -> Message:
        try:
            entry = message if isinstance(message, Message) else Message.model_validate(dict(message))
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid message: {exc}") from exc
        if entry.timestamp is None:
            entry = entry.model_copy(update={"timestamp": self._now()})
        context = self._ensure(session_id)
        context.conversation_history.append(entry)
        context.metadata.message_count = len(context.conversation_history)
        self._touch(context)
        return entry.model_copy(deep=True)

    def set_shared_variable(self, session_id: str, key: str, value: Any) -> None:
        context = self._ensure(session_id)
        self._store_variable(context, key, value)
        self._touch(context)

    def get_shared_variable(self, session_id: str, key: str) -> Any | None:
        context = self._ensure(session_id)
        variable = context.shared_variables.get(key)
        if variable is None:
            return None
        return variable.model_copy(deep=True).value

    def set_current_agent(self, session_id: str, agent_name: str) -> bool:
        """Mirror an agent change; returns ``True`` when it counted as a handoff."""
        context = self._ensure(session_id)
        previous = context.current_agent
        context.current_agent = agent_name
        counted = bool(previous) and previous != agent_name
        if counted:
            context.metadata.handoff_count += 1
            stamp = self._now()
            self._store_variable(
                context,
                f"handoff_{int(stamp.timestamp() * 1000)}",
                {"from": previous, "to": agent_name, "timestamp": stamp.isoformat()},
            )
        self._touch(context)
        self._save_snapshot(context)
        return counted

    def record_tool_call(
        self,
        session_id: str,
        tool_name: str,
        success: bool,
        duration_ms: float | None = None,
    ) -> ToolCallRecord:
        context = self._ensure(session_id)
        stamp = self._now()
        record = ToolCallRecord(tool_name=tool_name, success=success, duration_ms=duration_ms, timestamp=stamp)
        context.metadata.tool_call_count += 1
        context.metadata.last_tool_call = stamp
        if not success:
            context.metadata.error_count += 1
            context.metadata.failed_tool_calls += 1

        existing = context.shared_variables.get(TOOL_CALLS_VARIABLE)
        calls = list(existing.value) if existing is not None and isinstance(existing.value, list) else []
        calls.append(record.model_dump())
        self._store_variable(context, TOOL_CALLS_VARIABLE, calls)
        self._touch(context)
        return record

    def capture(self, session_id: str) -> CapturedContext:
        """Copy the live context and its snapshot history for a later ``restore``."""
        history = self._history.get(session_id)
        return CapturedContext(
            context=self.get(session_id),
            history=None if history is None else [entry.model_copy(deep=True) for entry in history],
        )

    def restore(self, session_id: str, captured: CapturedContext) -> None:
        """Put back a capture; a session that did not exist when captured is dropped."""
        if captured.context is None:
            self._contexts.pop(session_id, None)
        else:
            self._contexts[session_id] = captured.context.model_copy(deep=True)
        if captured.history is None:
            self._history.pop(session_id, None)
        else:
            self._history[session_id] = deque(
                (entry.model_copy(deep=True) for entry in captured.history),
                maxlen=self._settings.max_history,
            )
        metrics.set_active_contexts(len(self._contexts))

    def remove(self, session_id: str) -> bool:
        removed = self._contexts.pop(session_id, None) is not None
        self._history.pop(session_id, None)
        metrics.set_active_contexts(len(self._contexts))
        return removed

    def clear(self) -> None:
        self._contexts.clear()
        self._history.clear()
        metrics.set_active_contexts(0)

    def reset_session(self, session_id: str) -> ConversationContext:
        """Empty history, variables and agent for a session while keeping its counters."""
        context = self._ensure(session_id)
        context.conversation_history = []
        context.shared_variables = {}
        context.current_agent = None
        context.metadata.message_count = 0
        context.metadata.handoff_count = 0
        self._touch(context)
        self._save_snapshot(context)
        return context.model_copy(deep=True)

    # ------------------------------------------------------------------
    # analytics
    # ------------------------------------------------------------------
    def get_analytics(self, session_id: str) -> SessionAnalytics:
        context = self._ensure(session_id)
        metadata = context.metadata
        duration = self._now() - metadata.created_at

        calls = self._tool_calls(context)
        successful = sum(1 for call in calls if call.get("success"))
        failed = len(calls) - successful
        success_rate = round(successful / len(calls) * 100, 2) if calls else 0.0

        return SessionAnalytics(
            session=SessionSummary(
                id=session_id,
                duration_ms=max(0, int(duration.total_seconds() * 1000)),
                duration_formatted=_format_duration(duration),
                message_count=metadata.message_count,
                handoff_count=metadata.handoff_count,
                current_agent=context.current_agent,
            ),
            tools=ToolSummary(
                total_calls=metadata.tool_call_count,
                successful_calls=successful,
                failed_calls=failed,
                success_rate=success_rate,
            ),
            engagement=EngagementSummary(
                average_response_time_ms=self._average_response_time_ms(context),
                complexity_score=self._complexity_score(metadata),
                user_satisfaction_indicators=self._satisfaction(context),
            ),
            context=ContextSummary(
                shared_variables_count=len(context.shared_variables),
                last_activity=metadata.last_activity,
                context_size_kb=_context_size_kb(context),
            ),
        )

    def global_stats(self) -> dict[str, Any]:
        total = len(self._contexts)
        messages = sum(context.metadata.message_count for context in self._contexts.values())
        handoffs = sum(context.metadata.handoff_count for context in self._contexts.values())
        tool_calls = sum(context.metadata.tool_call_count for context in self._contexts.values())
        size_kb = sum(_context_size_kb(context) for context in self._contexts.values())
        size_kb += sum(_context_size_kb(entry) for history in self._history.values() for entry in history)
        return {
            "active_contexts": total,
            "total_history_entries": sum(len(history) for history in self._history.values()),
            "total_messages": messages,
            "total_handoffs": handoffs,
            "total_tool_calls": tool_calls,
            "average_messages_per_context": messages / total if total else 0.0,
            "memory_usage_estimate_mb": round(size_kb / 1024),
        }

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    def cleanup_expired_contexts(self) -> int:
        return len(self.sweep_expired())

    def sweep_expired(self) -> list[str]:
        """Drop contexts idle for longer than ``expiry_seconds``; returns their session ids."""
        now = self._now()
        threshold = timedelta(seconds=self._settings.expiry_seconds)
        expired = [
            session_id
            for session_id, context in self._contexts.items()
            if now - context.metadata.last_activity > threshold
        ]
        for session_id in expired:
            del self._contexts[session_id]
            self._history.pop(session_id, None)
        if expired:
            logger.info("contexts_expired", count=len(expired))
        metrics.increment_contexts_expired(len(expired))
        metrics.set_active_contexts(len(self._contexts))
        return expired

    def get_context_history(self, session_id: str) -> list[ConversationContext]:
        return [entry.model_copy(deep=True) for entry in self._history.get(session_id, ())]

    def restore_snapshot(self, session_id: str, index: int = -1) -> ConversationContext:
        history = self._history.get(session_id)
        if session_id not in self._contexts or not history:
            raise SessionNotFoundError(f"No snapshots recorded for session '{session_id}'")
        try:
            snapshot = history[index]
        except IndexError as exc:
            raise ValidationError(f"No snapshot at index {index} for session '{session_id}'") from exc
        restored = snapshot.model_copy(deep=True)
        self._contexts[session_id] = restored
        self._touch(restored)
        logger.info("context_snapshot_restored", session_id=session_id, index=index)
        return restored.model_copy(deep=True)

    def export_context(self, session_id: str) -> dict[str, Any]:
        context = self._ensure(session_id)
        return {
            "context": context.model_dump(mode="json"),
            "history": [entry.model_dump(mode="json") for entry in self._history.get(session_id, ())],
            "analytics": self.get_analytics(session_id).model_dump(mode="json"),
            "exported_at": self._now().isoformat(),
        }

    def import_context(self, session_id: str, data: Mapping[str, Any]) -> None:
        try:
            context = None
            if data.get("context") is not None:
                context = ConversationContext.model_validate({**data["context"], "session_id": session_id})
            history = None
            if data.get("history") is not None:
                history = [
                    ConversationContext.model_validate({**entry, "session_id": session_id})
                    for entry in data["history"]
                ]
        except (PydanticValidationError, TypeError) as exc:
            raise ValidationError(f"Invalid context export for session '{session_id}': {exc}") from exc

        if context is not None:
            self._contexts[session_id] = context
        if history is not None:
            self._history[session_id] = deque(history, maxlen=self._settings.max_history)
        metrics.set_active_contexts(len(self._contexts))

    def merge_contexts(self, primary_session_id: str, secondary_session_id: str) -> ConversationContext | None:
        secondary = self._contexts.get(secondary_session_id)
        if secondary is None or primary_session_id == secondary_session_id:
            return None
        primary = self._ensure(primary_session_id)

        primary.conversation_history.extend(message.model_copy(deep=True) for message in secondary.conversation_history)
        for key, variable in secondary.shared_variables.items():
            if key not in primary.shared_variables:
                primary.shared_variables[key] = variable.model_copy(deep=True)
        primary.metadata.message_count = len(primary.conversation_history)
        primary.metadata.handoff_count += secondary.metadata.handoff_count

        self.remove(secondary_session_id)
        self._touch(primary)
        self._save_snapshot(primary)
        logger.info("contexts_merged", primary=primary_session_id, secondary=secondary_session_id)
        return primary.model_copy(deep=True)

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------
    def _ensure(self, session_id: str, user_id: str | None = None) -> ConversationContext:
        context = self._contexts.get(session_id)
        if context is None:
            stamp = self._now()
            context = ConversationContext(
                session_id=session_id,
                user_id=user_id,
                metadata=ContextMetadata(created_at=stamp, last_activity=stamp),
            )
            self._contexts[session_id] = context
            metrics.set_active_contexts(len(self._contexts))
            logger.debug("context_created", session_id=session_id)
        elif user_id is not None and context.user_id is None:
            context.user_id = user_id
        return context

    def _touch(self, context: ConversationContext) -> None:
        context.metadata.last_activity = self._now()

    def _store_variable(self, context: ConversationContext, key: str, value: Any) -> None:
        context.shared_variables[key] = SharedVariable(
            value=copy.deepcopy(value),
            timestamp=self._now(),
            type=type(value).__name__,
        )

    def _save_snapshot(self, context: ConversationContext) -> None:
        history = self._history.get(context.session_id)
        if history is None:
            history = deque(maxlen=self._settings.max_history)
            self._history[context.session_id] = history
        history.append(context.model_copy(deep=True))

    def _tool_calls(self, context: ConversationContext) -> list[dict[str, Any]]:
        variable = context.shared_variables.get(TOOL_CALLS_VARIABLE)
        if variable is None or not isinstance(variable.value, list):
            return []
        return [call for call in variable.value if isinstance(call, dict)]

    def _average_response_time_ms(self, context: ConversationContext) -> float:
        stamps: list[datetime] = [m.timestamp for m in context.conversation_history if m.timestamp is not None]
        if len(stamps) < 2:
            return 0.0
        gaps = [(current - previous).total_seconds() * 1000 for previous, current in zip(stamps, stamps[1:])]
        return sum(gaps) / len(gaps)

    def _complexity_score(self, metadata: ContextMetadata) -> float:
        score = min(metadata.message_count, 20) * 0.5
        score += metadata.handoff_count * 2
        score += metadata.tool_call_count * 1.5
        score += metadata.error_count * 3
        return min(score, 100.0)

    def _satisfaction(self, context: ConversationContext) -> SatisfactionIndicators:
        indicators = SatisfactionIndicators(questions_resolved=int(context.metadata.issue_resolved))
        for message in context.conversation_history:
            content = message.content.lower()
            indicators.positive_keywords += sum(1 for word in POSITIVE_WORDS if word in content)
            indicators.negative_keywords += sum(1 for word in NEGATIVE_WORDS if word in content)
            if any(word in content for word in ESCALATION_WORDS):
                indicators.escalations_requested += 1
        return indicators
