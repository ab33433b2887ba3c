"""
Shared utilities for all tools in the toolbox.

Tool functions are module-level LangChain tools, so they cannot close over an
orchestrator. The orchestrator instead publishes its ToolDependencies through
a context variable for the duration of tool execution, and every tool reads
them with get_tool_dependencies().
"""

import json
import logging
from contextvars import ContextVar
from typing import Any, Dict, Optional
from uuid import UUID

from leadpipeline.agents.state import RunContext, ToolDependencies
from leadpipeline.models import Actor, ActorType, TimelineEventCreate
from leadpipeline.utils.error_handling import MissingContextError, ValidationFailedError

logger = logging.getLogger(__name__)

# =============================================================================
# CONTEXT MANAGEMENT
# =============================================================================

_tool_dependencies_context: ContextVar[Optional[ToolDependencies]] = ContextVar(
    "tool_dependencies", default=None
)


class ToolRunContext:
    """Context manager that exposes an orchestrator's dependencies to tool functions."""

    def __init__(self, deps: ToolDependencies):
        self.deps = deps
        self._token = None

    def __enter__(self):
        self._token = _tool_dependencies_context.set(self.deps)
        return self.deps

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._token is not None:
            _tool_dependencies_context.reset(self._token)
            self._token = None


def get_tool_dependencies() -> ToolDependencies:
    """
    Raises:
        MissingContextError: when called outside a ToolRunContext
    """
    deps = _tool_dependencies_context.get()
    if deps is None:
        raise MissingContextError("tool invoked outside an agent run")
    return deps


# =============================================================================
# SHARED HELPERS
# =============================================================================

def parse_uuid(value: Any, field_name: str) -> UUID:
    """
    Raises:
        ValidationFailedError: if value is not a UUID
    """
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value).strip())
    except (ValueError, AttributeError) as e:
        raise ValidationFailedError(f"invalid {field_name}: {value!r}") from e


def parse_optional_uuid(value: Any, field_name: str) -> Optional[UUID]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return parse_uuid(value, field_name)


def optional_text(value: Optional[str]) -> Optional[str]:
    text = (value or "").strip()
    return text or None


def timeline_event(
    context: RunContext,
    event_type: str,
    title: str,
    summary: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    actor: Optional[Actor] = None,
) -> TimelineEventCreate:
    """Build a timeline event for the current run's lead service."""
    actor = actor or context.actor
    return TimelineEventCreate(
        lead_id=context.lead_id,
        service_id=context.service_id,
        organization_id=context.tenant_id,
        actor_type=actor.type,
        actor_name=actor.name,
        event_type=event_type,
        title=title,
        summary=summary,
        metadata=metadata or {},
    )


def user_actor(context: RunContext) -> Actor:
    """Actor for call-log actions, attributed to the user who logged the call."""
    return Actor(type=ActorType.USER, name=str(context.user_id) if context.user_id else context.actor.name)


def format_tool_result(result: str) -> Dict[str, Any]:
    """Decode a tool's JSON payload; non-JSON output is wrapped as a message."""
    try:
        decoded = json.loads(result)
    except (TypeError, ValueError):
        return {"success": True, "message": str(result)}
    if isinstance(decoded, dict):
        return decoded
    return {"success": True, "message": decoded}
