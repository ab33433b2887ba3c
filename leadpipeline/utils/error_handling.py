"""
Error taxonomy and error handling utilities for the lead pipeline.

Every agent, tool and orchestrator in the package raises one of the
exceptions defined here, so callers can decide how to react by class:

- MissingContextError: a tool ran before the orchestrator set its run context
- InvalidEnumError / InvalidStageError: a value outside a fixed enumeration
- NotFoundError / ServiceTypeNotFoundError: a referenced record does not exist
- ExternalCallFailedError: model or persistence I/O failed
- ValidationFailedError (and subclasses): malformed or disallowed tool input

Tool handlers never raise into the model loop. They convert these errors into
a structured failure payload with tool_failure() so a well-behaved model can
read the message and correct itself within the same run.

USAGE:
======

```python
from leadpipeline.utils.error_handling import tool_failure, ValidationFailedError

try:
    ...
except LeadPipelineError as e:
    return tool_failure("Failed to update pipeline stage", e)
```
"""

import json
import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class LeadPipelineError(Exception):
    """Base class for all lead pipeline errors."""


class MissingContextError(LeadPipelineError):
    """A tool handler was invoked before tenant/lead/service context was set."""


class InvalidEnumError(LeadPipelineError):
    """A value could not be mapped onto a fixed enumeration."""

    def __init__(self, enum_name: str, value: Any):
        self.enum_name = enum_name
        self.value = value
        super().__init__(f"invalid {enum_name}: {value!r}")


class InvalidStageError(InvalidEnumError):
    """Requested pipeline stage is not a member of the stage enum."""

    def __init__(self, value: Any):
        super().__init__("pipeline stage", value)


class NotFoundError(LeadPipelineError):
    """A referenced lead, service, quote or report does not exist."""


class ServiceTypeNotFoundError(NotFoundError):
    """Service type does not exist or is inactive for the organization."""


class ExternalCallFailedError(LeadPipelineError):
    """The language model or the persistence layer failed."""


class ValidationFailedError(LeadPipelineError):
    """Tool arguments or a requested mutation failed validation."""


class TerminalStateError(ValidationFailedError):
    """The lead service is in a terminal state and can no longer be mutated."""


class SequenceViolationError(ValidationFailedError):
    """A tool was called before the tool it depends on in the same run."""


def tool_failure(message: str, error: Optional[Exception] = None, **extra: Any) -> str:
    """
    Build the structured failure payload returned to the model.

    Args:
        message: Short, model-readable explanation
        error: The exception that caused the failure, if any
        **extra: Additional fields to include in the payload

    Returns:
        JSON string with success=false, message and error
    """
    payload: Dict[str, Any] = {"success": False, "message": message}
    if error is not None:
        payload["error"] = f"{type(error).__name__}: {error}"
    payload.update(extra)
    return json.dumps(payload, default=str)


def tool_success(message: str, **fields: Any) -> str:
    """Build the structured success payload returned to the model."""
    payload: Dict[str, Any] = {"success": True, "message": message}
    payload.update(fields)
    return json.dumps(payload, default=str)


def create_user_friendly_error_message(error: Exception, context: str = "") -> str:
    """
    Create a short, human-readable message for an error.

    Used when an orchestrator surfaces a failure to its caller (API layer,
    worker logs) and the raw exception text would be too technical.
    """
    if isinstance(error, MissingContextError):
        return "The agent ran without a lead context. This is a sequencing error."
    if isinstance(error, InvalidStageError):
        return f"Unknown pipeline stage: {error.value}"
    if isinstance(error, TerminalStateError):
        return "The lead service is closed and can no longer be changed."
    if isinstance(error, NotFoundError):
        return "The requested lead or service could not be found."
    if isinstance(error, ValidationFailedError):
        return f"The request was rejected: {error}"
    if isinstance(error, ExternalCallFailedError):
        return "An external service is unavailable. Please try again shortly."

    error_str = str(error).lower()
    if "timeout" in error_str:
        return "The request timed out. Please try again in a moment."
    if "connection" in error_str or "network" in error_str:
        return "We are having trouble reaching our services. Please try again shortly."

    base_message = "An unexpected error occurred while processing the lead."
    if context:
        return f"{base_message} (Context: {context})"
    return base_message


def log_error_with_context(error: Exception, context: Dict[str, Any], operation: str = "") -> None:
    """
    Log an error together with the identifiers of the run it happened in.

    Args:
        error: The exception that occurred
        context: Run identifiers (tenant_id, lead_id, service_id, run_id, actor)
        operation: Description of the operation that failed
    """
    parts = [f"{key}={value}" for key, value in context.items() if value is not None]
    logger.error(f"[ERROR_CONTEXT] {operation} failed: {type(error).__name__}: {error} ({' '.join(parts)})")


def is_recoverable_error(error: Exception) -> bool:
    """
    Determine whether an error is transient and the operation may be retried.

    Domain errors (validation, missing records, missing context) are never
    recoverable. External failures are recoverable when they look transient.
    """
    if isinstance(error, (ValidationFailedError, NotFoundError, MissingContextError, InvalidEnumError)):
        return False

    error_str = str(error).lower()
    recoverable_patterns = [
        "timeout",
        "connection",
        "network",
        "temporary",
        "rate limit",
        "unavailable",
        "502",
        "503",
        "504",
    ]
    if any(pattern in error_str for pattern in recoverable_patterns):
        return True

    return isinstance(error, (ExternalCallFailedError, TimeoutError, ConnectionError))
