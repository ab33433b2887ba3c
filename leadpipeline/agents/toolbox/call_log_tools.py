"""
Call-Log Tools

Tools for turning a post-call summary into a note, a call outcome, a status
change and appointment changes. SaveNote only drafts the note; the call
logger persists the draft once the run is over.
"""

import logging
from datetime import datetime
from typing import Optional

from langchain_core.tools import tool
from langsmith import traceable
from pydantic import BaseModel, Field

from leadpipeline.agents.state import ToolName, TrackerKey
from leadpipeline.core.normalization import normalize_lead_status
from leadpipeline.core.repository import EventTitle, EventType
from leadpipeline.utils.error_handling import (
    InvalidEnumError,
    LeadPipelineError,
    NotFoundError,
    ValidationFailedError,
    tool_failure,
    tool_success,
)

from .toolbox import get_tool_dependencies, timeline_event, user_actor

logger = logging.getLogger(__name__)

DATETIME_SHORT_FORMAT = "%Y-%m-%d %H:%M"
DEFAULT_VISIT_TITLE = "Lead visit"
BOOKING_NOT_CONFIGURED = "Appointment booking is not configured"

# =============================================================================
# NOTE TEXT HELPERS
# =============================================================================

def normalize_call_note_body(body: Optional[str]) -> str:
    """Drop echoed raw-input lines, collapse blank runs and trim."""
    trimmed = (body or "").strip()
    if not trimmed:
        return ""

    cleaned = []
    last_blank = False
    for line in trimmed.split("\n"):
        plain = line.strip()
        if "originele input" in plain.lower():
            continue
        if not plain:
            if last_blank:
                continue
            last_blank = True
            cleaned.append("")
            continue
        last_blank = False
        cleaned.append(line.rstrip(" \t"))

    return "\n".join(cleaned).strip()


def append_reschedule_fallback_note(body: str, start_time: datetime) -> str:
    """Append the 'no existing appointment' correction unless the note already says so."""
    lower = body.lower()
    if "geen bestaande afspraak" in lower or "nieuwe afspraak" in lower:
        return body

    correction = (
        "Let op: er was geen bestaande afspraak. "
        f"Nieuwe afspraak ingepland op {start_time.strftime(DATETIME_SHORT_FORMAT)}."
    )
    if not body.strip():
        return correction
    return body.rstrip("\n") + "\n\n" + correction


def parse_timestamp(value: str, field_name: str) -> datetime:
    """
    Raises:
        ValidationFailedError: if value is not an ISO 8601 timestamp
    """
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except (ValueError, AttributeError) as e:
        raise ValidationFailedError(f"Invalid {field_name} format") from e


# =============================================================================
# NOTE TOOLS
# =============================================================================

class NoteBodyParams(BaseModel):
    body: str = Field(..., description="Call note text (Dutch)")


@tool(ToolName.NORMALIZE_CALL_NOTE, args_schema=NoteBodyParams)
@traceable(name=ToolName.NORMALIZE_CALL_NOTE)
async def normalize_call_note(body: str) -> str:
    """Clean and normalize a drafted call note. Use before SaveNote."""
    return tool_success("Note normalized", body=normalize_call_note_body(body))


@tool(ToolName.SAVE_NOTE, args_schema=NoteBodyParams)
@traceable(name=ToolName.SAVE_NOTE)
async def save_note(body: str) -> str:
    """Save the call summary as a note on the lead. ALWAYS call this tool."""
    try:
        deps = get_tool_dependencies()
        deps.require_context()
        deps.tracker.mark(ToolName.SAVE_NOTE, **{TrackerKey.NOTE_BODY: body})
        return tool_success("Note drafted")
    except LeadPipelineError as e:
        return tool_failure("Failed to save note", e)


# =============================================================================
# OUTCOME AND STATUS
# =============================================================================

class SetCallOutcomeParams(BaseModel):
    outcome: str = Field(..., description="Short label, e.g. Scheduled, Attempted_Contact, Bad_Lead")
    notes: str = Field(default="", description="Optional remark")


@tool(ToolName.SET_CALL_OUTCOME, args_schema=SetCallOutcomeParams)
@traceable(name=ToolName.SET_CALL_OUTCOME)
async def set_call_outcome(outcome: str, notes: str = "") -> str:
    """Store a short call outcome label on the timeline."""
    try:
        deps = get_tool_dependencies()
        context = deps.require_context()

        label = outcome.strip()
        if not label:
            return tool_failure("Missing outcome")
        remark = notes.strip()
        summary = f"{label} - {remark}" if remark else label

        await deps.repository.create_timeline_event(timeline_event(
            context,
            EventType.CALL_OUTCOME,
            EventTitle.CALL_OUTCOME,
            summary,
            {"outcome": label, "notes": remark},
            actor=user_actor(context),
        ))

        deps.tracker.mark(ToolName.SET_CALL_OUTCOME, **{TrackerKey.CALL_OUTCOME: label})
        return tool_success("Call outcome set")
    except LeadPipelineError as e:
        return tool_failure("Failed to set call outcome", e)


class UpdateStatusParams(BaseModel):
    status: str = Field(
        ...,
        description="New, Attempted_Contact, Scheduled, Surveyed, Bad_Lead, Needs_Rescheduling or Closed",
    )


@tool(ToolName.UPDATE_STATUS, args_schema=UpdateStatusParams)
@traceable(name=ToolName.UPDATE_STATUS)
async def update_status(status: str) -> str:
    """Update the status of the lead service."""
    try:
        deps = get_tool_dependencies()
        context = deps.require_context()

        try:
            new_status = normalize_lead_status(status)
        except InvalidEnumError as e:
            return tool_failure("Invalid status", e)

        await deps.repository.update_service_status(context.service_id, context.tenant_id, new_status)
        deps.tracker.mark(ToolName.UPDATE_STATUS, **{TrackerKey.STATUS_UPDATED: new_status.value})
        logger.info(f"[CALL_LOG] run={deps.tracker.run_id} service={context.service_id} status={new_status.value}")
        return tool_success(f"Status updated to {new_status.value}")
    except LeadPipelineError as e:
        return tool_failure(str(e), e)


# =============================================================================
# APPOINTMENTS
# =============================================================================

class ScheduleVisitParams(BaseModel):
    start_time: str = Field(..., description="ISO 8601 start time")
    end_time: str = Field(..., description="ISO 8601 end time")
    title: str = Field(default="", description="Appointment title")
    send_confirmation_email: bool = Field(default=True, description="False when the notes say not to email")


async def _book_visit(deps, context, start_time: str, end_time: str, title: str, send_confirmation_email: bool):
    start = parse_timestamp(start_time, "start time")
    end = parse_timestamp(end_time, "end time")
    appointment = await deps.appointment_booker.book_visit(
        context.tenant_id,
        context.service_id,
        context.user_id,
        start,
        end,
        title.strip() or DEFAULT_VISIT_TITLE,
        send_confirmation_email,
    )
    deps.tracker.mark(ToolName.SCHEDULE_VISIT, **{TrackerKey.APPOINTMENT_BOOKED: start})
    logger.info(f"[CALL_LOG] run={deps.tracker.run_id} service={context.service_id} booked={appointment.id}")
    return appointment


@tool(ToolName.SCHEDULE_VISIT, args_schema=ScheduleVisitParams)
@traceable(name=ToolName.SCHEDULE_VISIT)
async def schedule_visit(start_time: str, end_time: str, title: str = "", send_confirmation_email: bool = True) -> str:
    """Book an inspection visit for the lead. Assume one hour unless the summary says otherwise."""
    try:
        deps = get_tool_dependencies()
        if deps.appointment_booker is None:
            return tool_failure(BOOKING_NOT_CONFIGURED)
        context = deps.require_context()

        await _book_visit(deps, context, start_time, end_time, title, send_confirmation_email)
        return tool_success("Appointment booked")
    except ValidationFailedError as e:
        return tool_failure(str(e), e)
    except LeadPipelineError as e:
        return tool_failure("Failed to book appointment", e)


class RescheduleVisitParams(BaseModel):
    start_time: str = Field(..., description="ISO 8601 new start time")
    end_time: str = Field(..., description="ISO 8601 new end time")
    title: str = Field(default="", description="Optional new title")


@tool(ToolName.RESCHEDULE_VISIT, args_schema=RescheduleVisitParams)
@traceable(name=ToolName.RESCHEDULE_VISIT)
async def reschedule_visit(start_time: str, end_time: str, title: str = "") -> str:
    """Reschedule the existing visit. Without an existing visit a new one is booked instead."""
    try:
        deps = get_tool_dependencies()
        if deps.appointment_booker is None:
            return tool_failure(BOOKING_NOT_CONFIGURED)
        context = deps.require_context()

        existing = await deps.appointment_booker.get_existing_appointment(
            context.tenant_id, context.service_id, context.user_id
        )
        if existing is None:
            await _book_visit(deps, context, start_time, end_time, title, True)
            deps.tracker.set_value(TrackerKey.RESCHEDULE_FALLBACK_BOOKED, True)
            logger.info(f"[CALL_LOG] No appointment to reschedule for service {context.service_id}, booked a new one")
            return tool_success("Appointment scheduled")

        start = parse_timestamp(start_time, "start time")
        end = parse_timestamp(end_time, "end time")
        await deps.appointment_booker.reschedule_visit(
            context.tenant_id, existing.id, start, end, title.strip() or None
        )
        deps.tracker.mark(ToolName.RESCHEDULE_VISIT, **{TrackerKey.APPOINTMENT_RESCHEDULED: start})
        return tool_success("Appointment rescheduled")
    except ValidationFailedError as e:
        return tool_failure(str(e), e)
    except LeadPipelineError as e:
        return tool_failure("Failed to reschedule appointment", e)


class CancelVisitParams(BaseModel):
    reason: str = Field(default="", description="Optional cancellation reason")


@tool(ToolName.CANCEL_VISIT, args_schema=CancelVisitParams)
@traceable(name=ToolName.CANCEL_VISIT)
async def cancel_visit(reason: str = "") -> str:
    """Cancel the existing visit appointment."""
    try:
        deps = get_tool_dependencies()
        if deps.appointment_booker is None:
            return tool_failure(BOOKING_NOT_CONFIGURED)
        context = deps.require_context()

        existing = await deps.appointment_booker.get_existing_appointment(
            context.tenant_id, context.service_id, context.user_id
        )
        if existing is None:
            raise NotFoundError(f"no appointment for service {context.service_id}")

        await deps.appointment_booker.cancel_visit(context.tenant_id, existing.id, reason.strip())
        deps.tracker.mark(ToolName.CANCEL_VISIT, **{TrackerKey.APPOINTMENT_CANCELLED: True})
        return tool_success("Appointment cancelled")
    except NotFoundError as e:
        return tool_failure("No appointment to cancel", e)
    except LeadPipelineError as e:
        return tool_failure("Failed to cancel appointment", e)
