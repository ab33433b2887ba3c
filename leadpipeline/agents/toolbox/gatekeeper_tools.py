"""
Gatekeeper Tools

Tools the intake triage agent uses to record its analysis and to correct the
lead's data: SaveAnalysis, UpdateLeadServiceType and UpdateLeadDetails.
"""

import logging
from typing import Any, Dict, List, Optional

from langchain_core.tools import tool
from langsmith import traceable
from pydantic import BaseModel, Field

from leadpipeline.agents.state import ToolName, TrackerKey
from leadpipeline.core.normalization import (
    normalize_consumer_role,
    normalize_contact_channel,
    normalize_lead_quality,
    normalize_phone,
    normalize_recommended_action,
    normalize_urgency_level,
    resolve_preferred_channel,
)
from leadpipeline.core.pipeline import check_service_type_mutable, is_terminal
from leadpipeline.core.repository import EventTitle, EventType, analysis_metadata
from leadpipeline.models import AIAnalysisCreate
from leadpipeline.utils.error_handling import (
    LeadPipelineError,
    ServiceTypeNotFoundError,
    TerminalStateError,
    ValidationFailedError,
    tool_failure,
    tool_success,
)

from .toolbox import get_tool_dependencies, optional_text, timeline_event

logger = logging.getLogger(__name__)

# =============================================================================
# SAVE ANALYSIS
# =============================================================================

class SaveAnalysisParams(BaseModel):
    """Parameters for the triage analysis."""
    urgency_level: str = Field(..., description="High, Medium or Low")
    urgency_reason: Optional[str] = Field(default=None, description="Short reason for the urgency level")
    lead_quality: str = Field(..., description="Junk, Low, Potential, High or Urgent")
    recommended_action: str = Field(..., description="Reject, RequestInfo, ScheduleSurvey or CallImmediately")
    missing_information: List[str] = Field(default_factory=list, description="Intake items still missing")
    preferred_contact_channel: Optional[str] = Field(default=None, description="WhatsApp or Email")
    suggested_contact_message: str = Field(default="", description="Message to send to the consumer (Dutch)")
    summary: str = Field(default="", description="Short summary of the analysis (Dutch)")


@tool(ToolName.SAVE_ANALYSIS, args_schema=SaveAnalysisParams)
@traceable(name=ToolName.SAVE_ANALYSIS)
async def save_analysis(
    urgency_level: str,
    lead_quality: str,
    recommended_action: str,
    urgency_reason: Optional[str] = None,
    missing_information: Optional[List[str]] = None,
    preferred_contact_channel: Optional[str] = None,
    suggested_contact_message: str = "",
    summary: str = "",
) -> str:
    """
    Save the triage analysis for the current lead service.

    Must be called exactly once per triage run, before any stage update.
    """
    try:
        deps = get_tool_dependencies()
        context = deps.require_context()

        service = await deps.repository.get_lead_service(context.service_id, context.tenant_id)
        if is_terminal(service.status, service.pipeline_stage):
            raise TerminalStateError(
                f"service {context.service_id} is terminal (status={service.status}, stage={service.pipeline_stage})"
            )

        lead = await deps.repository.get_lead(context.lead_id, context.tenant_id)

        # The requested channel is only validated; contact data decides.
        if preferred_contact_channel:
            normalize_contact_channel(preferred_contact_channel)
        channel = resolve_preferred_channel(lead.has_phone)

        params = AIAnalysisCreate(
            lead_id=context.lead_id,
            lead_service_id=context.service_id,
            organization_id=context.tenant_id,
            urgency_level=normalize_urgency_level(urgency_level),
            urgency_reason=optional_text(urgency_reason),
            lead_quality=normalize_lead_quality(lead_quality),
            recommended_action=normalize_recommended_action(recommended_action),
            missing_information=[item.strip() for item in (missing_information or []) if item and item.strip()],
            preferred_contact_channel=channel,
            suggested_contact_message=suggested_contact_message.strip(),
            summary=summary.strip(),
        )
        analysis = await deps.repository.create_ai_analysis(params)

        # Stored analysis counts as done; the events below are best-effort
        metadata = analysis_metadata(params)
        deps.tracker.set_value(TrackerKey.LAST_ANALYSIS_METADATA, metadata)
        deps.tracker.mark(ToolName.SAVE_ANALYSIS)

        event_summary = params.summary or (
            f"AI analyse voltooid: {params.urgency_level} urgentie, aanbevolen actie: {params.recommended_action}"
        )
        try:
            await deps.repository.create_timeline_event(timeline_event(
                context, EventType.AI, EventTitle.GATEKEEPER_ANALYSIS, event_summary, metadata
            ))
        except LeadPipelineError as e:
            logger.warning(f"[SAVE_ANALYSIS] Timeline event failed for service {context.service_id}: {e}")

        await _recalculate_lead_score(deps, context)

        logger.info(
            f"[SAVE_ANALYSIS] run={deps.tracker.run_id} service={context.service_id} "
            f"urgency={params.urgency_level} quality={params.lead_quality} "
            f"action={params.recommended_action} missing={len(params.missing_information)}"
        )
        return tool_success("Analysis saved successfully", analysis_id=str(analysis.id))

    except TerminalStateError as e:
        logger.warning(f"[SAVE_ANALYSIS] Rejected: {e}")
        return tool_failure("Cannot save analysis for a service in terminal state", e)
    except LeadPipelineError as e:
        logger.warning(f"[SAVE_ANALYSIS] Failed: {e}")
        return tool_failure("Failed to save analysis", e)


async def _recalculate_lead_score(deps, context) -> None:
    if deps.lead_scorer is None:
        return
    try:
        score = await deps.lead_scorer.recalculate(context.lead_id, context.service_id, context.tenant_id)
    except Exception as e:
        logger.warning(f"[SAVE_ANALYSIS] Lead score recalculation failed: {e}")
        return

    try:
        await deps.repository.create_timeline_event(timeline_event(
            context,
            EventType.ANALYSIS,
            EventTitle.LEAD_SCORE_UPDATED,
            f"Leadscore {score}",
            {"leadScore": score},
        ))
    except LeadPipelineError as e:
        logger.warning(f"[SAVE_ANALYSIS] Lead score event failed for service {context.service_id}: {e}")


# =============================================================================
# UPDATE LEAD SERVICE TYPE
# =============================================================================

class UpdateLeadServiceTypeParams(BaseModel):
    """Parameters for correcting the service type."""
    service_type: str = Field(..., description="Name or slug of an active service type")
    reason: str = Field(default="", description="Why the service type is wrong")
    confidence: Optional[float] = Field(default=None, description="Confidence 0-1 in the correction")


@tool(ToolName.UPDATE_LEAD_SERVICE_TYPE, args_schema=UpdateLeadServiceTypeParams)
@traceable(name=ToolName.UPDATE_LEAD_SERVICE_TYPE)
async def update_lead_service_type(service_type: str, reason: str = "", confidence: Optional[float] = None) -> str:
    """
    Correct the service type of the current lead service.

    Only allowed while the service is in Triage; afterwards the type is locked
    regardless of confidence.
    """
    try:
        deps = get_tool_dependencies()
        context = deps.require_context()

        new_type = (service_type or "").strip()
        if not new_type:
            raise ValidationFailedError("missing service type")

        service = await deps.repository.get_lead_service(context.service_id, context.tenant_id)
        if service.lead_id != context.lead_id:
            raise ValidationFailedError("Lead service does not belong to lead")
        check_service_type_mutable(service)

        await deps.repository.update_lead_service_type(context.service_id, context.tenant_id, new_type)

        reason_text = reason.strip() or "Diensttype aangepast"
        await deps.repository.create_timeline_event(timeline_event(
            context,
            EventType.SERVICE_TYPE_CHANGE,
            EventTitle.SERVICE_TYPE_UPDATED,
            reason_text,
            {"oldServiceType": service.service_type, "newServiceType": new_type, "reason": reason, "confidence": confidence},
        ))

        logger.info(f"[UPDATE_SERVICE_TYPE] service={context.service_id} from={service.service_type} to={new_type}")
        return tool_success("Service type updated")

    except ServiceTypeNotFoundError as e:
        return tool_failure("Service type not found or inactive", e)
    except LeadPipelineError as e:
        logger.warning(f"[UPDATE_SERVICE_TYPE] Rejected: {e}")
        return tool_failure(str(e) if isinstance(e, ValidationFailedError) else "Failed to update service type", e)


# =============================================================================
# UPDATE LEAD DETAILS
# =============================================================================

class UpdateLeadDetailsParams(BaseModel):
    """Parameters for correcting consumer contact and address data. Omit fields that are correct."""
    first_name: Optional[str] = Field(default=None)
    last_name: Optional[str] = Field(default=None)
    phone: Optional[str] = Field(default=None, description="Phone number; normalized to E.164")
    email: Optional[str] = Field(default=None)
    consumer_role: Optional[str] = Field(default=None, description="Owner, Tenant or Landlord")
    street: Optional[str] = Field(default=None)
    house_number: Optional[str] = Field(default=None)
    zip_code: Optional[str] = Field(default=None)
    city: Optional[str] = Field(default=None)
    latitude: Optional[float] = Field(default=None)
    longitude: Optional[float] = Field(default=None)
    reason: str = Field(default="", description="Why the details change")
    confidence: Optional[float] = Field(default=None)


# (input field, lead attribute, label)
_TEXT_FIELDS = (
    ("first_name", "consumer_first_name", "firstName"),
    ("last_name", "consumer_last_name", "lastName"),
    ("email", "consumer_email", "email"),
    ("street", "address_street", "street"),
    ("house_number", "address_house_number", "houseNumber"),
    ("zip_code", "address_zip_code", "zipCode"),
    ("city", "address_city", "city"),
)


def _collect_lead_updates(values: Dict[str, Any], lead) -> Dict[str, Any]:
    """
    Validate the requested changes against the current lead.

    Returns the attribute updates; labels of changed fields go under "_changed".

    Raises:
        ValidationFailedError: for blank text, a bad phone, role or coordinate
    """
    updates: Dict[str, Any] = {}
    changed: List[str] = []

    for input_name, attribute, label in _TEXT_FIELDS:
        raw = values.get(input_name)
        if raw is None:
            continue
        value = raw.strip()
        if not value:
            raise ValidationFailedError(f"invalid {label}")
        updates[attribute] = value
        if value != getattr(lead, attribute):
            changed.append(label)

    if values.get("phone") is not None:
        value = normalize_phone(values["phone"])
        updates["consumer_phone"] = value
        if value != lead.consumer_phone:
            changed.append("phone")

    if values.get("consumer_role") is not None:
        role = normalize_consumer_role(values["consumer_role"])
        updates["consumer_role"] = role
        if role != lead.consumer_role:
            changed.append("consumerRole")

    for name, low, high in (("latitude", -90, 90), ("longitude", -180, 180)):
        value = values.get(name)
        if value is None:
            continue
        if value < low or value > high:
            raise ValidationFailedError(f"invalid {name}")
        updates[name] = value
        if getattr(lead, name) != value:
            changed.append(name)

    updates["_changed"] = changed
    return updates


@tool(ToolName.UPDATE_LEAD_DETAILS, args_schema=UpdateLeadDetailsParams)
@traceable(name=ToolName.UPDATE_LEAD_DETAILS)
async def update_lead_details(
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    phone: Optional[str] = None,
    email: Optional[str] = None,
    consumer_role: Optional[str] = None,
    street: Optional[str] = None,
    house_number: Optional[str] = None,
    zip_code: Optional[str] = None,
    city: Optional[str] = None,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    reason: str = "",
    confidence: Optional[float] = None,
) -> str:
    """Correct consumer name, contact data or address of the current lead."""
    try:
        deps = get_tool_dependencies()
        context = deps.require_context()

        lead = await deps.repository.get_lead(context.lead_id, context.tenant_id)
        updates = _collect_lead_updates(
            {
                "first_name": first_name,
                "last_name": last_name,
                "phone": phone,
                "email": email,
                "consumer_role": consumer_role,
                "street": street,
                "house_number": house_number,
                "zip_code": zip_code,
                "city": city,
                "latitude": latitude,
                "longitude": longitude,
            },
            lead,
        )
        changed = updates.pop("_changed")
        if not changed:
            return tool_success("No updates required")

        await deps.repository.update_lead(context.lead_id, context.tenant_id, updates)

        reason_text = reason.strip() or "Leadgegevens bijgewerkt"
        await deps.repository.create_timeline_event(timeline_event(
            context,
            EventType.LEAD_UPDATE,
            EventTitle.LEAD_DETAILS_UPDATED,
            reason_text,
            {"updatedFields": changed, "confidence": confidence},
        ))

        logger.info(f"[UPDATE_LEAD_DETAILS] lead={context.lead_id} fields={changed} reason={reason_text}")
        return tool_success("Lead updated", updated_fields=changed)

    except LeadPipelineError as e:
        logger.warning(f"[UPDATE_LEAD_DETAILS] Rejected: {e}")
        return tool_failure(str(e) if isinstance(e, ValidationFailedError) else "Failed to update lead", e)
