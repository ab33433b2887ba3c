"""
Audit Tools

SubmitAuditResult records the auditor's verdict on a visit report or call log.
"""

import logging
from typing import List, Optional

from langchain_core.tools import tool
from langsmith import traceable
from pydantic import BaseModel, Field

from leadpipeline.agents.state import ToolName
from leadpipeline.core.events import AuditCompleted, publish_best_effort
from leadpipeline.core.repository import EventTitle, EventType
from leadpipeline.models import Actor, ActorName, ActorType, PipelineStage
from leadpipeline.utils.error_handling import LeadPipelineError, MissingContextError, tool_failure, tool_success

from .toolbox import get_tool_dependencies, timeline_event

logger = logging.getLogger(__name__)

AUDIT_TRIGGER = "audit_agent"
DEFAULT_AUDIT_SUMMARY = "Audit completed."
AUDIT_ACTOR = Actor(type=ActorType.AI, name=ActorName.AUDITOR)


class SubmitAuditResultParams(BaseModel):
    """Audit verdict."""
    passed: bool = Field(..., description="True when all required information is present")
    summary: str = Field(default="", description="Short Dutch explanation or confirmation")
    missing: List[str] = Field(default_factory=list, description="Required items that are missing or too thin")


def clean_missing_items(items: Optional[List[str]]) -> List[str]:
    return [item.strip() for item in items or [] if item and item.strip()]


@tool(ToolName.SUBMIT_AUDIT_RESULT, args_schema=SubmitAuditResultParams)
@traceable(name=ToolName.SUBMIT_AUDIT_RESULT)
async def submit_audit_result(passed: bool, summary: str = "", missing: Optional[List[str]] = None) -> str:
    """
    Submit the audit result. If required info is missing, the lead service is
    flagged for manual intervention; list exactly what is missing.
    """
    try:
        deps = get_tool_dependencies()
        context = deps.require_context()

        findings = clean_missing_items(missing)
        summary_text = summary.strip() or DEFAULT_AUDIT_SUMMARY
        audit_passed = passed and not findings

        if not audit_passed:
            try:
                await deps.stage_machine.transition(
                    context.tenant_id,
                    context.lead_id,
                    context.service_id,
                    PipelineStage.MANUAL_INTERVENTION.value,
                    summary_text,
                    AUDIT_ACTOR,
                    force=True,
                    title=EventTitle.MANUAL_INTERVENTION,
                    metadata={"trigger": AUDIT_TRIGGER},
                )
            except LeadPipelineError as e:
                logger.error(f"[AUDIT] Failed to set Manual_Intervention for service {context.service_id}: {e}")

        metadata = {"trigger": AUDIT_TRIGGER}
        if findings:
            metadata["missing"] = findings
        try:
            await deps.repository.create_timeline_event(timeline_event(
                context,
                EventType.ALERT,
                EventTitle.MANUAL_INTERVENTION,
                summary_text,
                metadata,
                actor=AUDIT_ACTOR,
            ))
        except LeadPipelineError as e:
            logger.warning(f"[AUDIT] Failed to write audit timeline event: {e}")

        await publish_best_effort(deps.event_bus, AuditCompleted(
            lead_id=context.lead_id,
            lead_service_id=context.service_id,
            tenant_id=context.tenant_id,
            passed=audit_passed,
            findings=findings,
        ))

        deps.tracker.mark(ToolName.SUBMIT_AUDIT_RESULT)
        logger.info(
            f"[AUDIT] run={deps.tracker.run_id} service={context.service_id} "
            f"passed={audit_passed} missing={len(findings)}"
        )
        return tool_success("Audit stored", passed=audit_passed, missing=findings)

    except MissingContextError as e:
        logger.warning(f"[AUDIT] Rejected: {e}")
        return tool_failure("Missing lead context", e)
    except LeadPipelineError as e:
        return tool_failure("Failed to store audit result", e)
