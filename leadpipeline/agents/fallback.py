"""
Fallback and auto-escalation after an agent run.

The model decides which tools to call, so a run can end without the side
effect an orchestrator depends on. after_run() lists what is missing; the
orchestrator retries once through RetryStateMachine and then hands the
remaining gaps to FallbackService, which writes a clearly labeled default
record or forces a safe stage.

Every FallbackService operation is best-effort: failures are logged and never
fail the calling run, and each operation is safe to apply on top of whatever
partial state the run left behind.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from leadpipeline.agents.state import ToolCallTracker, ToolName
from leadpipeline.core.events import EventBus, LeadAutoDisqualified, publish_best_effort
from leadpipeline.core.normalization import has_non_empty_missing_information, resolve_preferred_channel
from leadpipeline.core.pipeline import PipelineStageMachine, is_terminal
from leadpipeline.core.repository import EventTitle, EventType, LeadsRepository, analysis_metadata
from leadpipeline.models import (
    Actor,
    ActorName,
    ActorType,
    AIAnalysisCreate,
    Lead,
    LeadQuality,
    LeadStatus,
    PipelineStage,
    RecommendedAction,
    TimelineEventCreate,
    UrgencyLevel,
)

logger = logging.getLogger(__name__)

FALLBACK_MISSING_INFORMATION = "Intake validatie niet voltooid door AI"
FALLBACK_ANALYSIS_SUMMARY = "AI analyse kon niet worden voltooid. Handmatige beoordeling vereist."
FALLBACK_CONTACT_MESSAGE = "Beste {name}, bedankt voor uw aanvraag. Kunt u ons meer details geven over uw project?"
AUTO_DISQUALIFY_SUMMARY = "AI detected Junk quality. Lead automatically moved to Disqualified."

INSUFFICIENT_INTAKE_ALERT = (
    "Onvoldoende intakegegevens voor een betrouwbare conceptofferte. "
    "Vraag aanvullende metingen/details op voordat de offerte wordt opgesteld."
)
INSUFFICIENT_INTAKE_STAGE_REASON = "Onvoldoende intakegegevens voor betrouwbare conceptofferte; aanvullende metingen nodig."
ESTIMATION_MISSING_ALERT = "Estimator heeft geen schatting opgeslagen. Handmatige controle vereist."
PARTNER_MATCHING_ALERT = "Dispatcher heeft geen partners gezocht. Handmatige controle vereist."
AUDIT_MISSING_REASON = "Audit Agent heeft geen auditresultaat ingediend. Handmatige controle vereist."

REASON_ANALYSIS_UNAVAILABLE = "gatekeeper_analysis_unavailable"
REASON_REQUEST_INFO = "gatekeeper_request_info"
REASON_MISSING_INFORMATION = "gatekeeper_missing_information"


class RecoveryKind(str, Enum):
    FALLBACK_ANALYSIS = "fallback_analysis"
    ESTIMATION_MISSING_ALERT = "estimation_missing_alert"
    PARTNER_MATCHING_ALERT = "partner_matching_alert"
    MANUAL_INTERVENTION = "manual_intervention"
    FALLBACK_CALL_NOTE = "fallback_call_note"


RECOVERY_BY_TOOL: Dict[str, RecoveryKind] = {
    ToolName.SAVE_ANALYSIS: RecoveryKind.FALLBACK_ANALYSIS,
    ToolName.SAVE_ESTIMATION: RecoveryKind.ESTIMATION_MISSING_ALERT,
    ToolName.FIND_MATCHING_PARTNERS: RecoveryKind.PARTNER_MATCHING_ALERT,
    ToolName.SUBMIT_AUDIT_RESULT: RecoveryKind.MANUAL_INTERVENTION,
    ToolName.SAVE_NOTE: RecoveryKind.FALLBACK_CALL_NOTE,
}


@dataclass(frozen=True)
class RecoveryAction:
    kind: RecoveryKind
    tool_name: str


def missing_tools(required_tools: Iterable[str], tracker: ToolCallTracker) -> List[str]:
    return [name for name in required_tools if not tracker.was_called(name)]


def after_run(required_tools: Iterable[str], tracker: ToolCallTracker) -> List[RecoveryAction]:
    """
    Map every mandatory tool that did not fire onto a recovery action.

    Tools without a registered recovery escalate to manual intervention.
    """
    actions = []
    for name in missing_tools(required_tools, tracker):
        kind = RECOVERY_BY_TOOL.get(name, RecoveryKind.MANUAL_INTERVENTION)
        actions.append(RecoveryAction(kind=kind, tool_name=name))
    return actions


def build_retry_instruction(missing: Iterable[str]) -> str:
    """Follow-up instruction sent to the model on the single retry."""
    tool_list = ", ".join(missing)
    return (
        f"You did not call the required tool(s): {tool_list}. "
        f"You MUST call {tool_list} now, with your best assessment of the information above. "
        "Do not answer in text; respond only with the tool call(s)."
    )


# =============================================================================
# RETRY STATE MACHINE
# =============================================================================

class RetryPhase(str, Enum):
    ATTEMPTED = "attempted"
    RETRIED = "retried"
    ESCALATED = "escalated"
    COMPLETED = "completed"


class RetryStateMachine:
    """
    Attempted -> Retried -> Escalated, with at most one retry.

    A run that satisfies its mandatory tools completes from Attempted or
    Retried. Any other move raises RuntimeError.
    """

    def __init__(self):
        self.phase = RetryPhase.ATTEMPTED
        self.retried = False

    @property
    def can_retry(self) -> bool:
        return self.phase == RetryPhase.ATTEMPTED

    def begin_retry(self) -> None:
        if self.phase != RetryPhase.ATTEMPTED:
            raise RuntimeError(f"cannot retry from phase {self.phase.value}")
        self.retried = True
        self.phase = RetryPhase.RETRIED

    def escalate(self) -> None:
        if self.phase not in (RetryPhase.ATTEMPTED, RetryPhase.RETRIED):
            raise RuntimeError(f"cannot escalate from phase {self.phase.value}")
        self.phase = RetryPhase.ESCALATED

    def complete(self) -> None:
        if self.phase not in (RetryPhase.ATTEMPTED, RetryPhase.RETRIED):
            raise RuntimeError(f"cannot complete from phase {self.phase.value}")
        self.phase = RetryPhase.COMPLETED


# =============================================================================
# FALLBACK SERVICE
# =============================================================================

class FallbackService:
    """Deterministic repairs for runs that ended without their mandatory side effects."""

    def __init__(
        self,
        repository: LeadsRepository,
        stage_machine: PipelineStageMachine,
        event_bus: Optional[EventBus] = None,
    ):
        self.repository = repository
        self.stage_machine = stage_machine
        self.event_bus = event_bus

    async def create_fallback_analysis(
        self, lead: Lead, service_id: UUID, tenant_id: UUID
    ) -> Optional[Dict[str, Any]]:
        """
        Persist a low-confidence RequestInfo analysis and a fallback timeline event.

        Returns the analysis metadata, or None when the analysis could not be
        stored. Never changes the pipeline stage.
        """
        channel = resolve_preferred_channel(lead.has_phone)
        params = AIAnalysisCreate(
            lead_id=lead.id,
            lead_service_id=service_id,
            organization_id=tenant_id,
            urgency_level=UrgencyLevel.MEDIUM,
            lead_quality=LeadQuality.POTENTIAL,
            recommended_action=RecommendedAction.REQUEST_INFO,
            missing_information=[FALLBACK_MISSING_INFORMATION],
            preferred_contact_channel=channel,
            suggested_contact_message=FALLBACK_CONTACT_MESSAGE.format(name=lead.consumer_first_name),
            summary=FALLBACK_ANALYSIS_SUMMARY,
        )

        try:
            await self.repository.create_ai_analysis(params)
        except Exception as e:
            logger.error(f"[FALLBACK] Failed to create fallback analysis for service {service_id}: {e}")
            return None

        metadata = analysis_metadata(params, fallback=True)
        await self._write_event(TimelineEventCreate(
            lead_id=lead.id,
            service_id=service_id,
            organization_id=tenant_id,
            actor_type=ActorType.AI,
            actor_name=ActorName.GATEKEEPER,
            event_type=EventType.AI,
            title=EventTitle.GATEKEEPER_FALLBACK,
            summary=FALLBACK_ANALYSIS_SUMMARY,
            metadata=metadata,
        ))

        logger.warning(f"[FALLBACK] Created fallback analysis for lead {lead.id} service {service_id} (channel={channel})")
        return metadata

    async def maybe_auto_disqualify_junk(self, lead_id: UUID, service_id: UUID, tenant_id: UUID) -> bool:
        """
        Move a service whose latest analysis says Junk to Lost/Disqualified.

        The status is written before the stage, so a failed stage write leaves
        a Disqualified service that the next call moves on to Lost. A no-op
        once the service is Lost/Disqualified or otherwise terminal, so it can
        run after every Gatekeeper run. Returns True when it acted.
        """
        try:
            service = await self.repository.get_lead_service(service_id, tenant_id)
            already_disqualified = service.status == LeadStatus.DISQUALIFIED.value
            if already_disqualified:
                if service.pipeline_stage == PipelineStage.LOST.value:
                    return False
            elif is_terminal(service.status, service.pipeline_stage):
                return False

            analysis = await self.repository.get_latest_ai_analysis(service_id, tenant_id)
            if analysis is None or analysis.lead_quality != LeadQuality.JUNK.value:
                return False

            logger.warning(f"[FALLBACK] Auto-disqualifying Junk lead {lead_id} service {service_id}")

            actor = Actor(type=ActorType.AI, name=ActorName.GATEKEEPER)
            metadata = {
                "leadQuality": str(analysis.lead_quality),
                "recommendedAction": str(analysis.recommended_action),
                "analysisId": str(analysis.id),
                "reason": "junk_quality",
            }
            if not already_disqualified:
                await self.repository.update_service_status(service_id, tenant_id, LeadStatus.DISQUALIFIED)
            result = await self.stage_machine.transition(
                tenant_id,
                lead_id,
                service_id,
                PipelineStage.LOST,
                AUTO_DISQUALIFY_SUMMARY,
                actor,
                force=True,
                metadata=metadata,
                title=EventTitle.AUTO_DISQUALIFIED,
            )

            if not result.changed:
                await self._write_event(TimelineEventCreate(
                    lead_id=lead_id,
                    service_id=service_id,
                    organization_id=tenant_id,
                    actor_type=actor.type,
                    actor_name=actor.name,
                    event_type=EventType.STAGE_CHANGE,
                    title=EventTitle.AUTO_DISQUALIFIED,
                    summary=AUTO_DISQUALIFY_SUMMARY,
                    metadata=metadata,
                ))

            await publish_best_effort(self.event_bus, LeadAutoDisqualified(
                lead_id=lead_id,
                lead_service_id=service_id,
                tenant_id=tenant_id,
                analysis_id=analysis.id,
                old_stage=result.old_stage,
                old_status=str(service.status),
            ))
            return True
        except Exception as e:
            logger.error(f"[FALLBACK] Junk auto-disqualify failed for service {service_id}: {e}")
            return False

    async def check_insufficient_intake(self, service_id: UUID, tenant_id: UUID) -> Tuple[bool, str]:
        """Whether the latest triage leaves too little information to draft a quote."""
        try:
            analysis = await self.repository.get_latest_ai_analysis(service_id, tenant_id)
        except Exception as e:
            logger.warning(f"[FALLBACK] Could not load latest analysis for service {service_id}: {e}")
            analysis = None

        if analysis is None:
            return True, REASON_ANALYSIS_UNAVAILABLE
        if (analysis.recommended_action or "").strip().lower() == RecommendedAction.REQUEST_INFO.value.lower():
            return True, REASON_REQUEST_INFO
        if has_non_empty_missing_information(analysis.missing_information):
            return True, REASON_MISSING_INFORMATION
        return False, ""

    async def apply_insufficient_intake_gate(
        self,
        lead_id: UUID,
        service_id: UUID,
        tenant_id: UUID,
        reason: str,
        stage_already_updated: bool,
        actor: Actor,
    ) -> bool:
        """
        Alert that a quote could not be drafted and park the service in Nurturing.

        The stage is left alone when the run already moved it or when it is
        already Nurturing. Returns True when the stage was changed.
        """
        await self.record_alert(
            lead_id,
            service_id,
            tenant_id,
            EventTitle.ESTIMATION_MISSING,
            INSUFFICIENT_INTAKE_ALERT,
            actor,
            metadata={"trigger": reason},
        )
        logger.warning(f"[FALLBACK] DraftQuote skipped due to insufficient intake for service {service_id} (reason={reason})")

        if stage_already_updated:
            return False

        try:
            result = await self.stage_machine.transition(
                tenant_id,
                lead_id,
                service_id,
                PipelineStage.NURTURING,
                INSUFFICIENT_INTAKE_STAGE_REASON,
                actor,
                force=True,
                metadata={"trigger": reason, "fallback": True},
            )
        except Exception as e:
            logger.error(f"[FALLBACK] Fallback stage update to Nurturing failed for service {service_id}: {e}")
            return False

        if not result.changed:
            logger.info(f"[FALLBACK] Skipping fallback stage update for service {service_id}: already Nurturing")
        return result.changed

    async def record_alert(
        self,
        lead_id: UUID,
        service_id: UUID,
        tenant_id: UUID,
        title: str,
        summary: str,
        actor: Actor,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Write an alert timeline event flagged as a fallback."""
        event_metadata = {"fallback": True}
        event_metadata.update(metadata or {})
        return await self._write_event(TimelineEventCreate(
            lead_id=lead_id,
            service_id=service_id,
            organization_id=tenant_id,
            actor_type=actor.type,
            actor_name=actor.name,
            event_type=EventType.ALERT,
            title=title,
            summary=summary,
            metadata=event_metadata,
        ))

    async def escalate_to_manual_intervention(
        self,
        lead_id: UUID,
        service_id: UUID,
        tenant_id: UUID,
        reason: str,
        actor: Actor,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Force the service into Manual_Intervention. Returns True when the stage changed."""
        event_metadata = {"fallback": True}
        event_metadata.update(metadata or {})
        try:
            result = await self.stage_machine.transition(
                tenant_id,
                lead_id,
                service_id,
                PipelineStage.MANUAL_INTERVENTION,
                reason,
                actor,
                force=True,
                metadata=event_metadata,
                title=EventTitle.MANUAL_INTERVENTION,
            )
        except Exception as e:
            logger.error(f"[FALLBACK] Escalation to Manual_Intervention failed for service {service_id}: {e}")
            return False

        logger.warning(f"[FALLBACK] Escalated service {service_id} to Manual_Intervention: {reason}")
        return result.changed

    async def _write_event(self, event: TimelineEventCreate) -> bool:
        try:
            await self.repository.create_timeline_event(event)
            return True
        except Exception as e:
            logger.error(f"[FALLBACK] Failed to write timeline event '{event.title}' for lead {event.lead_id}: {e}")
            return False
