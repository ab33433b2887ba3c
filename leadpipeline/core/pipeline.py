"""
Pipeline stage machine.

The machine is the only place a lead service's stage changes. It validates
the requested stage, applies the lifecycle guards, persists the new stage,
and pairs every change with a timeline event and a best-effort
PipelineStageChanged notification. The model supplies intent; legality is
decided here.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional
from uuid import UUID

from leadpipeline.core.events import EventBus, PipelineStageChanged, publish_best_effort
from leadpipeline.core.normalization import (
    has_non_empty_missing_information,
    normalize_pipeline_stage,
)
from leadpipeline.core.repository import EventTitle, EventType, LeadsRepository
from leadpipeline.models import (
    Actor,
    LeadService,
    LeadStatus,
    PipelineStage,
    RecommendedAction,
    TimelineEventCreate,
)
from leadpipeline.utils.error_handling import (
    TerminalStateError,
    ValidationFailedError,
)

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({
    LeadStatus.CLOSED.value,
    LeadStatus.BAD_LEAD.value,
    LeadStatus.SURVEYED.value,
    LeadStatus.DISQUALIFIED.value,
})
TERMINAL_STAGES = frozenset({PipelineStage.COMPLETED.value, PipelineStage.LOST.value})


def is_terminal(status: str, stage: str) -> bool:
    return str(status) in TERMINAL_STATUSES or str(stage) in TERMINAL_STAGES


def validate_state_combination(status: str, stage: str) -> Optional[str]:
    """Return a reason string when the status/stage pair is inconsistent, else None."""
    status, stage = str(status), str(stage)
    if status == LeadStatus.BAD_LEAD.value and stage not in (
        PipelineStage.LOST.value,
        PipelineStage.TRIAGE.value,
        PipelineStage.MANUAL_INTERVENTION.value,
    ):
        return f"status {status} is only valid in stage Lost, Triage or Manual_Intervention (got {stage})"
    if status == LeadStatus.DISQUALIFIED.value and stage != PipelineStage.LOST.value:
        return f"status {status} requires stage Lost (got {stage})"
    return None


def validate_analysis_stage_transition(
    recommended_action: Optional[str],
    missing_information: Optional[Iterable[object]],
    target_stage: str,
) -> Optional[str]:
    """Block entering Estimation while the latest triage says intake is incomplete."""
    if str(target_stage) != PipelineStage.ESTIMATION.value:
        return None
    if (recommended_action or "").strip().lower() == RecommendedAction.REQUEST_INFO.value.lower():
        return "latest analysis recommends RequestInfo"
    if has_non_empty_missing_information(missing_information):
        return "latest analysis lists missing information"
    return None


def check_service_type_mutable(service: LeadService) -> None:
    """Service type is frozen once the service has left Triage."""
    if service.pipeline_stage != PipelineStage.TRIAGE.value:
        raise ValidationFailedError("Service type is locked after Triage")


@dataclass(frozen=True)
class TransitionResult:
    old_stage: str
    new_stage: str
    changed: bool


class PipelineStageMachine:
    """Validates, persists and records pipeline stage transitions."""

    def __init__(self, repository: LeadsRepository, event_bus: Optional[EventBus] = None):
        self.repository = repository
        self.event_bus = event_bus

    async def transition(
        self,
        tenant_id: UUID,
        lead_id: UUID,
        service_id: UUID,
        requested_stage: str,
        reason: str = "",
        actor: Optional[Actor] = None,
        *,
        force: bool = False,
        analysis_metadata: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        title: str = EventTitle.STAGE_UPDATED,
    ) -> TransitionResult:
        """
        Move a lead service to the requested stage.

        Args:
            requested_stage: Stage name or synonym; unknown values raise before any I/O
            reason: Human-readable reason stored as the timeline summary
            actor: Who requested the change (defaults to the system orchestrator)
            force: Skip lifecycle guards; used by fallback escalations
            analysis_metadata: Latest analysis snapshot to attach to the timeline event
            metadata: Extra timeline metadata

        Raises:
            InvalidStageError: unknown stage
            NotFoundError: service does not exist
            TerminalStateError / ValidationFailedError: a guard rejected the change
        """
        new_stage = normalize_pipeline_stage(requested_stage).value
        actor = actor or Actor(type="System", name="Orchestrator")

        service = await self.repository.get_lead_service(service_id, tenant_id)
        old_stage = str(service.pipeline_stage)

        if old_stage == new_stage:
            logger.info(
                f"[STAGE_MACHINE] Transition skipped for service {service_id}: already in {new_stage}"
            )
            return TransitionResult(old_stage=old_stage, new_stage=new_stage, changed=False)

        if not force:
            await self._check_guards(service, new_stage, tenant_id)

        await self.repository.update_pipeline_stage(service_id, tenant_id, PipelineStage(new_stage))

        reason_text = (reason or "").strip()
        event_metadata: Dict[str, Any] = {"oldStage": old_stage, "newStage": new_stage}
        if analysis_metadata:
            event_metadata["analysis"] = analysis_metadata
        if metadata:
            event_metadata.update(metadata)

        await self.repository.create_timeline_event(TimelineEventCreate(
            lead_id=lead_id,
            service_id=service_id,
            organization_id=tenant_id,
            actor_type=actor.type,
            actor_name=actor.name,
            event_type=EventType.STAGE_CHANGE,
            title=title,
            summary=reason_text or None,
            metadata=event_metadata,
        ))

        await publish_best_effort(self.event_bus, PipelineStageChanged(
            lead_id=lead_id,
            lead_service_id=service_id,
            tenant_id=tenant_id,
            old_stage=old_stage,
            new_stage=new_stage,
        ))

        logger.info(
            f"[STAGE_MACHINE] {actor.type}/{actor.name} moved service {service_id} "
            f"from {old_stage} to {new_stage} (reason: {reason_text or '(no reason provided)'})"
        )
        return TransitionResult(old_stage=old_stage, new_stage=new_stage, changed=True)

    async def _check_guards(self, service: LeadService, new_stage: str, tenant_id: UUID) -> None:
        if is_terminal(service.status, service.pipeline_stage):
            raise TerminalStateError(
                f"service {service.id} is in terminal state "
                f"(status={service.status}, stage={service.pipeline_stage})"
            )

        reason = validate_state_combination(service.status, new_stage)
        if reason:
            raise ValidationFailedError(f"invalid state combination: {reason}")

        if new_stage == PipelineStage.PROPOSAL.value:
            if not await self.repository.has_non_draft_quote(service.id, tenant_id):
                raise ValidationFailedError("Cannot move to Proposal while quote is still draft")

        if new_stage == PipelineStage.ESTIMATION.value:
            analysis = await self.repository.get_latest_ai_analysis(service.id, tenant_id)
            if analysis is not None:
                reason = validate_analysis_stage_transition(
                    analysis.recommended_action, analysis.missing_information, new_stage
                )
                if reason:
                    raise ValidationFailedError(f"Cannot move to Estimation while intake is incomplete: {reason}")
