"""
Persistence boundary for leads, lead services, analyses and the timeline.

Every method is tenant-scoped by organization ID. Implementations raise
NotFoundError for missing leads/services and ServiceTypeNotFoundError when a
service type name does not resolve to an active type.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence
from uuid import UUID

from leadpipeline.models import (
    AIAnalysis,
    AIAnalysisCreate,
    Lead,
    LeadNote,
    LeadService,
    LeadStatus,
    PartnerMatch,
    PartnerOfferStats,
    PhotoAnalysis,
    PipelineStage,
    ServiceType,
    TimelineEvent,
    TimelineEventCreate,
    VisitReport,
)


class EventType:
    """Nature of a timeline event"""
    NOTE = "note"
    CALL_OUTCOME = "call_outcome"
    STAGE_CHANGE = "stage_change"
    AI = "ai"
    ANALYSIS = "analysis"
    ALERT = "alert"
    SERVICE_TYPE_CHANGE = "service_type_change"
    LEAD_UPDATE = "lead_update"
    PARTNER_SEARCH = "partner_search"


class EventTitle:
    """Human-readable labels shown in the timeline UI"""
    CALL_OUTCOME = "Belresultaat"
    STAGE_UPDATED = "Fase bijgewerkt"
    AUTO_DISQUALIFIED = "Auto-Disqualified"
    DISPATCHER_FAILED = "Partner matching mislukt"
    MANUAL_INTERVENTION = "Handmatige interventie vereist"
    GATEKEEPER_ANALYSIS = "Gatekeeper analyse voltooid"
    GATEKEEPER_FALLBACK = "Gatekeeper-triage (fallback)"
    LEAD_SCORE_UPDATED = "Leadscore bijgewerkt"
    SERVICE_TYPE_UPDATED = "Diensttype bijgewerkt"
    LEAD_DETAILS_UPDATED = "Leadgegevens bijgewerkt"
    PARTNER_SEARCH = "Partnerzoekactie"
    ESTIMATION_SAVED = "Schatting opgeslagen"
    ESTIMATION_MISSING = "Schatting ontbreekt"


def analysis_metadata(analysis: AIAnalysisCreate, fallback: bool = False) -> Dict[str, Any]:
    """Timeline metadata snapshot of a triage analysis."""
    metadata: Dict[str, Any] = {
        "urgencyLevel": str(analysis.urgency_level),
        "leadQuality": str(analysis.lead_quality),
        "recommendedAction": str(analysis.recommended_action),
        "preferredContactChannel": str(analysis.preferred_contact_channel),
        "suggestedContactMessage": analysis.suggested_contact_message,
        "missingInformation": list(analysis.missing_information),
    }
    if analysis.urgency_reason:
        metadata["urgencyReason"] = analysis.urgency_reason
    if fallback:
        metadata["fallback"] = True
    return metadata


class LeadsRepository(Protocol):
    async def get_lead(self, lead_id: UUID, tenant_id: UUID) -> Lead: ...

    async def update_lead(self, lead_id: UUID, tenant_id: UUID, fields: Dict[str, Any]) -> Lead: ...

    async def get_lead_service(self, service_id: UUID, tenant_id: UUID) -> LeadService: ...

    async def update_pipeline_stage(
        self, service_id: UUID, tenant_id: UUID, stage: PipelineStage
    ) -> LeadService: ...

    async def update_service_status(
        self, service_id: UUID, tenant_id: UUID, status: LeadStatus
    ) -> LeadService: ...

    async def update_lead_service_type(
        self, service_id: UUID, tenant_id: UUID, service_type: str
    ) -> LeadService: ...

    async def list_active_service_types(self, tenant_id: UUID) -> List[ServiceType]: ...

    async def list_notes_by_service(
        self, lead_id: UUID, service_id: UUID, tenant_id: UUID
    ) -> List[LeadNote]: ...

    async def create_lead_note(
        self, lead_id: UUID, tenant_id: UUID, author_id: Optional[UUID], note_type: str, body: str
    ) -> LeadNote: ...

    async def get_latest_photo_analysis(
        self, service_id: UUID, tenant_id: UUID
    ) -> Optional[PhotoAnalysis]: ...

    async def create_ai_analysis(self, params: AIAnalysisCreate) -> AIAnalysis: ...

    async def get_latest_ai_analysis(self, service_id: UUID, tenant_id: UUID) -> Optional[AIAnalysis]: ...

    async def create_timeline_event(self, event: TimelineEventCreate) -> TimelineEvent: ...

    async def find_matching_partners(
        self,
        tenant_id: UUID,
        lead_id: UUID,
        service_type: str,
        zip_code: str,
        radius_km: int,
        exclude_partner_ids: Sequence[UUID],
    ) -> List[PartnerMatch]: ...

    async def get_partner_offer_stats_since(
        self, tenant_id: UUID, partner_ids: Sequence[UUID], since: datetime
    ) -> Dict[UUID, PartnerOfferStats]: ...

    async def get_latest_draft_quote_id(self, service_id: UUID, tenant_id: UUID) -> Optional[UUID]: ...

    async def has_non_draft_quote(self, service_id: UUID, tenant_id: UUID) -> bool: ...

    async def get_latest_accepted_quote_id(self, service_id: UUID, tenant_id: UUID) -> Optional[UUID]: ...

    async def get_visit_report(self, appointment_id: UUID, tenant_id: UUID) -> Optional[VisitReport]: ...
