"""
In-memory LeadsRepository and recording fakes for the external ports.

Records are copied on the way in and out, like rows from a database, so code
under test can never mutate the stored state behind the repository's back.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Set
from uuid import UUID, uuid4

from leadpipeline.models import (
    AIAnalysis,
    AIAnalysisCreate,
    Appointment,
    CatalogProductDetails,
    ContactChannel,
    DraftQuoteParams,
    DraftQuoteResult,
    Lead,
    LeadNote,
    LeadQuality,
    LeadService,
    LeadStatus,
    PartnerMatch,
    PartnerOfferParams,
    PartnerOfferResult,
    PartnerOfferStats,
    PhotoAnalysis,
    PipelineStage,
    ProductResult,
    RecommendedAction,
    ServiceType,
    TimelineEvent,
    TimelineEventCreate,
    UrgencyLevel,
    VisitReport,
)
from leadpipeline.utils.error_handling import ExternalCallFailedError, NotFoundError, ServiceTypeNotFoundError


class InMemoryLeadsRepository:
    def __init__(self):
        self.leads: Dict[UUID, Lead] = {}
        self.services: Dict[UUID, LeadService] = {}
        self.notes: List[LeadNote] = []
        self.analyses: List[AIAnalysis] = []
        self.photo_analyses: Dict[UUID, PhotoAnalysis] = {}
        self.events: List[TimelineEvent] = []
        self.service_types: List[ServiceType] = []
        self.partners: List[PartnerMatch] = []
        self.offer_stats: Dict[UUID, PartnerOfferStats] = {}
        self.visit_reports: Dict[UUID, VisitReport] = {}
        self.draft_quote_id: Optional[UUID] = None
        self.accepted_quote_id: Optional[UUID] = None
        self.non_draft_quote = False
        self.partner_searches: List[Dict[str, Any]] = []
        # Method names that raise ExternalCallFailedError when called
        self.failing: Set[str] = set()

    def _check(self, operation: str) -> None:
        if operation in self.failing:
            raise ExternalCallFailedError(f"{operation} unavailable")

    # Seeding helpers

    def add_lead(self, lead: Lead) -> Lead:
        self.leads[lead.id] = lead.model_copy(deep=True)
        return lead

    def add_service(self, service: LeadService) -> LeadService:
        self.services[service.id] = service.model_copy(deep=True)
        return service

    def add_analysis(self, params: AIAnalysisCreate) -> AIAnalysis:
        analysis = AIAnalysis(**params.model_dump())
        self.analyses.append(analysis)
        return analysis

    def stored_service(self, service_id: UUID) -> LeadService:
        return self.services[service_id]

    def events_titled(self, title: str) -> List[TimelineEvent]:
        return [event for event in self.events if event.title == title]

    # Leads

    async def get_lead(self, lead_id: UUID, tenant_id: UUID) -> Lead:
        self._check("get_lead")
        lead = self.leads.get(lead_id)
        if lead is None or lead.organization_id != tenant_id:
            raise NotFoundError(f"lead {lead_id} not found")
        return lead.model_copy(deep=True)

    async def update_lead(self, lead_id: UUID, tenant_id: UUID, fields: Dict[str, Any]) -> Lead:
        self._check("update_lead")
        lead = await self.get_lead(lead_id, tenant_id)
        for name, value in fields.items():
            setattr(lead, name, value)
        self.leads[lead_id] = lead
        return lead.model_copy(deep=True)

    # Services

    async def get_lead_service(self, service_id: UUID, tenant_id: UUID) -> LeadService:
        self._check("get_lead_service")
        service = self.services.get(service_id)
        if service is None or service.organization_id != tenant_id:
            raise NotFoundError(f"lead service {service_id} not found")
        return service.model_copy(deep=True)

    async def _set_service_field(self, service_id: UUID, tenant_id: UUID, name: str, value: Any) -> LeadService:
        service = await self.get_lead_service(service_id, tenant_id)
        setattr(service, name, value)
        self.services[service_id] = service
        return service.model_copy(deep=True)

    async def update_pipeline_stage(self, service_id: UUID, tenant_id: UUID, stage: PipelineStage) -> LeadService:
        self._check("update_pipeline_stage")
        return await self._set_service_field(service_id, tenant_id, "pipeline_stage", stage)

    async def update_service_status(self, service_id: UUID, tenant_id: UUID, status: LeadStatus) -> LeadService:
        self._check("update_service_status")
        return await self._set_service_field(service_id, tenant_id, "status", status)

    async def update_lead_service_type(self, service_id: UUID, tenant_id: UUID, service_type: str) -> LeadService:
        self._check("update_lead_service_type")
        key = service_type.strip().lower()
        match = next(
            (st for st in self.service_types if st.name.lower() == key or st.slug.lower() == key),
            None,
        )
        if match is None:
            raise ServiceTypeNotFoundError(f"service type {service_type!r} not found or inactive")
        return await self._set_service_field(service_id, tenant_id, "service_type", match.name)

    async def list_active_service_types(self, tenant_id: UUID) -> List[ServiceType]:
        self._check("list_active_service_types")
        return [st.model_copy() for st in self.service_types]

    # Notes

    async def list_notes_by_service(self, lead_id: UUID, service_id: UUID, tenant_id: UUID) -> List[LeadNote]:
        self._check("list_notes_by_service")
        return [note.model_copy() for note in self.notes if note.lead_id == lead_id]

    async def create_lead_note(
        self, lead_id: UUID, tenant_id: UUID, author_id: Optional[UUID], note_type: str, body: str
    ) -> LeadNote:
        self._check("create_lead_note")
        note = LeadNote(
            lead_id=lead_id,
            organization_id=tenant_id,
            author_id=author_id,
            author_email="verkoper@example.nl",
            type=note_type,
            body=body,
        )
        self.notes.append(note)
        return note.model_copy()

    # Analyses

    async def get_latest_photo_analysis(self, service_id: UUID, tenant_id: UUID) -> Optional[PhotoAnalysis]:
        self._check("get_latest_photo_analysis")
        return self.photo_analyses.get(service_id)

    async def create_ai_analysis(self, params: AIAnalysisCreate) -> AIAnalysis:
        self._check("create_ai_analysis")
        return self.add_analysis(params)

    async def get_latest_ai_analysis(self, service_id: UUID, tenant_id: UUID) -> Optional[AIAnalysis]:
        self._check("get_latest_ai_analysis")
        for analysis in reversed(self.analyses):
            if analysis.lead_service_id == service_id:
                return analysis.model_copy(deep=True)
        return None

    # Timeline

    async def create_timeline_event(self, event: TimelineEventCreate) -> TimelineEvent:
        self._check("create_timeline_event")
        stored = TimelineEvent(**event.model_dump())
        self.events.append(stored)
        return stored

    # Partners

    async def find_matching_partners(
        self,
        tenant_id: UUID,
        lead_id: UUID,
        service_type: str,
        zip_code: str,
        radius_km: int,
        exclude_partner_ids: Sequence[UUID],
    ) -> List[PartnerMatch]:
        self._check("find_matching_partners")
        self.partner_searches.append({
            "service_type": service_type,
            "zip_code": zip_code,
            "radius_km": radius_km,
            "exclude_partner_ids": list(exclude_partner_ids),
        })
        return [p for p in self.partners if p.id not in exclude_partner_ids and p.distance_km <= radius_km]

    async def get_partner_offer_stats_since(
        self, tenant_id: UUID, partner_ids: Sequence[UUID], since: datetime
    ) -> Dict[UUID, PartnerOfferStats]:
        self._check("get_partner_offer_stats_since")
        return {pid: stats for pid, stats in self.offer_stats.items() if pid in partner_ids}

    # Quotes

    async def get_latest_draft_quote_id(self, service_id: UUID, tenant_id: UUID) -> Optional[UUID]:
        self._check("get_latest_draft_quote_id")
        return self.draft_quote_id

    async def has_non_draft_quote(self, service_id: UUID, tenant_id: UUID) -> bool:
        self._check("has_non_draft_quote")
        return self.non_draft_quote

    async def get_latest_accepted_quote_id(self, service_id: UUID, tenant_id: UUID) -> Optional[UUID]:
        self._check("get_latest_accepted_quote_id")
        return self.accepted_quote_id

    # Appointments

    async def get_visit_report(self, appointment_id: UUID, tenant_id: UUID) -> Optional[VisitReport]:
        self._check("get_visit_report")
        return self.visit_reports.get(appointment_id)


class RecordingEventBus:
    def __init__(self, fail: bool = False):
        self.published = []
        self.fail = fail

    async def publish(self, event) -> None:
        if self.fail:
            raise RuntimeError("event bus down")
        self.published.append(event)

    def names(self) -> List[str]:
        return [event.name for event in self.published]


# =============================================================================
# PORT FAKES
# =============================================================================

class FakeProductSearcher:
    def __init__(self, products: List[ProductResult]):
        self.products = products
        self.queries: List[Dict[str, Any]] = []

    async def search(self, tenant_id, query, limit, min_score, use_catalog) -> List[ProductResult]:
        self.queries.append({"query": query, "limit": limit, "min_score": min_score, "use_catalog": use_catalog})
        return [product.model_copy() for product in self.products[:limit]]


class FakeCatalogReader:
    def __init__(self, details: List[CatalogProductDetails]):
        self.details = {detail.id: detail for detail in details}

    async def get_product_details(self, tenant_id, product_ids) -> List[CatalogProductDetails]:
        return [self.details[pid] for pid in product_ids if pid in self.details]


class RecordingQuoteDrafter:
    def __init__(self):
        self.drafts: List[DraftQuoteParams] = []

    async def draft_quote(self, params: DraftQuoteParams) -> DraftQuoteResult:
        self.drafts.append(params)
        return DraftQuoteResult(
            quote_id=params.quote_id or uuid4(),
            quote_number=f"OFF-2026-{len(self.drafts):04d}",
            item_count=len(params.items),
        )


class RecordingOfferCreator:
    def __init__(self):
        self.offers: List[PartnerOfferParams] = []

    async def create_offer_from_quote(self, tenant_id, params: PartnerOfferParams) -> PartnerOfferResult:
        self.offers.append(params)
        return PartnerOfferResult(offer_id=uuid4(), public_token=f"tok-{len(self.offers)}")


class FakeAppointmentBooker:
    def __init__(self, existing: Optional[Appointment] = None):
        self.existing = existing
        self.booked: List[Dict[str, Any]] = []
        self.rescheduled: List[Dict[str, Any]] = []
        self.cancelled: List[UUID] = []

    async def get_existing_appointment(self, tenant_id, service_id, user_id) -> Optional[Appointment]:
        return self.existing

    async def book_visit(self, tenant_id, service_id, user_id, start_time, end_time, title, send_confirmation_email):
        self.booked.append({
            "start_time": start_time,
            "end_time": end_time,
            "title": title,
            "send_confirmation_email": send_confirmation_email,
        })
        return Appointment(lead_service_id=service_id, title=title, start_time=start_time, end_time=end_time)

    async def reschedule_visit(self, tenant_id, appointment_id, start_time, end_time, title=None):
        self.rescheduled.append({"appointment_id": appointment_id, "start_time": start_time, "title": title})
        return Appointment(
            id=appointment_id,
            lead_service_id=self.existing.lead_service_id,
            title=title or self.existing.title,
            start_time=start_time,
            end_time=end_time,
        )

    async def cancel_visit(self, tenant_id, appointment_id, reason: str = "") -> None:
        self.cancelled.append(appointment_id)


class FakeLeadScorer:
    def __init__(self, score: int = 72, fail: bool = False):
        self.score = score
        self.fail = fail
        self.calls = 0

    async def recalculate(self, lead_id, service_id, tenant_id) -> int:
        self.calls += 1
        if self.fail:
            raise RuntimeError("scoring unavailable")
        return self.score


# =============================================================================
# BUILDERS
# =============================================================================

def analysis_params(lead: Lead, service: LeadService, **overrides: Any) -> AIAnalysisCreate:
    """A complete ScheduleSurvey triage for the service, with overrides applied."""
    values = dict(
        lead_id=lead.id,
        lead_service_id=service.id,
        organization_id=service.organization_id,
        urgency_level=UrgencyLevel.MEDIUM,
        lead_quality=LeadQuality.POTENTIAL,
        recommended_action=RecommendedAction.SCHEDULE_SURVEY,
        missing_information=[],
        preferred_contact_channel=ContactChannel.WHATSAPP,
        summary="Complete aanvraag",
    )
    values.update(overrides)
    return AIAnalysisCreate(**values)


def set_stage(repository: InMemoryLeadsRepository, service: LeadService, stage: PipelineStage, status=None) -> None:
    stored = repository.stored_service(service.id)
    stored.pipeline_stage = stage
    if status is not None:
        stored.status = status
