"""
Database client setup and the Supabase-backed leads repository
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import UUID

from supabase import Client, create_client

from leadpipeline.config import Settings, get_settings_sync
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
from leadpipeline.utils.error_handling import ExternalCallFailedError, NotFoundError, ServiceTypeNotFoundError

logger = logging.getLogger(__name__)


class Tables:
    LEADS = "leads"
    LEAD_SERVICES = "lead_services"
    LEAD_NOTES = "lead_notes"
    SERVICE_TYPES = "service_types"
    AI_ANALYSES = "lead_ai_analyses"
    PHOTO_ANALYSES = "lead_photo_analyses"
    TIMELINE_EVENTS = "lead_timeline_events"
    QUOTES = "quotes"
    VISIT_REPORTS = "appointment_visit_reports"


class DatabaseClient:
    """Supabase database client wrapper"""

    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings
        self._client: Optional[Client] = None

    def _initialize_client(self):
        if self._client is not None:
            return

        settings = self._settings or get_settings_sync()
        if not settings.supabase_url or not settings.supabase_service_key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")

        try:
            # Service key for backend operations (bypasses RLS)
            self._client = create_client(settings.supabase_url, settings.supabase_service_key)
            logger.info("Supabase client initialized successfully with service key")
        except Exception as e:
            logger.error(f"Failed to initialize Supabase client: {e}")
            raise

    @property
    def client(self) -> Client:
        """Get the Supabase client instance"""
        if self._client is None:
            self._initialize_client()
        return self._client

    async def async_client(self) -> Client:
        """Get the Supabase client instance without blocking the event loop"""
        if self._client is None:
            await asyncio.to_thread(self._initialize_client)
        return self._client

    async def async_health_check(self) -> bool:
        try:
            client = await self.async_client()
            await asyncio.to_thread(lambda: client.table(Tables.LEADS).select("id").limit(1).execute())
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False


class SupabaseLeadsRepository:
    """
    LeadsRepository over Supabase tables and RPCs.

    supabase-py is synchronous, so every query runs in a worker thread. Every
    query filters on organization_id.
    """

    def __init__(self, db: DatabaseClient):
        self.db = db

    async def _execute(self, build: Callable[[Client], Any], operation: str) -> List[Dict[str, Any]]:
        client = await self.db.async_client()
        try:
            response = await asyncio.to_thread(lambda: build(client).execute())
        except Exception as e:
            logger.error(f"[REPOSITORY] {operation} failed: {e}")
            raise ExternalCallFailedError(f"{operation} failed: {e}") from e
        data = response.data
        if data is None:
            return []
        return data if isinstance(data, list) else [data]

    async def _single(self, build: Callable[[Client], Any], operation: str, missing: str) -> Dict[str, Any]:
        rows = await self._execute(build, operation)
        if not rows:
            raise NotFoundError(missing)
        return rows[0]

    # Leads

    async def get_lead(self, lead_id: UUID, tenant_id: UUID) -> Lead:
        row = await self._single(
            lambda c: c.table(Tables.LEADS).select("*").eq("id", str(lead_id)).eq("organization_id", str(tenant_id)).limit(1),
            "get_lead",
            f"lead {lead_id} not found",
        )
        return Lead.model_validate(row)

    async def update_lead(self, lead_id: UUID, tenant_id: UUID, fields: Dict[str, Any]) -> Lead:
        row = await self._single(
            lambda c: c.table(Tables.LEADS).update(fields).eq("id", str(lead_id)).eq("organization_id", str(tenant_id)),
            "update_lead",
            f"lead {lead_id} not found",
        )
        return Lead.model_validate(row)

    # Lead services

    async def get_lead_service(self, service_id: UUID, tenant_id: UUID) -> LeadService:
        row = await self._single(
            lambda c: c.table(Tables.LEAD_SERVICES).select("*").eq("id", str(service_id)).eq("organization_id", str(tenant_id)).limit(1),
            "get_lead_service",
            f"lead service {service_id} not found",
        )
        return LeadService.model_validate(row)

    async def _update_service(self, service_id: UUID, tenant_id: UUID, fields: Dict[str, Any], operation: str) -> LeadService:
        row = await self._single(
            lambda c: c.table(Tables.LEAD_SERVICES).update(fields).eq("id", str(service_id)).eq("organization_id", str(tenant_id)),
            operation,
            f"lead service {service_id} not found",
        )
        return LeadService.model_validate(row)

    async def update_pipeline_stage(self, service_id: UUID, tenant_id: UUID, stage: PipelineStage) -> LeadService:
        return await self._update_service(service_id, tenant_id, {"pipeline_stage": str(stage)}, "update_pipeline_stage")

    async def update_service_status(self, service_id: UUID, tenant_id: UUID, status: LeadStatus) -> LeadService:
        return await self._update_service(service_id, tenant_id, {"status": str(status)}, "update_service_status")

    async def update_lead_service_type(self, service_id: UUID, tenant_id: UUID, service_type: str) -> LeadService:
        service_types = await self.list_active_service_types(tenant_id)
        if not any(st.name == service_type for st in service_types):
            raise ServiceTypeNotFoundError(f"service type {service_type!r} not found or inactive")
        return await self._update_service(service_id, tenant_id, {"service_type": service_type}, "update_lead_service_type")

    async def list_active_service_types(self, tenant_id: UUID) -> List[ServiceType]:
        rows = await self._execute(
            lambda c: c.table(Tables.SERVICE_TYPES).select("*").eq("organization_id", str(tenant_id)).eq("is_active", True),
            "list_active_service_types",
        )
        return [ServiceType.model_validate(row) for row in rows]

    # Notes

    async def list_notes_by_service(self, lead_id: UUID, service_id: UUID, tenant_id: UUID) -> List[LeadNote]:
        rows = await self._execute(
            lambda c: c.table(Tables.LEAD_NOTES)
            .select("*")
            .eq("lead_id", str(lead_id))
            .eq("organization_id", str(tenant_id))
            .order("created_at", desc=True),
            "list_notes_by_service",
        )
        return [LeadNote.model_validate(row) for row in rows]

    async def create_lead_note(
        self, lead_id: UUID, tenant_id: UUID, author_id: Optional[UUID], note_type: str, body: str
    ) -> LeadNote:
        payload = {
            "lead_id": str(lead_id),
            "organization_id": str(tenant_id),
            "author_id": str(author_id) if author_id else None,
            "type": note_type,
            "body": body,
        }
        row = await self._single(
            lambda c: c.table(Tables.LEAD_NOTES).insert(payload),
            "create_lead_note",
            "note insert returned no row",
        )
        return LeadNote.model_validate(row)

    # Analyses

    async def get_latest_photo_analysis(self, service_id: UUID, tenant_id: UUID) -> Optional[PhotoAnalysis]:
        rows = await self._execute(
            lambda c: c.table(Tables.PHOTO_ANALYSES)
            .select("*")
            .eq("lead_service_id", str(service_id))
            .eq("organization_id", str(tenant_id))
            .order("created_at", desc=True)
            .limit(1),
            "get_latest_photo_analysis",
        )
        return PhotoAnalysis.model_validate(rows[0]) if rows else None

    async def create_ai_analysis(self, params: AIAnalysisCreate) -> AIAnalysis:
        row = await self._single(
            lambda c: c.table(Tables.AI_ANALYSES).insert(params.model_dump(mode="json")),
            "create_ai_analysis",
            "analysis insert returned no row",
        )
        return AIAnalysis.model_validate(row)

    async def get_latest_ai_analysis(self, service_id: UUID, tenant_id: UUID) -> Optional[AIAnalysis]:
        rows = await self._execute(
            lambda c: c.table(Tables.AI_ANALYSES)
            .select("*")
            .eq("lead_service_id", str(service_id))
            .eq("organization_id", str(tenant_id))
            .order("created_at", desc=True)
            .limit(1),
            "get_latest_ai_analysis",
        )
        return AIAnalysis.model_validate(rows[0]) if rows else None

    # Timeline

    async def create_timeline_event(self, event: TimelineEventCreate) -> TimelineEvent:
        row = await self._single(
            lambda c: c.table(Tables.TIMELINE_EVENTS).insert(event.model_dump(mode="json")),
            "create_timeline_event",
            "timeline insert returned no row",
        )
        return TimelineEvent.model_validate(row)

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
        params = {
            "p_organization_id": str(tenant_id),
            "p_lead_id": str(lead_id),
            "p_service_type": service_type,
            "p_zip_code": zip_code,
            "p_radius_km": radius_km,
            "p_exclude_ids": [str(partner_id) for partner_id in exclude_partner_ids],
        }
        rows = await self._execute(lambda c: c.rpc("find_matching_partners", params), "find_matching_partners")
        return [PartnerMatch.model_validate(row) for row in rows]

    async def get_partner_offer_stats_since(
        self, tenant_id: UUID, partner_ids: Sequence[UUID], since: datetime
    ) -> Dict[UUID, PartnerOfferStats]:
        params = {
            "p_organization_id": str(tenant_id),
            "p_partner_ids": [str(partner_id) for partner_id in partner_ids],
            "p_since": since.isoformat(),
        }
        rows = await self._execute(lambda c: c.rpc("partner_offer_stats_since", params), "get_partner_offer_stats_since")
        return {UUID(row["partner_id"]): PartnerOfferStats.model_validate(row) for row in rows}

    # Quotes

    async def _latest_quote_id(self, service_id: UUID, tenant_id: UUID, status: str, operation: str) -> Optional[UUID]:
        rows = await self._execute(
            lambda c: c.table(Tables.QUOTES)
            .select("id")
            .eq("lead_service_id", str(service_id))
            .eq("organization_id", str(tenant_id))
            .eq("status", status)
            .order("created_at", desc=True)
            .limit(1),
            operation,
        )
        return UUID(rows[0]["id"]) if rows else None

    async def get_latest_draft_quote_id(self, service_id: UUID, tenant_id: UUID) -> Optional[UUID]:
        return await self._latest_quote_id(service_id, tenant_id, "Draft", "get_latest_draft_quote_id")

    async def get_latest_accepted_quote_id(self, service_id: UUID, tenant_id: UUID) -> Optional[UUID]:
        return await self._latest_quote_id(service_id, tenant_id, "Accepted", "get_latest_accepted_quote_id")

    async def has_non_draft_quote(self, service_id: UUID, tenant_id: UUID) -> bool:
        rows = await self._execute(
            lambda c: c.table(Tables.QUOTES)
            .select("id")
            .eq("lead_service_id", str(service_id))
            .eq("organization_id", str(tenant_id))
            .neq("status", "Draft")
            .limit(1),
            "has_non_draft_quote",
        )
        return bool(rows)

    # Appointments

    async def get_visit_report(self, appointment_id: UUID, tenant_id: UUID) -> Optional[VisitReport]:
        rows = await self._execute(
            lambda c: c.table(Tables.VISIT_REPORTS)
            .select("*")
            .eq("appointment_id", str(appointment_id))
            .eq("organization_id", str(tenant_id))
            .limit(1),
            "get_visit_report",
        )
        return VisitReport.model_validate(rows[0]) if rows else None
