"""
Lead, lead service, analysis and timeline records.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from pydantic import Field

from .base import (
    ActorType,
    BaseModel,
    ContactChannel,
    IdentifiedModel,
    LeadQuality,
    LeadStatus,
    PipelineStage,
    RecommendedAction,
    UrgencyLevel,
    utc_now,
)


class Lead(IdentifiedModel):
    """Consumer who requested one or more services"""
    organization_id: UUID
    consumer_first_name: str = ""
    consumer_last_name: str = ""
    consumer_phone: str = ""
    consumer_email: Optional[str] = None
    consumer_role: str = "Owner"
    address_street: str = ""
    address_house_number: str = ""
    address_zip_code: str = ""
    address_city: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def has_phone(self) -> bool:
        return bool(self.consumer_phone.strip())


class LeadService(IdentifiedModel):
    """One service request belonging to a lead"""
    lead_id: UUID
    organization_id: UUID
    service_type: str
    pipeline_stage: PipelineStage = PipelineStage.TRIAGE
    status: LeadStatus = LeadStatus.NEW
    consumer_note: Optional[str] = None
    customer_preferences: Dict[str, Any] = Field(default_factory=dict)


class LeadNote(IdentifiedModel):
    lead_id: UUID
    organization_id: UUID
    author_id: Optional[UUID] = None
    author_email: str = ""
    type: str = "note"
    body: str = ""


class PhotoAnalysis(IdentifiedModel):
    lead_service_id: UUID
    summary: str = ""
    observations: List[str] = Field(default_factory=list)


class ServiceType(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    name: str
    slug: str = ""
    description: Optional[str] = None
    intake_guidelines: Optional[str] = None
    estimation_guidelines: Optional[str] = None


class AIAnalysisCreate(BaseModel):
    """Parameters for persisting a triage analysis"""
    lead_id: UUID
    lead_service_id: UUID
    organization_id: UUID
    urgency_level: UrgencyLevel
    urgency_reason: Optional[str] = None
    lead_quality: LeadQuality
    recommended_action: RecommendedAction
    missing_information: List[str] = Field(default_factory=list)
    preferred_contact_channel: ContactChannel
    suggested_contact_message: str = ""
    summary: str = ""


class AIAnalysis(AIAnalysisCreate):
    """Triage record; never mutated, only superseded by a newer record"""
    id: UUID = Field(default_factory=uuid4)
    created_at: datetime = Field(default_factory=utc_now)


class TimelineEventCreate(BaseModel):
    """Append-only timeline entry shown on the lead"""
    lead_id: UUID
    service_id: Optional[UUID] = None
    organization_id: UUID
    actor_type: ActorType
    actor_name: str
    event_type: str
    title: str
    summary: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class TimelineEvent(TimelineEventCreate):
    id: UUID = Field(default_factory=uuid4)
    created_at: datetime = Field(default_factory=utc_now)


class PartnerMatch(BaseModel):
    id: UUID
    business_name: str
    email: str = ""
    distance_km: float = 0.0


class PartnerOfferStats(BaseModel):
    rejected: int = 0
    accepted: int = 0
    open: int = 0


class VisitReport(BaseModel):
    appointment_id: UUID
    measurements: Optional[str] = None
    access_difficulty: Optional[str] = None
    notes: Optional[str] = None


class Appointment(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    lead_service_id: UUID
    title: str = ""
    start_time: datetime
    end_time: datetime


class CallLogResult(BaseModel):
    """Outcome of processing one post-call summary"""
    note_created: bool = False
    note_body: Optional[str] = None
    author_email: Optional[str] = None
    call_outcome: Optional[str] = None
    status_updated: Optional[str] = None
    pipeline_stage_updated: Optional[str] = None
    appointment_booked: Optional[datetime] = None
    appointment_rescheduled: Optional[datetime] = None
    appointment_cancelled: bool = False
    appointment_reschedule_fallback: bool = False
    message: str = ""
