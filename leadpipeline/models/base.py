"""
Base model classes and domain enumerations for the lead pipeline
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel as PydanticBaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BaseModel(PydanticBaseModel):
    """Base model with common functionality"""

    model_config = ConfigDict(
        # Enable validation on assignment
        validate_assignment=True,
        # Store enum values so records compare and serialize as plain strings
        use_enum_values=True,
        populate_by_name=True,
    )


class TimestampedModel(BaseModel):
    """Base model with timestamp fields"""

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: Optional[datetime] = None


class IdentifiedModel(TimestampedModel):
    """Base model with ID and timestamps"""

    id: UUID = Field(default_factory=uuid4)


class ValueEnum(str, Enum):
    """String enum that renders as its wire value."""

    def __str__(self) -> str:
        return self.value


class PipelineStage(ValueEnum):
    """Position of a lead service in the triage -> estimate -> fulfill lifecycle"""
    TRIAGE = "Triage"
    NURTURING = "Nurturing"
    ESTIMATION = "Estimation"
    PROPOSAL = "Proposal"
    FULFILLMENT = "Fulfillment"
    MANUAL_INTERVENTION = "Manual_Intervention"
    COMPLETED = "Completed"
    LOST = "Lost"


class LeadStatus(ValueEnum):
    """Contact/qualification status of a lead service"""
    NEW = "New"
    ATTEMPTED_CONTACT = "Attempted_Contact"
    SCHEDULED = "Scheduled"
    SURVEYED = "Surveyed"
    BAD_LEAD = "Bad_Lead"
    NEEDS_RESCHEDULING = "Needs_Rescheduling"
    CLOSED = "Closed"
    DISQUALIFIED = "Disqualified"


class UrgencyLevel(ValueEnum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class LeadQuality(ValueEnum):
    JUNK = "Junk"
    LOW = "Low"
    POTENTIAL = "Potential"
    HIGH = "High"
    URGENT = "Urgent"


class RecommendedAction(ValueEnum):
    REJECT = "Reject"
    REQUEST_INFO = "RequestInfo"
    SCHEDULE_SURVEY = "ScheduleSurvey"
    CALL_IMMEDIATELY = "CallImmediately"


class ContactChannel(ValueEnum):
    WHATSAPP = "WhatsApp"
    EMAIL = "Email"


class ActorType(ValueEnum):
    """Category of entity that produced a timeline event"""
    USER = "User"
    AI = "AI"
    SYSTEM = "System"


class ActorName:
    """Well-known actor names written to the timeline"""
    GATEKEEPER = "Gatekeeper"
    ESTIMATOR = "Estimator"
    DISPATCHER = "Dispatcher"
    AUDITOR = "Audit Agent"
    CALL_LOGGER = "Call Logger"
    ORCHESTRATOR = "Orchestrator"
    DEFAULT = "Agent"


class Actor(BaseModel):
    """Identity written to timeline events for actions taken during a run"""
    type: ActorType = ActorType.AI
    name: str = ActorName.DEFAULT

    def is_agent(self, name: str) -> bool:
        return self.type == ActorType.AI and self.name == name
