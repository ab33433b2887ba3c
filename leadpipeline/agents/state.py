"""
Run-scoped agent state: the tool-call tracker, the context holder and the
dependency bundle handed to tool functions.

One orchestrator instance owns exactly one ToolDependencies. The orchestrator
sets the context and resets the tracker at the start of every run while it
holds its run lock, so nothing leaks from one lead service to the next.
"""

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple
from uuid import UUID, uuid4

from leadpipeline.config import Settings, get_settings_sync
from leadpipeline.core.events import EventBus
from leadpipeline.core.pipeline import PipelineStageMachine
from leadpipeline.core.ports import (
    AppointmentBooker,
    CatalogReader,
    LeadScorer,
    PartnerOfferCreator,
    ProductSearcher,
    QuoteDrafter,
)
from leadpipeline.core.repository import LeadsRepository
from leadpipeline.models import Actor
from leadpipeline.utils.error_handling import MissingContextError


class ToolName:
    """Names the model sees for every tool"""
    SAVE_ANALYSIS = "SaveAnalysis"
    UPDATE_LEAD_SERVICE_TYPE = "UpdateLeadServiceType"
    UPDATE_LEAD_DETAILS = "UpdateLeadDetails"
    UPDATE_PIPELINE_STAGE = "UpdatePipelineStage"
    SEARCH_PRODUCT_MATERIALS = "SearchProductMaterials"
    CALCULATOR = "Calculator"
    CALCULATE_ESTIMATE = "CalculateEstimate"
    SAVE_ESTIMATION = "SaveEstimation"
    DRAFT_QUOTE = "DraftQuote"
    FIND_MATCHING_PARTNERS = "FindMatchingPartners"
    CREATE_PARTNER_OFFER = "CreatePartnerOffer"
    SUBMIT_AUDIT_RESULT = "SubmitAuditResult"
    NORMALIZE_CALL_NOTE = "NormalizeCallNote"
    SAVE_NOTE = "SaveNote"
    SET_CALL_OUTCOME = "SetCallOutcome"
    UPDATE_STATUS = "UpdateStatus"
    SCHEDULE_VISIT = "ScheduleVisit"
    RESCHEDULE_VISIT = "RescheduleVisit"
    CANCEL_VISIT = "CancelVisit"


class TrackerKey:
    """Correlated values stored next to the tool marks"""
    LAST_ANALYSIS_METADATA = "last_analysis_metadata"
    LAST_STAGE = "last_stage"
    DRAFT_QUOTE_ID = "draft_quote_id"
    LAST_DRAFT_RESULT = "last_draft_result"
    EXISTING_QUOTE_ID = "existing_quote_id"
    NOTE_BODY = "note_body"
    CALL_OUTCOME = "call_outcome"
    STATUS_UPDATED = "status_updated"
    APPOINTMENT_BOOKED = "appointment_booked"
    APPOINTMENT_RESCHEDULED = "appointment_rescheduled"
    APPOINTMENT_CANCELLED = "appointment_cancelled"
    RESCHEDULE_FALLBACK_BOOKED = "reschedule_fallback_booked"


class ToolCallTracker:
    """
    Records which tools fired during the current run.

    Safe for concurrent use by tool handlers of the same run.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._called: Set[str] = set()
        self._values: Dict[str, Any] = {}
        self.run_id: Optional[str] = None

    def reset(self, service_id: Optional[UUID] = None) -> str:
        """Clear marks and values and start a new run id."""
        with self._lock:
            self._called.clear()
            self._values.clear()
            self.run_id = f"{service_id or 'run'}:{uuid4()}"
            return self.run_id

    def mark(self, tool_name: str, **values: Any) -> None:
        with self._lock:
            self._called.add(tool_name)
            self._values.update(values)

    def was_called(self, tool_name: str) -> bool:
        with self._lock:
            return tool_name in self._called

    def called_tools(self) -> List[str]:
        with self._lock:
            return sorted(self._called)

    def set_value(self, key: str, value: Any) -> None:
        with self._lock:
            self._values[key] = value

    def get_value(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._values.get(key, default)


@dataclass(frozen=True)
class RunContext:
    tenant_id: UUID
    lead_id: UUID
    service_id: UUID
    actor: Actor
    user_id: Optional[UUID] = None


class ContextHolder:
    """Tenant, lead, service and actor of the run in flight."""

    def __init__(self):
        self._lock = threading.RLock()
        self._tenant_id: Optional[UUID] = None
        self._lead_id: Optional[UUID] = None
        self._service_id: Optional[UUID] = None
        self._user_id: Optional[UUID] = None
        self._actor: Actor = Actor()

    def set_context(
        self,
        tenant_id: UUID,
        lead_id: UUID,
        service_id: UUID,
        actor: Actor,
        user_id: Optional[UUID] = None,
    ) -> None:
        with self._lock:
            self._tenant_id = tenant_id
            self._lead_id = lead_id
            self._service_id = service_id
            self._actor = actor
            self._user_id = user_id

    def get_context(self) -> Tuple[Optional[RunContext], bool]:
        with self._lock:
            if self._tenant_id is None or self._lead_id is None or self._service_id is None:
                return None, False
            return RunContext(
                tenant_id=self._tenant_id,
                lead_id=self._lead_id,
                service_id=self._service_id,
                actor=self._actor,
                user_id=self._user_id,
            ), True

    def require_context(self) -> RunContext:
        """
        Raises:
            MissingContextError: if tenant, lead or service was never set
        """
        context, ok = self.get_context()
        if not ok:
            raise MissingContextError("missing tenant/lead/service context")
        return context

    @property
    def actor(self) -> Actor:
        with self._lock:
            return self._actor

    def clear(self) -> None:
        with self._lock:
            self._tenant_id = None
            self._lead_id = None
            self._service_id = None
            self._user_id = None
            self._actor = Actor()


@dataclass
class ToolDependencies:
    """Everything a tool function may touch during one orchestrator's runs."""

    repository: LeadsRepository
    stage_machine: PipelineStageMachine
    event_bus: Optional[EventBus] = None
    settings: Settings = field(default_factory=get_settings_sync)
    product_searcher: Optional[ProductSearcher] = None
    catalog_reader: Optional[CatalogReader] = None
    quote_drafter: Optional[QuoteDrafter] = None
    partner_offer_creator: Optional[PartnerOfferCreator] = None
    appointment_booker: Optional[AppointmentBooker] = None
    lead_scorer: Optional[LeadScorer] = None
    tracker: ToolCallTracker = field(default_factory=ToolCallTracker)
    context: ContextHolder = field(default_factory=ContextHolder)

    def require_context(self) -> RunContext:
        return self.context.require_context()
