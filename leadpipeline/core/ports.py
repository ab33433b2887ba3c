"""
External collaborators consumed by the agent tools.

Vector product search, the quote service, partner offers, appointment
booking and lead scoring live outside this package; tools only talk to them
through these interfaces. Every port is optional: a tool whose port is not
configured reports that to the model instead of failing the run.
"""

from datetime import datetime
from typing import List, Optional, Protocol, Sequence
from uuid import UUID

from leadpipeline.models import (
    Appointment,
    CatalogProductDetails,
    DraftQuoteParams,
    DraftQuoteResult,
    PartnerOfferParams,
    PartnerOfferResult,
    ProductResult,
)


class ProductSearcher(Protocol):
    async def search(
        self,
        tenant_id: Optional[UUID],
        query: str,
        limit: int,
        min_score: float,
        use_catalog: bool,
    ) -> List[ProductResult]: ...


class CatalogReader(Protocol):
    async def get_product_details(
        self, tenant_id: UUID, product_ids: Sequence[UUID]
    ) -> List[CatalogProductDetails]: ...


class QuoteDrafter(Protocol):
    async def draft_quote(self, params: DraftQuoteParams) -> DraftQuoteResult: ...


class PartnerOfferCreator(Protocol):
    async def create_offer_from_quote(
        self, tenant_id: UUID, params: PartnerOfferParams
    ) -> PartnerOfferResult: ...


class AppointmentBooker(Protocol):
    async def get_existing_appointment(
        self, tenant_id: UUID, service_id: UUID, user_id: UUID
    ) -> Optional[Appointment]: ...

    async def book_visit(
        self,
        tenant_id: UUID,
        service_id: UUID,
        user_id: UUID,
        start_time: datetime,
        end_time: datetime,
        title: str,
        send_confirmation_email: bool,
    ) -> Appointment: ...

    async def reschedule_visit(
        self,
        tenant_id: UUID,
        appointment_id: UUID,
        start_time: datetime,
        end_time: datetime,
        title: Optional[str] = None,
    ) -> Appointment: ...

    async def cancel_visit(self, tenant_id: UUID, appointment_id: UUID, reason: str = "") -> None: ...


class LeadScorer(Protocol):
    async def recalculate(self, lead_id: UUID, service_id: UUID, tenant_id: UUID) -> int: ...
