"""
Quote, estimate and catalog models.

All quote amounts are integers in minor currency units (cents) and all rates
are basis points. Estimates are planning figures and use plain floats.
"""

from typing import List, Optional
from uuid import UUID

from pydantic import Field

from .base import BaseModel, ValueEnum


class PricingMode(ValueEnum):
    EXCLUSIVE = "exclusive"
    INCLUSIVE = "inclusive"


class DiscountType(ValueEnum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class QuoteItem(BaseModel):
    """Quote line input; quantity is kept as a decimal string"""
    description: str
    quantity: str = "1"
    unit_price_cents: int = Field(ge=0)
    tax_rate_bps: int = Field(default=2100, ge=0)
    is_optional: bool = False
    is_selected: bool = False
    catalog_product_id: Optional[UUID] = None

    @property
    def included(self) -> bool:
        return not self.is_optional or self.is_selected


class QuoteLine(BaseModel):
    description: str
    quantity: str
    unit_price_cents: int
    tax_rate_bps: int
    included: bool
    line_subtotal_cents: int = 0
    discount_cents: int = 0
    vat_cents: int = 0
    line_total_cents: int = 0


class VatBreakdownEntry(BaseModel):
    rate_bps: int
    amount_cents: int


class QuoteTotals(BaseModel):
    lines: List[QuoteLine] = Field(default_factory=list)
    subtotal_cents: int = 0
    discount_amount_cents: int = 0
    vat_breakdown: List[VatBreakdownEntry] = Field(default_factory=list)
    vat_total_cents: int = 0
    total_cents: int = 0


class EstimateItem(BaseModel):
    label: str = ""
    unit_price: float = 0.0
    quantity: float = 0.0


class EstimateRange(BaseModel):
    """Planning estimate; derived per call and never persisted"""
    material_subtotal: float
    labor_subtotal_low: float
    labor_subtotal_high: float
    total_low: float
    total_high: float
    applied_extra_costs: float


class CalculatorResult(BaseModel):
    result: float
    expression: str


class ProductResult(BaseModel):
    id: Optional[str] = None
    name: str
    type: str = ""
    description: str = ""
    price_euros: float = 0.0
    price_cents: int = 0
    unit: str = ""
    labor_time: str = ""
    vat_rate_bps: int = 0
    score: float = 0.0
    high_confidence: bool = False


class CatalogProductDetails(BaseModel):
    id: UUID
    title: str = ""
    unit_price_cents: int
    vat_rate_bps: int = 0


class DraftQuoteParams(BaseModel):
    quote_id: Optional[UUID] = None
    lead_id: UUID
    lead_service_id: UUID
    organization_id: UUID
    notes: str = ""
    items: List[QuoteItem]
    totals: QuoteTotals


class DraftQuoteResult(BaseModel):
    quote_id: UUID
    quote_number: str
    item_count: int


class PartnerOfferParams(BaseModel):
    partner_id: UUID
    quote_id: UUID
    expires_in_hours: int
    job_summary_short: str = ""


class PartnerOfferResult(BaseModel):
    offer_id: UUID
    public_token: str
