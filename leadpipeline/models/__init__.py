"""
Data models for the lead pipeline.
"""

from .base import (
    Actor,
    ActorName,
    ActorType,
    BaseModel,
    ContactChannel,
    IdentifiedModel,
    LeadQuality,
    LeadStatus,
    PipelineStage,
    RecommendedAction,
    TimestampedModel,
    UrgencyLevel,
)
from .leads import (
    AIAnalysis,
    AIAnalysisCreate,
    Appointment,
    CallLogResult,
    Lead,
    LeadNote,
    LeadService,
    PartnerMatch,
    PartnerOfferStats,
    PhotoAnalysis,
    ServiceType,
    TimelineEvent,
    TimelineEventCreate,
    VisitReport,
)
from .quotes import (
    CalculatorResult,
    CatalogProductDetails,
    DiscountType,
    DraftQuoteParams,
    DraftQuoteResult,
    EstimateItem,
    EstimateRange,
    PartnerOfferParams,
    PartnerOfferResult,
    PricingMode,
    ProductResult,
    QuoteItem,
    QuoteLine,
    QuoteTotals,
    VatBreakdownEntry,
)

__all__ = [
    "Actor",
    "ActorName",
    "ActorType",
    "BaseModel",
    "ContactChannel",
    "IdentifiedModel",
    "LeadQuality",
    "LeadStatus",
    "PipelineStage",
    "RecommendedAction",
    "TimestampedModel",
    "UrgencyLevel",
    "AIAnalysis",
    "AIAnalysisCreate",
    "Appointment",
    "CallLogResult",
    "Lead",
    "LeadNote",
    "LeadService",
    "PartnerMatch",
    "PartnerOfferStats",
    "PhotoAnalysis",
    "ServiceType",
    "TimelineEvent",
    "TimelineEventCreate",
    "VisitReport",
    "CalculatorResult",
    "CatalogProductDetails",
    "DiscountType",
    "DraftQuoteParams",
    "DraftQuoteResult",
    "EstimateItem",
    "EstimateRange",
    "PartnerOfferParams",
    "PartnerOfferResult",
    "PricingMode",
    "ProductResult",
    "QuoteItem",
    "QuoteLine",
    "QuoteTotals",
    "VatBreakdownEntry",
]
