"""
Estimation Tools

Tools for the technical estimator: catalog product search, exact arithmetic,
planning estimates, the draft quote and the estimation summary.

All arithmetic is delegated to leadpipeline.core.calculator so the model never
computes areas, quantities or money amounts itself.
"""

import logging
from typing import Dict, List, Optional
from uuid import UUID

from langchain_core.tools import tool
from langsmith import traceable
from pydantic import BaseModel, Field

from leadpipeline.agents.state import ToolName, TrackerKey
from leadpipeline.config import get_settings_sync
from leadpipeline.core.calculator import (
    CALCULATOR_OPERATIONS,
    apply_catalog_prices,
    calculate,
    calculate_estimate,
    calculate_quote_totals,
)
from leadpipeline.core.pipeline import validate_analysis_stage_transition
from leadpipeline.core.repository import EventTitle, EventType
from leadpipeline.models import (
    CatalogProductDetails,
    DraftQuoteParams,
    EstimateItem,
    PipelineStage,
    ProductResult,
    QuoteItem,
)
from leadpipeline.utils.error_handling import (
    ExternalCallFailedError,
    LeadPipelineError,
    MissingContextError,
    ValidationFailedError,
    tool_failure,
    tool_success,
)

from .toolbox import get_tool_dependencies, parse_optional_uuid, timeline_event

logger = logging.getLogger(__name__)

HIGH_CONFIDENCE_SCORE = 0.45
MAX_SEARCH_LIMIT = 20
INSUFFICIENT_INTAKE_MESSAGE = "Onvoldoende intakegegevens voor een betrouwbare conceptofferte"

# =============================================================================
# CALCULATOR
# =============================================================================

class CalculatorParams(BaseModel):
    """Parameters for a single arithmetic operation."""
    operation: str = Field(..., description=f"One of: {', '.join(CALCULATOR_OPERATIONS)}")
    a: float = Field(..., description="First operand")
    b: float = Field(default=0, description="Second operand; for 'round' the number of decimal places")


@tool(ToolName.CALCULATOR, args_schema=CalculatorParams)
@traceable(name=ToolName.CALCULATOR)
async def calculator(operation: str, a: float, b: float = 0) -> str:
    """
    Perform exact arithmetic. Use this for ANY calculation; never do math yourself.

    ceil_divide rounds the quotient UP, e.g. sheets needed for 4 m2 at 2.5 m2
    per sheet: ceil_divide(4, 2.5) = 2.
    """
    try:
        result = calculate(operation, a, b)
        return tool_success(result.expression, result=result.result, expression=result.expression)
    except ValidationFailedError as e:
        return tool_failure(str(e), e)


# =============================================================================
# CALCULATE ESTIMATE
# =============================================================================

class EstimateItemParams(BaseModel):
    label: str = Field(default="", description="Material name")
    unit_price: float = Field(..., description="Unit price in EUROS (e.g. 7.93), never cents")
    quantity: float = Field(..., description="Quantity in the product's sales unit")


class CalculateEstimateParams(BaseModel):
    """Raw inputs for the estimate; do not pre-multiply anything."""
    material_items: List[EstimateItemParams] = Field(default_factory=list)
    labor_hours_low: float = Field(default=0)
    labor_hours_high: float = Field(default=0)
    hourly_rate_low: float = Field(default=0)
    hourly_rate_high: float = Field(default=0)
    extra_costs: float = Field(default=0, description="Fixed extra costs in euros, applied to both bounds")


def _estimate_max_unit_price() -> float:
    try:
        return get_tool_dependencies().settings.estimate_max_unit_price
    except MissingContextError:
        return get_settings_sync().estimate_max_unit_price


@tool(ToolName.CALCULATE_ESTIMATE, args_schema=CalculateEstimateParams)
@traceable(name=ToolName.CALCULATE_ESTIMATE)
async def calculate_estimate_tool(
    material_items: Optional[List[EstimateItemParams]] = None,
    labor_hours_low: float = 0,
    labor_hours_high: float = 0,
    hourly_rate_low: float = 0,
    hourly_rate_high: float = 0,
    extra_costs: float = 0,
) -> str:
    """Calculate material subtotal, labor subtotal range and total range from raw inputs."""
    try:
        items = [
            EstimateItem(**(item.model_dump() if isinstance(item, BaseModel) else item))
            for item in (material_items or [])
        ]
        estimate = calculate_estimate(
            items,
            labor_hours_low,
            labor_hours_high,
            hourly_rate_low,
            hourly_rate_high,
            extra_costs,
            max_unit_price=_estimate_max_unit_price(),
        )
        return tool_success("Estimate calculated", **estimate.model_dump())
    except ValidationFailedError as e:
        return tool_failure(str(e), e)


# =============================================================================
# SEARCH PRODUCT MATERIALS
# =============================================================================

class SearchProductMaterialsParams(BaseModel):
    """Parameters for semantic catalog search."""
    query: str = Field(..., description="Descriptive product query; mix Dutch and English synonyms")
    limit: Optional[int] = Field(default=None, description="Maximum results (default 5, max 20)")
    use_catalog: bool = Field(default=True, description="Search the organization's own catalog")
    min_score: Optional[float] = Field(default=None, description="Minimum relevance score between 0 and 1")


def _no_match_message(query: str) -> str:
    return (
        f"No relevant products found for query '{query}'. Try different search terms "
        "(synonyms, broader/narrower terms, Dutch and English). If no match exists, you may add an ad-hoc item."
    )


async def _hydrate_catalog_prices(deps, tenant_id: UUID, products: List[ProductResult]) -> List[ProductResult]:
    """Overwrite vector-search prices with catalog prices where the product id resolves."""
    if deps.catalog_reader is None:
        return products

    ids: List[UUID] = []
    for product in products:
        try:
            product_id = parse_optional_uuid(product.id, "product id")
        except ValidationFailedError:
            continue
        if product_id is not None and product_id not in ids:
            ids.append(product_id)
    if not ids:
        return products

    try:
        details = await deps.catalog_reader.get_product_details(tenant_id, ids)
    except Exception as e:
        logger.warning(f"[PRODUCT_SEARCH] Catalog reader failed, keeping search prices: {e}")
        return products

    by_id = {str(detail.id): detail for detail in details}
    hydrated = []
    for product in products:
        detail = by_id.get(product.id or "")
        if detail is not None:
            product = product.model_copy(update={
                "price_cents": detail.unit_price_cents,
                "price_euros": detail.unit_price_cents / 100,
                "vat_rate_bps": detail.vat_rate_bps or product.vat_rate_bps,
            })
        hydrated.append(product)
    return hydrated


@tool(ToolName.SEARCH_PRODUCT_MATERIALS, args_schema=SearchProductMaterialsParams)
@traceable(name=ToolName.SEARCH_PRODUCT_MATERIALS)
async def search_product_materials(
    query: str,
    limit: Optional[int] = None,
    use_catalog: bool = True,
    min_score: Optional[float] = None,
) -> str:
    """
    Search the product catalog for materials and prices.

    price_cents can be used directly as unit_price_cents in DraftQuote; use the
    product id as catalog_product_id. Results with high_confidence=true
    (score >= 0.45) can be trusted as-is.
    """
    try:
        deps = get_tool_dependencies()
        if deps.product_searcher is None:
            return tool_failure("Product search is not configured")

        context, _ = deps.context.get_context()
        tenant_id = context.tenant_id if context else None

        settings = deps.settings
        resolved_limit = limit if limit and limit > 0 else settings.product_search_limit
        resolved_limit = min(resolved_limit, MAX_SEARCH_LIMIT)
        resolved_min_score = min_score if min_score is not None and 0 < min_score < 1 else settings.product_search_min_score

        cleaned_query = (query or "").strip()
        if not cleaned_query:
            raise ValidationFailedError("missing query")

        products = await deps.product_searcher.search(
            tenant_id, cleaned_query, resolved_limit, resolved_min_score, use_catalog
        )
        if tenant_id is not None:
            products = await _hydrate_catalog_prices(deps, tenant_id, products)

        products = [
            product.model_copy(update={"high_confidence": product.score >= HIGH_CONFIDENCE_SCORE})
            for product in products
        ]

        logger.info(f"[PRODUCT_SEARCH] query='{cleaned_query}' results={len(products)}")
        if not products:
            return tool_success(_no_match_message(cleaned_query), products=[])
        return tool_success(
            f"Found {len(products)} product(s)",
            products=[product.model_dump(exclude_none=True) for product in products],
        )

    except LeadPipelineError as e:
        return tool_failure("Product search failed", e)


# =============================================================================
# SAVE ESTIMATION
# =============================================================================

class SaveEstimationParams(BaseModel):
    """Parameters for the estimation summary."""
    scope: str = Field(..., description="Scope of work, e.g. Small, Medium or Large")
    price_range: str = Field(..., description="Price range text, e.g. 'EUR 450 - 650'")
    notes: str = Field(default="", description="Assumptions and remarks")
    summary: str = Field(default="", description="Short summary for the timeline (Dutch)")


@tool(ToolName.SAVE_ESTIMATION, args_schema=SaveEstimationParams)
@traceable(name=ToolName.SAVE_ESTIMATION)
async def save_estimation(scope: str, price_range: str, notes: str = "", summary: str = "") -> str:
    """Save the estimation summary for the current lead service. Mandatory once per estimation run."""
    try:
        deps = get_tool_dependencies()
        context = deps.require_context()

        await deps.repository.create_timeline_event(timeline_event(
            context,
            EventType.ANALYSIS,
            EventTitle.ESTIMATION_SAVED,
            summary.strip() or None,
            {"scope": scope, "priceRange": price_range, "notes": notes},
        ))

        deps.tracker.mark(ToolName.SAVE_ESTIMATION)
        logger.info(f"[SAVE_ESTIMATION] run={deps.tracker.run_id} service={context.service_id} scope={scope}")
        return tool_success("Estimation saved")

    except LeadPipelineError as e:
        return tool_failure("Failed to save estimation", e)


# =============================================================================
# DRAFT QUOTE
# =============================================================================

class DraftQuoteItemParams(BaseModel):
    description: str = Field(..., description="Line item description")
    quantity: str = Field(default="1", description="Quantity as text, e.g. '3' or '2,5'")
    unit_price_cents: int = Field(..., ge=0, description="Unit price in euro-cents (price_cents from search)")
    tax_rate_bps: int = Field(default=2100, ge=0, description="VAT in basis points (2100 = 21%)")
    is_optional: bool = Field(default=False)
    catalog_product_id: Optional[str] = Field(default=None, description="Catalog product id from SearchProductMaterials")


class DraftQuoteToolParams(BaseModel):
    """Parameters for drafting the quote."""
    items: List[DraftQuoteItemParams] = Field(default_factory=list)
    notes: str = Field(default="", description="Notes printed on the quote")


async def _check_intake_sufficient(deps, context) -> None:
    analysis = await deps.repository.get_latest_ai_analysis(context.service_id, context.tenant_id)
    if analysis is None:
        reason = "latest analysis unavailable"
    else:
        reason = validate_analysis_stage_transition(
            analysis.recommended_action, analysis.missing_information, PipelineStage.ESTIMATION.value
        )
    if reason:
        logger.info(f"[DRAFT_QUOTE] Blocked run={deps.tracker.run_id} service={context.service_id} reason={reason}")
        raise ValidationFailedError(f"{INSUFFICIENT_INTAKE_MESSAGE} ({reason})")


async def _enforce_catalog_prices(deps, tenant_id: UUID, items: List[QuoteItem]) -> List[QuoteItem]:
    catalog_ids = list(dict.fromkeys(item.catalog_product_id for item in items if item.catalog_product_id))
    if deps.catalog_reader is None or not catalog_ids:
        return items

    try:
        details = await deps.catalog_reader.get_product_details(tenant_id, catalog_ids)
    except Exception as e:
        raise ExternalCallFailedError(f"failed to validate catalog-linked quote items: {e}") from e

    details_by_id: Dict[UUID, CatalogProductDetails] = {detail.id: detail for detail in details}
    items, _, _, unresolved = apply_catalog_prices(items, details_by_id)
    if unresolved:
        raise ValidationFailedError(f"failed to resolve {len(unresolved)} catalog-linked quote item(s)")
    return items


@tool(ToolName.DRAFT_QUOTE, args_schema=DraftQuoteToolParams)
@traceable(name=ToolName.DRAFT_QUOTE)
async def draft_quote(items: Optional[List[DraftQuoteItemParams]] = None, notes: str = "") -> str:
    """
    Create or update the draft quote for the current lead service.

    Use price_cents from SearchProductMaterials as unit_price_cents when a product
    was found and include its id as catalog_product_id; catalog prices and VAT
    rates are authoritative. Ad-hoc items omit catalog_product_id.
    """
    try:
        deps = get_tool_dependencies()
        if deps.quote_drafter is None:
            return tool_failure("Quote drafting is not configured")
        context = deps.require_context()

        try:
            await _check_intake_sufficient(deps, context)
        except ValidationFailedError as e:
            return tool_failure(INSUFFICIENT_INTAKE_MESSAGE, e)

        if not items:
            raise ValidationFailedError("At least one item is required")

        quote_items = []
        for raw in items:
            item = raw if isinstance(raw, DraftQuoteItemParams) else DraftQuoteItemParams(**raw)
            quote_items.append(QuoteItem(
                description=item.description,
                quantity=item.quantity,
                unit_price_cents=item.unit_price_cents,
                tax_rate_bps=item.tax_rate_bps,
                is_optional=item.is_optional,
                catalog_product_id=parse_optional_uuid(item.catalog_product_id, "catalog_product_id"),
            ))

        quote_items = await _enforce_catalog_prices(deps, context.tenant_id, quote_items)
        totals = calculate_quote_totals(quote_items)

        result = await deps.quote_drafter.draft_quote(DraftQuoteParams(
            quote_id=deps.tracker.get_value(TrackerKey.EXISTING_QUOTE_ID),
            lead_id=context.lead_id,
            lead_service_id=context.service_id,
            organization_id=context.tenant_id,
            notes=notes,
            items=quote_items,
            totals=totals,
        ))

        deps.tracker.mark(
            ToolName.DRAFT_QUOTE,
            **{
                TrackerKey.DRAFT_QUOTE_ID: result.quote_id,
                TrackerKey.EXISTING_QUOTE_ID: result.quote_id,
                TrackerKey.LAST_DRAFT_RESULT: result,
            },
        )
        logger.info(
            f"[DRAFT_QUOTE] run={deps.tracker.run_id} quote={result.quote_number} "
            f"items={result.item_count} total={totals.total_cents} service={context.service_id}"
        )
        return tool_success(
            f"Draft quote {result.quote_number} created with {result.item_count} items",
            quote_id=str(result.quote_id),
            quote_number=result.quote_number,
            item_count=result.item_count,
            subtotal_cents=totals.subtotal_cents,
            vat_total_cents=totals.vat_total_cents,
            total_cents=totals.total_cents,
        )

    except ValidationFailedError as e:
        logger.warning(f"[DRAFT_QUOTE] Rejected: {e}")
        return tool_failure(str(e), e)
    except LeadPipelineError as e:
        logger.error(f"[DRAFT_QUOTE] Failed: {e}")
        return tool_failure(f"Failed to draft quote: {e}", e)
