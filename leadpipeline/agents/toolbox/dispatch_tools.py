"""
Dispatch Tools

FindMatchingPartners and CreatePartnerOffer for the dispatcher agent.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from uuid import UUID

from langchain_core.tools import tool
from langsmith import traceable
from pydantic import BaseModel, Field

from leadpipeline.agents.state import ToolName
from leadpipeline.core.repository import EventTitle, EventType
from leadpipeline.models import PartnerMatch, PartnerOfferParams, PartnerOfferStats
from leadpipeline.utils.error_handling import (
    LeadPipelineError,
    NotFoundError,
    ValidationFailedError,
    tool_failure,
    tool_success,
)

from .toolbox import get_tool_dependencies, parse_uuid, timeline_event

logger = logging.getLogger(__name__)

MAX_OFFER_HOURS = 12
OFFER_STATS_WINDOW_DAYS = 30
JOB_SUMMARY_MAX_CHARS = 200


# =============================================================================
# FIND MATCHING PARTNERS
# =============================================================================

class FindMatchingPartnersParams(BaseModel):
    """Parameters for the partner search."""
    service_type: str = Field(..., description="Service type of the lead service")
    zip_code: str = Field(..., description="Zip code of the job address")
    radius_km: Optional[int] = Field(default=None, description="Search radius in km (default 25)")
    exclude_partner_ids: List[str] = Field(default_factory=list, description="Partner IDs to skip")


def parse_partner_exclusions(raw_ids: Optional[List[str]]) -> List[UUID]:
    """Parse partner IDs, silently dropping values that are not UUIDs."""
    excluded = []
    for raw in raw_ids or []:
        try:
            excluded.append(UUID(str(raw)))
        except ValueError:
            continue
    return excluded


async def _lookup_offer_stats(deps, tenant_id: UUID, matches: List[PartnerMatch]) -> Dict[UUID, PartnerOfferStats]:
    if not matches:
        return {}
    since = datetime.now(timezone.utc) - timedelta(days=OFFER_STATS_WINDOW_DAYS)
    try:
        return await deps.repository.get_partner_offer_stats_since(
            tenant_id, [match.id for match in matches], since
        )
    except Exception as e:
        # Distance-only selection still works without stats
        logger.warning(f"[FIND_PARTNERS] Offer stats lookup failed: {e}")
        return {}


@tool(ToolName.FIND_MATCHING_PARTNERS, args_schema=FindMatchingPartnersParams)
@traceable(name=ToolName.FIND_MATCHING_PARTNERS)
async def find_matching_partners(
    service_type: str,
    zip_code: str,
    radius_km: Optional[int] = None,
    exclude_partner_ids: Optional[List[str]] = None,
) -> str:
    """
    Find partners that offer the service type near the zip code.

    Each match includes distance and offer statistics for the last 30 days
    (rejected, accepted and open offers). Prefer close partners with few
    rejections.
    """
    try:
        deps = get_tool_dependencies()
        context = deps.require_context()

        radius = radius_km if radius_km and radius_km > 0 else deps.settings.partner_search_radius_km
        excluded = parse_partner_exclusions(exclude_partner_ids)

        matches = await deps.repository.find_matching_partners(
            context.tenant_id, context.lead_id, service_type, zip_code, radius, excluded
        )
        stats = await _lookup_offer_stats(deps, context.tenant_id, matches)

        await deps.repository.create_timeline_event(timeline_event(
            context,
            EventType.PARTNER_SEARCH,
            EventTitle.PARTNER_SEARCH,
            f"Found {len(matches)} partner(s)",
            {
                "serviceType": service_type,
                "zipCode": zip_code,
                "radiusKm": radius,
                "matchCount": len(matches),
            },
        ))

        deps.tracker.mark(ToolName.FIND_MATCHING_PARTNERS)
        logger.info(
            f"[FIND_PARTNERS] run={deps.tracker.run_id} lead={context.lead_id} "
            f"service={context.service_id} matches={len(matches)}"
        )

        output = []
        for match in matches:
            match_stats = stats.get(match.id, PartnerOfferStats())
            output.append({
                "partner_id": str(match.id),
                "business_name": match.business_name,
                "email": match.email,
                "distance_km": match.distance_km,
                "rejected_offers_30d": match_stats.rejected,
                "accepted_offers_30d": match_stats.accepted,
                "open_offers_30d": match_stats.open,
            })
        return tool_success(f"Found {len(matches)} partner(s)", matches=output)

    except LeadPipelineError as e:
        return tool_failure("Partner search failed", e)


# =============================================================================
# CREATE PARTNER OFFER
# =============================================================================

class CreatePartnerOfferParams(BaseModel):
    """Parameters for a partner job offer."""
    partner_id: str = Field(..., description="Partner ID from FindMatchingPartners")
    expiration_hours: int = Field(default=MAX_OFFER_HOURS, description="Offer validity in hours (max 12)")
    job_summary_short: str = Field(default="", description="One-line job summary for the partner (Dutch)")


def clamp_offer_hours(hours: Optional[int]) -> int:
    if not hours or hours <= 0 or hours > MAX_OFFER_HOURS:
        return MAX_OFFER_HOURS
    return hours


@tool(ToolName.CREATE_PARTNER_OFFER, args_schema=CreatePartnerOfferParams)
@traceable(name=ToolName.CREATE_PARTNER_OFFER)
async def create_partner_offer(
    partner_id: str,
    expiration_hours: int = MAX_OFFER_HOURS,
    job_summary_short: str = "",
) -> str:
    """Create a job offer for a partner based on the accepted quote. Returns the offer's public token."""
    try:
        deps = get_tool_dependencies()
        if deps.partner_offer_creator is None:
            return tool_failure("Offer creation not configured")
        context = deps.require_context()

        try:
            partner_uuid = parse_uuid(partner_id, "partner ID")
        except ValidationFailedError as e:
            return tool_failure("Invalid partner ID", e)

        quote_id = await deps.repository.get_latest_accepted_quote_id(context.service_id, context.tenant_id)
        if quote_id is None:
            raise NotFoundError(f"no accepted quote for service {context.service_id}")

        result = await deps.partner_offer_creator.create_offer_from_quote(
            context.tenant_id,
            PartnerOfferParams(
                partner_id=partner_uuid,
                quote_id=quote_id,
                expires_in_hours=clamp_offer_hours(expiration_hours),
                job_summary_short=job_summary_short.strip()[:JOB_SUMMARY_MAX_CHARS],
            ),
        )

        deps.tracker.mark(ToolName.CREATE_PARTNER_OFFER)
        logger.info(
            f"[CREATE_OFFER] run={deps.tracker.run_id} service={context.service_id} "
            f"partner={partner_uuid} offer={result.offer_id}"
        )
        return tool_success("Offer created", offer_id=str(result.offer_id), public_token=result.public_token)

    except NotFoundError as e:
        return tool_failure("Accepted quote not found for service", e)
    except LeadPipelineError as e:
        return tool_failure(str(e), e)
