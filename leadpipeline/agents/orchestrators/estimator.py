"""
Estimator: scope, price range and draft quote for an intake-complete service.
"""

import logging
from typing import List, Optional
from uuid import UUID

from leadpipeline.agents.fallback import ESTIMATION_MISSING_ALERT, RecoveryKind
from leadpipeline.agents.state import ToolName, TrackerKey
from leadpipeline.core.repository import EventTitle
from leadpipeline.models import ActorName, LeadNote, PhotoAnalysis

from .base import BaseOrchestrator
from .prompts import ESTIMATOR_SYSTEM_PROMPT, build_estimator_prompt

logger = logging.getLogger(__name__)


class Estimator(BaseOrchestrator):
    agent_name = ActorName.ESTIMATOR
    system_prompt = ESTIMATOR_SYSTEM_PROMPT
    required_tools = [ToolName.SAVE_ESTIMATION]

    async def run(self, lead_id: UUID, service_id: UUID, tenant_id: UUID) -> None:
        """
        Estimate one lead service.

        Raises:
            NotFoundError: if the lead or service does not exist
        """
        async with self._run_lock:
            run_id = self._start_run(tenant_id, lead_id, service_id)
            repository = self.deps.repository

            existing_quote_id = await self._lookup_existing_quote(service_id, tenant_id)
            self.deps.tracker.set_value(TrackerKey.EXISTING_QUOTE_ID, existing_quote_id)

            lead = await repository.get_lead(lead_id, tenant_id)
            service = await repository.get_lead_service(service_id, tenant_id)
            notes = await self._fetch_notes(lead_id, service_id, tenant_id)
            photo_analysis = await self._fetch_photo_analysis(service_id, tenant_id)
            guidelines = await self._fetch_estimation_guidelines(tenant_id, service.service_type)

            prompt = build_estimator_prompt(
                lead,
                service,
                notes,
                guidelines,
                photo_analysis,
                str(existing_quote_id) if existing_quote_id else None,
            )
            actions = await self._run_with_mandatory_tools(self._initial_messages(prompt), self.required_tools)

            for action in actions:
                if action.kind == RecoveryKind.ESTIMATION_MISSING_ALERT:
                    logger.warning(f"[ESTIMATOR] SaveEstimation was not called for lead={lead_id} service={service_id}")
                    await self.fallback.record_alert(
                        lead_id,
                        service_id,
                        tenant_id,
                        EventTitle.ESTIMATION_MISSING,
                        ESTIMATION_MISSING_ALERT,
                        self.system_actor,
                    )

            await self._apply_intake_gate(lead_id, service_id, tenant_id)
            logger.info(f"[ESTIMATOR] Run finished run={run_id} lead={lead_id} service={service_id}")

    async def _apply_intake_gate(self, lead_id: UUID, service_id: UUID, tenant_id: UUID) -> None:
        tracker = self.deps.tracker
        if tracker.was_called(ToolName.DRAFT_QUOTE):
            return

        insufficient, reason = await self.fallback.check_insufficient_intake(service_id, tenant_id)
        if not insufficient:
            logger.info(f"[ESTIMATOR] DraftQuote was not called for lead={lead_id} service={service_id}")
            return

        await self.fallback.apply_insufficient_intake_gate(
            lead_id,
            service_id,
            tenant_id,
            reason,
            stage_already_updated=tracker.was_called(ToolName.UPDATE_PIPELINE_STAGE),
            actor=self.system_actor,
        )

    async def _lookup_existing_quote(self, service_id: UUID, tenant_id: UUID) -> Optional[UUID]:
        try:
            return await self.deps.repository.get_latest_draft_quote_id(service_id, tenant_id)
        except Exception as e:
            logger.warning(f"[ESTIMATOR] Draft quote lookup failed for service {service_id}: {e}")
            return None

    async def _fetch_notes(self, lead_id: UUID, service_id: UUID, tenant_id: UUID) -> List[LeadNote]:
        try:
            return await self.deps.repository.list_notes_by_service(lead_id, service_id, tenant_id)
        except Exception as e:
            logger.warning(f"[ESTIMATOR] Notes fetch failed for service {service_id}: {e}")
            return []

    async def _fetch_photo_analysis(self, service_id: UUID, tenant_id: UUID) -> Optional[PhotoAnalysis]:
        try:
            return await self.deps.repository.get_latest_photo_analysis(service_id, tenant_id)
        except Exception as e:
            logger.warning(f"[ESTIMATOR] Photo analysis fetch failed for service {service_id}: {e}")
            return None

    async def _fetch_estimation_guidelines(self, tenant_id: UUID, service_type: str) -> str:
        """Estimation guidelines of the service type with exactly this name, or empty."""
        try:
            service_types = await self.deps.repository.list_active_service_types(tenant_id)
        except Exception as e:
            logger.warning(f"[ESTIMATOR] Service types fetch failed for tenant {tenant_id}: {e}")
            return ""
        for candidate in service_types:
            if candidate.name == service_type and candidate.estimation_guidelines:
                return candidate.estimation_guidelines
        return ""
