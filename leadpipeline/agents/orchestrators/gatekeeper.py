"""
Gatekeeper: triage of new lead services.

SaveAnalysis is mandatory. When the model still skips it after one retry, a
fallback analysis is stored; the stage is never forced here. Every run ends
with the junk check, which auto-disqualifies leads the latest analysis
rates as Junk.
"""

import logging
from typing import List, Optional
from uuid import UUID

from leadpipeline.agents.fallback import RecoveryKind
from leadpipeline.agents.state import ToolName
from leadpipeline.models import ActorName, LeadNote, PhotoAnalysis, ServiceType

from .base import BaseOrchestrator
from .prompts import GATEKEEPER_SYSTEM_PROMPT, build_gatekeeper_prompt, build_intake_context

logger = logging.getLogger(__name__)


class Gatekeeper(BaseOrchestrator):
    agent_name = ActorName.GATEKEEPER
    system_prompt = GATEKEEPER_SYSTEM_PROMPT
    required_tools = [ToolName.SAVE_ANALYSIS]

    async def run(self, lead_id: UUID, service_id: UUID, tenant_id: UUID) -> None:
        """
        Triage one lead service.

        Raises:
            NotFoundError: if the lead or service does not exist
        """
        async with self._run_lock:
            self._start_run(tenant_id, lead_id, service_id)
            repository = self.deps.repository

            lead = await repository.get_lead(lead_id, tenant_id)
            service = await repository.get_lead_service(service_id, tenant_id)

            notes = await self._fetch_notes(lead_id, service_id, tenant_id)
            photo_analysis = await self._fetch_photo_analysis(service_id, tenant_id)
            service_types = await self._fetch_service_types(tenant_id)

            prompt = build_gatekeeper_prompt(
                lead,
                service,
                notes,
                build_intake_context(service_types, service.service_type),
                service_types,
                photo_analysis,
            )
            actions = await self._run_with_mandatory_tools(self._initial_messages(prompt), self.required_tools)

            for action in actions:
                if action.kind == RecoveryKind.FALLBACK_ANALYSIS:
                    logger.warning(f"[GATEKEEPER] SaveAnalysis was not called for service {service_id}, creating fallback")
                    await self.fallback.create_fallback_analysis(lead, service_id, tenant_id)

            await self.fallback.maybe_auto_disqualify_junk(lead_id, service_id, tenant_id)
            self._finish_run()

    async def _fetch_notes(self, lead_id: UUID, service_id: UUID, tenant_id: UUID) -> List[LeadNote]:
        try:
            return await self.deps.repository.list_notes_by_service(lead_id, service_id, tenant_id)
        except Exception as e:
            logger.warning(f"[GATEKEEPER] Notes fetch failed for service {service_id}: {e}")
            return []

    async def _fetch_photo_analysis(self, service_id: UUID, tenant_id: UUID) -> Optional[PhotoAnalysis]:
        try:
            return await self.deps.repository.get_latest_photo_analysis(service_id, tenant_id)
        except Exception as e:
            logger.warning(f"[GATEKEEPER] Photo analysis fetch failed for service {service_id}: {e}")
            return None

    async def _fetch_service_types(self, tenant_id: UUID) -> List[ServiceType]:
        try:
            return await self.deps.repository.list_active_service_types(tenant_id)
        except Exception as e:
            logger.warning(f"[GATEKEEPER] Service types fetch failed for tenant {tenant_id}: {e}")
            return []
