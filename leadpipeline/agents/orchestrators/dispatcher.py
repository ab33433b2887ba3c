"""
Dispatcher: matches an accepted job to a partner and sends the offer.
"""

import logging
from typing import List, Optional
from uuid import UUID

from leadpipeline.agents.fallback import PARTNER_MATCHING_ALERT, RecoveryKind
from leadpipeline.agents.state import ToolName
from leadpipeline.core.repository import EventTitle
from leadpipeline.models import ActorName

from .base import BaseOrchestrator
from .prompts import DISPATCHER_SYSTEM_PROMPT, build_dispatcher_prompt

logger = logging.getLogger(__name__)


class Dispatcher(BaseOrchestrator):
    agent_name = ActorName.DISPATCHER
    system_prompt = DISPATCHER_SYSTEM_PROMPT
    required_tools = [ToolName.FIND_MATCHING_PARTNERS]

    async def run(
        self,
        lead_id: UUID,
        service_id: UUID,
        tenant_id: UUID,
        exclude_partner_ids: Optional[List[UUID]] = None,
    ) -> None:
        """
        Raises:
            NotFoundError: if the lead or service does not exist
        """
        async with self._run_lock:
            self._start_run(tenant_id, lead_id, service_id)

            lead = await self.deps.repository.get_lead(lead_id, tenant_id)
            service = await self.deps.repository.get_lead_service(service_id, tenant_id)

            prompt = build_dispatcher_prompt(
                lead,
                service,
                self.settings.partner_search_radius_km,
                [str(partner_id) for partner_id in exclude_partner_ids or []],
            )
            actions = await self._run_with_mandatory_tools(self._initial_messages(prompt), self.required_tools)

            for action in actions:
                if action.kind == RecoveryKind.PARTNER_MATCHING_ALERT:
                    logger.warning(f"[DISPATCHER] FindMatchingPartners was not called for service {service_id}")
                    await self.fallback.record_alert(
                        lead_id,
                        service_id,
                        tenant_id,
                        EventTitle.DISPATCHER_FAILED,
                        PARTNER_MATCHING_ALERT,
                        self.system_actor,
                    )

            self._finish_run()
