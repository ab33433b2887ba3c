"""
Auditor: internal review of visit reports and call logs against the intake
requirements of the service type.
"""

import logging
from typing import List
from uuid import UUID

from langchain_core.messages import BaseMessage

from leadpipeline.agents.fallback import AUDIT_MISSING_REASON, RecoveryKind
from leadpipeline.agents.state import ToolName
from leadpipeline.models import ActorName, LeadNote

from .base import BaseOrchestrator
from .prompts import (
    AUDITOR_SYSTEM_PROMPT,
    build_call_log_audit_prompt,
    build_intake_context,
    build_visit_report_audit_prompt,
)

logger = logging.getLogger(__name__)

NO_INTAKE_REQUIREMENTS = "No intake requirements available."


class Auditor(BaseOrchestrator):
    agent_name = ActorName.AUDITOR
    system_prompt = AUDITOR_SYSTEM_PROMPT
    required_tools = [ToolName.SUBMIT_AUDIT_RESULT]

    async def audit_visit_report(self, lead_id: UUID, service_id: UUID, tenant_id: UUID, appointment_id: UUID) -> None:
        """Audit the visit report of an appointment. A missing report is logged and skipped."""
        async with self._run_lock:
            self._start_run(tenant_id, lead_id, service_id)

            service = await self.deps.repository.get_lead_service(service_id, tenant_id)
            report = await self.deps.repository.get_visit_report(appointment_id, tenant_id)
            if report is None:
                logger.info(f"[AUDITOR] Visit report not found for appointment={appointment_id}")
                return

            notes = await self._fetch_notes(lead_id, service_id, tenant_id)
            intake_context = await self._build_intake_context(tenant_id, service.service_type)
            prompt = build_visit_report_audit_prompt(service.service_type, intake_context, report, notes)
            await self._audit(self._initial_messages(prompt), lead_id, service_id, tenant_id)

    async def audit_call_log(self, lead_id: UUID, service_id: UUID, tenant_id: UUID) -> None:
        """Audit the latest call log and notes of a lead service."""
        async with self._run_lock:
            self._start_run(tenant_id, lead_id, service_id)

            service = await self.deps.repository.get_lead_service(service_id, tenant_id)
            notes = await self._fetch_notes(lead_id, service_id, tenant_id)
            intake_context = await self._build_intake_context(tenant_id, service.service_type)
            prompt = build_call_log_audit_prompt(service.service_type, intake_context, notes)
            await self._audit(self._initial_messages(prompt), lead_id, service_id, tenant_id)

    async def _audit(self, messages: List[BaseMessage], lead_id: UUID, service_id: UUID, tenant_id: UUID) -> None:
        actions = await self._run_with_mandatory_tools(messages, self.required_tools)
        for action in actions:
            if action.kind == RecoveryKind.MANUAL_INTERVENTION:
                await self.fallback.escalate_to_manual_intervention(
                    lead_id,
                    service_id,
                    tenant_id,
                    AUDIT_MISSING_REASON,
                    self.system_actor,
                    metadata={"trigger": "audit_missing"},
                )
        self._finish_run()

    async def _fetch_notes(self, lead_id: UUID, service_id: UUID, tenant_id: UUID) -> List[LeadNote]:
        try:
            return await self.deps.repository.list_notes_by_service(lead_id, service_id, tenant_id)
        except Exception as e:
            logger.warning(f"[AUDITOR] Notes fetch failed for service {service_id}: {e}")
            return []

    async def _build_intake_context(self, tenant_id: UUID, service_type: str) -> str:
        try:
            service_types = await self.deps.repository.list_active_service_types(tenant_id)
        except Exception as e:
            logger.warning(f"[AUDITOR] Service types fetch failed for tenant {tenant_id}: {e}")
            return NO_INTAKE_REQUIREMENTS
        return build_intake_context(service_types, service_type)
