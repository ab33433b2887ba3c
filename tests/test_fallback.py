"""
Tests for FallbackService: deterministic repairs after an agent run.
"""

import pytest

from leadpipeline.agents.fallback import (
    AUTO_DISQUALIFY_SUMMARY,
    FALLBACK_ANALYSIS_SUMMARY,
    FALLBACK_MISSING_INFORMATION,
    INSUFFICIENT_INTAKE_ALERT,
    REASON_ANALYSIS_UNAVAILABLE,
    REASON_MISSING_INFORMATION,
    REASON_REQUEST_INFO,
    FallbackService,
)
from leadpipeline.core.repository import EventTitle, EventType
from leadpipeline.models import (
    Actor,
    ActorName,
    ActorType,
    LeadQuality,
    LeadStatus,
    PipelineStage,
    RecommendedAction,
)

from mocks.mock_repository import analysis_params, set_stage

SYSTEM_ESTIMATOR = Actor(type=ActorType.SYSTEM, name=ActorName.ESTIMATOR)


@pytest.fixture
def fallback(repository, stage_machine, event_bus):
    return FallbackService(repository, stage_machine, event_bus)


class TestFallbackAnalysis:
    @pytest.mark.asyncio
    async def test_creates_request_info_analysis(self, fallback, repository, lead, service, tenant_id):
        metadata = await fallback.create_fallback_analysis(lead, service.id, tenant_id)

        analysis = repository.analyses[-1]
        assert analysis.recommended_action == RecommendedAction.REQUEST_INFO.value
        assert analysis.lead_quality == LeadQuality.POTENTIAL.value
        assert analysis.missing_information == [FALLBACK_MISSING_INFORMATION]
        assert analysis.preferred_contact_channel == "WhatsApp"
        assert "Sanne" in analysis.suggested_contact_message

        event = repository.events_titled(EventTitle.GATEKEEPER_FALLBACK)[0]
        assert event.summary == FALLBACK_ANALYSIS_SUMMARY
        assert event.actor_name == ActorName.GATEKEEPER
        assert metadata["fallback"] is True

        # Never moves the stage
        assert repository.stored_service(service.id).pipeline_stage == "Triage"

    @pytest.mark.asyncio
    async def test_email_channel_without_phone(self, fallback, repository, lead, service, tenant_id):
        no_phone = lead.model_copy(update={"consumer_phone": "  "})
        await fallback.create_fallback_analysis(no_phone, service.id, tenant_id)
        assert repository.analyses[-1].preferred_contact_channel == "Email"

    @pytest.mark.asyncio
    async def test_storage_failure_returns_none(self, fallback, repository, lead, service, tenant_id):
        repository.failing.add("create_ai_analysis")
        assert await fallback.create_fallback_analysis(lead, service.id, tenant_id) is None
        assert repository.events == []


class TestJunkAutoDisqualify:
    @pytest.mark.asyncio
    async def test_junk_lead_disqualified(self, fallback, repository, event_bus, lead, service, tenant_id):
        repository.add_analysis(analysis_params(lead, service, lead_quality=LeadQuality.JUNK))

        assert await fallback.maybe_auto_disqualify_junk(lead.id, service.id, tenant_id) is True

        stored = repository.stored_service(service.id)
        assert stored.pipeline_stage == "Lost"
        assert stored.status == "Disqualified"
        event = repository.events_titled(EventTitle.AUTO_DISQUALIFIED)[0]
        assert event.summary == AUTO_DISQUALIFY_SUMMARY
        assert event.metadata["reason"] == "junk_quality"
        assert "LeadAutoDisqualified" in event_bus.names()

    @pytest.mark.asyncio
    async def test_idempotent(self, fallback, repository, lead, service, tenant_id):
        repository.add_analysis(analysis_params(lead, service, lead_quality=LeadQuality.JUNK))
        await fallback.maybe_auto_disqualify_junk(lead.id, service.id, tenant_id)
        events_after_first = len(repository.events)

        assert await fallback.maybe_auto_disqualify_junk(lead.id, service.id, tenant_id) is False
        assert len(repository.events) == events_after_first

    @pytest.mark.asyncio
    async def test_non_junk_untouched(self, fallback, repository, complete_analysis, lead, service, tenant_id):
        assert await fallback.maybe_auto_disqualify_junk(lead.id, service.id, tenant_id) is False
        assert repository.stored_service(service.id).status == "New"

    @pytest.mark.asyncio
    async def test_terminal_service_untouched(self, fallback, repository, lead, service, tenant_id):
        set_stage(repository, service, PipelineStage.COMPLETED)
        repository.add_analysis(analysis_params(lead, service, lead_quality=LeadQuality.JUNK))

        assert await fallback.maybe_auto_disqualify_junk(lead.id, service.id, tenant_id) is False
        assert repository.events == []

    @pytest.mark.asyncio
    async def test_status_failure_leaves_stage(self, fallback, repository, lead, service, tenant_id):
        repository.add_analysis(analysis_params(lead, service, lead_quality=LeadQuality.JUNK))
        repository.failing.add("update_service_status")

        assert await fallback.maybe_auto_disqualify_junk(lead.id, service.id, tenant_id) is False
        assert repository.stored_service(service.id).pipeline_stage == "Triage"
        assert repository.events == []

        repository.failing.clear()
        assert await fallback.maybe_auto_disqualify_junk(lead.id, service.id, tenant_id) is True
        stored = repository.stored_service(service.id)
        assert stored.pipeline_stage == "Lost"
        assert stored.status == "Disqualified"

    @pytest.mark.asyncio
    async def test_stage_failure_resumed_on_next_call(self, fallback, repository, lead, service, tenant_id):
        repository.add_analysis(analysis_params(lead, service, lead_quality=LeadQuality.JUNK))
        repository.failing.add("update_pipeline_stage")

        assert await fallback.maybe_auto_disqualify_junk(lead.id, service.id, tenant_id) is False
        assert repository.stored_service(service.id).status == "Disqualified"

        repository.failing.clear()
        assert await fallback.maybe_auto_disqualify_junk(lead.id, service.id, tenant_id) is True
        assert repository.stored_service(service.id).pipeline_stage == "Lost"
        assert len(repository.events_titled(EventTitle.AUTO_DISQUALIFIED)) == 1

    @pytest.mark.asyncio
    async def test_repository_failure_is_swallowed(self, fallback, repository, lead, service, tenant_id):
        repository.failing.add("get_lead_service")
        assert await fallback.maybe_auto_disqualify_junk(lead.id, service.id, tenant_id) is False


class TestInsufficientIntake:
    @pytest.mark.asyncio
    async def test_no_analysis(self, fallback, service, tenant_id):
        assert await fallback.check_insufficient_intake(service.id, tenant_id) == (True, REASON_ANALYSIS_UNAVAILABLE)

    @pytest.mark.asyncio
    async def test_request_info(self, fallback, repository, lead, service, tenant_id):
        repository.add_analysis(analysis_params(lead, service, recommended_action=RecommendedAction.REQUEST_INFO))
        assert await fallback.check_insufficient_intake(service.id, tenant_id) == (True, REASON_REQUEST_INFO)

    @pytest.mark.asyncio
    async def test_missing_information(self, fallback, repository, lead, service, tenant_id):
        repository.add_analysis(analysis_params(lead, service, missing_information=["Materiaal"]))
        assert await fallback.check_insufficient_intake(service.id, tenant_id) == (True, REASON_MISSING_INFORMATION)

    @pytest.mark.asyncio
    async def test_sufficient(self, fallback, complete_analysis, service, tenant_id):
        assert await fallback.check_insufficient_intake(service.id, tenant_id) == (False, "")

    @pytest.mark.asyncio
    async def test_gate_moves_to_nurturing(self, fallback, repository, lead, service, tenant_id):
        set_stage(repository, service, PipelineStage.ESTIMATION)

        changed = await fallback.apply_insufficient_intake_gate(
            lead.id, service.id, tenant_id, REASON_REQUEST_INFO, False, SYSTEM_ESTIMATOR
        )

        assert changed is True
        assert repository.stored_service(service.id).pipeline_stage == "Nurturing"
        alert = repository.events_titled(EventTitle.ESTIMATION_MISSING)[0]
        assert alert.event_type == EventType.ALERT
        assert alert.summary == INSUFFICIENT_INTAKE_ALERT
        assert alert.metadata == {"fallback": True, "trigger": REASON_REQUEST_INFO}

    @pytest.mark.asyncio
    async def test_gate_respects_stage_already_updated(self, fallback, repository, lead, service, tenant_id):
        set_stage(repository, service, PipelineStage.ESTIMATION)

        changed = await fallback.apply_insufficient_intake_gate(
            lead.id, service.id, tenant_id, REASON_REQUEST_INFO, True, SYSTEM_ESTIMATOR
        )

        assert changed is False
        assert repository.stored_service(service.id).pipeline_stage == "Estimation"
        assert len(repository.events_titled(EventTitle.ESTIMATION_MISSING)) == 1

    @pytest.mark.asyncio
    async def test_gate_when_already_nurturing(self, fallback, repository, lead, service, tenant_id):
        set_stage(repository, service, PipelineStage.NURTURING)
        changed = await fallback.apply_insufficient_intake_gate(
            lead.id, service.id, tenant_id, REASON_REQUEST_INFO, False, SYSTEM_ESTIMATOR
        )
        assert changed is False


class TestAlertsAndEscalation:
    @pytest.mark.asyncio
    async def test_record_alert(self, fallback, repository, lead, service, tenant_id):
        assert await fallback.record_alert(
            lead.id, service.id, tenant_id, EventTitle.DISPATCHER_FAILED, "Geen partners", SYSTEM_ESTIMATOR
        ) is True
        event = repository.events[-1]
        assert event.actor_type == "System"
        assert event.metadata == {"fallback": True}

    @pytest.mark.asyncio
    async def test_record_alert_failure(self, fallback, repository, lead, service, tenant_id):
        repository.failing.add("create_timeline_event")
        assert await fallback.record_alert(
            lead.id, service.id, tenant_id, EventTitle.DISPATCHER_FAILED, "Geen partners", SYSTEM_ESTIMATOR
        ) is False

    @pytest.mark.asyncio
    async def test_escalation_forces_stage(self, fallback, repository, lead, service, tenant_id):
        set_stage(repository, service, PipelineStage.ESTIMATION, LeadStatus.CLOSED)

        changed = await fallback.escalate_to_manual_intervention(
            lead.id, service.id, tenant_id, "Audit ontbreekt", SYSTEM_ESTIMATOR, metadata={"trigger": "audit_missing"}
        )

        assert changed is True
        assert repository.stored_service(service.id).pipeline_stage == "Manual_Intervention"
        event = repository.events_titled(EventTitle.MANUAL_INTERVENTION)[0]
        assert event.metadata["trigger"] == "audit_missing"
        assert event.metadata["fallback"] is True

    @pytest.mark.asyncio
    async def test_escalation_failure_is_logged(self, fallback, repository, lead, service, tenant_id):
        repository.failing.add("update_pipeline_stage")
        assert await fallback.escalate_to_manual_intervention(
            lead.id, service.id, tenant_id, "Audit ontbreekt", SYSTEM_ESTIMATOR
        ) is False
