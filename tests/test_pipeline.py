"""
Tests for the pipeline stage machine and its guards.
"""

from uuid import uuid4

import pytest

from leadpipeline.core.pipeline import (
    PipelineStageMachine,
    check_service_type_mutable,
    is_terminal,
    validate_analysis_stage_transition,
    validate_state_combination,
)
from leadpipeline.core.repository import EventTitle, EventType
from leadpipeline.models import Actor, ActorName, ActorType, LeadStatus, PipelineStage
from leadpipeline.utils.error_handling import (
    InvalidStageError,
    NotFoundError,
    TerminalStateError,
    ValidationFailedError,
)

from mocks.mock_repository import RecordingEventBus, set_stage

GATEKEEPER = Actor(type=ActorType.AI, name=ActorName.GATEKEEPER)


class TestGuards:
    @pytest.mark.parametrize("status, stage, expected", [
        ("Closed", "Estimation", True),
        ("Disqualified", "Lost", True),
        ("Surveyed", "Triage", True),
        ("New", "Completed", True),
        ("New", "Lost", True),
        ("Scheduled", "Estimation", False),
        ("Attempted_Contact", "Manual_Intervention", False),
    ])
    def test_is_terminal(self, status, stage, expected):
        assert is_terminal(status, stage) is expected

    def test_state_combinations(self):
        assert validate_state_combination("Bad_Lead", "Triage") is None
        assert validate_state_combination("Bad_Lead", "Estimation") is not None
        assert validate_state_combination("Disqualified", "Nurturing") is not None
        assert validate_state_combination("Disqualified", "Lost") is None
        assert validate_state_combination("New", "Proposal") is None

    def test_analysis_gate_only_applies_to_estimation(self):
        assert validate_analysis_stage_transition("RequestInfo", [], "Nurturing") is None
        assert validate_analysis_stage_transition("requestinfo", [], "Estimation") is not None
        assert validate_analysis_stage_transition("ScheduleSurvey", ["Foto's"], "Estimation") is not None
        assert validate_analysis_stage_transition("ScheduleSurvey", ["  "], "Estimation") is None

    def test_service_type_locked_after_triage(self, service):
        check_service_type_mutable(service)
        locked = service.model_copy(update={"pipeline_stage": PipelineStage.ESTIMATION.value})
        with pytest.raises(ValidationFailedError, match="locked after Triage"):
            check_service_type_mutable(locked)


class TestTransition:
    @pytest.mark.asyncio
    async def test_transition_persists_records_and_publishes(self, stage_machine, repository, event_bus, lead, service, tenant_id):
        result = await stage_machine.transition(
            tenant_id, lead.id, service.id, "nurturing", "Foto's ontbreken", GATEKEEPER,
            analysis_metadata={"leadQuality": "Potential"},
        )

        assert (result.old_stage, result.new_stage, result.changed) == ("Triage", "Nurturing", True)
        assert repository.stored_service(service.id).pipeline_stage == "Nurturing"

        event = repository.events[-1]
        assert event.event_type == EventType.STAGE_CHANGE
        assert event.title == EventTitle.STAGE_UPDATED
        assert event.summary == "Foto's ontbreken"
        assert event.actor_name == ActorName.GATEKEEPER
        assert event.metadata["oldStage"] == "Triage"
        assert event.metadata["newStage"] == "Nurturing"
        assert event.metadata["analysis"] == {"leadQuality": "Potential"}

        assert event_bus.names() == ["PipelineStageChanged"]
        assert event_bus.published[0].new_stage == "Nurturing"

    @pytest.mark.asyncio
    async def test_same_stage_is_a_no_op(self, stage_machine, repository, event_bus, lead, service, tenant_id):
        result = await stage_machine.transition(tenant_id, lead.id, service.id, "Triage", "", GATEKEEPER)

        assert result.changed is False
        assert repository.events == []
        assert event_bus.published == []

    @pytest.mark.asyncio
    async def test_unknown_stage_fails_before_io(self, stage_machine, repository, lead, service, tenant_id):
        repository.failing.add("get_lead_service")
        with pytest.raises(InvalidStageError):
            await stage_machine.transition(tenant_id, lead.id, service.id, "Qualified")

    @pytest.mark.asyncio
    async def test_missing_service(self, stage_machine, lead, tenant_id):
        with pytest.raises(NotFoundError):
            await stage_machine.transition(tenant_id, lead.id, uuid4(), "Nurturing")

    @pytest.mark.asyncio
    async def test_terminal_service_rejected(self, stage_machine, repository, lead, service, tenant_id):
        set_stage(repository, service, PipelineStage.ESTIMATION, LeadStatus.CLOSED)
        with pytest.raises(TerminalStateError):
            await stage_machine.transition(tenant_id, lead.id, service.id, "Proposal")

    @pytest.mark.asyncio
    async def test_force_bypasses_guards(self, stage_machine, repository, lead, service, tenant_id):
        set_stage(repository, service, PipelineStage.LOST, LeadStatus.DISQUALIFIED)
        result = await stage_machine.transition(
            tenant_id, lead.id, service.id, "Manual_Intervention", "Escalatie", force=True,
            title=EventTitle.MANUAL_INTERVENTION,
        )
        assert result.changed is True
        assert repository.events[-1].title == EventTitle.MANUAL_INTERVENTION
        assert repository.events[-1].actor_type == "System"

    @pytest.mark.asyncio
    async def test_proposal_requires_non_draft_quote(self, stage_machine, repository, lead, service, tenant_id):
        set_stage(repository, service, PipelineStage.ESTIMATION)
        with pytest.raises(ValidationFailedError, match="quote is still draft"):
            await stage_machine.transition(tenant_id, lead.id, service.id, "Proposal")

        repository.non_draft_quote = True
        result = await stage_machine.transition(tenant_id, lead.id, service.id, "Proposal")
        assert result.new_stage == "Proposal"

    @pytest.mark.asyncio
    async def test_estimation_blocked_by_incomplete_intake(self, stage_machine, incomplete_analysis, lead, service, tenant_id):
        with pytest.raises(ValidationFailedError, match="intake is incomplete"):
            await stage_machine.transition(tenant_id, lead.id, service.id, "Estimation")

    @pytest.mark.asyncio
    async def test_estimation_allowed_with_complete_intake(self, stage_machine, complete_analysis, lead, service, tenant_id):
        result = await stage_machine.transition(tenant_id, lead.id, service.id, "Estimation")
        assert result.changed is True

    @pytest.mark.asyncio
    async def test_failing_event_bus_does_not_fail_transition(self, repository, lead, service, tenant_id):
        machine = PipelineStageMachine(repository, RecordingEventBus(fail=True))
        result = await machine.transition(tenant_id, lead.id, service.id, "Nurturing")
        assert result.changed is True
        assert repository.stored_service(service.id).pipeline_stage == "Nurturing"
