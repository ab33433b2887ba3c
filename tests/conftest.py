"""
Shared fixtures for the lead pipeline test suite.
"""

from uuid import UUID, uuid4

import pytest

from leadpipeline.agents.state import ToolDependencies
from leadpipeline.config import Settings
from leadpipeline.core.pipeline import PipelineStageMachine
from leadpipeline.models import Actor, ActorName, ActorType, Lead, LeadService, RecommendedAction, ServiceType

from mocks.mock_repository import InMemoryLeadsRepository, RecordingEventBus, analysis_params


@pytest.fixture
def settings():
    return Settings(_env_file=None, OPENAI_API_KEY="sk-test")


@pytest.fixture
def tenant_id() -> UUID:
    return uuid4()


@pytest.fixture
def user_id() -> UUID:
    return uuid4()


@pytest.fixture
def repository():
    return InMemoryLeadsRepository()


@pytest.fixture
def event_bus():
    return RecordingEventBus()


@pytest.fixture
def lead(repository, tenant_id):
    lead = Lead(
        organization_id=tenant_id,
        consumer_first_name="Sanne",
        consumer_last_name="de Vries",
        consumer_phone="+31612345678",
        consumer_email="sanne@example.nl",
        address_street="Kerkstraat",
        address_house_number="12",
        address_zip_code="3511AB",
        address_city="Utrecht",
    )
    return repository.add_lead(lead)


@pytest.fixture
def service(repository, lead, tenant_id):
    service = LeadService(
        lead_id=lead.id,
        organization_id=tenant_id,
        service_type="Dakgoot reparatie",
        consumer_note="Dakgoot lekt bij de voorgevel, ongeveer 8 meter.",
    )
    return repository.add_service(service)


@pytest.fixture
def service_types(repository):
    repository.service_types = [
        ServiceType(
            name="Dakgoot reparatie",
            slug="dakgoot-reparatie",
            description="Reparatie of vervanging van dakgoten",
            intake_guidelines="Lengte van de goot, materiaal, bereikbaarheid",
            estimation_guidelines="Reken 1 uur per 4 meter goot.",
        ),
        ServiceType(name="Schilderwerk", slug="schilderwerk", description="Binnen- en buitenschilderwerk"),
    ]
    return repository.service_types


@pytest.fixture
def stage_machine(repository, event_bus):
    return PipelineStageMachine(repository, event_bus)


@pytest.fixture
def deps(repository, stage_machine, event_bus, settings):
    return ToolDependencies(
        repository=repository,
        stage_machine=stage_machine,
        event_bus=event_bus,
        settings=settings,
    )


@pytest.fixture
def complete_analysis(repository, lead, service):
    return repository.add_analysis(analysis_params(lead, service))


@pytest.fixture
def incomplete_analysis(repository, lead, service):
    return repository.add_analysis(analysis_params(
        lead,
        service,
        recommended_action=RecommendedAction.REQUEST_INFO,
        missing_information=["Lengte van de goot"],
    ))


def agent_actor(name: str) -> Actor:
    return Actor(type=ActorType.AI, name=name)


@pytest.fixture
def run_as(deps, lead, service, tenant_id):
    """Set the run context for the given agent name and reset the tracker."""

    def _run_as(name: str = ActorName.GATEKEEPER, user=None, actor=None):
        deps.context.set_context(tenant_id, lead.id, service.id, actor or agent_actor(name), user)
        deps.tracker.reset(service.id)
        return deps

    return _run_as
