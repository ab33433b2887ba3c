"""
Pipeline Tools

UpdatePipelineStage is shared by the Gatekeeper, Estimator, Dispatcher and
Call Logger. Each agent must have called its own prerequisite tools in the
same run before it may move the stage; the stage machine then applies the
lifecycle guards.
"""

import logging

from langchain_core.tools import tool
from langsmith import traceable
from pydantic import BaseModel, Field

from leadpipeline.agents.state import RunContext, ToolCallTracker, ToolName, TrackerKey
from leadpipeline.core.normalization import normalize_pipeline_stage
from leadpipeline.core.pipeline import is_terminal
from leadpipeline.models import ActorName, PipelineStage
from leadpipeline.utils.error_handling import (
    InvalidStageError,
    LeadPipelineError,
    NotFoundError,
    SequenceViolationError,
    TerminalStateError,
    ValidationFailedError,
    tool_failure,
    tool_success,
)

from .toolbox import get_tool_dependencies

logger = logging.getLogger(__name__)


class UpdatePipelineStageParams(BaseModel):
    """Parameters for moving the lead service to another pipeline stage."""
    stage: str = Field(
        ...,
        description="Triage, Nurturing, Estimation, Proposal, Fulfillment, Manual_Intervention, Completed or Lost",
    )
    reason: str = Field(default="", description="Short human-readable reason (Dutch)")


def check_actor_sequence(context: RunContext, tracker: ToolCallTracker, stage: str) -> None:
    """
    Enforce per-agent tool ordering within a run.

    Raises:
        SequenceViolationError: when the acting agent skipped a prerequisite tool
    """
    actor = context.actor

    if actor.is_agent(ActorName.GATEKEEPER) and not tracker.was_called(ToolName.SAVE_ANALYSIS):
        raise SequenceViolationError("SaveAnalysis is required before stage update")

    if actor.is_agent(ActorName.ESTIMATOR):
        if not tracker.was_called(ToolName.SAVE_ESTIMATION):
            raise SequenceViolationError("SaveEstimation is required before stage update")
        if stage == PipelineStage.ESTIMATION.value and not tracker.was_called(ToolName.DRAFT_QUOTE):
            raise SequenceViolationError("DraftQuote is required before moving to Estimation")

    if (
        actor.is_agent(ActorName.DISPATCHER)
        and stage == PipelineStage.FULFILLMENT.value
        and not tracker.was_called(ToolName.CREATE_PARTNER_OFFER)
    ):
        raise SequenceViolationError("CreatePartnerOffer is required before moving to Fulfillment")


@tool(ToolName.UPDATE_PIPELINE_STAGE, args_schema=UpdatePipelineStageParams)
@traceable(name=ToolName.UPDATE_PIPELINE_STAGE)
async def update_pipeline_stage(stage: str, reason: str = "") -> str:
    """Update the pipeline stage of the current lead service and record a timeline event."""
    try:
        new_stage = normalize_pipeline_stage(stage).value

        deps = get_tool_dependencies()
        context = deps.require_context()

        service = await deps.repository.get_lead_service(context.service_id, context.tenant_id)
        if str(service.pipeline_stage) == new_stage:
            logger.info(
                f"[UPDATE_STAGE] run={deps.tracker.run_id} actor={context.actor.type}/{context.actor.name} "
                f"service={context.service_id} stage={new_stage}: no change"
            )
            return tool_success("Pipeline stage unchanged")

        if is_terminal(service.status, service.pipeline_stage):
            raise TerminalStateError(f"service {context.service_id} is terminal")

        check_actor_sequence(context, deps.tracker, new_stage)

        result = await deps.stage_machine.transition(
            context.tenant_id,
            context.lead_id,
            context.service_id,
            new_stage,
            reason,
            context.actor,
            analysis_metadata=deps.tracker.get_value(TrackerKey.LAST_ANALYSIS_METADATA),
        )

        deps.tracker.mark(ToolName.UPDATE_PIPELINE_STAGE, **{TrackerKey.LAST_STAGE: result.new_stage})
        logger.info(
            f"[UPDATE_STAGE] run={deps.tracker.run_id} actor={context.actor.type}/{context.actor.name} "
            f"service={context.service_id} from={result.old_stage} to={result.new_stage}"
        )
        return tool_success("Pipeline stage updated", old_stage=result.old_stage, new_stage=result.new_stage)

    except InvalidStageError as e:
        return tool_failure("Invalid pipeline stage", e)
    except TerminalStateError as e:
        logger.warning(f"[UPDATE_STAGE] Rejected: {e}")
        return tool_failure("Cannot update pipeline stage for a service in terminal state", e)
    except ValidationFailedError as e:
        logger.warning(f"[UPDATE_STAGE] Rejected: {e}")
        return tool_failure(str(e), e)
    except NotFoundError as e:
        return tool_failure("Lead service not found", e)
    except LeadPipelineError as e:
        return tool_failure("Failed to update pipeline stage", e)
