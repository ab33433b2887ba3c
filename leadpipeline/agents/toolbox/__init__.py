"""
Agent Toolbox

Tools for the pipeline agents, grouped per agent. Each orchestrator binds only
the tools returned for its actor name.
"""

import logging
from typing import Any, Dict, List

from leadpipeline.models import ActorName

from .audit_tools import submit_audit_result
from .call_log_tools import (
    cancel_visit,
    normalize_call_note,
    reschedule_visit,
    save_note,
    schedule_visit,
    set_call_outcome,
    update_status,
)
from .dispatch_tools import create_partner_offer, find_matching_partners
from .estimation_tools import (
    calculate_estimate_tool,
    calculator,
    draft_quote,
    save_estimation,
    search_product_materials,
)
from .gatekeeper_tools import save_analysis, update_lead_details, update_lead_service_type
from .pipeline_tools import update_pipeline_stage
from .toolbox import (
    ToolRunContext,
    format_tool_result,
    get_tool_dependencies,
)

logger = logging.getLogger(__name__)

# =============================================================================
# TOOL REGISTRY
# =============================================================================

def get_gatekeeper_tools() -> List:
    return [
        save_analysis,
        update_lead_service_type,
        update_lead_details,
        update_pipeline_stage,
    ]


def get_estimator_tools() -> List:
    return [
        search_product_materials,
        calculator,
        calculate_estimate_tool,
        draft_quote,
        save_estimation,
        update_pipeline_stage,
    ]


def get_dispatcher_tools() -> List:
    return [
        find_matching_partners,
        create_partner_offer,
        update_pipeline_stage,
    ]


def get_auditor_tools() -> List:
    return [submit_audit_result]


def get_call_logger_tools() -> List:
    return [
        normalize_call_note,
        save_note,
        set_call_outcome,
        update_status,
        update_pipeline_stage,
        schedule_visit,
        reschedule_visit,
        cancel_visit,
    ]


_TOOLS_BY_AGENT = {
    ActorName.GATEKEEPER: get_gatekeeper_tools,
    ActorName.ESTIMATOR: get_estimator_tools,
    ActorName.DISPATCHER: get_dispatcher_tools,
    ActorName.AUDITOR: get_auditor_tools,
    ActorName.CALL_LOGGER: get_call_logger_tools,
}


def get_tools_for_agent(agent_name: str) -> List:
    """Tools an agent may call; unknown agents get none."""
    factory = _TOOLS_BY_AGENT.get(agent_name)
    if factory is None:
        logger.warning(f"[TOOLBOX] Unknown agent requested tools: {agent_name}")
        return []
    return factory()


def get_all_tools() -> List:
    """Every tool once, in registration order."""
    seen = {}
    for factory in _TOOLS_BY_AGENT.values():
        for agent_tool in factory():
            seen.setdefault(agent_tool.name, agent_tool)
    return list(seen.values())


def get_tool_names() -> List[str]:
    return [agent_tool.name for agent_tool in get_all_tools()]


def validate_tool_access(tool_name: str, agent_name: str) -> bool:
    return tool_name in {agent_tool.name for agent_tool in get_tools_for_agent(agent_name)}


# =============================================================================
# HEALTH CHECK
# =============================================================================

def health_check_toolbox() -> Dict[str, Any]:
    """Report which agents have which tools and flag tools without a coroutine."""
    health_status: Dict[str, Any] = {
        "status": "healthy",
        "total_tools": 0,
        "agents": {},
        "errors": [],
    }

    all_tools = get_all_tools()
    health_status["total_tools"] = len(all_tools)
    for agent_tool in all_tools:
        if getattr(agent_tool, "coroutine", None) is None:
            health_status["errors"].append(f"Tool {agent_tool.name} has no async implementation")

    for agent_name in _TOOLS_BY_AGENT:
        health_status["agents"][agent_name] = [t.name for t in get_tools_for_agent(agent_name)]

    if health_status["errors"]:
        health_status["status"] = "degraded"

    logger.info(f"[TOOLBOX] Health check complete - Status: {health_status['status']}")
    return health_status


__all__ = [
    "get_all_tools",
    "get_tool_names",
    "get_tools_for_agent",
    "get_gatekeeper_tools",
    "get_estimator_tools",
    "get_dispatcher_tools",
    "get_auditor_tools",
    "get_call_logger_tools",
    "validate_tool_access",
    "health_check_toolbox",
    "ToolRunContext",
    "format_tool_result",
    "get_tool_dependencies",
    "calculator",
    "calculate_estimate_tool",
    "cancel_visit",
    "create_partner_offer",
    "draft_quote",
    "find_matching_partners",
    "normalize_call_note",
    "reschedule_visit",
    "save_analysis",
    "save_estimation",
    "save_note",
    "schedule_visit",
    "search_product_materials",
    "set_call_outcome",
    "submit_audit_result",
    "update_lead_details",
    "update_lead_service_type",
    "update_pipeline_stage",
    "update_status",
]
