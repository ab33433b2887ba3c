"""
Shared run loop for the pipeline agents.

Each orchestrator owns one ToolDependencies and one run lock, so runs on the
same instance are serialized while separate instances run concurrently. The
tool loop follows the usual LangChain flow: bind tools, ainvoke the model,
execute the requested tool calls, feed ToolMessages back until the model stops
calling tools or the iteration budget is spent.
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_openai import ChatOpenAI

from leadpipeline.agents.fallback import (
    FallbackService,
    RecoveryAction,
    RetryStateMachine,
    after_run,
    build_retry_instruction,
    missing_tools,
)
from leadpipeline.agents.state import ToolDependencies
from leadpipeline.agents.toolbox import ToolRunContext, format_tool_result, get_tools_for_agent
from leadpipeline.models import Actor, ActorName, ActorType
from leadpipeline.utils.error_handling import log_error_with_context, tool_failure

logger = logging.getLogger(__name__)


class BaseOrchestrator:
    """Base class for agents that drive a tool-calling model over one lead service."""

    agent_name: str = ActorName.DEFAULT
    system_prompt: str = ""

    def __init__(self, deps: ToolDependencies, llm: Optional[Any] = None):
        self.deps = deps
        self.settings = deps.settings
        self.fallback = FallbackService(deps.repository, deps.stage_machine, deps.event_bus)
        self.tools = get_tools_for_agent(self.agent_name)
        self.tool_map = {agent_tool.name: agent_tool for agent_tool in self.tools}
        self.llm = (llm if llm is not None else self._build_llm()).bind_tools(self.tools)
        self._run_lock = asyncio.Lock()

    def _build_llm(self) -> ChatOpenAI:
        return ChatOpenAI(
            model=self.settings.openai_chat_model,
            temperature=self.settings.openai_temperature,
            max_tokens=self.settings.openai_max_tokens,
            api_key=self.settings.openai_api_key,
        )

    @property
    def actor(self) -> Actor:
        return Actor(type=ActorType.AI, name=self.agent_name)

    @property
    def system_actor(self) -> Actor:
        """Actor for alerts the orchestrator writes itself after a run."""
        return Actor(type=ActorType.SYSTEM, name=self.agent_name)

    def _start_run(self, tenant_id: UUID, lead_id: UUID, service_id: UUID, user_id: Optional[UUID] = None, actor: Optional[Actor] = None) -> str:
        """Set the run context and reset the tracker. Must be called while holding the run lock."""
        self.deps.context.set_context(tenant_id, lead_id, service_id, actor or self.actor, user_id)
        run_id = self.deps.tracker.reset(service_id)
        logger.info(
            f"[{self.agent_name.upper()}] Run started run={run_id} lead={lead_id} "
            f"service={service_id} tenant={tenant_id}"
        )
        return run_id

    def _initial_messages(self, prompt: str) -> List[BaseMessage]:
        messages: List[BaseMessage] = []
        if self.system_prompt:
            messages.append(SystemMessage(content=self.system_prompt))
        messages.append(HumanMessage(content=prompt))
        return messages

    # =========================================================================
    # TOOL LOOP
    # =========================================================================

    async def _execute_tool_call(self, tool_call: Any) -> ToolMessage:
        # Handle both dict and object formats for tool_call
        if isinstance(tool_call, dict):
            tool_name = tool_call["name"]
            tool_args = tool_call.get("args") or {}
            tool_call_id = tool_call.get("id") or ""
        else:
            tool_name = tool_call.name
            tool_args = tool_call.args or {}
            tool_call_id = tool_call.id or ""

        agent_tool = self.tool_map.get(tool_name)
        if agent_tool is None:
            logger.error(f"[{self.agent_name.upper()}] Tool '{tool_name}' not found")
            content = tool_failure(f"Tool '{tool_name}' not found")
        else:
            logger.info(f"[{self.agent_name.upper()}] Executing tool: {tool_name}")
            try:
                with ToolRunContext(self.deps):
                    content = str(await agent_tool.ainvoke(tool_args))
            except Exception as e:
                context, _ = self.deps.context.get_context()
                log_error_with_context(
                    e,
                    {
                        "run_id": self.deps.tracker.run_id,
                        "service_id": context.service_id if context else None,
                        "actor": self.agent_name,
                    },
                    f"tool {tool_name}",
                )
                content = tool_failure(f"Error executing {tool_name}", e)

        result = format_tool_result(content)
        if not result.get("success", True):
            logger.warning(f"[{self.agent_name.upper()}] Tool {tool_name} failed: {result.get('message')}")

        return ToolMessage(content=content, tool_call_id=tool_call_id, name=tool_name)

    async def _run_tool_loop(self, messages: List[BaseMessage]) -> List[BaseMessage]:
        """Run model turns until no tool calls remain or the iteration budget is spent."""
        processing_messages = list(messages)
        max_tool_iterations = self.settings.agent_max_tool_iterations
        iteration = 0

        while iteration < max_tool_iterations:
            iteration += 1
            response = await self.llm.ainvoke(processing_messages)
            processing_messages.append(response)

            tool_calls = getattr(response, "tool_calls", None) or []
            if not tool_calls:
                break

            logger.info(f"[{self.agent_name.upper()}] Iteration {iteration}: model called {len(tool_calls)} tool(s)")
            for tool_call in tool_calls:
                processing_messages.append(await self._execute_tool_call(tool_call))
        else:
            logger.warning(f"[{self.agent_name.upper()}] Stopped after {max_tool_iterations} iterations")

        return processing_messages

    async def _run_with_mandatory_tools(
        self, messages: List[BaseMessage], required_tools: Iterable[str]
    ) -> List[RecoveryAction]:
        """
        Run the tool loop, retrying once when a mandatory tool did not fire.

        Returns the recovery actions for tools still missing after the retry.
        """
        required = list(required_tools)
        retry = RetryStateMachine()
        tracker = self.deps.tracker

        conversation = await self._run_tool_loop(messages)
        missing = missing_tools(required, tracker)

        if missing and retry.can_retry:
            retry.begin_retry()
            logger.warning(
                f"[{self.agent_name.upper()}] Mandatory tool(s) missing run={tracker.run_id}: {missing}, retrying once"
            )
            # Marks from the first attempt stay: they are prerequisites for the retry
            conversation.append(HumanMessage(content=build_retry_instruction(missing)))
            await self._run_tool_loop(conversation)

        actions = after_run(required, tracker)
        if actions:
            retry.escalate()
            logger.warning(
                f"[{self.agent_name.upper()}] Escalating run={tracker.run_id}: "
                f"{[action.tool_name for action in actions]} still missing"
            )
        else:
            retry.complete()
        return actions

    def _finish_run(self, extra: Optional[Dict[str, Any]] = None) -> None:
        logger.info(
            f"[{self.agent_name.upper()}] Run finished run={self.deps.tracker.run_id} "
            f"tools={self.deps.tracker.called_tools()}" + (f" {extra}" if extra else "")
        )
