"""
Tests for run-scoped state: tracker, context holder and the retry state machine.
"""

from uuid import uuid4

import pytest

from leadpipeline.agents.fallback import (
    RecoveryKind,
    RetryPhase,
    RetryStateMachine,
    after_run,
    build_retry_instruction,
    missing_tools,
)
from leadpipeline.agents.state import ContextHolder, ToolCallTracker, ToolName, TrackerKey
from leadpipeline.models import Actor, ActorName, ActorType
from leadpipeline.utils.error_handling import MissingContextError


class TestToolCallTracker:
    def test_mark_and_values(self):
        tracker = ToolCallTracker()
        tracker.mark(ToolName.SAVE_NOTE, **{TrackerKey.NOTE_BODY: "Klant gebeld"})

        assert tracker.was_called(ToolName.SAVE_NOTE)
        assert not tracker.was_called(ToolName.SAVE_ANALYSIS)
        assert tracker.get_value(TrackerKey.NOTE_BODY) == "Klant gebeld"
        assert tracker.called_tools() == [ToolName.SAVE_NOTE]

    def test_reset_clears_everything_and_starts_new_run(self):
        tracker = ToolCallTracker()
        service_id = uuid4()
        first = tracker.reset(service_id)
        tracker.mark(ToolName.SAVE_ANALYSIS)
        tracker.set_value(TrackerKey.LAST_STAGE, "Nurturing")

        second = tracker.reset(service_id)

        assert first != second
        assert second.startswith(str(service_id))
        assert not tracker.was_called(ToolName.SAVE_ANALYSIS)
        assert tracker.get_value(TrackerKey.LAST_STAGE) is None

    def test_default_value(self):
        assert ToolCallTracker().get_value("unknown", False) is False


class TestContextHolder:
    def test_require_context_without_context(self):
        holder = ContextHolder()
        context, ok = holder.get_context()
        assert context is None and ok is False
        with pytest.raises(MissingContextError):
            holder.require_context()

    def test_set_and_clear(self):
        holder = ContextHolder()
        tenant_id, lead_id, service_id, user_id = uuid4(), uuid4(), uuid4(), uuid4()
        actor = Actor(type=ActorType.AI, name=ActorName.ESTIMATOR)

        holder.set_context(tenant_id, lead_id, service_id, actor, user_id)
        context = holder.require_context()

        assert context.tenant_id == tenant_id
        assert context.service_id == service_id
        assert context.user_id == user_id
        assert holder.actor.is_agent(ActorName.ESTIMATOR)

        holder.clear()
        assert holder.get_context() == (None, False)
        assert holder.actor.name == ActorName.DEFAULT


class TestRecoveryPlanning:
    def test_after_run_maps_missing_tools(self):
        tracker = ToolCallTracker()
        tracker.mark(ToolName.SAVE_ESTIMATION)
        required = [ToolName.SAVE_ANALYSIS, ToolName.SAVE_ESTIMATION, ToolName.SUBMIT_AUDIT_RESULT, "Unregistered"]

        actions = after_run(required, tracker)

        assert [(a.kind, a.tool_name) for a in actions] == [
            (RecoveryKind.FALLBACK_ANALYSIS, ToolName.SAVE_ANALYSIS),
            (RecoveryKind.MANUAL_INTERVENTION, ToolName.SUBMIT_AUDIT_RESULT),
            (RecoveryKind.MANUAL_INTERVENTION, "Unregistered"),
        ]

    def test_nothing_missing(self):
        tracker = ToolCallTracker()
        tracker.mark(ToolName.SAVE_NOTE)
        assert missing_tools([ToolName.SAVE_NOTE], tracker) == []
        assert after_run([ToolName.SAVE_NOTE], tracker) == []

    def test_retry_instruction_names_tools(self):
        instruction = build_retry_instruction([ToolName.FIND_MATCHING_PARTNERS])
        assert "FindMatchingPartners" in instruction
        assert "MUST" in instruction


class TestRetryStateMachine:
    def test_retry_then_escalate(self):
        retry = RetryStateMachine()
        assert retry.can_retry
        retry.begin_retry()
        assert retry.retried and not retry.can_retry
        retry.escalate()
        assert retry.phase == RetryPhase.ESCALATED

    def test_only_one_retry(self):
        retry = RetryStateMachine()
        retry.begin_retry()
        with pytest.raises(RuntimeError):
            retry.begin_retry()

    def test_complete_without_retry(self):
        retry = RetryStateMachine()
        retry.complete()
        assert retry.phase == RetryPhase.COMPLETED
        assert retry.retried is False

    def test_no_moves_after_terminal_phase(self):
        retry = RetryStateMachine()
        retry.escalate()
        with pytest.raises(RuntimeError):
            retry.complete()
        with pytest.raises(RuntimeError):
            retry.escalate()
