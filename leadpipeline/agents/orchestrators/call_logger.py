"""
Call Logger: processes a salesperson's post-call summary.

The model drafts the note with SaveNote; the draft is persisted as a "call"
note once the run is over, so a retried run never writes two notes. Actions
are attributed to the user who logged the call.
"""

import logging
from uuid import UUID

from leadpipeline.agents.fallback import RecoveryKind
from leadpipeline.agents.state import ToolName, TrackerKey
from leadpipeline.agents.toolbox.call_log_tools import (
    DATETIME_SHORT_FORMAT,
    append_reschedule_fallback_note,
    normalize_call_note_body,
)
from leadpipeline.models import Actor, ActorName, ActorType, CallLogResult

from .base import BaseOrchestrator
from .prompts import CALL_LOGGER_SYSTEM_PROMPT, build_call_logger_prompt

logger = logging.getLogger(__name__)

CALL_NOTE_TYPE = "call"
NO_APPOINTMENT = "None"


def build_result_message(result: CallLogResult) -> str:
    """Human-readable summary of what the call logger did."""
    messages = []
    if result.note_created:
        messages.append("Note saved")
    if result.call_outcome:
        messages.append(f"Call outcome set to {result.call_outcome}")
    if result.status_updated:
        messages.append(f"Status updated to {result.status_updated}")
    if result.pipeline_stage_updated:
        messages.append(f"Pipeline stage updated to {result.pipeline_stage_updated}")
    if result.appointment_booked:
        messages.append(f"Appointment booked for {result.appointment_booked.strftime(DATETIME_SHORT_FORMAT)}")
    if result.appointment_rescheduled:
        messages.append(f"Appointment rescheduled for {result.appointment_rescheduled.strftime(DATETIME_SHORT_FORMAT)}")
    if result.appointment_cancelled:
        messages.append("Appointment cancelled")
    if not messages:
        return "No actions taken"
    return ". ".join(messages)


class CallLogger(BaseOrchestrator):
    agent_name = ActorName.CALL_LOGGER
    system_prompt = CALL_LOGGER_SYSTEM_PROMPT
    required_tools = [ToolName.SAVE_NOTE]

    async def process_summary(
        self, lead_id: UUID, service_id: UUID, user_id: UUID, tenant_id: UUID, summary: str
    ) -> CallLogResult:
        """Turn a post-call summary into a note, outcome, status and appointment changes."""
        async with self._run_lock:
            self._start_run(
                tenant_id,
                lead_id,
                service_id,
                user_id=user_id,
                actor=Actor(type=ActorType.USER, name=str(user_id)),
            )

            existing_appointment = await self._resolve_existing_appointment(tenant_id, service_id, user_id)
            prompt = build_call_logger_prompt(lead_id, service_id, user_id, existing_appointment, summary)
            actions = await self._run_with_mandatory_tools(self._initial_messages(prompt), self.required_tools)

            for action in actions:
                if action.kind == RecoveryKind.FALLBACK_CALL_NOTE:
                    logger.warning(f"[CALL_LOGGER] SaveNote was not called for service {service_id}, using the raw summary")
                    self.deps.tracker.set_value(TrackerKey.NOTE_BODY, normalize_call_note_body(summary))

            result = await self._persist_drafted_note(lead_id, user_id, tenant_id)
            result.message = build_result_message(result)
            self._finish_run({"message": result.message})
            return result

    async def _resolve_existing_appointment(self, tenant_id: UUID, service_id: UUID, user_id: UUID) -> str:
        booker = self.deps.appointment_booker
        if booker is None:
            return NO_APPOINTMENT
        try:
            appointment = await booker.get_existing_appointment(tenant_id, service_id, user_id)
        except Exception as e:
            logger.warning(f"[CALL_LOGGER] Failed to check existing appointment for service {service_id}: {e}")
            return NO_APPOINTMENT
        if appointment is None:
            return NO_APPOINTMENT
        return appointment.start_time.strftime(DATETIME_SHORT_FORMAT)

    async def _persist_drafted_note(self, lead_id: UUID, user_id: UUID, tenant_id: UUID) -> CallLogResult:
        tracker = self.deps.tracker
        result = CallLogResult(
            call_outcome=tracker.get_value(TrackerKey.CALL_OUTCOME),
            status_updated=tracker.get_value(TrackerKey.STATUS_UPDATED),
            pipeline_stage_updated=tracker.get_value(TrackerKey.LAST_STAGE),
            appointment_booked=tracker.get_value(TrackerKey.APPOINTMENT_BOOKED),
            appointment_rescheduled=tracker.get_value(TrackerKey.APPOINTMENT_RESCHEDULED),
            appointment_cancelled=bool(tracker.get_value(TrackerKey.APPOINTMENT_CANCELLED, False)),
            appointment_reschedule_fallback=bool(tracker.get_value(TrackerKey.RESCHEDULE_FALLBACK_BOOKED, False)),
        )

        body = tracker.get_value(TrackerKey.NOTE_BODY)
        if body is None:
            return result

        if result.appointment_reschedule_fallback and result.appointment_booked:
            body = append_reschedule_fallback_note(body, result.appointment_booked)

        note = await self.deps.repository.create_lead_note(lead_id, tenant_id, user_id, CALL_NOTE_TYPE, body)
        result.note_created = True
        result.note_body = body
        result.author_email = note.author_email or None
        return result
