"""
Tests for the error taxonomy and tool payload helpers.
"""

import json
import logging

from leadpipeline.utils.error_handling import (
    ExternalCallFailedError,
    InvalidEnumError,
    InvalidStageError,
    MissingContextError,
    NotFoundError,
    SequenceViolationError,
    ServiceTypeNotFoundError,
    TerminalStateError,
    ValidationFailedError,
    create_user_friendly_error_message,
    is_recoverable_error,
    log_error_with_context,
    tool_failure,
    tool_success,
)


class TestTaxonomy:
    def test_hierarchy(self):
        assert issubclass(InvalidStageError, InvalidEnumError)
        assert issubclass(ServiceTypeNotFoundError, NotFoundError)
        assert issubclass(TerminalStateError, ValidationFailedError)
        assert issubclass(SequenceViolationError, ValidationFailedError)

    def test_invalid_stage_keeps_value(self):
        error = InvalidStageError("Bogus")
        assert error.value == "Bogus"
        assert error.enum_name == "pipeline stage"
        assert str(error) == "invalid pipeline stage: 'Bogus'"


class TestPayloads:
    def test_failure_payload(self):
        payload = json.loads(tool_failure("Lead service not found", NotFoundError("service 1"), service_id="1"))
        assert payload == {
            "success": False,
            "message": "Lead service not found",
            "error": "NotFoundError: service 1",
            "service_id": "1",
        }

    def test_failure_without_error(self):
        assert "error" not in json.loads(tool_failure("Tool 'X' not found"))

    def test_success_payload(self):
        payload = json.loads(tool_success("Pipeline stage unchanged", stage="Triage"))
        assert payload == {"success": True, "message": "Pipeline stage unchanged", "stage": "Triage"}


class TestUserFriendlyMessages:
    def test_domain_errors(self):
        assert "Bogus" in create_user_friendly_error_message(InvalidStageError("Bogus"))
        assert "closed" in create_user_friendly_error_message(TerminalStateError("done"))
        assert "could not be found" in create_user_friendly_error_message(ServiceTypeNotFoundError("x"))
        assert "sequencing" in create_user_friendly_error_message(MissingContextError("no run"))

    def test_generic_errors(self):
        assert "timed out" in create_user_friendly_error_message(RuntimeError("Read timeout"))
        assert create_user_friendly_error_message(RuntimeError("boom"), "estimator").endswith("(Context: estimator)")


class TestRecoverable:
    def test_domain_errors_are_not_recoverable(self):
        assert not is_recoverable_error(ValidationFailedError("connection field missing"))
        assert not is_recoverable_error(NotFoundError("lead"))
        assert not is_recoverable_error(MissingContextError("no run"))

    def test_transient_errors(self):
        assert is_recoverable_error(RuntimeError("503 Service Unavailable"))
        assert is_recoverable_error(ExternalCallFailedError("get_lead failed"))
        assert is_recoverable_error(TimeoutError())
        assert not is_recoverable_error(RuntimeError("boom"))


def test_log_error_with_context(caplog):
    with caplog.at_level(logging.ERROR):
        log_error_with_context(RuntimeError("boom"), {"run_id": "svc:1", "actor": None}, "tool SaveNote")

    assert "[ERROR_CONTEXT] tool SaveNote failed: RuntimeError: boom (run_id=svc:1)" in caplog.text
