"""Unit tests for error classification utilities."""

import pytest

from taskgate.core.errors import (
    ConflictError,
    ErrorCode,
    ErrorSeverity,
    FatalMutationError,
    ForbiddenError,
    InvalidInputError,
    InvariantViolationError,
    NotFoundError,
    classify_error_with_response,
)


@pytest.mark.unit
class TestClassifyErrorWithResponse:
    def test_forbidden_carries_reason(self):
        response = classify_error_with_response(ForbiddenError("not group manager"))

        assert response.code == ErrorCode.ERR_FORBIDDEN
        assert "not group manager" in response.message

    def test_invariant_violation_is_reported_specifically(self):
        response = classify_error_with_response(InvariantViolationError("last Administrator"))

        assert response.code == ErrorCode.ERR_INVARIANT_VIOLATION
        assert response.message == "last Administrator"

    def test_not_found(self):
        assert classify_error_with_response(NotFoundError("Task 4 not found")).code == ErrorCode.ERR_NOT_FOUND

    def test_key_error_is_not_found(self):
        response = classify_error_with_response(KeyError("Record not found in tasks: 4"))

        assert response.code == ErrorCode.ERR_NOT_FOUND
        assert response.message == "Record not found in tasks: 4"

    @pytest.mark.parametrize("exception", [InvalidInputError("bad phone"), ValueError("bad phone")])
    def test_invalid_input(self, exception):
        assert classify_error_with_response(exception).code == ErrorCode.ERR_INVALID_INPUT

    def test_conflict(self):
        assert classify_error_with_response(ConflictError("stale")).code == ErrorCode.ERR_CONFLICT

    def test_fatal_hides_internal_detail(self):
        response = classify_error_with_response(FatalMutationError("sqlite disk I/O error"))

        assert response.code == ErrorCode.ERR_FATAL
        assert response.severity == ErrorSeverity.CRITICAL
        assert "sqlite" not in response.message

    def test_unknown(self):
        assert classify_error_with_response(RuntimeError("?")).code == ErrorCode.ERR_UNKNOWN
