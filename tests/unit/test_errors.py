"""
tests/unit/test_errors.py - Error taxonomy and recovery mapping tests
"""

import pytest

from reportsync.errors import (
    ErrorCategory,
    ErrorSeverity,
    FetchError,
    IdentityNotConfirmedError,
    IsolationViolation,
    MutationStepError,
    PermanentFetchError,
    PurgeFailedError,
    ReconciliationTimeout,
    RecoveryStrategy,
    ReportSyncError,
    TransientFetchError,
    ViewValidationError,
    recovery_for,
)


class TestTaxonomy:
    """Test error classes."""

    def test_str_includes_code(self):
        error = PermanentFetchError("not found", status=404)
        assert str(error) == "[RS_102] not found"
        assert error.status == 404
        assert error.details["status"] == 404

    def test_default_message_from_docstring(self):
        error = IdentityNotConfirmedError()
        assert error.message == "A read was attempted with no confirmed identity."

    def test_to_dict(self):
        error = TransientFetchError("503", status=503)
        data = error.to_dict()
        assert data["code"] == "RS_101"
        assert data["category"] == ErrorCategory.FETCH.value
        assert data["severity"] == ErrorSeverity.WARNING.value
        assert data["details"] == {"status": 503}

    def test_hierarchy(self):
        assert issubclass(TransientFetchError, FetchError)
        assert issubclass(PermanentFetchError, FetchError)
        for cls in (FetchError, ViewValidationError, IsolationViolation, PurgeFailedError):
            assert issubclass(cls, ReportSyncError)

    def test_mutation_step_error_names_step(self):
        cause = ConnectionError("reset")
        error = MutationStepError(1, "approve_task", cause=cause)
        assert error.step_index == 1
        assert error.kind == "approve_task"
        assert error.cause is cause
        assert error.message == "Step 1 (approve_task) failed: reset"

    def test_purge_failed_error(self):
        error = PurgeFailedError("entries survived", attempts=3)
        assert error.attempts == 3
        assert "after 3 attempt(s)" in str(error)
        assert error.severity == ErrorSeverity.CRITICAL

    def test_isolation_violation_names_identities(self):
        error = IsolationViolation("foreign entry", confirmed_identity="alice", offending_identity="bob")
        assert str(error) == "[RS_201] Isolation violation: foreign entry"
        assert error.to_dict()["details"] == {"confirmed_identity": "alice", "offending_identity": "bob"}
        assert error.severity == ErrorSeverity.CRITICAL

    def test_reconciliation_timeout(self):
        error = ReconciliationTimeout(2, 5.0, batch_id="b1")
        assert error.pending == 2
        assert error.details["batch_id"] == "b1"
        assert error.message == "2 scope(s) still refetching after 5.0s"

    def test_view_validation_error_keeps_errors(self):
        error = ViewValidationError("bad", errors=[{"loc": ("a",), "msg": "x"}])
        assert error.errors[0]["msg"] == "x"
        assert error.details["error_count"] == 1


class TestRecovery:
    """Test recovery strategy lookup."""

    @pytest.mark.parametrize("error,strategy", [
        (TransientFetchError(), RecoveryStrategy.RETRY),
        (PermanentFetchError(), RecoveryStrategy.NOTIFY),
        (ViewValidationError(), RecoveryStrategy.NOTIFY),
        (IdentityNotConfirmedError(), RecoveryStrategy.RETRY),
        (MutationStepError(0, "create_evaluation"), RecoveryStrategy.NOTIFY),
        (ReconciliationTimeout(1, 5.0), RecoveryStrategy.NOTIFY),
        (IsolationViolation(), RecoveryStrategy.PURGE),
        (PurgeFailedError("x"), RecoveryStrategy.ESCALATE),
    ])
    def test_strategy_per_error(self, error, strategy):
        assert recovery_for(error).strategy == strategy

    def test_subclass_inherits_strategy(self):
        class GatewayTimeout(TransientFetchError):
            pass

        assert recovery_for(GatewayTimeout()).strategy == RecoveryStrategy.RETRY

    def test_unknown_error_notifies(self):
        option = recovery_for(ValueError("x"))
        assert option.strategy == RecoveryStrategy.NOTIFY
        assert option.user_message == "Something went wrong"

    def test_user_messages(self):
        assert recovery_for(MutationStepError(0, "x")).user_message == "Could not save your changes"
        assert recovery_for(ReconciliationTimeout(1, 5)).user_message == "Saved. Some views are still refreshing"
