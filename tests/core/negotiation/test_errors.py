# tests/core/negotiation/test_errors.py
"""
Тесты таксономии ошибок торга.
"""

import pytest

from fare_negotiation.core.negotiation import errors


class TestErrorTaxonomy:
    """Код, HTTP статус и категория каждой ошибки."""

    @pytest.mark.parametrize("error_class, code, status, category", [
        (errors.InvalidGeography, "invalid_geography", 400, "validation"),
        (errors.OutOfPolicyAmount, "out_of_policy_amount", 400, "validation"),
        (errors.AlternationViolation, "alternation_violation", 400, "validation"),
        (errors.SelfAcceptance, "self_acceptance", 400, "validation"),
        (errors.UnknownRideType, "unknown_ride_type", 400, "validation"),
        (errors.CurrencyMismatch, "currency_mismatch", 400, "validation"),
        (errors.NotParticipant, "not_participant", 403, "authorization"),
        (errors.SessionNotFound, "session_not_found", 404, "state"),
        (errors.SessionTerminal, "session_terminal", 410, "state"),
        (errors.SessionExpired, "session_expired", 410, "state"),
        (errors.DriverAlreadyBound, "driver_already_bound", 409, "state"),
        (errors.ActiveSessionExists, "active_session_exists", 409, "state"),
        (errors.DriverLimitExceeded, "driver_limit_exceeded", 409, "state"),
        (errors.Conflict, "conflict", 409, "concurrency"),
        (errors.PricingUnavailable, "pricing_unavailable", 503, "unavailable"),
        (errors.StoreUnavailable, "store_unavailable", 503, "unavailable"),
        (errors.DeadlineExceeded, "deadline_exceeded", 504, "unavailable"),
        (errors.Internal, "internal", 500, "internal"),
    ])
    def test_classification(self, error_class, code, status, category) -> None:
        error = error_class()

        assert isinstance(error, errors.NegotiationError)
        assert (error.code, error.http_status, error.category) == (code, status, category)

    def test_to_dict(self) -> None:
        error = errors.OutOfPolicyAmount("Сумма 5 вне диапазона", floor=40.0, ceiling=100.0)

        assert error.to_dict() == {
            "error_code": "out_of_policy_amount",
            "message": "Сумма 5 вне диапазона",
            "details": {"floor": 40.0, "ceiling": 100.0},
        }

    def test_default_message(self) -> None:
        error = errors.Conflict()
        assert str(error) == error.default_message
        assert error.details is None

    def test_version_mismatch_is_internal_signal(self) -> None:
        """VersionMismatch не входит в таксономию, наружу не отдаётся."""
        signal = errors.VersionMismatch("s-1", 3)

        assert not isinstance(signal, errors.NegotiationError)
        assert signal.expected_version == 3
