"""Tests for exception hierarchy and correlation ID support."""

import uuid

import pytest

from keygate.exceptions import (
    CeremonyError,
    CeremonyType,
    ChallengeExpiredOrMissingError,
    ChallengeMismatchError,
    ConfigurationError,
    CounterRegressionError,
    CredentialNotFoundError,
    DuplicateCredentialError,
    InvalidUsernameError,
    KeygateError,
    MalformedAttestationError,
    OriginMismatchError,
    PossibleCloningError,
    SessionError,
    SessionExpiredError,
    SessionInvalidError,
    SignatureInvalidError,
    StorageError,
    UsernameTakenError,
    ValidationError,
)


class TestKeygateError:
    """Test base KeygateError class."""

    def test_auto_generates_correlation_id(self):
        error = KeygateError("Test error")
        assert isinstance(error.correlation_id, str)
        uuid.UUID(error.correlation_id)

    def test_accepts_custom_correlation_id(self):
        custom_id = str(uuid.uuid4())
        error = KeygateError("Test error", correlation_id=custom_id)
        assert error.correlation_id == custom_id

    def test_unique_correlation_ids(self):
        assert KeygateError("a").correlation_id != KeygateError("b").correlation_id

    def test_message_propagation(self):
        assert str(KeygateError("Test message")) == "Test message"

    def test_defaults(self):
        error = KeygateError("boom")
        assert error.code == "internal_error"
        assert error.status_code == 500


class TestStatusCodes:
    @pytest.mark.parametrize(
        ("exc_class", "status", "code"),
        [
            (ValidationError, 400, "invalid_request"),
            (InvalidUsernameError, 400, "invalid_username"),
            (UsernameTakenError, 409, "username_taken"),
            (DuplicateCredentialError, 409, "duplicate_credential"),
            (ConfigurationError, 500, "configuration_error"),
            (StorageError, 503, "storage_unavailable"),
            (SessionInvalidError, 401, "session_invalid"),
            (SessionExpiredError, 401, "session_expired"),
        ],
    )
    def test_status_and_code(self, exc_class, status, code):
        error = exc_class("x")
        assert error.status_code == status
        assert error.code == code
        assert isinstance(error, KeygateError)

    def test_session_errors_share_base(self):
        assert issubclass(SessionInvalidError, SessionError)
        assert issubclass(SessionExpiredError, SessionError)


class TestCeremonyErrors:
    @pytest.mark.parametrize(
        "exc_class",
        [
            ChallengeExpiredOrMissingError,
            ChallengeMismatchError,
            OriginMismatchError,
            MalformedAttestationError,
            SignatureInvalidError,
            CredentialNotFoundError,
            CounterRegressionError,
            PossibleCloningError,
        ],
    )
    def test_status_follows_ceremony(self, exc_class):
        assert exc_class("x", ceremony=CeremonyType.REGISTRATION).status_code == 400
        assert exc_class("x", ceremony=CeremonyType.AUTHENTICATION).status_code == 401
        assert issubclass(exc_class, CeremonyError)

    def test_defaults_to_authentication(self):
        assert SignatureInvalidError("x").ceremony is CeremonyType.AUTHENTICATION

    def test_counter_regression_carries_counters(self):
        error = CounterRegressionError("x", stored_counter=5, presented_counter=3)
        assert error.stored_counter == 5
        assert error.presented_counter == 3

    def test_possible_cloning_is_a_counter_regression(self):
        error = PossibleCloningError("x", stored_counter=1, presented_counter=1, correlation_id="cid")
        assert isinstance(error, CounterRegressionError)
        assert error.code == "possible_cloning"
        assert error.correlation_id == "cid"
