"""Keygate exception hierarchy.

Every failure a caller can observe is one of these classes. Each carries a
stable ``code``, an HTTP ``status_code`` and a correlation_id for tracing
errors across layers.

Usage:
    from keygate.exceptions import CeremonyError, StorageError

    try:
        result = await service.finish_authentication(ceremony_id, response)
    except CeremonyError as e:
        logger.info("Ceremony failed", code=e.code, correlation_id=e.correlation_id)
"""

import uuid
from enum import Enum


class CeremonyType(str, Enum):
    """The two WebAuthn ceremonies."""

    REGISTRATION = "registration"
    AUTHENTICATION = "authentication"


class KeygateError(Exception):
    """Base exception for all Keygate application errors.

    Carries a correlation_id for tracing errors across layers.
    """

    code: str = "internal_error"
    status_code: int = 500

    def __init__(self, message: str, *, correlation_id: str | None = None):
        self.correlation_id = correlation_id or str(uuid.uuid4())
        super().__init__(message)


class ValidationError(KeygateError):
    """Errors from input validation (beyond Pydantic)."""

    code = "invalid_request"
    status_code = 400


class InvalidUsernameError(ValidationError):
    """Username fails the 3-30 character rule."""

    code = "invalid_username"


class UsernameTakenError(KeygateError):
    """A user with this username already exists."""

    code = "username_taken"
    status_code = 409


class DuplicateCredentialError(KeygateError):
    """The credential ID is already registered to some user."""

    code = "duplicate_credential"
    status_code = 409


class ConfigurationError(KeygateError):
    """Errors from application configuration."""

    code = "configuration_error"


class StorageError(KeygateError):
    """The durable store failed or is unreachable.

    The only error class a caller may retry, and only for reads.
    """

    code = "storage_unavailable"
    status_code = 503


class CeremonyError(KeygateError):
    """A registration or authentication ceremony attempt failed.

    Terminal for the attempt: the challenge is already consumed, so the
    client has to begin a new ceremony.
    """

    code = "ceremony_failed"

    def __init__(
        self,
        message: str,
        *,
        ceremony: CeremonyType = CeremonyType.AUTHENTICATION,
        correlation_id: str | None = None,
    ):
        self.ceremony = ceremony
        super().__init__(message, correlation_id=correlation_id)

    @property
    def status_code(self) -> int:  # type: ignore[override]
        return 400 if self.ceremony is CeremonyType.REGISTRATION else 401


class ChallengeExpiredOrMissingError(CeremonyError):
    code = "challenge_expired_or_missing"


class ChallengeMismatchError(CeremonyError):
    code = "challenge_mismatch"


class OriginMismatchError(CeremonyError):
    """Origin or relying-party ID hash does not match configuration."""

    code = "origin_mismatch"


class MalformedAttestationError(CeremonyError):
    code = "malformed_attestation"


class SignatureInvalidError(CeremonyError):
    code = "signature_invalid"


class CredentialNotFoundError(CeremonyError):
    code = "credential_not_found"


class CounterRegressionError(CeremonyError):
    """Presented signature counter did not strictly increase."""

    code = "counter_regression"

    def __init__(
        self,
        message: str,
        *,
        stored_counter: int | None = None,
        presented_counter: int | None = None,
        **kwargs,
    ):
        self.stored_counter = stored_counter
        self.presented_counter = presented_counter
        super().__init__(message, **kwargs)


class PossibleCloningError(CounterRegressionError):
    """Counter regression seen during login; treat as a security incident."""

    code = "possible_cloning"


class SessionError(KeygateError):
    """Base for session token failures."""

    code = "session_invalid"
    status_code = 401


class SessionInvalidError(SessionError):
    """Session token is malformed or its signature does not verify."""


class SessionExpiredError(SessionError):
    code = "session_expired"
