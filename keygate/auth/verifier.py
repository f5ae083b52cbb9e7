"""WebAuthn response verification.

Pure functions: no I/O, no store access. They take the expected challenge,
origin and relying-party ID plus (for login) the stored key material, and
either return the verified values or raise one of the ceremony errors in
:mod:`keygate.exceptions`. Nothing from py_webauthn, cbor2 or cryptography
escapes; library failures are re-raised as domain errors.

Client data and authenticator data are parsed here first so a wrong
challenge, origin or RP ID is reported precisely; the signature and
attestation checks are then delegated to py_webauthn.
"""

import hashlib
import hmac
import logging
from typing import Any

from webauthn import verify_authentication_response, verify_registration_response
from webauthn.helpers import (
    parse_attestation_object,
    parse_authentication_credential_json,
    parse_authenticator_data,
    parse_client_data_json,
    parse_registration_credential_json,
)
from webauthn.helpers.cose import COSEAlgorithmIdentifier
from webauthn.helpers.structs import (
    AuthenticationCredential,
    AuthenticatorData,
    ClientDataType,
    RegistrationCredential,
)

from keygate.auth.records import NewCredential
from keygate.exceptions import (
    CeremonyType,
    ChallengeMismatchError,
    CounterRegressionError,
    MalformedAttestationError,
    OriginMismatchError,
    SignatureInvalidError,
)
from keygate.storage.entities import MAX_SIGN_COUNT

logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHMS = [
    COSEAlgorithmIdentifier.ECDSA_SHA_256,
    COSEAlgorithmIdentifier.RSASSA_PKCS1_v1_5_SHA_256,
]

ClientResponse = dict[str, Any] | str


def verify_registration(
    expected_challenge: bytes,
    expected_origin: str,
    expected_rp_id: str,
    client_response: ClientResponse,
) -> NewCredential:
    """Verify a registration (attestation) response.

    Args:
        expected_challenge: Challenge issued for this ceremony
        expected_origin: Configured origin, e.g. https://todo.example.com
        expected_rp_id: Configured relying-party ID, e.g. todo.example.com
        client_response: PublicKeyCredential JSON from navigator.credentials.create()

    Returns:
        The credential material to store

    Raises:
        ChallengeMismatchError, OriginMismatchError, MalformedAttestationError
    """
    ceremony = CeremonyType.REGISTRATION
    try:
        credential: RegistrationCredential = parse_registration_credential_json(client_response)
    except Exception as exc:
        raise MalformedAttestationError("Unreadable registration response", ceremony=ceremony) from exc

    _check_client_data(
        credential.response.client_data_json,
        expected_type=ClientDataType.WEBAUTHN_CREATE,
        expected_challenge=expected_challenge,
        expected_origin=expected_origin,
        ceremony=ceremony,
        malformed=MalformedAttestationError,
    )

    try:
        auth_data = parse_attestation_object(credential.response.attestation_object).auth_data
    except Exception as exc:
        raise MalformedAttestationError("Unreadable attestation object", ceremony=ceremony) from exc
    _check_rp_id_hash(auth_data, expected_rp_id, ceremony)

    try:
        verified = verify_registration_response(
            credential=credential,
            expected_challenge=expected_challenge,
            expected_rp_id=expected_rp_id,
            expected_origin=expected_origin,
            require_user_verification=False,
            supported_pub_key_algs=SUPPORTED_ALGORITHMS,
        )
    except Exception as exc:
        logger.info("Attestation rejected: %s", exc)
        raise MalformedAttestationError("Attestation did not verify", ceremony=ceremony) from exc

    if not 0 <= verified.sign_count <= MAX_SIGN_COUNT:
        raise MalformedAttestationError("Signature counter out of range", ceremony=ceremony)

    transports = tuple(
        getattr(t, "value", t) for t in (credential.response.transports or [])
    )
    return NewCredential(
        credential_id=verified.credential_id,
        public_key=verified.credential_public_key,
        sign_count=verified.sign_count,
        transports=transports,
        device_type=getattr(verified.credential_device_type, "value", str(verified.credential_device_type)),
        backed_up=bool(verified.credential_backed_up),
    )


def verify_authentication(
    expected_challenge: bytes,
    expected_origin: str,
    expected_rp_id: str,
    stored_public_key: bytes,
    stored_counter: int,
    client_response: ClientResponse,
    *,
    allow_counterless: bool = False,
    expected_user_handle: bytes | None = None,
) -> int:
    """Verify an authentication (assertion) response.

    The counter rule is ``new > stored``. With ``allow_counterless`` an
    authenticator that keeps reporting zero is also accepted; that is a
    degraded mode in which cloned credentials cannot be detected.

    Returns:
        The new signature counter for the caller to persist

    Raises:
        ChallengeMismatchError, OriginMismatchError, SignatureInvalidError,
        CounterRegressionError
    """
    ceremony = CeremonyType.AUTHENTICATION
    credential = _parse_assertion(client_response)

    _check_client_data(
        credential.response.client_data_json,
        expected_type=ClientDataType.WEBAUTHN_GET,
        expected_challenge=expected_challenge,
        expected_origin=expected_origin,
        ceremony=ceremony,
        malformed=SignatureInvalidError,
    )

    try:
        auth_data = parse_authenticator_data(credential.response.authenticator_data)
    except Exception as exc:
        raise SignatureInvalidError("Unreadable authenticator data", ceremony=ceremony) from exc
    _check_rp_id_hash(auth_data, expected_rp_id, ceremony)

    user_handle = credential.response.user_handle
    if expected_user_handle is not None and user_handle:
        if not hmac.compare_digest(user_handle, expected_user_handle):
            raise SignatureInvalidError("User handle does not match credential owner", ceremony=ceremony)

    try:
        # Counter policy is applied below; a zero current count disables
        # the library's own check.
        verified = verify_authentication_response(
            credential=credential,
            expected_challenge=expected_challenge,
            expected_rp_id=expected_rp_id,
            expected_origin=expected_origin,
            credential_public_key=stored_public_key,
            credential_current_sign_count=0,
            require_user_verification=False,
        )
    except Exception as exc:
        logger.info("Assertion rejected: %s", exc)
        raise SignatureInvalidError("Assertion signature did not verify", ceremony=ceremony) from exc

    new_counter = verified.new_sign_count
    if new_counter > stored_counter:
        return new_counter
    if allow_counterless and new_counter == 0 and stored_counter == 0:
        return new_counter
    raise CounterRegressionError(
        f"Counter {new_counter} does not exceed stored {stored_counter}",
        ceremony=ceremony,
        stored_counter=stored_counter,
        presented_counter=new_counter,
    )


def credential_id_from_response(client_response: ClientResponse) -> bytes:
    """Raw credential ID named by an assertion, used to look up the stored key."""
    return _parse_assertion(client_response).raw_id


def _parse_assertion(client_response: ClientResponse) -> AuthenticationCredential:
    try:
        return parse_authentication_credential_json(client_response)
    except Exception as exc:
        raise SignatureInvalidError(
            "Unreadable authentication response", ceremony=CeremonyType.AUTHENTICATION
        ) from exc


def _check_client_data(
    client_data_json: bytes,
    *,
    expected_type: ClientDataType,
    expected_challenge: bytes,
    expected_origin: str,
    ceremony: CeremonyType,
    malformed: type[MalformedAttestationError] | type[SignatureInvalidError],
) -> None:
    try:
        client_data = parse_client_data_json(client_data_json)
    except Exception as exc:
        raise malformed("Unreadable clientDataJSON", ceremony=ceremony) from exc

    if client_data.type != expected_type:
        raise malformed(f"Unexpected client data type {client_data.type!r}", ceremony=ceremony)
    if not hmac.compare_digest(client_data.challenge, expected_challenge):
        raise ChallengeMismatchError("Challenge does not match", ceremony=ceremony)
    if client_data.origin != expected_origin:
        raise OriginMismatchError(f"Unexpected origin {client_data.origin!r}", ceremony=ceremony)


def _check_rp_id_hash(auth_data: AuthenticatorData, expected_rp_id: str, ceremony: CeremonyType) -> None:
    expected_hash = hashlib.sha256(expected_rp_id.encode("utf-8")).digest()
    if not hmac.compare_digest(auth_data.rp_id_hash, expected_hash):
        raise OriginMismatchError("Relying party ID hash does not match", ceremony=ceremony)
