"""Typed records passed between the verifier, the stores and the orchestrator."""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class UserRecord:
    id: int
    username: str
    user_handle: bytes
    created_at: datetime


@dataclass(frozen=True)
class NewCredential:
    """Credential material extracted from a verified registration."""

    credential_id: bytes
    public_key: bytes
    sign_count: int = 0
    transports: tuple[str, ...] = ()
    device_type: str = "single_device"
    backed_up: bool = False


@dataclass(frozen=True)
class CredentialRecord:
    id: int
    user_id: int
    credential_id: bytes
    public_key: bytes
    sign_count: int
    created_at: datetime
    transports: tuple[str, ...] = ()
    device_type: str = "single_device"
    backed_up: bool = False
    last_used_at: datetime | None = None
