"""Database entities. Importing this package registers every model with Base.metadata."""

from keygate.storage.entities.credential import MAX_SIGN_COUNT, WebAuthnCredential
from keygate.storage.entities.user import User

__all__ = [
    "MAX_SIGN_COUNT",
    "User",
    "WebAuthnCredential",
]
