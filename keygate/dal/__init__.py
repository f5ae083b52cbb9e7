"""Data Access Layer for Keygate.

Repositories wrap a caller-owned AsyncSession; they flush but never commit.
"""

from keygate.dal.credentials import CredentialRepository
from keygate.dal.users import UserRepository

__all__ = [
    "CredentialRepository",
    "UserRepository",
]
