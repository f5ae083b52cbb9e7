"""WebAuthn credential data access layer.

Counter writes go through :meth:`CredentialRepository.advance_sign_count`,
a single conditional UPDATE, so the database serializes concurrent logins
with the same credential and the anti-regression check cannot be raced.
"""

from datetime import datetime

from sqlalchemy import select, update

from keygate.dal.base import BaseRepository
from keygate.storage.entities import WebAuthnCredential


class CredentialRepository(BaseRepository[WebAuthnCredential]):
    """Repository for registered WebAuthn credentials."""

    model = WebAuthnCredential

    async def get_by_credential_id(self, credential_id: bytes) -> WebAuthnCredential | None:
        """Look up a credential by its WebAuthn credential ID."""
        result = await self.session.execute(
            select(WebAuthnCredential).where(WebAuthnCredential.credential_id == credential_id)
        )
        return result.scalar_one_or_none()

    async def list_for_user(self, user_id: int) -> list[WebAuthnCredential]:
        """All credentials owned by a user, oldest first."""
        result = await self.session.execute(
            select(WebAuthnCredential)
            .where(WebAuthnCredential.user_id == user_id)
            .order_by(WebAuthnCredential.id)
        )
        return list(result.scalars().all())

    async def advance_sign_count(
        self,
        credential_id: bytes,
        new_count: int,
        used_at: datetime,
    ) -> bool:
        """Compare-and-swap the stored counter.

        Writes only when the stored counter is strictly below ``new_count``.

        Returns:
            True if a row was updated
        """
        result = await self.session.execute(
            update(WebAuthnCredential)
            .where(
                WebAuthnCredential.credential_id == credential_id,
                WebAuthnCredential.sign_count < new_count,
            )
            .values(sign_count=new_count, last_used_at=used_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def touch(self, credential_id: bytes, used_at: datetime) -> bool:
        """Record a use without changing the counter."""
        result = await self.session.execute(
            update(WebAuthnCredential)
            .where(WebAuthnCredential.credential_id == credential_id)
            .values(last_used_at=used_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
