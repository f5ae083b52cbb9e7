"""User data access layer."""

from sqlalchemy import exists, select

from keygate.dal.base import BaseRepository
from keygate.storage.entities import User


class UserRepository(BaseRepository[User]):
    """Repository for registered users."""

    model = User

    async def get_by_username(self, username: str) -> User | None:
        """Get a user by exact (case-sensitive) username."""
        result = await self.session.execute(select(User).where(User.username == username))
        return result.scalar_one_or_none()

    async def username_exists(self, username: str) -> bool:
        result = await self.session.execute(select(exists().where(User.username == username)))
        return bool(result.scalar())
