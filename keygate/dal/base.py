"""Base repository with common CRUD operations."""

from typing import Any, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


class BaseRepository(Generic[T]):
    """Base repository with common CRUD operations.

    Subclasses must set:
    - model: The SQLAlchemy model class

    Repositories never commit; the caller owns the transaction.
    """

    model: type[T]  # Set by subclasses

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session
        """
        self.session = session

    async def get_by_id(self, id: int) -> T | None:
        """Get entity by primary key.

        Args:
            id: Primary key

        Returns:
            Entity or None
        """
        result = await self.session.execute(select(self.model).where(self.model.id == id))
        return result.scalar_one_or_none()

    async def create(self, data: dict[str, Any]) -> T:
        """Create a new entity and flush it so generated keys are populated.

        Args:
            data: Entity data

        Returns:
            Created entity
        """
        entity = self.model(**data)
        self.session.add(entity)
        await self.session.flush()
        return entity
