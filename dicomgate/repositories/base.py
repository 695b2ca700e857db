"""Base repository with common CRUD operations."""

from collections.abc import Sequence
from typing import Any, Generic, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel, select

ModelT = TypeVar("ModelT", bound=SQLModel)


class BaseRepository(Generic[ModelT]):
    """Base repository providing common database operations."""

    def __init__(self, session: AsyncSession, model_class: type[ModelT]):
        """Initialize repository with session and model class.

        Args:
            session: Database session
            model_class: SQLModel class this repository operates on
        """
        self.session = session
        self.model_class = model_class

    async def get_optional(self, id: Any) -> ModelT | None:
        """Get entity by ID or return None.

        Args:
            id: Entity ID

        Returns:
            Found entity or None
        """
        return await self.session.get(self.model_class, id)

    async def list_all(self) -> Sequence[ModelT]:
        """List all entities.

        Returns:
            List of all entities
        """
        result = await self.session.execute(select(self.model_class))
        return result.scalars().all()

    async def delete_by_id(self, id: Any) -> bool:
        """Delete entity by ID.

        Args:
            id: Entity ID

        Returns:
            True if entity was deleted, False if not found
        """
        entity = await self.get_optional(id)
        if entity is None:
            return False
        await self.session.delete(entity)
        await self.session.commit()
        return True
