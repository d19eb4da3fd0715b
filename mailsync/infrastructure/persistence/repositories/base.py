"""Base repository: generic reads/writes plus a dialect-aware INSERT for upserts."""

from typing import Any, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from mailsync.domain.exceptions import ResourceNotFoundException
from mailsync.infrastructure.persistence.database import Base

_INSERT_BY_DIALECT: dict[str, Any] = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """Base repository with get_by_id, get_or_raise, create, update and delete.

    Writes that must be idempotent under retries go through upsert
    statements built with self.insert(), never read-modify-write.
    """

    def __init__(self, db: AsyncSession, model: type[ModelType]) -> None:
        self.db = db
        self.model = model

    async def get_by_id(self, entity_id: str) -> ModelType | None:
        """Return a single record by primary key, or None."""
        model: Any = self.model
        result = await self.db.execute(select(self.model).where(model.id == entity_id))
        return result.scalar_one_or_none()

    async def get_or_raise(self, entity_id: str, resource_type: str) -> ModelType:
        """Return the record or raise ResourceNotFoundException."""
        obj = await self.get_by_id(entity_id)
        if obj is None:
            raise ResourceNotFoundException(resource_type, entity_id)
        return obj

    async def create(self, obj: ModelType) -> ModelType:
        """Persist a new record."""
        self.db.add(obj)
        await self.db.flush()
        await self.db.refresh(obj)
        return obj

    async def update(self, obj: ModelType) -> ModelType:
        """Flush pending changes on an attached record and reload it."""
        await self.db.flush()
        await self.db.refresh(obj)
        return obj

    async def delete(self, obj: ModelType) -> None:
        await self.db.delete(obj)
        await self.db.flush()

    def insert(self) -> Any:
        """INSERT construct for the bound dialect (supports on_conflict_do_update).

        Raises:
            NotImplementedError: For dialects without ON CONFLICT support.
        """
        dialect = self.db.get_bind().dialect.name
        try:
            factory = _INSERT_BY_DIALECT[dialect]
        except KeyError:
            raise NotImplementedError(f"Upserts are not supported on {dialect}") from None
        return factory(self.model)
