"""Generic repository with optimistic concurrency.

Every entity repository shares the same contract:
- create starts at resource_version 0
- update must present the resource_version last read; a mismatch is a
  ConflictError and a successful update increments it by exactly one
- lookups of absent rows raise NotFoundError
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Generic, TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from kubefleet.database import Base
from kubefleet.errors import AlreadyExistsError, ConflictError, NotFoundError
from kubefleet.models import KubeFleetBaseModel, utcnow
from kubefleet.observability import get_logger, timed_query

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=Base)
SchemaT = TypeVar("SchemaT", bound=KubeFleetBaseModel)

# Columns managed by the repository itself
_MANAGED_COLUMNS = ("id", "resource_version", "created_at", "modified_at")


class BaseRepository(Generic[ModelT, SchemaT]):
    """Repository for one entity type.

    Each operation opens its own session, so one repository instance can be
    shared by concurrent callers.
    """

    model: type[ModelT]
    schema: type[SchemaT]
    entity: str = "Entity"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @property
    def table(self) -> str:
        return self.model.__tablename__

    def _to_schema(self, row: ModelT) -> SchemaT:
        """Convert database model to domain schema."""
        return self.schema.model_validate(row)

    def _to_columns(self, data: dict[str, Any]) -> dict[str, Any]:
        """Convert domain values to column values."""
        columns = {}
        for key, value in data.items():
            if key in _MANAGED_COLUMNS:
                continue
            columns[key] = value.value if isinstance(value, Enum) else value
        return columns

    async def create(self, data: dict[str, Any]) -> SchemaT:
        """Insert a new row at resource_version 0.

        Raises:
            AlreadyExistsError: If a unique column (the name) is taken
        """
        row = self.model(**self._to_columns(data), resource_version=0)
        async with self.session_factory() as session:
            with timed_query(logger, "insert", self.table) as query:
                session.add(row)
                try:
                    await session.commit()
                except IntegrityError as e:
                    await session.rollback()
                    raise AlreadyExistsError(
                        f"{self.entity} '{data.get('name')}' already exists",
                        name=data.get("name"),
                    ) from e
                query["rows_affected"] = 1
            await session.refresh(row)
            return self._to_schema(row)

    async def get(self, entity_id: int) -> SchemaT:
        """Get by primary key."""
        async with self.session_factory() as session:
            row = await session.get(self.model, entity_id)
            if row is None:
                raise NotFoundError(f"{self.entity} with ID '{entity_id}' not found", id=entity_id)
            return self._to_schema(row)

    async def get_by_name(self, name: str) -> SchemaT:
        """Get by unique name."""
        async with self.session_factory() as session:
            result = await session.execute(select(self.model).where(self.model.name == name))
            row = result.scalar_one_or_none()
            if row is None:
                raise NotFoundError(f"{self.entity} with name '{name}' not found", name=name)
            return self._to_schema(row)

    async def find_by_name(self, name: str) -> SchemaT | None:
        """Get by unique name, or None."""
        try:
            return await self.get_by_name(name)
        except NotFoundError:
            return None

    async def list(self) -> list[SchemaT]:
        """List all rows ordered by name."""
        async with self.session_factory() as session:
            result = await session.execute(select(self.model).order_by(self.model.name))
            return [self._to_schema(row) for row in result.scalars().all()]

    async def update(
        self, entity_id: int, resource_version: int, data: dict[str, Any]
    ) -> SchemaT:
        """Conditionally update a row.

        Raises:
            NotFoundError: If the row does not exist
            ConflictError: If resource_version is stale
            AlreadyExistsError: If the update collides with a unique column
        """
        stmt = (
            update(self.model)
            .where(
                self.model.id == entity_id,
                self.model.resource_version == resource_version,
            )
            .values(
                **self._to_columns(data),
                resource_version=self.model.resource_version + 1,
                modified_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as session:
            with timed_query(logger, "update", self.table) as query:
                try:
                    result = await session.execute(stmt)
                except IntegrityError as e:
                    await session.rollback()
                    raise AlreadyExistsError(
                        f"{self.entity} '{data.get('name')}' already exists",
                        name=data.get("name"),
                    ) from e
                await self._check_updated(session, result.rowcount, entity_id, resource_version)
                await session.commit()
                query["rows_affected"] = result.rowcount

            row = await session.get(self.model, entity_id, populate_existing=True)
            return self._to_schema(row)

    async def _check_updated(
        self, session: AsyncSession, rowcount: int, entity_id: int, resource_version: int
    ) -> None:
        # A conditional update that matched nothing either lost the row or lost the race.
        if rowcount:
            return
        await session.rollback()
        current = await session.get(self.model, entity_id)
        if current is None:
            raise NotFoundError(f"{self.entity} with ID '{entity_id}' not found", id=entity_id)
        raise ConflictError(
            f"{self.entity} '{current.name}' was modified concurrently "
            f"(expected resource_version {resource_version}, found {current.resource_version})",
            id=entity_id,
            name=current.name,
        )

    async def delete(self, entity_id: int) -> None:
        """Delete a row by primary key."""
        async with self.session_factory() as session:
            row = await session.get(self.model, entity_id)
            if row is None:
                raise NotFoundError(f"{self.entity} with ID '{entity_id}' not found", id=entity_id)
            await session.delete(row)
            await session.commit()
