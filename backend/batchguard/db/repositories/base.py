"""
Base repository with common CRUD operations.

Every database failure surfaces as StoreUnavailableError so callers fail
closed instead of guessing at partial state.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Generic, Optional, Sequence, Type, TypeVar

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from batchguard.infrastructure.database import Base, get_session
from batchguard.infrastructure.exceptions import StoreUnavailableError

logger = structlog.get_logger(__name__)

T = TypeVar("T", bound=Base)


@asynccontextmanager
async def store_session(operation: str) -> AsyncGenerator[AsyncSession, None]:
    """Transactional session that maps driver errors to StoreUnavailableError."""
    try:
        async with get_session() as session:
            yield session
    except IntegrityError:
        # Callers read constraint violations as lost races
        raise
    except SQLAlchemyError as e:
        logger.error("store_unavailable", operation=operation, error=str(e))
        raise StoreUnavailableError(operation) from e


class BaseRepository(Generic[T]):
    """Generic async repository for SQLAlchemy models."""

    def __init__(self, model: Type[T]):
        self.model = model

    async def get_by_id(self, id: Any) -> Optional[T]:
        """Get a single record by primary key."""
        async with store_session(f"{self.model.__tablename__}.get") as session:
            return await session.get(self.model, id)

    async def list(
        self,
        *,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        limit: int | None = None,
    ) -> Sequence[T]:
        """List records with optional equality filters and ordering."""
        async with store_session(f"{self.model.__tablename__}.list") as session:
            stmt = select(self.model)

            if filters:
                for key, value in filters.items():
                    if value is not None and hasattr(self.model, key):
                        stmt = stmt.where(getattr(self.model, key) == value)

            if order_by and hasattr(self.model, order_by.lstrip("-")):
                col = getattr(self.model, order_by.lstrip("-"))
                stmt = stmt.order_by(col.desc() if order_by.startswith("-") else col)

            if limit:
                stmt = stmt.limit(limit)

            result = await session.execute(stmt)
            return result.scalars().all()

    async def count(self, filters: dict[str, Any] | None = None) -> int:
        """Count records matching filters."""
        async with store_session(f"{self.model.__tablename__}.count") as session:
            stmt = select(func.count()).select_from(self.model)
            if filters:
                for key, value in filters.items():
                    if value is not None and hasattr(self.model, key):
                        stmt = stmt.where(getattr(self.model, key) == value)
            result = await session.execute(stmt)
            return result.scalar_one()

    async def upsert(self, id: Any, **kwargs: Any) -> T:
        """Insert or update a record."""
        async with store_session(f"{self.model.__tablename__}.upsert") as session:
            instance = await session.get(self.model, id)
            if instance is None:
                pk_name = self.model.__table__.primary_key.columns.keys()[0]
                kwargs[pk_name] = id
                instance = self.model(**kwargs)
                session.add(instance)
            else:
                for key, value in kwargs.items():
                    if hasattr(instance, key):
                        setattr(instance, key, value)
            await session.flush()
            await session.refresh(instance)
            return instance
