from contextlib import asynccontextmanager
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from order_tracking.domain.exceptions import ConflictError, StorageError
from order_tracking.infrastructure.repositories import SQLAlchemyOrderRepository


class UnitOfWork:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def __call__(self):
        async with self._session_factory() as session:
            try:
                uow_impl = _UnitOfWorkImpl(session)
                yield uow_impl
                # No commit -> rollback
                await session.rollback()
            except Exception:
                await session.rollback()
                raise


class _UnitOfWorkImpl:
    def __init__(self, session: AsyncSession):
        self._session = session
        self.orders = SQLAlchemyOrderRepository(session)

    async def commit(self):
        try:
            await self._session.commit()
        except IntegrityError as e:
            raise ConflictError(f"Commit rejected: {e.orig}") from e
        except SQLAlchemyError as e:
            raise StorageError(f"Commit failed: {e}") from e

    async def rollback(self):
        await self._session.rollback()
