import logging
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from order_tracking.config import Settings
from order_tracking.infrastructure.db_schema import metadata
from order_tracking.infrastructure.local_store import LocalOrderStorage, LocalUnitOfWork
from order_tracking.infrastructure.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


def create_engine(database_url: str) -> AsyncEngine:
    return create_async_engine(database_url, pool_pre_ping=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)


def build_unit_of_work(settings: Settings):
    """
    Pick the order store at startup.

    Returns (unit_of_work, engine); engine is None for the local store.
    """
    if settings.USE_DATABASE:
        engine = create_engine(settings.DATABASE_URL)
        logger.info("Order store: PostgreSQL")
        return UnitOfWork(create_session_factory(engine)), engine

    path = settings.LOCAL_STORE_PATH or None
    logger.info(f"Order store: local ({path or 'in-memory'})")
    return LocalUnitOfWork(LocalOrderStorage(path)), None
