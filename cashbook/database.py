"""Database engine, session factory and unit-of-work helper."""
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from cashbook.config import settings
from cashbook.errors import StorageFailureError


engine = create_async_engine(settings.DATABASE_URL, echo=settings.SQL_ECHO)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding one session per request."""
    async with AsyncSessionLocal() as session:
        yield session


async def init_db() -> None:
    """Create all tables. Used for local development and tests; Alembic owns production."""
    # Import models so they register with Base.metadata
    import cashbook.models  # noqa: F401
    import cashbook.audit.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def atomic(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Run a block of ledger writes as one transaction.

    Commits when the block finishes, rolls back on any exception. Database
    errors are re-raised as StorageFailureError; everything else propagates
    unchanged after the rollback.

    Note that a rollback expires every ORM instance held by the session, so
    callers must not touch previously loaded rows after a failed block.
    """
    try:
        yield db
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise StorageFailureError(f"Ledger transaction aborted: {e}") from e
    except Exception:
        await db.rollback()
        raise
