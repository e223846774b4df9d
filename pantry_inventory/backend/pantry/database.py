from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy import create_engine

from pantry.config import DATABASE_URL, SQL_ECHO


def sync_url(url: str) -> str:
    """Swap the async driver for its blocking counterpart (Celery, Alembic)."""
    return (
        url.replace("postgresql+asyncpg", "postgresql+psycopg2")
        .replace("sqlite+aiosqlite", "sqlite")
    )


# Async engine for FastAPI
engine = create_async_engine(DATABASE_URL, echo=SQL_ECHO)

# Sync engine for Celery
sync_engine = create_engine(sync_url(DATABASE_URL), echo=SQL_ECHO)

# Async session factory
async_session_factory = async_sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False,
)

# Sync session factory for Celery
sync_session_factory = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=sync_engine,
)

# Declarative base class
class Base(DeclarativeBase):
    pass

# Async database initialization
async def init_db():
    # models must be registered on Base.metadata before create_all
    from pantry import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

# Dependency to get async session
async def get_db():
    async with async_session_factory() as session:
        yield session

# Dependency to get sync session for Celery
def get_db_sync():
    db = sync_session_factory()
    try:
        yield db
    finally:
        db.close()
