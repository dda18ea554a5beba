"""
Database configuration: engine construction, session factory and request dependency.

Engines are not created at import time. The application lifespan builds one with
:func:`create_db_engine` and stores it, together with its session factory, on
``app.state``; handlers receive sessions through :func:`get_async_db`.
"""

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from core.config import settings
from core.logging import get_logger

logger = get_logger("database")

Base = declarative_base()


def create_db_engine(database_url: str = None, echo: bool = None) -> AsyncEngine:
    """Create the async engine for the configured database."""
    url = database_url or settings.sqlalchemy_database_url
    echo = settings.enable_sql_logging if echo is None else echo

    if url.startswith("sqlite"):
        # In-memory SQLite must share one connection across sessions
        engine = create_async_engine(
            url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False, "timeout": settings.db_timeout_seconds},
        )
    else:
        engine = create_async_engine(
            url,
            pool_size=10,
            max_overflow=20,
            pool_pre_ping=True,
            pool_recycle=3600,
            echo=echo,
            connect_args={"timeout": settings.db_timeout_seconds},
        )

    logger.info("Database engine created", dialect=engine.dialect.name, database=engine.url.database)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet."""
    # Register the mappers on Base.metadata
    import models.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ensured")


async def get_async_db(request: Request):
    """Dependency yielding a session from the application's session factory."""
    session_factory = request.app.state.session_factory
    async with session_factory() as db:
        try:
            logger.debug("Async database session created")
            yield db
        except Exception as e:
            logger.error("Async database session error", error=str(e))
            await db.rollback()
            raise
        finally:
            logger.debug("Async database session closed")
