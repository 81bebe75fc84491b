from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from reminder_scheduler.config.settings import Settings, settings


def create_engine_from_url(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create the async engine, with pooling options only where the driver supports them."""
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=echo)

    return create_async_engine(
        database_url,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=3600,
        echo=echo,
    )


def create_session_factory(app_settings: Settings) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to a fresh engine for ``app_settings.DATABASE_URL``."""
    return async_sessionmaker(
        bind=create_engine_from_url(
            str(app_settings.DATABASE_URL), app_settings.DATABASE_ECHO
        ),
        class_=AsyncSession,
        expire_on_commit=False,
    )


AsyncSessionLocal = create_session_factory(settings)
engine = AsyncSessionLocal.kw["bind"]


async def get_async_session():
    """Dependency to get async database session"""
    async with AsyncSessionLocal() as db:
        try:
            yield db
        except Exception:
            await db.rollback()
            raise
