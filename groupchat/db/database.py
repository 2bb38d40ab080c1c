from sqlalchemy.orm import declarative_base
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from groupchat.core.config import settings


def build_database_url(url: str) -> str:
    """Switch plain postgres URLs to the asyncpg driver"""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def create_engine_for(url: str, echo: bool = False):
    """Create an async engine; the pool tuning only applies to server databases"""
    url = build_database_url(url)
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=echo)

    return create_async_engine(
        url,
        echo=echo,
        pool_size=20,              # main pool
        max_overflow=30,           # extra connections under load
        pool_timeout=30,           # wait for a free connection, seconds
        pool_recycle=1800,         # recycle connections every 30 minutes
        pool_pre_ping=True,        # check connections before use
    )


engine = create_engine_for(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)

# Base class for all models
Base = declarative_base()

# Dependency providing one session per request
async def get_db():
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()
