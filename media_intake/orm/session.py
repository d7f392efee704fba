from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.ext.asyncio import create_async_engine


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def to_async_url(database_url: str) -> str:
    """asyncpg DSNs (postgres://, postgresql://) to the SQLAlchemy asyncpg dialect."""
    clean_url = database_url.replace("?sslmode=disable", "")
    for prefix in ("postgresql://", "postgres://"):
        if clean_url.startswith(prefix):
            return "postgresql+asyncpg://" + clean_url[len(prefix) :]
    return clean_url


def initialize_engine(database_url: str) -> AsyncEngine:
    global _engine, _session_factory

    _engine = create_async_engine(
        to_async_url(database_url),
        echo=False,
        pool_size=10,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=3600,
        connect_args={"ssl": False} if "sslmode=disable" in database_url else {},
    )

    _session_factory = async_sessionmaker(
        _engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
        autocommit=False,
    )

    return _engine


async def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        raise RuntimeError("Session factory not initialized. Call initialize_engine() first.")
    return _session_factory
