import time

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from ..core.config import settings
from .models import Base


def make_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine. In-memory SQLite shares one connection across sessions."""
    if url.startswith("sqlite") and ":memory:" in url:
        return create_async_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_async_engine(url, echo=echo)


engine = make_engine(settings.DATABASE_URL, echo=settings.DB_ECHO)

AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def init_db(bind: AsyncEngine = engine) -> None:
    """Create tables that do not exist yet."""
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def check_db_health(session_factory=AsyncSessionLocal) -> tuple[bool, float, str | None]:
    """Check database connection health.

    Returns:
        Tuple of (is_healthy, latency_ms, error_message)
        - is_healthy: True if connection succeeded
        - latency_ms: Round-trip time in milliseconds
        - error_message: Error description if unhealthy, None otherwise
    """
    start = time.time()
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
            latency_ms = (time.time() - start) * 1000
            return (True, latency_ms, None)
    except Exception as e:
        latency_ms = (time.time() - start) * 1000
        return (False, latency_ms, str(e))
