import logging
import ssl
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from app.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


def ssl_connect_args(url: str) -> dict:
    """asyncpg ``connect_args`` for ``url``.

    ``DATABASE_SSL`` forces SSL on or off; left unset, any non-local Postgres
    host gets an unverified SSL context (managed providers terminate TLS with
    their own certificates).
    """
    if not url.startswith("postgresql"):
        return {}
    use_ssl = settings.database_ssl
    if use_ssl is None:
        use_ssl = not any(host in url for host in ("@localhost", "@127.0.0.1", "@db:", "@postgres:"))
    if not use_ssl:
        return {}
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return {"ssl": ctx}


engine = create_async_engine(
    settings.async_database_url,
    echo=settings.app_debug and settings.database_echo,
    pool_size=settings.database_pool_size,
    max_overflow=settings.database_max_overflow,
    pool_pre_ping=True,
    connect_args=ssl_connect_args(settings.async_database_url),
)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session; committed when the handler returns normally."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            logger.debug("Rolling back request session")
            await session.rollback()
            raise
