"""Асинхронный движок SQLAlchemy, базовый класс моделей и сессия на запрос."""
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from foodcourt.config import settings


class Base(DeclarativeBase):
    pass


def make_engine(url: str):
    """SQLite (тесты, разработка) — без пула и с ожиданием блокировки записи."""
    if url.startswith("sqlite"):
        return create_async_engine(url, poolclass=NullPool, connect_args={"timeout": 30})
    return create_async_engine(url, pool_pre_ping=True)


engine = make_engine(settings.database_url)
async_session_maker = async_sessionmaker(engine, expire_on_commit=False)


async def get_db() -> AsyncIterator[AsyncSession]:
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
