from __future__ import annotations
from contextlib import asynccontextmanager
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine
from fleet_core.config.settings import Settings

_engine: AsyncEngine | None = None


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        settings = Settings()
        _engine = create_async_engine(settings.DB_URL, echo=False, future=True)
    return _engine


@asynccontextmanager
async def session():
    engine = get_engine()
    async with AsyncSession(engine, expire_on_commit=False) as s:
        yield s


async def create_all() -> None:
    """Вызови один раз при старте сервиса, чтобы создать таблицы."""
    # регистрация таблиц в metadata
    from fleet_core.infra.repositories import drones_pg, missions_pg, reports_pg  # noqa: F401

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
