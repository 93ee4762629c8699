from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from .config import settings


class Base(DeclarativeBase):
    pass


def make_engine(url: str) -> AsyncEngine:
    if url.startswith("sqlite"):
        return create_async_engine(url, connect_args={"timeout": 30})
    return create_async_engine(url, pool_pre_ping=True)


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind, expire_on_commit=False, autoflush=False)


engine = make_engine(settings.database_url)
SessionLocal = make_session_factory(engine)


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create tables and seed the system settings singleton."""
    from .models import SystemSetting

    bind = bind or engine
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with make_session_factory(bind)() as session:
        existing = await session.execute(select(SystemSetting).where(SystemSetting.id == 1))
        if not existing.scalar_one_or_none():
            session.add(SystemSetting(id=1, studio_enabled=True))
            await session.commit()
