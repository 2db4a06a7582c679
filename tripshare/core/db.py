from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy import DateTime
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator
from datetime import datetime, timezone
from typing import Optional

from tripshare.config.settings import settings

# SQLAlchemy declarative base for models
Base = declarative_base()


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend.

    SQLite drops tzinfo on the way out, so values are normalised to UTC when
    bound and re-tagged as UTC when loaded.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


engine: Optional[AsyncEngine] = None
SessionLocal: Optional[async_sessionmaker[AsyncSession]] = None


def create_engine_from_url(url: str, echo: bool = False) -> AsyncEngine:
    kwargs = {"echo": echo, "future": True}
    if not url.startswith("sqlite"):
        kwargs["pool_pre_ping"] = settings.database.pool_pre_ping
    return create_async_engine(url, **kwargs)


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind, autoflush=False, expire_on_commit=False
    )


def init_engine(url: Optional[str] = None) -> async_sessionmaker[AsyncSession]:
    """Create the process-wide engine and session factory once."""
    global engine, SessionLocal
    if SessionLocal is None:
        engine = create_engine_from_url(url or settings.database.url, echo=settings.database.echo)
        SessionLocal = make_session_factory(engine)
    return SessionLocal


async def create_all(bind: AsyncEngine) -> None:
    # Import models so their tables register on Base.metadata
    from tripshare.models import trip, user  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    global engine, SessionLocal
    if engine is not None:
        await engine.dispose()
    engine = None
    SessionLocal = None
