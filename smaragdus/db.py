# smaragdus/db.py
from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from urllib.parse import urlparse, parse_qs, urlencode, urlunparse, ParseResult

from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase

from . import config

DATABASE_URL = config.DATABASE_URL

# Ensure async driver
if DATABASE_URL.startswith("postgresql://"):
    DATABASE_URL = DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://", 1)


def strip_query_params(url: str, drop_keys=("sslmode", "channel_binding")) -> str:
    p = urlparse(url)
    if not p.query:
        return url
    qs = parse_qs(p.query, keep_blank_values=True)
    for k in list(qs.keys()):
        if k in drop_keys:
            qs.pop(k)
    new_query = urlencode({k: v[0] for k, v in qs.items()})
    newp = ParseResult(
        scheme=p.scheme, netloc=p.netloc, path=p.path,
        params=p.params, query=new_query, fragment=p.fragment
    )
    return urlunparse(newp)


CLEAN_DATABASE_URL = strip_query_params(DATABASE_URL)

ENGINE_KWARGS = {"echo": False, "future": True}
if not CLEAN_DATABASE_URL.startswith("sqlite"):
    ENGINE_KWARGS.update(
        pool_pre_ping=True,
        pool_recycle=1800,
        pool_size=5,
        max_overflow=10,
    )

engine = create_async_engine(CLEAN_DATABASE_URL, **ENGINE_KWARGS)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    autoflush=False,
    expire_on_commit=False,
    class_=AsyncSession,
)


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


async def init_models():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()
