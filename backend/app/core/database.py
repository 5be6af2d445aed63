from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from backend.app.core.config import DB_URL, DB_POOL_SIZE, DB_MAX_OVERFLOW, DB_POOL_RECYCLE
from backend.app.core.base import Base  # noqa: F401 - re-exported for compatibility

engine = create_async_engine(
    url=DB_URL,
    echo=False,
    pool_size=DB_POOL_SIZE,
    max_overflow=DB_MAX_OVERFLOW,
    pool_pre_ping=True,  # drop connections killed by PgBouncer/idle timeouts
    pool_recycle=DB_POOL_RECYCLE,
    pool_timeout=30,
)
async_session = async_sessionmaker(engine, expire_on_commit=False)
