from typing import AsyncGenerator, NoReturn, Optional
from fastapi import HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession
from backend.app.core.database import async_session
from backend.app.core.exceptions import ServiceError
from backend.app.services.cache import CacheService


# Database session per request
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        yield session


# Cache service per request
async def get_cache() -> AsyncGenerator[CacheService, None]:
    redis = await CacheService.get_redis()
    yield CacheService(redis)


async def raise_service_error(session: AsyncSession, e: ServiceError) -> NoReturn:
    """Roll back the request transaction and convert a service exception to an HTTP exception."""
    await session.rollback()
    raise HTTPException(status_code=e.status_code, detail=e.to_detail())


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None
