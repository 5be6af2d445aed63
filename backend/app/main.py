import asyncio
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.limiter import limiter
from backend.app.api import customers, delivery, events, orders, coupons, policies, payments
from backend.app.api import admin, admin_auth, admin_pricing, admin_whatsapp
from backend.app.api.deps import get_session
from backend.app.services.cache import CacheService
from backend.app.core.logging import setup_logging, get_logger
from backend.app.core.settings import get_settings
from backend.app.core.metrics import PrometheusMiddleware, get_metrics_response

APP_VERSION = "1.0.0"

try:
    settings = get_settings()
except ValueError as e:
    print(f"Configuration error: {e}", file=sys.stderr)
    sys.exit(1)

# JSON logs in production
setup_logging(
    log_level=settings.LOG_LEVEL,
    json_format=settings.is_production
)

logger = get_logger(__name__)

logger.info(
    "Application configuration loaded",
    environment=settings.ENVIRONMENT,
    db_host=settings.DB_HOST,
    redis_host=settings.REDIS_HOST,
    email_provider=settings.EMAIL_PROVIDER,
)

for warning in settings.validate_production_settings():
    logger.warning("Configuration warning", detail=warning)


async def _bootstrap_admin() -> None:
    from backend.app.core.database import async_session
    from backend.app.services.admin_users import AdminUserService

    async with async_session() as session:
        try:
            await AdminUserService(session).ensure_bootstrap_admin()
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error("Bootstrap admin creation failed", error=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: bootstrap admin account, payment timeout sweep.
    Shutdown: cancel background tasks, close Redis.
    """
    from backend.app.services.scheduler import payment_timeout_loop

    logger.info("Application starting up", version=APP_VERSION)
    await _bootstrap_admin()
    tasks = []
    if settings.SCHEDULERS_ENABLED:
        tasks.append(asyncio.create_task(payment_timeout_loop()))
    else:
        logger.info("Background schedulers disabled")
    yield
    for task in tasks:
        task.cancel()
    logger.info("Application shutting down")
    await CacheService.close()


app = FastAPI(title="KitRunner Backend", version=APP_VERSION, lifespan=lifespan)

# Shared limiter; routers use the same instance for @limiter.limit
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

ALLOWED_ORIGINS = settings.allowed_origins_list
logger.info("CORS configuration", allowed_origins=ALLOWED_ORIGINS, is_production=settings.is_production)
if not ALLOWED_ORIGINS:
    if settings.is_production:
        logger.error("ALLOWED_ORIGINS must be set in production environment")
        raise ValueError("ALLOWED_ORIGINS environment variable is required in production")
    ALLOWED_ORIGINS = ["*"]
    logger.warning("CORS: allowing all origins (development mode)")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)

# Added after CORS so it runs first on the response path
app.add_middleware(PrometheusMiddleware)

# Storefront
app.include_router(events.router, prefix="/api", tags=["events"])
app.include_router(customers.router, prefix="/api", tags=["customers"])
app.include_router(delivery.router, prefix="/api", tags=["delivery"])
app.include_router(orders.router, prefix="/api", tags=["orders"])
app.include_router(coupons.router, prefix="/api", tags=["coupons"])
app.include_router(policies.router, prefix="/api", tags=["policies"])
app.include_router(payments.router, prefix="/api/mercadopago", tags=["payments"])
# Back office; login is the only route without an admin token
app.include_router(admin_auth.router, prefix="/api/admin/auth", tags=["admin-auth"])
app.include_router(admin.router, prefix="/api/admin", tags=["admin"])
app.include_router(admin_pricing.router, prefix="/api/admin", tags=["admin-pricing"])
app.include_router(admin_whatsapp.router, prefix="/api/admin/whatsapp", tags=["admin-whatsapp"])


@app.get("/")
async def root():
    return {"status": "ok"}


@app.get("/health")
async def health_check(session: AsyncSession = Depends(get_session)):
    """Database and Redis connectivity for monitoring."""
    health_status = {
        "status": "healthy",
        "version": APP_VERSION,
        "checks": {
            "database": "ok",
            "redis": "ok"
        }
    }

    try:
        await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    try:
        redis = await CacheService.get_redis()
        await redis.ping()
    except Exception as e:
        logger.error("Redis health check failed", error=str(e))
        health_status["status"] = "unhealthy"
        health_status["checks"]["redis"] = f"error: {str(e)}"

    return health_status


@app.get("/metrics")
async def metrics_endpoint(openmetrics: bool = False):
    """Prometheus (or OpenMetrics) exposition."""
    return get_metrics_response(openmetrics=openmetrics)
