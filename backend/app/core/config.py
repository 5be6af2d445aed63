"""
Connection settings shared by the engine, the Redis cache and alembic.
New code should use backend.app.core.settings.get_settings() instead.
"""
from dotenv import load_dotenv

from backend.app.core.settings import get_settings

# .env values must be visible to os.environ users (alembic env.py) as well
load_dotenv()

_settings = get_settings()

DB_URL = _settings.db_url
DB_POOL_SIZE = _settings.DB_POOL_SIZE
DB_MAX_OVERFLOW = _settings.DB_MAX_OVERFLOW
DB_POOL_RECYCLE = _settings.DB_POOL_RECYCLE

REDIS_HOST = _settings.REDIS_HOST
REDIS_PORT = _settings.REDIS_PORT
REDIS_DB = _settings.REDIS_DB
