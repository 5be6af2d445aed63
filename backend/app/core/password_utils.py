"""Admin password hashing. Uses bcrypt directly (passlib has incompatibilities with bcrypt 4.1+)."""
import bcrypt

from backend.app.core.settings import get_settings


def _to_bytes(password: str) -> bytes:
    # bcrypt only looks at the first 72 bytes
    return str(password).encode("utf-8")[:72]


def hash_password(password: str) -> str:
    """Hash password with bcrypt using the configured cost factor."""
    salt = bcrypt.gensalt(rounds=get_settings().BCRYPT_ROUNDS)
    return bcrypt.hashpw(_to_bytes(password), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Verify plain password against bcrypt hash. Malformed hashes never match."""
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(_to_bytes(plain), hashed.encode("utf-8"))
    except ValueError:
        return False
