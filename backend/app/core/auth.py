"""
JWT authentication for customers and admin users.

Customers receive a token from ``/api/customers/identify`` or
``/api/customers/register``; admins from ``/api/admin/auth/login``.
Both are sent as ``Authorization: Bearer <token>``.
"""
from datetime import datetime, timedelta
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Header
from pydantic import BaseModel

from backend.app.core.constants import ROLE_SUPER_ADMIN, ADMIN_ROLES
from backend.app.core.settings import get_settings

JWT_ALGORITHM = "HS256"
CUSTOMER_ROLE = "customer"


class AdminPrincipal(BaseModel):
    """Claims carried by an admin token."""
    admin_user_id: int
    username: str
    role: str

    @property
    def is_super_admin(self) -> bool:
        return self.role == ROLE_SUPER_ADMIN


def create_customer_token(customer_id: int) -> str:
    settings = get_settings()
    payload = {
        "sub": str(customer_id),
        "role": CUSTOMER_ROLE,
        "exp": datetime.utcnow() + timedelta(hours=settings.CUSTOMER_JWT_EXPIRY_HOURS),
        "iat": datetime.utcnow(),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=JWT_ALGORITHM)


def decode_customer_token(token: str) -> Optional[int]:
    """Return customer id or None if token is invalid, expired or not a customer token."""
    try:
        payload = jwt.decode(token, get_settings().jwt_secret, algorithms=[JWT_ALGORITHM])
        if payload.get("role") != CUSTOMER_ROLE:
            return None
        return int(payload["sub"])
    except (jwt.InvalidTokenError, ValueError, KeyError):
        return None


def create_admin_token(admin_user_id: int, username: str, role: str) -> str:
    settings = get_settings()
    payload = {
        "admin_user_id": admin_user_id,
        "username": username,
        "role": role,
        "exp": datetime.utcnow() + timedelta(hours=settings.ADMIN_JWT_EXPIRY_HOURS),
        "iat": datetime.utcnow(),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=JWT_ALGORITHM)


def decode_admin_token(token: str) -> Optional[AdminPrincipal]:
    try:
        payload = jwt.decode(token, get_settings().jwt_secret, algorithms=[JWT_ALGORITHM])
    except jwt.InvalidTokenError:
        return None
    if payload.get("role") not in ADMIN_ROLES or "admin_user_id" not in payload:
        return None
    return AdminPrincipal(
        admin_user_id=int(payload["admin_user_id"]),
        username=str(payload.get("username", "")),
        role=payload["role"],
    )


def _bearer_token(authorization: Optional[str]) -> str:
    """Extract token from "Bearer <token>"."""
    if not authorization:
        raise HTTPException(status_code=401, detail="Token de acesso não fornecido")
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=401,
            detail="Formato do cabeçalho Authorization inválido. Esperado: Bearer <token>",
        )
    return parts[1]


async def get_current_customer(authorization: Optional[str] = Header(None)) -> int:
    """
    FastAPI dependency returning the authenticated customer id.

        @router.get("/me")
        async def me(customer_id: int = Depends(get_current_customer)):
            ...

    Raises:
        HTTPException 401: missing, malformed or expired token
    """
    customer_id = decode_customer_token(_bearer_token(authorization))
    if not customer_id:
        raise HTTPException(status_code=401, detail="Token inválido ou expirado")
    return customer_id


async def get_optional_customer(authorization: Optional[str] = Header(None)) -> Optional[int]:
    """Customer id when a valid token is sent, None otherwise (public endpoints)."""
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return decode_customer_token(parts[1])


async def require_admin(authorization: Optional[str] = Header(None)) -> AdminPrincipal:
    principal = decode_admin_token(_bearer_token(authorization))
    if principal is None:
        raise HTTPException(status_code=401, detail="Token de administrador inválido ou expirado")
    return principal


async def require_super_admin(admin: AdminPrincipal = Depends(require_admin)) -> AdminPrincipal:
    if not admin.is_super_admin:
        raise HTTPException(status_code=403, detail="Acesso restrito a super administradores")
    return admin
