# backend/app/services/admin_users.py
"""Back-office accounts: login, user management and the audit trail."""
import json
from datetime import datetime
from typing import Optional, Dict, Any, List

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.auth import create_admin_token
from backend.app.core.constants import ADMIN_ROLES, ROLE_ADMIN, ROLE_SUPER_ADMIN
from backend.app.core.exceptions import ServiceError
from backend.app.core.logging import get_logger
from backend.app.core.password_utils import hash_password, verify_password
from backend.app.core.password_validation import validate_password_strength
from backend.app.core.settings import get_settings
from backend.app.models.admin import AdminUser, AdminAuditLog

logger = get_logger(__name__)


class AdminUserServiceError(ServiceError):
    """Base exception for admin user service errors."""


class InvalidCredentialsError(AdminUserServiceError):
    def __init__(self):
        super().__init__("Usuário ou senha inválidos", 401)


class AdminUserNotFoundError(AdminUserServiceError):
    def __init__(self, admin_user_id: int):
        super().__init__(f"Usuário administrador {admin_user_id} não encontrado", 404)


class AdminUsernameExistsError(AdminUserServiceError):
    def __init__(self, username: str):
        super().__init__(f"Nome de usuário '{username}' já está em uso", 409)


class WeakPasswordError(AdminUserServiceError):
    def __init__(self, errors: List[str]):
        super().__init__("Senha fraca", 400, errors=errors)


class SelfModificationError(AdminUserServiceError):
    def __init__(self, message: str):
        super().__init__(message, 400)


def _check_role(role: str) -> None:
    if role not in ADMIN_ROLES:
        raise AdminUserServiceError(f"Papel inválido: {role}")


def _check_password(password: str) -> None:
    is_valid, errors = validate_password_strength(password)
    if not is_valid:
        raise WeakPasswordError(errors)


class AdminUserService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_username(self, username: str) -> Optional[AdminUser]:
        result = await self.session.execute(
            select(AdminUser).where(func.lower(AdminUser.username) == username.strip().lower())
        )
        return result.scalar_one_or_none()

    async def get_user(self, admin_user_id: int) -> AdminUser:
        user = await self.session.get(AdminUser, admin_user_id)
        if not user:
            raise AdminUserNotFoundError(admin_user_id)
        return user

    async def login(self, username: str, password: str, ip_address: Optional[str] = None) -> Dict[str, Any]:
        """Returns {token, user}. Unknown user, wrong password and inactive account look the same."""
        user = await self.get_by_username(username)
        if not user or not user.is_active or not verify_password(password, user.password_hash):
            logger.warning("Admin login failed", username=username, ip_address=ip_address)
            await self.audit(user.id if user else None, "login_failed", {"username": username}, ip_address)
            raise InvalidCredentialsError()

        user.last_login_at = datetime.utcnow()
        await self.audit(user.id, "login", None, ip_address)
        logger.info("Admin logged in", admin_user_id=user.id, username=user.username)
        return {
            "token": create_admin_token(user.id, user.username, user.role),
            "user": self.user_to_dict(user),
        }

    async def refresh_token(self, admin_user_id: int) -> Dict[str, Any]:
        user = await self.get_user(admin_user_id)
        if not user.is_active:
            raise InvalidCredentialsError()
        return {
            "token": create_admin_token(user.id, user.username, user.role),
            "user": self.user_to_dict(user),
        }

    # ----- Management (super admin) -----

    async def list_users(self) -> List[Dict[str, Any]]:
        result = await self.session.execute(select(AdminUser).order_by(AdminUser.id))
        return [self.user_to_dict(u) for u in result.scalars().all()]

    async def create_user(
        self,
        username: str,
        password: str,
        email: Optional[str] = None,
        full_name: Optional[str] = None,
        role: str = ROLE_ADMIN,
        check_strength: bool = True,
    ) -> AdminUser:
        _check_role(role)
        if check_strength:
            _check_password(password)
        if await self.get_by_username(username):
            raise AdminUsernameExistsError(username)
        user = AdminUser(
            username=username.strip(),
            email=email,
            full_name=full_name,
            password_hash=hash_password(password),
            role=role,
            is_active=True,
        )
        self.session.add(user)
        await self.session.flush()
        logger.info("Admin user created", admin_user_id=user.id, username=user.username, role=role)
        return user

    async def update_user(self, admin_user_id: int, data: Dict[str, Any], acting_user_id: Optional[int] = None) -> AdminUser:
        user = await self.get_user(admin_user_id)
        if acting_user_id == admin_user_id:
            if data.get("is_active") is False:
                raise SelfModificationError("Você não pode desativar sua própria conta")
            if data.get("role") and data["role"] != user.role:
                raise SelfModificationError("Você não pode alterar seu próprio papel")

        if data.get("username") and data["username"].strip().lower() != user.username.lower():
            if await self.get_by_username(data["username"]):
                raise AdminUsernameExistsError(data["username"])
            user.username = data["username"].strip()
        if data.get("role"):
            _check_role(data["role"])
            user.role = data["role"]
        for field in ("email", "full_name", "is_active"):
            if data.get(field) is not None:
                setattr(user, field, data[field])
        if data.get("password"):
            _check_password(data["password"])
            user.password_hash = hash_password(data["password"])
        await self.session.flush()
        return user

    async def delete_user(self, admin_user_id: int, acting_user_id: Optional[int] = None) -> None:
        if acting_user_id == admin_user_id:
            raise SelfModificationError("Você não pode excluir sua própria conta")
        user = await self.get_user(admin_user_id)
        await self.session.delete(user)
        await self.session.flush()
        logger.info("Admin user deleted", admin_user_id=admin_user_id)

    async def ensure_bootstrap_admin(self) -> Optional[AdminUser]:
        """Create the configured super admin when no admin account exists yet."""
        settings = get_settings()
        if not settings.ADMIN_BOOTSTRAP_USERNAME or not settings.ADMIN_BOOTSTRAP_PASSWORD:
            return None
        count = await self.session.scalar(select(func.count(AdminUser.id)))
        if count:
            return None
        user = await self.create_user(
            settings.ADMIN_BOOTSTRAP_USERNAME,
            settings.ADMIN_BOOTSTRAP_PASSWORD,
            full_name="Administrador",
            role=ROLE_SUPER_ADMIN,
            check_strength=False,
        )
        logger.info("Bootstrap super admin created", username=user.username)
        return user

    # ----- Audit -----

    async def audit(
        self,
        admin_user_id: Optional[int],
        action: str,
        details: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
    ) -> None:
        self.session.add(AdminAuditLog(
            admin_user_id=admin_user_id,
            action=action,
            details=json.dumps(details, ensure_ascii=False, default=str) if details else None,
            ip_address=ip_address,
        ))
        await self.session.flush()

    async def list_audit(self, limit: int = 100, admin_user_id: Optional[int] = None) -> List[Dict[str, Any]]:
        query = select(AdminAuditLog).order_by(AdminAuditLog.created_at.desc(), AdminAuditLog.id.desc()).limit(limit)
        if admin_user_id:
            query = query.where(AdminAuditLog.admin_user_id == admin_user_id)
        result = await self.session.execute(query)
        return [
            {
                "id": entry.id,
                "admin_user_id": entry.admin_user_id,
                "action": entry.action,
                "details": json.loads(entry.details) if entry.details else None,
                "ip_address": entry.ip_address,
                "created_at": entry.created_at.isoformat() if entry.created_at else None,
            }
            for entry in result.scalars().all()
        ]

    @staticmethod
    def user_to_dict(user: AdminUser) -> Dict[str, Any]:
        return {
            "id": user.id,
            "username": user.username,
            "email": user.email,
            "full_name": user.full_name,
            "role": user.role,
            "is_active": bool(user.is_active),
            "last_login_at": user.last_login_at.isoformat() if user.last_login_at else None,
            "created_at": user.created_at.isoformat() if user.created_at else None,
        }
