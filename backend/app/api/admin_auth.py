"""Admin login and admin user management."""
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_session, raise_service_error, client_ip
from backend.app.core.auth import AdminPrincipal, require_admin, require_super_admin
from backend.app.core.limiter import limiter
from backend.app.schemas import AdminLoginBody, AdminUserCreate, AdminUserUpdate
from backend.app.services.admin_users import AdminUserService, AdminUserServiceError

router = APIRouter()


@router.post("/login")
@limiter.limit("5/minute")
async def admin_login(
    request: Request,
    data: AdminLoginBody,
    session: AsyncSession = Depends(get_session),
):
    """Username + password login. Rate limited to 5 attempts per minute per IP address."""
    service = AdminUserService(session)
    try:
        result = await service.login(data.username, data.password, ip_address=client_ip(request))
    except AdminUserServiceError as e:
        # Keep the failed attempt in the audit log
        await session.commit()
        await raise_service_error(session, e)
    await session.commit()
    return result


@router.get("/me")
async def admin_me(
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    try:
        user = await AdminUserService(session).get_user(admin.admin_user_id)
    except AdminUserServiceError as e:
        await raise_service_error(session, e)
    return AdminUserService.user_to_dict(user)


@router.post("/refresh")
async def admin_refresh(
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    try:
        return await AdminUserService(session).refresh_token(admin.admin_user_id)
    except AdminUserServiceError as e:
        await raise_service_error(session, e)


@router.post("/logout")
async def admin_logout(
    request: Request,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    """Tokens are stateless; logout is recorded in the audit log only."""
    await AdminUserService(session).audit(admin.admin_user_id, "logout", None, client_ip(request))
    await session.commit()
    return {"status": "ok"}


@router.get("/audit")
async def list_audit(
    limit: int = 100,
    admin_user_id: Optional[int] = None,
    admin: AdminPrincipal = Depends(require_super_admin),
    session: AsyncSession = Depends(get_session),
):
    return await AdminUserService(session).list_audit(limit=min(limit, 500), admin_user_id=admin_user_id)


# --- Usuários (super admin) ---

@router.get("/users")
async def list_admin_users(
    admin: AdminPrincipal = Depends(require_super_admin),
    session: AsyncSession = Depends(get_session),
):
    return await AdminUserService(session).list_users()


@router.post("/users", status_code=201)
async def create_admin_user(
    request: Request,
    data: AdminUserCreate,
    admin: AdminPrincipal = Depends(require_super_admin),
    session: AsyncSession = Depends(get_session),
):
    service = AdminUserService(session)
    try:
        user = await service.create_user(
            data.username, data.password, email=data.email, full_name=data.full_name, role=data.role
        )
        await service.audit(admin.admin_user_id, "admin_user_created",
                            {"username": user.username, "role": user.role}, client_ip(request))
        await session.commit()
    except AdminUserServiceError as e:
        await raise_service_error(session, e)
    return AdminUserService.user_to_dict(user)


@router.put("/users/{admin_user_id}")
async def update_admin_user(
    request: Request,
    admin_user_id: int,
    data: AdminUserUpdate,
    admin: AdminPrincipal = Depends(require_super_admin),
    session: AsyncSession = Depends(get_session),
):
    service = AdminUserService(session)
    changes = data.model_dump(exclude_unset=True)
    try:
        user = await service.update_user(admin_user_id, changes, acting_user_id=admin.admin_user_id)
        await service.audit(admin.admin_user_id, "admin_user_updated",
                            {"admin_user_id": admin_user_id, "fields": sorted(changes)}, client_ip(request))
        await session.commit()
    except AdminUserServiceError as e:
        await raise_service_error(session, e)
    return AdminUserService.user_to_dict(user)


@router.delete("/users/{admin_user_id}")
async def delete_admin_user(
    request: Request,
    admin_user_id: int,
    admin: AdminPrincipal = Depends(require_super_admin),
    session: AsyncSession = Depends(get_session),
):
    service = AdminUserService(session)
    try:
        await service.delete_user(admin_user_id, acting_user_id=admin.admin_user_id)
        await service.audit(admin.admin_user_id, "admin_user_deleted", {"admin_user_id": admin_user_id},
                            client_ip(request))
        await session.commit()
    except AdminUserServiceError as e:
        await raise_service_error(session, e)
    return {"status": "ok"}
