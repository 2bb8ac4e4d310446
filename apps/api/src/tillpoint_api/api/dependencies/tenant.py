"""Tenant and staff-role context forwarded by the auth gateway."""

from __future__ import annotations

from enum import Enum
from typing import Awaitable, Callable
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tillpoint_api.db.session import get_session
from tillpoint_api.models.tenant import Tenant


class StaffRole(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    CASHIER = "cashier"


async def require_tenant(
    tenant_header: str | None = Header(None, alias="X-Tenant-ID"),
    db: AsyncSession = Depends(get_session),
) -> Tenant:
    """Resolve the active tenant named by ``X-Tenant-ID``."""

    if not tenant_header:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing tenant context",
        )

    try:
        tenant_id = UUID(tenant_header)
    except ValueError as error:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid tenant identifier",
        ) from error

    result = await db.execute(select(Tenant).where(Tenant.id == tenant_id, Tenant.is_active.is_(True)))
    tenant = result.scalar_one_or_none()
    if tenant is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Tenant not found",
        )
    return tenant


async def optional_staff_role(role_header: str | None = Header(None, alias="X-Staff-Role")) -> StaffRole | None:
    if not role_header:
        return None
    try:
        return StaffRole(role_header.strip().lower())
    except ValueError as error:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Unknown staff role",
        ) from error


async def require_staff(role: StaffRole | None = Depends(optional_staff_role)) -> StaffRole:
    if role is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing staff context",
        )
    return role


def require_roles(*allowed: StaffRole) -> Callable[..., Awaitable[StaffRole]]:
    """Dependency factory restricting an endpoint to ``allowed`` roles."""

    async def _dependency(role: StaffRole = Depends(require_staff)) -> StaffRole:
        if role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient role",
            )
        return role

    return _dependency
