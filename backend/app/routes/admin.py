"""Administration routes --- User management, audit log, funding repair."""
from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.middleware.auth import (
    hash_password,
    require_permission,
    resolve_permissions,
    write_audit_log,
)
from app.rbac import ROLE_PERMISSIONS, VALID_ROLES
from app.services.funding import FundingReconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------


class UserCreate(BaseModel):
    username: str
    password: str
    display_name: str | None = None
    email: str
    role: str = "editor"


class UserUpdate(BaseModel):
    display_name: str | None = None
    email: str | None = None
    role: str | None = None
    password: str | None = None
    is_active: bool | None = None


def _user_out(u) -> dict:
    return {
        "id": str(u.id),
        "username": u.username,
        "display_name": u.display_name,
        "email": u.email,
        "role": u.role,
        "is_active": u.is_active,
        "last_login": u.last_login.isoformat() if u.last_login else None,
        "created_at": u.created_at.isoformat() if u.created_at else None,
    }


def _check_role(role: str) -> None:
    if role not in VALID_ROLES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid role '{role}'. Valid roles: {', '.join(VALID_ROLES)}",
        )


# ---------------------------------------------------------------------------
# USER MANAGEMENT
# ---------------------------------------------------------------------------


@router.get("/users")
async def list_users(
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("admin.users.view")),
):
    """List all users."""
    from app.models.user import User

    result = await db.execute(select(User).order_by(User.username))
    items = [_user_out(u) for u in result.scalars().all()]
    return {"items": items, "total": len(items)}


@router.get("/users/{user_id}")
async def get_user(
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("admin.users.view")),
):
    """Get a single user with effective permissions."""
    from app.models.user import User

    result = await db.execute(select(User).where(User.id == user_id))
    u = result.scalar_one_or_none()
    if not u:
        raise HTTPException(status_code=404, detail="User not found")

    effective = resolve_permissions({"user_id": u.id, "username": u.username, "role": u.role})
    return {**_user_out(u), "effective_permissions": sorted(effective)}


@router.post("/users", status_code=201)
async def create_user(
    body: UserCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("admin.users.create")),
):
    """Create a new staff account."""
    from app.models.user import User

    _check_role(body.role)
    if not body.password:
        raise HTTPException(status_code=400, detail="Password is required")

    existing = await db.execute(
        select(User).where(or_(User.username == body.username, User.email == body.email))
    )
    if existing.scalars().first():
        raise HTTPException(status_code=409, detail="Username or email already exists")

    new_user = User(
        username=body.username,
        password_hash=hash_password(body.password),
        display_name=body.display_name,
        email=body.email,
        role=body.role,
    )
    db.add(new_user)
    await db.flush()

    await write_audit_log(
        db,
        user,
        action="user.create",
        resource_type="user",
        resource_id=str(new_user.id),
        details={"username": body.username, "role": body.role},
        ip_address=request.client.host if request.client else None,
    )

    await db.commit()
    await db.refresh(new_user)
    return _user_out(new_user)


@router.put("/users/{user_id}")
async def update_user(
    user_id: uuid.UUID,
    body: UserUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("admin.users.update")),
):
    """Update an existing user."""
    from app.models.user import User

    result = await db.execute(select(User).where(User.id == user_id))
    target = result.scalar_one_or_none()
    if not target:
        raise HTTPException(status_code=404, detail="User not found")

    changes = {}

    if body.role is not None:
        _check_role(body.role)
        changes["role"] = body.role
        target.role = body.role

    if body.display_name is not None:
        changes["display_name"] = body.display_name
        target.display_name = body.display_name

    if body.email is not None and body.email != target.email:
        clash = await db.execute(
            select(User.id).where(User.email == body.email, User.id != user_id)
        )
        if clash.first():
            raise HTTPException(status_code=409, detail="Email already exists")
        changes["email"] = body.email
        target.email = body.email

    if body.password:
        # Never log the password itself
        changes["password"] = "changed"
        target.password_hash = hash_password(body.password)

    if body.is_active is not None:
        changes["is_active"] = body.is_active
        target.is_active = body.is_active

    await write_audit_log(
        db,
        user,
        action="user.update",
        resource_type="user",
        resource_id=str(user_id),
        details=changes,
        ip_address=request.client.host if request.client else None,
    )

    await db.commit()
    await db.refresh(target)
    return _user_out(target)


# ---------------------------------------------------------------------------
# ROLES
# ---------------------------------------------------------------------------


@router.get("/roles")
async def list_roles(
    user: dict = Depends(require_permission("admin.users.view")),
):
    """List all roles with their default permissions."""
    return {
        "roles": [
            {"code": code, "permissions": sorted(ROLE_PERMISSIONS[code])}
            for code in sorted(ROLE_PERMISSIONS.keys())
        ]
    }


# ---------------------------------------------------------------------------
# AUDIT LOG
# ---------------------------------------------------------------------------


@router.get("/audit-log")
async def list_audit_log(
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    action: str | None = Query(None),
    username: str | None = Query(None),
    resource_type: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("admin.audit_log.view")),
):
    """Paginated audit trail."""
    from app.models.audit import AuditLog

    stmt = select(AuditLog)
    count_stmt = select(func.count()).select_from(AuditLog)

    if action:
        stmt = stmt.where(AuditLog.action == action)
        count_stmt = count_stmt.where(AuditLog.action == action)
    if username:
        stmt = stmt.where(AuditLog.username == username)
        count_stmt = count_stmt.where(AuditLog.username == username)
    if resource_type:
        stmt = stmt.where(AuditLog.resource_type == resource_type)
        count_stmt = count_stmt.where(AuditLog.resource_type == resource_type)

    total = (await db.execute(count_stmt)).scalar()

    offset = (page - 1) * page_size
    stmt = stmt.order_by(AuditLog.created_at.desc()).offset(offset).limit(page_size)
    entries = (await db.execute(stmt)).scalars().all()

    items = [
        {
            "id": str(e.id),
            "user_id": str(e.user_id) if e.user_id else None,
            "username": e.username,
            "action": e.action,
            "resource_type": e.resource_type,
            "resource_id": e.resource_id,
            "details": e.details,
            "ip_address": e.ip_address,
            "event_category": e.event_category,
            "created_at": e.created_at.isoformat() if e.created_at else None,
        }
        for e in entries
    ]

    return {
        "items": items,
        "total": total,
        "page": page,
        "page_size": page_size,
    }


# ---------------------------------------------------------------------------
# FUNDING REPAIR
# ---------------------------------------------------------------------------


@router.post("/funding/reconcile")
async def reconcile_funding(
    request: Request,
    campaign_id: uuid.UUID | None = Query(None),
    dry_run: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("admin.funding.reconcile")),
):
    """Recompute campaign ``current_amount`` from the donation ledger.

    With ``dry_run=true`` the drift report is returned and nothing changes.
    """
    if campaign_id is not None:
        from app.services.campaign_service import CampaignService

        await CampaignService(db).get(campaign_id)

    try:
        drifted = await FundingReconciler(db).recompute(campaign_id=campaign_id, dry_run=dry_run)
        if not dry_run:
            await write_audit_log(
                db,
                user,
                action="funding.reconcile",
                resource_type="campaign",
                resource_id=str(campaign_id) if campaign_id else None,
                details={"campaigns_corrected": len(drifted), "drifted": drifted},
                ip_address=request.client.host if request.client else None,
            )
            await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        f"Funding reconcile by {user['username']}: {len(drifted)} campaign(s) drifted"
        f"{' (dry run)' if dry_run else ''}"
    )
    return {
        "drifted": drifted,
        "campaigns_corrected": 0 if dry_run else len(drifted),
        "dry_run": dry_run,
    }
