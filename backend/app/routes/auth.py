"""Authentication routes."""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.middleware.auth import (
    create_access_token,
    get_current_user,
    resolve_permissions,
    verify_password,
    write_audit_log,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class LoginRequest(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: dict


def _token_for(user_row) -> str:
    return create_access_token({
        "sub": user_row.username,
        "role": user_row.role,
        "user_id": str(user_row.id),
    })


async def _authenticate(
    username: str, password: str, request: Request, db: AsyncSession
) -> TokenResponse:
    from app.models.user import User

    result = await db.execute(
        select(User).where(User.username == username, User.is_active == True)
    )
    user = result.scalar_one_or_none()

    if not user or not verify_password(password, user.password_hash):
        logger.info(f"Failed login for {username!r}")
        await write_audit_log(
            db, None, "auth.failed", "auth", None,
            {"username": username, "reason": "invalid_credentials"},
            ip_address=request.client.host if request.client else None,
        )
        await db.commit()
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )

    user.last_login = datetime.now(timezone.utc)
    user_dict = {"user_id": user.id, "username": user.username, "role": user.role}
    await write_audit_log(
        db,
        user_dict,
        "auth.login",
        resource_type="user",
        resource_id=str(user.id),
        details={"username": user.username},
        ip_address=request.client.host if request.client else None,
    )
    await db.commit()

    return TokenResponse(
        access_token=_token_for(user),
        user={
            "id": str(user.id),
            "username": user.username,
            "display_name": user.display_name,
            "email": user.email,
            "role": user.role,
            "permissions": sorted(resolve_permissions(user_dict)),
        },
    )


@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest, request: Request, db: AsyncSession = Depends(get_db)):
    return await _authenticate(body.username, body.password, request, db)


@router.post("/login/form", response_model=TokenResponse)
async def login_form(
    request: Request,
    form: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_db),
):
    """OAuth2 password flow used by the interactive API docs."""
    return await _authenticate(form.username, form.password, request, db)


@router.get("/me")
async def get_me(user: dict = Depends(get_current_user)):
    return {
        "username": user["username"],
        "role": user["role"],
        "user_id": str(user["user_id"]),
        "display_name": user.get("display_name") or user["username"],
        "email": user.get("email"),
        "permissions": sorted(resolve_permissions(user)),
    }


@router.post("/refresh")
async def refresh_token(
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    from app.models.user import User

    stmt = select(User).where(User.username == user["username"], User.is_active == True)
    result = await db.execute(stmt)
    user_row = result.scalar_one_or_none()
    if not user_row:
        raise HTTPException(status_code=401, detail="User not found")

    return {"access_token": _token_for(user_row), "token_type": "bearer"}
