"""Authentication and authorization middleware for the donations backend.

Provides:
- Password hashing (bcrypt)
- JWT creation / validation
- ``get_current_user()`` dependency (Authorization header)
- ``get_current_user_header_or_query()`` for links that cannot send headers
- ``require_permission()``
- Audit-log helper
"""
from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Depends, HTTPException, Query, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.rbac import get_role_permissions

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

_pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain: str, hashed: str) -> bool:
    """Compare a plain-text password against a bcrypt hash."""
    return _pwd_context.verify(plain, hashed)


def hash_password(plain: str) -> str:
    """Return the bcrypt hash of a plain-text password."""
    return _pwd_context.hash(plain)


# ---------------------------------------------------------------------------
# JWT helpers
# ---------------------------------------------------------------------------


def create_access_token(data: dict[str, Any]) -> str:
    """Create a signed JWT containing *sub* (username), *role*, and *exp*."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.JWT_EXPIRY_MINUTES)
    to_encode.update({"exp": expire})

    # UUIDs are not JSON-serialisable
    if "user_id" in to_encode and not isinstance(to_encode["user_id"], str):
        to_encode["user_id"] = str(to_encode["user_id"])

    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def user_uuid(user: dict[str, Any]) -> uuid.UUID:
    """Return the authenticated user's id as a ``UUID``."""
    user_id = user["user_id"]
    if not isinstance(user_id, uuid.UUID):
        user_id = uuid.UUID(str(user_id))
    return user_id


# ---------------------------------------------------------------------------
# OAuth2 scheme (tells Swagger UI where the login endpoint is)
# ---------------------------------------------------------------------------

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login/form")
_optional_oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl="/api/auth/login/form", auto_error=False
)

# ---------------------------------------------------------------------------
# Current-user dependency
# ---------------------------------------------------------------------------


def _credentials_exception(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def _user_from_token(token: str, db: AsyncSession) -> dict[str, Any]:
    """Decode *token* and load the matching active user."""
    from app.models.user import User

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
        username: str | None = payload.get("sub")
        if username is None:
            raise _credentials_exception()
    except JWTError:
        raise _credentials_exception("Invalid or expired token")

    result = await db.execute(select(User).where(User.username == username))
    user: User | None = result.scalar_one_or_none()

    if user is None:
        raise _credentials_exception()

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )

    return {
        "user_id": user.id,
        "username": user.username,
        "role": user.role,
        "display_name": user.display_name,
        "email": user.email,
    }


async def get_current_user(
    request: Request,
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Decode the bearer JWT, look up the user in the ``users`` table, and
    return a dict describing the authenticated user.

    Raises ``HTTPException(401)`` when the token is invalid or the user cannot
    be found.
    """
    user_dict = await _user_from_token(token, db)
    request.state.user = user_dict
    return user_dict


async def get_current_user_header_or_query(
    request: Request,
    header_token: str | None = Depends(_optional_oauth2_scheme),
    token: str | None = Query(None, description="Bearer token for plain download links"),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Like ``get_current_user`` but also accepts ``?token=...``.

    Used for attachment downloads opened directly by the browser.  The query
    parameter wins when both are supplied.
    """
    raw = token or header_token
    if not raw:
        raise _credentials_exception("Authentication token required")
    user_dict = await _user_from_token(raw, db)
    request.state.user = user_dict
    return user_dict


# ---------------------------------------------------------------------------
# Permission resolution
# ---------------------------------------------------------------------------


def resolve_permissions(user: dict[str, Any]) -> set[str]:
    """Compute the effective permission set for a user from their role."""
    return get_role_permissions(user["role"]).copy()


def require_permission(*permissions: str):
    """Return a FastAPI dependency that ensures the authenticated user has
    ALL of the specified permissions.

    Usage::

        @router.post("", status_code=201)
        async def create_donation(
            body: DonationCreate,
            db: AsyncSession = Depends(get_db),
            user: dict = Depends(require_permission("donations.create")),
        ):
            ...
    """
    required = set(permissions)

    async def _check_permission(
        current_user: dict[str, Any] = Depends(get_current_user),
    ) -> dict[str, Any]:
        missing = required - resolve_permissions(current_user)
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permissions: {', '.join(sorted(missing))}.",
            )
        return current_user

    return _check_permission


# ---------------------------------------------------------------------------
# Audit-log helper
# ---------------------------------------------------------------------------


async def write_audit_log(
    db: AsyncSession,
    user: dict[str, Any] | None,
    action: str,
    resource_type: str | None = None,
    resource_id: str | None = None,
    details: dict | None = None,
    ip_address: str | None = None,
) -> None:
    """Stage an audit row in the caller's transaction.

    The row is committed together with the mutation it describes, so a
    rolled-back change never leaves an audit entry behind.
    """
    from app.models.audit import AuditLog
    from app.services.audit_service import classify_action

    user_id = None
    username = None
    if user:
        if user.get("user_id"):
            user_id = user_uuid(user)
        username = user.get("username")

    db.add(AuditLog(
        user_id=user_id,
        username=username,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details,
        ip_address=ip_address,
        event_category=classify_action(action).value,
    ))
    await db.flush()
