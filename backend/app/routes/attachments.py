"""Attachment download route."""
from __future__ import annotations

import uuid
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.middleware.auth import get_current_user_header_or_query, resolve_permissions
from app.services.attachment_store import AttachmentStore

router = APIRouter(prefix="/api/attachments", tags=["attachments"])


def _content_disposition(file_name: str) -> str:
    fallback = file_name.encode("ascii", "replace").decode("ascii").replace('"', "")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(file_name)}"


@router.get("/{attachment_id}")
async def download_attachment(
    attachment_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user_header_or_query),
):
    """Serve the raw file.  The token may be passed as ``?token=`` so the URL
    works in ``<img>`` tags and plain links."""
    if "campaigns.attachments.view" not in resolve_permissions(user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not permitted")

    attachment = await AttachmentStore(db).get(attachment_id)
    return Response(
        content=attachment.content,
        media_type=attachment.content_type,
        headers={"Content-Disposition": _content_disposition(attachment.file_name)},
    )
