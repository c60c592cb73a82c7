"""Campaign routes -- fundraising campaigns and their attachments.

Create and update accept either a JSON object or a multipart form.  In a
form, files go in repeated ``attachments`` parts and ``remove_attachments``
is a JSON array of attachment ids.
"""
from __future__ import annotations

import json
import uuid
from datetime import date
from decimal import Decimal
from typing import Any

import pydantic
from fastapi import APIRouter, Depends, Query, Request
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.datastructures import UploadFile as FormFile

from app.config import settings
from app.database import get_db
from app.errors import ValidationError
from app.middleware.auth import require_permission
from app.serializers import campaign_out, donation_out
from app.services.attachment_store import UploadedFile
from app.services.campaign_service import CampaignService

router = APIRouter(prefix="/api/campaigns", tags=["campaigns"])

# Optional fields a form can clear by sending them blank
_CLEARABLE_FORM_FIELDS = ("end_date",)


# ---------------------------------------------------------------------------
# Pydantic Schemas
# ---------------------------------------------------------------------------


class CampaignIn(BaseModel):
    title: str | None = None
    description: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    goal_amount: Decimal | None = None
    status: str | None = None
    # Accepted only so the service can reject it with a clear message.
    current_amount: Decimal | None = None


# ---------------------------------------------------------------------------
# Request parsing
# ---------------------------------------------------------------------------


def _parse_remove_list(raw: Any) -> list[uuid.UUID]:
    if raw is None or raw == "":
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            raise ValidationError(
                "remove_attachments must be a JSON array of attachment ids",
                field="remove_attachments",
            )
    if not isinstance(raw, list):
        raise ValidationError(
            "remove_attachments must be a JSON array of attachment ids",
            field="remove_attachments",
        )
    try:
        return [uuid.UUID(str(item)) for item in raw]
    except ValueError:
        raise ValidationError("Invalid attachment id", field="remove_attachments")


async def _read_campaign_request(
    request: Request,
) -> tuple[dict[str, Any], list[UploadedFile], list[uuid.UUID]]:
    """Return (fields, uploads, attachment ids to remove) from JSON or form data."""
    content_type = request.headers.get("content-type", "")
    uploads: list[UploadedFile] = []

    if content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
        form = await request.form()
        raw: dict[str, Any] = {}
        for key, value in form.multi_items():
            if isinstance(value, FormFile):
                if key == "attachments" and value.filename:
                    if value.size is not None and value.size > settings.ATTACHMENT_MAX_BYTES:
                        raise ValidationError(
                            f"'{value.filename}' exceeds the "
                            f"{settings.ATTACHMENT_MAX_BYTES} byte limit",
                            field="attachments",
                        )
                    uploads.append(UploadedFile(
                        file_name=value.filename,
                        content_type=value.content_type or "application/octet-stream",
                        content=await value.read(),
                    ))
            elif value != "":
                raw[key] = value
            elif key in _CLEARABLE_FORM_FIELDS:
                raw[key] = None
            # Other blank form fields mean "not provided"
    else:
        body = await request.body()
        try:
            raw = json.loads(body) if body else {}
        except json.JSONDecodeError:
            raise ValidationError("Request body must be valid JSON")
        if not isinstance(raw, dict):
            raise ValidationError("Request body must be a JSON object")

    remove_ids = _parse_remove_list(raw.pop("remove_attachments", None))

    try:
        fields = CampaignIn.model_validate(raw).model_dump(exclude_unset=True)
    except pydantic.ValidationError as e:
        # Same 422 shape FastAPI gives a typed JSON body
        raise RequestValidationError([
            {**err, "loc": ("body", *err["loc"])}
            for err in e.errors(include_url=False, include_context=False, include_input=False)
        ])

    return fields, uploads, remove_ids


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.get("")
async def list_campaigns(
    title: str | None = Query(None),
    campaign_status: str | None = Query(None, alias="status"),
    start_date: date | None = Query(None, description="Campaigns starting on/after this date"),
    end_date: date | None = Query(None, description="Campaigns ending on/before this date"),
    created_by: uuid.UUID | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("campaigns.view")),
):
    rows, total = await CampaignService(db).list(
        title=title,
        status=campaign_status,
        start_date=start_date,
        end_date=end_date,
        created_by=created_by,
        page=page,
        page_size=page_size,
    )
    return {
        "items": [campaign_out(c, donation_count=count) for c, count in rows],
        "total": total,
        "page": page,
        "page_size": page_size,
    }


@router.get("/{campaign_id}")
async def get_campaign(
    campaign_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("campaigns.view")),
):
    campaign, donations = await CampaignService(db).get_with_donations(campaign_id)
    return {
        **campaign_out(campaign, donation_count=len(donations)),
        "donations": [donation_out(d) for d in donations],
    }


@router.post("", status_code=201)
async def create_campaign(
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("campaigns.create")),
):
    fields, uploads, _ = await _read_campaign_request(request)
    campaign = await CampaignService(db).create(fields, uploads, user)
    return campaign_out(campaign, donation_count=0)


@router.put("/{campaign_id}")
async def update_campaign(
    campaign_id: uuid.UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("campaigns.update")),
):
    fields, uploads, remove_ids = await _read_campaign_request(request)
    campaign = await CampaignService(db).update(campaign_id, fields, uploads, remove_ids, user)
    return campaign_out(campaign)


@router.delete("/{campaign_id}")
async def delete_campaign(
    campaign_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("campaigns.delete")),
):
    return await CampaignService(db).delete(campaign_id, user)
