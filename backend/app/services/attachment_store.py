"""Attachment store -- persists campaign files and their metadata."""
from __future__ import annotations

import dataclasses
import logging
import os
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import undefer

from app.config import settings
from app.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class UploadedFile:
    """An attachment payload received with a campaign create/update."""

    file_name: str
    content_type: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def extension(self) -> str:
        return os.path.splitext(self.file_name)[1].lstrip(".").lower()


def validate_uploads(files: list[UploadedFile]) -> None:
    """Reject batches that are too large or contain unsupported files."""
    if len(files) > settings.ATTACHMENT_MAX_FILES:
        raise ValidationError(
            f"At most {settings.ATTACHMENT_MAX_FILES} attachments may be uploaded at once",
            field="attachments",
        )
    allowed = {ext.lower() for ext in settings.ATTACHMENT_ALLOWED_EXTENSIONS}
    for f in files:
        if not f.file_name:
            raise ValidationError("Attachment file name is required", field="attachments")
        if f.extension not in allowed:
            raise ValidationError(
                f"Invalid file type for '{f.file_name}'. Allowed: "
                f"{', '.join(sorted(allowed))}",
                field="attachments",
            )
        if f.size > settings.ATTACHMENT_MAX_BYTES:
            raise ValidationError(
                f"'{f.file_name}' exceeds the {settings.ATTACHMENT_MAX_BYTES} byte limit",
                field="attachments",
            )


class AttachmentStore:
    """Adds, removes and serves attachments of a loaded campaign.

    Attachments are linked through ``Campaign.attachments``; removing one
    from the collection deletes the row on flush.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    def add(self, campaign, upload: UploadedFile):
        from app.models.campaign import Attachment

        attachment = Attachment(
            file_name=upload.file_name,
            content_type=upload.content_type or "application/octet-stream",
            size=upload.size,
            content=upload.content,
        )
        campaign.attachments.append(attachment)
        return attachment

    def add_many(self, campaign, uploads: list[UploadedFile]) -> list:
        validate_uploads(uploads)
        return [self.add(campaign, u) for u in uploads]

    def remove(self, campaign, attachment_ids: list[uuid.UUID]) -> list[uuid.UUID]:
        """Unlink and delete the given attachments; ids of other campaigns are ignored."""
        wanted = set(attachment_ids)
        removed = [a for a in campaign.attachments if a.id in wanted]
        for attachment in removed:
            campaign.attachments.remove(attachment)

        ignored = wanted - {a.id for a in removed}
        if ignored:
            logger.warning(
                f"Ignoring {len(ignored)} attachment id(s) not linked to campaign {campaign.id}"
            )
        return [a.id for a in removed]

    def remove_all(self, campaign) -> int:
        count = len(campaign.attachments)
        campaign.attachments.clear()
        return count

    async def get(self, attachment_id: uuid.UUID):
        """Load one attachment including its content bytes."""
        from app.models.campaign import Attachment

        result = await self.db.execute(
            select(Attachment)
            .options(undefer(Attachment.content))
            .where(Attachment.id == attachment_id)
        )
        attachment = result.scalar_one_or_none()
        if attachment is None:
            raise NotFoundError("Attachment", attachment_id)
        return attachment
