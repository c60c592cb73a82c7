"""Campaign aggregate -- campaign lifecycle and its attachment set.

``current_amount`` is not writable here; it belongs to the funding
reconciler.  Status may be set explicitly, and every write that can change
the goal re-runs the server-side goal check.
"""
from __future__ import annotations

import datetime
import logging
import uuid
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import AuthorizationError, NotFoundError, ValidationError
from app.middleware.auth import user_uuid, write_audit_log
from app.rbac import CAMPAIGN_OVERRIDE_ROLES
from app.services.attachment_store import AttachmentStore, UploadedFile
from app.services.donation_ledger import parse_money
from app.services.funding import FundingReconciler, is_goal_achieved

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = ("title", "description", "start_date", "end_date", "goal_amount", "status")


def check_goal_achieved(campaign) -> bool:
    """Pure predicate: ``current_amount >= goal_amount`` with a positive goal."""
    return is_goal_achieved(campaign)


def _as_date(value: Any, field: str) -> datetime.date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    try:
        return datetime.date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f"Invalid {field.replace('_', ' ')}", field=field)


def validate_campaign(data: dict[str, Any]) -> dict[str, Any]:
    """Validate a complete set of campaign fields and return normalised values."""
    from app.models.campaign import CAMPAIGN_STATUSES

    title = (data.get("title") or "").strip()
    description = (data.get("description") or "").strip()
    start_date = _as_date(data.get("start_date"), "start_date")
    goal_amount = parse_money(data.get("goal_amount"), "goal_amount")

    missing = {
        "title": not title,
        "description": not description,
        "start_date": start_date is None,
        "goal_amount": goal_amount is None,
    }
    if any(missing.values()):
        raise ValidationError(
            "Title, description, start date, and goal amount are required",
            fields=missing,
        )

    if goal_amount < 0:
        raise ValidationError("Goal amount cannot be negative", field="goal_amount")

    end_date = _as_date(data.get("end_date"), "end_date")
    if end_date is not None and end_date < start_date:
        raise ValidationError("End date cannot be before start date", field="end_date")

    status = (data.get("status") or "active").strip().lower()
    if status not in CAMPAIGN_STATUSES:
        raise ValidationError("Status must be either 'active' or 'completed'", field="status")

    return {
        "title": title,
        "description": description,
        "start_date": start_date,
        "end_date": end_date,
        "goal_amount": goal_amount,
        "status": status,
    }


class CampaignService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.attachments = AttachmentStore(db)
        self.funding = FundingReconciler(db)

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    async def get(self, campaign_id: uuid.UUID):
        from app.models.campaign import Campaign

        result = await self.db.execute(
            select(Campaign)
            .where(Campaign.id == campaign_id)
            .execution_options(populate_existing=True)
        )
        campaign = result.scalar_one_or_none()
        if campaign is None:
            raise NotFoundError("Campaign", campaign_id)
        return campaign

    async def get_with_donations(self, campaign_id: uuid.UUID) -> tuple[Any, list]:
        """Campaign plus its full donation history, newest first."""
        from app.models.donation import Donation

        campaign = await self.get(campaign_id)
        result = await self.db.execute(
            select(Donation)
            .where(Donation.campaign_id == campaign_id)
            .order_by(Donation.date_received.desc(), Donation.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return campaign, list(result.scalars().all())

    async def list(
        self,
        title: str | None = None,
        status: str | None = None,
        start_date: datetime.date | None = None,
        end_date: datetime.date | None = None,
        created_by: uuid.UUID | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[tuple[Any, int]], int]:
        """Filtered campaigns, each paired with its donation count."""
        from app.models.campaign import Campaign
        from app.models.donation import Donation

        conditions = []
        if title:
            conditions.append(Campaign.title.ilike(f"%{title}%"))
        if status:
            conditions.append(Campaign.status == status)
        if start_date:
            conditions.append(Campaign.start_date >= start_date)
        if end_date:
            conditions.append(Campaign.end_date <= end_date)
        if created_by:
            conditions.append(Campaign.created_by == created_by)

        total = (await self.db.execute(
            select(func.count(Campaign.id)).where(*conditions)
        )).scalar_one()

        donation_count = (
            select(func.count(Donation.id))
            .where(Donation.campaign_id == Campaign.id)
            .correlate(Campaign)
            .scalar_subquery()
        )
        stmt = (
            select(Campaign, donation_count.label("donation_count"))
            .where(*conditions)
            .order_by(Campaign.start_date.desc(), Campaign.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .execution_options(populate_existing=True)
        )
        rows = (await self.db.execute(stmt)).all()
        return [(row[0], row[1]) for row in rows], total

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------

    def _authorize(self, campaign, user: dict[str, Any]) -> None:
        if user["role"] in CAMPAIGN_OVERRIDE_ROLES:
            return
        if campaign.created_by != user_uuid(user):
            raise AuthorizationError("Not authorized to modify this campaign")

    async def create(
        self,
        data: dict[str, Any],
        uploads: list[UploadedFile],
        user: dict[str, Any],
    ):
        from app.models.campaign import Campaign

        if "current_amount" in data:
            raise ValidationError("current_amount cannot be set directly", field="current_amount")
        values = validate_campaign(data)

        try:
            campaign = Campaign(
                created_by=user_uuid(user),
                current_amount=Decimal("0"),
                **values,
            )
            self.db.add(campaign)
            self.attachments.add_many(campaign, uploads)
            await self.db.flush()

            await write_audit_log(
                self.db, user, "campaign.create", "campaign", str(campaign.id),
                {
                    "title": campaign.title,
                    "goal_amount": str(campaign.goal_amount),
                    "attachments": len(uploads),
                },
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Campaign {campaign.id} created with {len(uploads)} attachment(s)")
        return await self.get(campaign.id)

    async def update(
        self,
        campaign_id: uuid.UUID,
        data: dict[str, Any],
        uploads: list[UploadedFile],
        remove_attachment_ids: list[uuid.UUID],
        user: dict[str, Any],
    ):
        if "current_amount" in data:
            raise ValidationError("current_amount cannot be set directly", field="current_amount")

        try:
            campaign = await self.get(campaign_id)
            self._authorize(campaign, user)

            merged = {field: getattr(campaign, field) for field in _UPDATABLE_FIELDS}
            merged.update({k: v for k, v in data.items() if k in _UPDATABLE_FIELDS})
            values = validate_campaign(merged)

            changed = {
                field: value for field, value in values.items()
                if getattr(campaign, field) != value
            }
            for field, value in changed.items():
                setattr(campaign, field, value)

            removed = self.attachments.remove(campaign, remove_attachment_ids)
            self.attachments.add_many(campaign, uploads)
            await self.db.flush()

            if changed.keys() & {"goal_amount", "status"}:
                await self.funding.complete_if_goal_reached(campaign.id)

            await write_audit_log(
                self.db, user, "campaign.update", "campaign", str(campaign.id),
                {
                    "fields": sorted(changed),
                    "attachments_added": len(uploads),
                    "attachments_removed": [str(a) for a in removed],
                },
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        return await self.get(campaign_id)

    async def delete(self, campaign_id: uuid.UUID, user: dict[str, Any]) -> dict[str, Any]:
        """Delete a campaign and its attachments; donations are only unlinked."""
        from app.models.donation import Donation

        try:
            campaign = await self.get(campaign_id)
            self._authorize(campaign, user)

            unlinked = await self.db.execute(
                update(Donation)
                .where(Donation.campaign_id == campaign_id)
                .values(campaign_id=None)
                .execution_options(synchronize_session=False)
            )
            attachments_removed = self.attachments.remove_all(campaign)
            await self.db.delete(campaign)
            await self.db.flush()

            await write_audit_log(
                self.db, user, "campaign.delete", "campaign", str(campaign_id),
                {
                    "title": campaign.title,
                    "donations_unlinked": unlinked.rowcount,
                    "attachments_removed": attachments_removed,
                },
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            f"Campaign {campaign_id} deleted; {unlinked.rowcount} donation(s) unlinked, "
            f"{attachments_removed} attachment(s) removed"
        )
        return {
            "message": "Campaign deleted successfully",
            "id": str(campaign_id),
            "donations_unlinked": unlinked.rowcount,
            "attachments_removed": attachments_removed,
        }
