"""Donation ledger -- validates and persists donation records.

Every write that can move campaign money goes through
:class:`~app.services.funding.FundingReconciler` in the same transaction as
the donation row itself, so a donation is never committed without its
campaign adjustment (and vice versa).
"""
from __future__ import annotations

import datetime
import logging
import uuid
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import NotFoundError, ValidationError
from app.middleware.auth import user_uuid, write_audit_log
from app.services.funding import FundingReconciler, FundingState, plan_adjustments

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0")
# Largest value a NUMERIC(12, 2) money column can hold
MAX_AMOUNT = Decimal("9999999999.99")

_MUTABLE_FIELDS = (
    "donor_name",
    "donation_type",
    "amount",
    "description",
    "date_received",
    "campaign_id",
)


# ---------------------------------------------------------------------------
# Field validation
# ---------------------------------------------------------------------------


def parse_money(value: Any, field: str) -> Decimal | None:
    """Parse a money value and round it to cents; ``None``/"" stay ``None``."""
    if value is None or value == "":
        return None
    try:
        amount = Decimal(str(value))
        if not amount.is_finite():
            raise InvalidOperation
        amount = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        raise ValidationError(f"'{value}' is not a valid amount", field=field)
    if abs(amount) > MAX_AMOUNT:
        raise ValidationError(
            f"Amount cannot exceed {MAX_AMOUNT:,}", field=field
        )
    return amount


def parse_optional_uuid(value: Any, field: str) -> uuid.UUID | None:
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    value = str(value).strip()
    if not value:
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        raise ValidationError(f"Invalid {field.replace('_', ' ')}", field=field)


def validate_donation(data: dict[str, Any]) -> dict[str, Any]:
    """Apply the per-record donation rules and return normalised values.

    * ``donor_name``, ``donation_type`` and ``date_received`` are required.
    * cash: ``amount`` must be > 0.
    * goods: ``description`` is required and ``amount`` is forced to 0.

    The returned ``campaign_id`` is the *requested* link; callers drop it for
    goods donations after checking that it resolves.
    """
    from app.models.donation import DONATION_TYPES

    donor_name = (data.get("donor_name") or "").strip()
    donation_type = (data.get("donation_type") or "").strip().lower()
    date_received = data.get("date_received")

    missing = {
        "donor_name": not donor_name,
        "donation_type": not donation_type,
        "date_received": date_received is None,
    }
    if any(missing.values()):
        raise ValidationError(
            "Donor name, donation type and date received are required",
            fields=missing,
        )

    if donation_type not in DONATION_TYPES:
        raise ValidationError(
            "Donation type must be either 'cash' or 'goods'", field="donation_type"
        )

    if isinstance(date_received, str):
        try:
            date_received = datetime.date.fromisoformat(date_received)
        except ValueError:
            raise ValidationError("Invalid date received", field="date_received")
    elif isinstance(date_received, datetime.datetime):
        date_received = date_received.date()

    description = (data.get("description") or "").strip() or None
    amount = parse_money(data.get("amount"), "amount")

    if donation_type == "cash":
        if amount is None or amount <= ZERO:
            raise ValidationError(
                "Cash donations must have an amount greater than 0", field="amount"
            )
    else:
        if not description:
            raise ValidationError(
                "Goods donations must have a description", field="description"
            )
        amount = ZERO

    return {
        "donor_name": donor_name,
        "donation_type": donation_type,
        "amount": amount,
        "description": description,
        "date_received": date_received,
        "campaign_id": parse_optional_uuid(data.get("campaign_id"), "campaign_id"),
    }


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class DonationLedger:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.funding = FundingReconciler(db)

    async def _require_campaign(self, campaign_id: uuid.UUID) -> None:
        from app.models.campaign import Campaign

        found = await self.db.execute(select(Campaign.id).where(Campaign.id == campaign_id))
        if found.scalar_one_or_none() is None:
            raise NotFoundError("Campaign", campaign_id)

    async def _resolve_link(self, values: dict[str, Any]) -> uuid.UUID | None:
        """Check the requested campaign exists; keep the link only for cash."""
        requested = values["campaign_id"]
        if requested is None:
            return None
        await self._require_campaign(requested)
        if values["donation_type"] != "cash":
            logger.info(f"Dropping campaign link {requested} from goods donation")
            return None
        return requested

    async def get(self, donation_id: uuid.UUID):
        from app.models.donation import Donation

        result = await self.db.execute(
            select(Donation)
            .where(Donation.id == donation_id)
            .execution_options(populate_existing=True)
        )
        donation = result.scalar_one_or_none()
        if donation is None:
            raise NotFoundError("Donation", donation_id)
        return donation

    async def _get_for_update(self, donation_id: uuid.UUID):
        from app.models.donation import Donation

        result = await self.db.execute(
            select(Donation)
            .where(Donation.id == donation_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        donation = result.scalar_one_or_none()
        if donation is None:
            raise NotFoundError("Donation", donation_id)
        return donation

    async def create(self, data: dict[str, Any], user: dict[str, Any]):
        from app.models.donation import Donation

        values = validate_donation(data)
        try:
            values["campaign_id"] = await self._resolve_link(values)

            donation = Donation(received_by=user_uuid(user), **values)
            self.db.add(donation)
            await self.db.flush()

            await self.funding.apply(
                plan_adjustments(None, FundingState.of(donation)),
                donation_id=donation.id,
            )
            await write_audit_log(
                self.db, user, "donation.create", "donation", str(donation.id),
                _audit_details(donation),
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Donation {donation.id} recorded ({values['donation_type']} {values['amount']})")
        return await self.get(donation.id)

    async def update(self, donation_id: uuid.UUID, data: dict[str, Any], user: dict[str, Any]):
        try:
            donation = await self._get_for_update(donation_id)
            before = FundingState.of(donation)

            merged = {field: getattr(donation, field) for field in _MUTABLE_FIELDS}
            merged.update({k: v for k, v in data.items() if k in _MUTABLE_FIELDS})
            values = validate_donation(merged)
            values["campaign_id"] = await self._resolve_link(values)

            for field, value in values.items():
                setattr(donation, field, value)
            await self.db.flush()

            applied = await self.funding.apply(
                plan_adjustments(before, FundingState.of(donation)),
                donation_id=donation.id,
            )
            await write_audit_log(
                self.db, user, "donation.update", "donation", str(donation.id),
                {
                    **_audit_details(donation),
                    "adjustments": [
                        {"campaign_id": str(a.campaign_id), "delta": str(a.delta)}
                        for a in applied
                    ],
                },
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        return await self.get(donation_id)

    async def delete(self, donation_id: uuid.UUID, user: dict[str, Any]):
        """Remove a donation and reverse its funding; returns the removed record."""
        from app.models.donation import Donation

        try:
            donation = await self._get_for_update(donation_id)
            before = FundingState.of(donation)
            details = _audit_details(donation)

            # Guarded delete: only the caller that actually removes the row
            # reverses its funding.
            result = await self.db.execute(delete(Donation).where(Donation.id == donation_id))
            if result.rowcount == 0:
                raise NotFoundError("Donation", donation_id)

            await self.funding.apply(plan_adjustments(before, None), donation_id=donation_id)
            await write_audit_log(
                self.db, user, "donation.delete", "donation", str(donation_id), details,
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Donation {donation_id} deleted")
        return donation

    async def list(
        self,
        donor_name: str | None = None,
        donation_type: str | None = None,
        campaign_id: uuid.UUID | None = None,
        start_date: datetime.date | None = None,
        end_date: datetime.date | None = None,
        min_amount: Decimal | None = None,
        max_amount: Decimal | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list, int]:
        from app.models.donation import Donation

        conditions = []
        if donor_name:
            conditions.append(Donation.donor_name.ilike(f"%{donor_name}%"))
        if donation_type:
            conditions.append(Donation.donation_type == donation_type)
        if campaign_id:
            conditions.append(Donation.campaign_id == campaign_id)
        if start_date:
            conditions.append(Donation.date_received >= start_date)
        if end_date:
            conditions.append(Donation.date_received <= end_date)
        if min_amount is not None:
            conditions.append(Donation.amount >= min_amount)
        if max_amount is not None:
            conditions.append(Donation.amount <= max_amount)

        total = (await self.db.execute(
            select(func.count(Donation.id)).where(*conditions)
        )).scalar_one()

        data_stmt = (
            select(Donation)
            .where(*conditions)
            .order_by(Donation.date_received.desc(), Donation.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .execution_options(populate_existing=True)
        )
        donations = (await self.db.execute(data_stmt)).scalars().all()
        return list(donations), total

    async def stats_summary(self) -> dict[str, Any]:
        from app.models.donation import Donation

        total = (await self.db.execute(select(func.count(Donation.id)))).scalar_one()
        cash_total = (await self.db.execute(
            select(func.coalesce(func.sum(Donation.amount), 0))
            .where(Donation.donation_type == "cash")
        )).scalar_one()
        goods_count = (await self.db.execute(
            select(func.count(Donation.id)).where(Donation.donation_type == "goods")
        )).scalar_one()
        recent, _ = await self.list(page=1, page_size=5)

        return {
            "total_donations": total,
            "total_cash_amount": Decimal(cash_total or 0),
            "total_goods": goods_count,
            "recent_donations": recent,
        }


def _audit_details(donation) -> dict[str, Any]:
    return {
        "donor_name": donation.donor_name,
        "donation_type": donation.donation_type,
        "amount": str(donation.amount),
        "campaign_id": str(donation.campaign_id) if donation.campaign_id else None,
    }
