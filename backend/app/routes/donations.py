"""Donation routes -- cash and goods donation ledger."""
from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.middleware.auth import require_permission
from app.serializers import donation_out, money
from app.services.donation_ledger import DonationLedger

router = APIRouter(prefix="/api/donations", tags=["donations"])


# ---------------------------------------------------------------------------
# Pydantic Schemas
# ---------------------------------------------------------------------------
# Required-field and cash/goods rules are enforced by the ledger so the
# error names the offending field(s).


class DonationCreate(BaseModel):
    donor_name: str | None = None
    donation_type: str | None = None
    amount: Decimal | None = None
    description: str | None = None
    date_received: date | None = None
    campaign_id: str | None = None


class DonationUpdate(BaseModel):
    donor_name: str | None = None
    donation_type: str | None = None
    amount: Decimal | None = None
    description: str | None = None
    date_received: date | None = None
    campaign_id: str | None = None


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.get("")
async def list_donations(
    donor_name: str | None = Query(None),
    donation_type: str | None = Query(None),
    campaign_id: uuid.UUID | None = Query(None),
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    min_amount: Decimal | None = Query(None),
    max_amount: Decimal | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("donations.view")),
):
    donations, total = await DonationLedger(db).list(
        donor_name=donor_name,
        donation_type=donation_type,
        campaign_id=campaign_id,
        start_date=start_date,
        end_date=end_date,
        min_amount=min_amount,
        max_amount=max_amount,
        page=page,
        page_size=page_size,
    )
    return {
        "items": [donation_out(d) for d in donations],
        "total": total,
        "page": page,
        "page_size": page_size,
    }


@router.get("/stats/summary")
async def donation_stats(
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("donations.view")),
):
    stats = await DonationLedger(db).stats_summary()
    return {
        "total_donations": stats["total_donations"],
        "total_cash_amount": money(stats["total_cash_amount"]),
        "total_goods": stats["total_goods"],
        "recent_donations": [donation_out(d) for d in stats["recent_donations"]],
    }


@router.get("/{donation_id}")
async def get_donation(
    donation_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("donations.view")),
):
    return donation_out(await DonationLedger(db).get(donation_id))


@router.post("", status_code=201)
async def create_donation(
    body: DonationCreate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("donations.create")),
):
    donation = await DonationLedger(db).create(body.model_dump(), user)
    return donation_out(donation)


@router.put("/{donation_id}")
async def update_donation(
    donation_id: uuid.UUID,
    body: DonationUpdate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("donations.update")),
):
    donation = await DonationLedger(db).update(
        donation_id, body.model_dump(exclude_unset=True), user
    )
    return donation_out(donation)


@router.delete("/{donation_id}")
async def delete_donation(
    donation_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("donations.delete")),
):
    donation = await DonationLedger(db).delete(donation_id, user)
    return donation_out(donation)
