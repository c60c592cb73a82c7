"""Dashboard routes -- KPIs and overview data."""
from __future__ import annotations

from collections import defaultdict
from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.middleware.auth import require_permission
from app.serializers import campaign_out, donation_out, money
from app.services.donation_ledger import DonationLedger

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


def _months_back(today: date, months: int) -> date:
    """First day of the month *months* before *today*'s month."""
    year, month = today.year, today.month - months
    while month <= 0:
        month += 12
        year -= 1
    return date(year, month, 1)


@router.get("/overview")
async def get_overview(
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("reports.dashboard.view")),
):
    """Donation and campaign KPIs, top campaigns and monthly cash totals."""
    from app.models.campaign import Campaign
    from app.models.donation import Donation
    from app.models.user import User

    donation_stats = await DonationLedger(db).stats_summary()

    # Campaign statistics
    total_campaigns = (await db.execute(select(func.count(Campaign.id)))).scalar_one()
    active_campaigns = (await db.execute(
        select(func.count(Campaign.id)).where(Campaign.status == "active")
    )).scalar_one()
    completed_campaigns = (await db.execute(
        select(func.count(Campaign.id)).where(Campaign.status == "completed")
    )).scalar_one()
    goal_total, raised_total = (await db.execute(
        select(
            func.coalesce(func.sum(Campaign.goal_amount), 0),
            func.coalesce(func.sum(Campaign.current_amount), 0),
        )
    )).one()
    goal_total = Decimal(goal_total or 0)
    raised_total = Decimal(raised_total or 0)

    # Top campaigns
    top_result = await db.execute(
        select(Campaign)
        .order_by(Campaign.current_amount.desc())
        .limit(3)
        .execution_options(populate_existing=True)
    )
    top_campaigns = [campaign_out(c) for c in top_result.scalars().all()]

    # Monthly cash donation trend (current month and the five before it)
    since = _months_back(date.today(), 5)
    cash_rows = (await db.execute(
        select(Donation.date_received, Donation.amount).where(
            Donation.donation_type == "cash",
            Donation.date_received >= since,
        )
    )).all()
    monthly: dict[str, dict] = defaultdict(lambda: {"total": Decimal("0"), "count": 0})
    for received, amount in cash_rows:
        bucket = monthly[received.strftime("%Y-%m")]
        bucket["total"] += Decimal(amount or 0)
        bucket["count"] += 1
    monthly_data = [
        {"month": month, "total": money(v["total"]), "count": v["count"]}
        for month, v in sorted(monthly.items())
    ]

    # Recent users (admins only)
    recent_users = []
    if _user["role"] == "admin":
        users_result = await db.execute(
            select(User).order_by(User.created_at.desc()).limit(5)
        )
        recent_users = [
            {
                "id": str(u.id),
                "username": u.username,
                "email": u.email,
                "role": u.role,
                "last_login": u.last_login.isoformat() if u.last_login else None,
            }
            for u in users_result.scalars().all()
        ]

    return {
        "stats": {
            "donations": {
                "total": donation_stats["total_donations"],
                "total_cash_amount": money(donation_stats["total_cash_amount"]),
                "total_goods": donation_stats["total_goods"],
            },
            "campaigns": {
                "total": total_campaigns,
                "active": active_campaigns,
                "completed": completed_campaigns,
                "total_goal_amount": money(goal_total),
                "total_raised_amount": money(raised_total),
                "progress_percentage": (
                    round(raised_total / goal_total * 100) if goal_total > 0 else 0
                ),
            },
        },
        "recent_donations": [donation_out(d) for d in donation_stats["recent_donations"]],
        "top_campaigns": top_campaigns,
        "monthly_data": monthly_data,
        "recent_users": recent_users,
    }
