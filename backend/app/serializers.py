"""JSON shapes returned by the API for donations, campaigns and attachments."""
from __future__ import annotations

from decimal import Decimal
from typing import Any

from app.services.funding import is_goal_achieved


def money(value: Decimal | float | int | None) -> float:
    return float(value or 0)


def _iso(value) -> str | None:
    return value.isoformat() if value else None


def user_ref(user) -> dict[str, Any] | None:
    if user is None:
        return None
    return {"id": str(user.id), "username": user.username, "email": user.email}


def donation_out(d) -> dict[str, Any]:
    return {
        "id": str(d.id),
        "donor_name": d.donor_name,
        "donation_type": d.donation_type,
        "amount": money(d.amount),
        "description": d.description,
        "date_received": _iso(d.date_received),
        "campaign_id": str(d.campaign_id) if d.campaign_id else None,
        "campaign": (
            {"id": str(d.campaign.id), "title": d.campaign.title}
            if d.campaign_id and d.campaign is not None
            else None
        ),
        "received_by": user_ref(d.receiver),
        "created_at": _iso(d.created_at),
        "updated_at": _iso(d.updated_at),
    }


def attachment_out(a) -> dict[str, Any]:
    return {
        "id": str(a.id),
        "campaign_id": str(a.campaign_id),
        "file_name": a.file_name,
        "content_type": a.content_type,
        "size": a.size,
        "url": f"/api/attachments/{a.id}",
        "created_at": _iso(a.created_at),
    }


def campaign_out(c, donation_count: int | None = None) -> dict[str, Any]:
    goal = money(c.goal_amount)
    current = money(c.current_amount)
    item = {
        "id": str(c.id),
        "title": c.title,
        "description": c.description,
        "start_date": _iso(c.start_date),
        "end_date": _iso(c.end_date),
        "goal_amount": goal,
        "current_amount": current,
        "status": c.status,
        "goal_achieved": is_goal_achieved(c),
        "progress_percentage": min(round(current / goal * 100), 100) if goal > 0 else 0,
        "created_by": user_ref(c.creator),
        "attachments": [attachment_out(a) for a in c.attachments],
        "created_at": _iso(c.created_at),
        "updated_at": _iso(c.updated_at),
    }
    if donation_count is not None:
        item["donation_count"] = donation_count
    return item
