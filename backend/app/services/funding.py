"""Funding reconciliation -- keeps ``Campaign.current_amount`` in step with
the cash donations attributed to each campaign.

Every donation write describes its funding footprint before and after the
change as a :class:`FundingState`.  :func:`plan_adjustments` turns the pair
into per-campaign deltas and :class:`FundingReconciler` applies them with a
single ``UPDATE ... SET current_amount = current_amount + :delta`` per
campaign, inside the caller's transaction.  After each delta the goal check
runs server-side in the same transaction and flips ``active`` campaigns to
``completed``.

``current_amount`` is never clamped.  A negative result is logged as a data
integrity anomaly; :meth:`FundingReconciler.recompute` rebuilds the counter
from the ledger when drift is suspected.
"""
from __future__ import annotations

import dataclasses
import logging
import uuid
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import DataError
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import ReconciliationError, ValidationError

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
CENT = Decimal("0.01")


def _cents(value: Any) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT)


# ---------------------------------------------------------------------------
# Transition planning (pure)
# ---------------------------------------------------------------------------


@dataclasses.dataclass(frozen=True)
class FundingState:
    """The part of a donation that can move campaign money."""

    donation_type: str
    amount: Decimal
    campaign_id: uuid.UUID | None

    @classmethod
    def of(cls, donation: Any) -> FundingState:
        return cls(
            donation_type=donation.donation_type,
            amount=Decimal(donation.amount or 0),
            campaign_id=donation.campaign_id,
        )

    @property
    def funded_campaign(self) -> uuid.UUID | None:
        """Campaign credited by this donation; goods never credit one."""
        if self.donation_type != "cash":
            return None
        return self.campaign_id


@dataclasses.dataclass(frozen=True)
class Adjustment:
    campaign_id: uuid.UUID
    delta: Decimal


def plan_adjustments(
    old: FundingState | None,
    new: FundingState | None,
) -> list[Adjustment]:
    """Return the campaign deltas implied by a donation going from *old* to *new*.

    ``old`` is ``None`` for a create and ``new`` is ``None`` for a delete.

    ======================  ===========================================
    old link -> new link    deltas
    ======================  ===========================================
    none -> none            (nothing)
    none -> C               C += new.amount
    C -> none               C -= old.amount
    C -> C                  C += new.amount - old.amount  (if non-zero)
    C1 -> C2                C1 -= old.amount, C2 += new.amount
    ======================  ===========================================

    A switch between cash and goods is covered by the table because a goods
    donation has no funded campaign.  The result is ordered by campaign id so
    concurrent writers lock campaign rows in the same order.
    """
    old_campaign = old.funded_campaign if old else None
    new_campaign = new.funded_campaign if new else None

    adjustments: list[Adjustment] = []
    if old_campaign is not None and old_campaign == new_campaign:
        delta = new.amount - old.amount
        if delta != ZERO:
            adjustments.append(Adjustment(old_campaign, delta))
    else:
        if old_campaign is not None:
            adjustments.append(Adjustment(old_campaign, -old.amount))
        if new_campaign is not None:
            adjustments.append(Adjustment(new_campaign, new.amount))

    return sorted(adjustments, key=lambda a: str(a.campaign_id))


def is_goal_achieved(campaign: Any) -> bool:
    """True when a campaign with a positive goal has raised at least its goal."""
    goal = Decimal(campaign.goal_amount or 0)
    current = Decimal(campaign.current_amount or 0)
    return goal > ZERO and current >= goal


# ---------------------------------------------------------------------------
# Applying adjustments
# ---------------------------------------------------------------------------


@dataclasses.dataclass
class AppliedAdjustment:
    campaign_id: uuid.UUID
    delta: Decimal
    current_amount: Decimal
    completed: bool


class FundingReconciler:
    """Applies funding deltas and goal transitions within one session.

    The reconciler never commits; the donation ledger commits the donation
    row, the campaign deltas and the audit entry together.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def apply(
        self,
        adjustments: list[Adjustment],
        donation_id: uuid.UUID | None = None,
    ) -> list[AppliedAdjustment]:
        from app.models.campaign import Campaign

        applied: list[AppliedAdjustment] = []
        for adj in adjustments:
            stmt = (
                update(Campaign)
                .where(Campaign.id == adj.campaign_id)
                .values(current_amount=Campaign.current_amount + adj.delta)
                .returning(Campaign.current_amount)
                .execution_options(synchronize_session=False)
            )
            try:
                new_amount = (await self.db.execute(stmt)).scalar_one_or_none()
            except DataError as e:
                logger.warning(
                    f"Campaign {adj.campaign_id} total out of range after delta {adj.delta} "
                    f"(donation {donation_id}): {e}"
                )
                raise ValidationError(
                    "Campaign total would exceed the largest storable amount", field="amount"
                ) from e
            except Exception as e:
                logger.error(
                    f"Funding adjustment failed (drift risk) for campaign {adj.campaign_id}, "
                    f"delta {adj.delta}, donation {donation_id}: {e}"
                )
                raise ReconciliationError(adj.campaign_id, adj.delta, str(e)) from e

            if new_amount is None:
                logger.error(
                    f"Funding adjustment target missing (drift risk): campaign {adj.campaign_id}, "
                    f"delta {adj.delta}, donation {donation_id}"
                )
                raise ReconciliationError(adj.campaign_id, adj.delta, "campaign does not exist")

            new_amount = _cents(new_amount)
            logger.debug(
                f"Campaign {adj.campaign_id} funding {adj.delta:+} -> {new_amount} "
                f"(donation {donation_id})"
            )
            if new_amount < ZERO:
                logger.warning(
                    f"Campaign {adj.campaign_id} current_amount is negative ({new_amount}) "
                    f"after donation {donation_id}; ledger and counter disagree"
                )

            completed = await self.complete_if_goal_reached(adj.campaign_id)
            applied.append(AppliedAdjustment(adj.campaign_id, adj.delta, new_amount, completed))
        return applied

    async def complete_if_goal_reached(self, campaign_id: uuid.UUID) -> bool:
        """Flip an active campaign to ``completed`` once it reaches its goal.

        The predicate is evaluated by the database in the same statement that
        changes the status, so concurrent callers cannot both transition it.
        """
        from app.models.campaign import Campaign

        stmt = (
            update(Campaign)
            .where(
                Campaign.id == campaign_id,
                Campaign.status == "active",
                Campaign.goal_amount > 0,
                Campaign.current_amount >= Campaign.goal_amount,
            )
            .values(status="completed")
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if result.rowcount:
            logger.info(f"Campaign {campaign_id} reached its goal; status set to completed")
            return True
        return False

    # -----------------------------------------------------------------------
    # Repair
    # -----------------------------------------------------------------------

    async def ledger_totals(self, campaign_id: uuid.UUID | None = None) -> dict[uuid.UUID, Decimal]:
        """Sum cash donations per campaign straight from the ledger."""
        from app.models.donation import Donation

        stmt = (
            select(Donation.campaign_id, func.coalesce(func.sum(Donation.amount), 0))
            .where(Donation.donation_type == "cash", Donation.campaign_id.is_not(None))
            .group_by(Donation.campaign_id)
        )
        if campaign_id is not None:
            stmt = stmt.where(Donation.campaign_id == campaign_id)
        rows = (await self.db.execute(stmt)).all()
        return {row[0]: _cents(row[1]) for row in rows}

    async def recompute(
        self,
        campaign_id: uuid.UUID | None = None,
        dry_run: bool = False,
    ) -> list[dict[str, Any]]:
        """Compare every campaign counter with the ledger and fix drift.

        Returns one report row per campaign that drifted.  With ``dry_run``
        nothing is written.  The caller commits.

        A real repair locks the campaign rows before reading the ledger, so
        a donation that has already moved a counter commits first and one
        that has not yet moved it waits for the repair.
        """
        from app.models.campaign import Campaign

        stmt = select(Campaign.id, Campaign.title, Campaign.current_amount)
        if campaign_id is not None:
            stmt = stmt.where(Campaign.id == campaign_id)
        if not dry_run:
            # Same lock order as plan_adjustments
            stmt = stmt.order_by(Campaign.id).with_for_update()
        campaigns = (await self.db.execute(stmt)).all()

        totals = await self.ledger_totals(campaign_id)

        drifted: list[dict[str, Any]] = []
        for cid, title, current in sorted(campaigns, key=lambda row: row[1]):
            current = _cents(current)
            expected = totals.get(cid, ZERO)
            if current == expected:
                continue

            drifted.append({
                "campaign_id": str(cid),
                "title": title,
                "recorded_amount": float(current),
                "ledger_amount": float(expected),
                "difference": float(expected - current),
            })
            if dry_run:
                logger.warning(
                    f"Campaign {cid} drift detected: recorded {current}, ledger {expected} (dry run)"
                )
                continue

            logger.warning(f"Campaign {cid} drift corrected: recorded {current}, ledger {expected}")
            await self.db.execute(
                update(Campaign)
                .where(Campaign.id == cid)
                .values(current_amount=expected)
                .execution_options(synchronize_session=False)
            )
            await self.complete_if_goal_reached(cid)

        return drifted
