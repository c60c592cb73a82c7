"""Donation ledger record (cash or goods)."""
from __future__ import annotations

import datetime
import uuid
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.models.base import UUIDPrimaryKeyMixin, utcnow

if TYPE_CHECKING:
    from app.models.campaign import Campaign
    from app.models.user import User


DONATION_TYPES = ("cash", "goods")


class Donation(UUIDPrimaryKeyMixin, Base):
    """A single received donation.

    Only cash donations may reference a campaign; goods donations always
    carry ``amount = 0`` and ``campaign_id = NULL``.
    """
    __tablename__ = "donations"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_donations_amount_non_negative"),
        CheckConstraint(
            "donation_type IN ('cash', 'goods')", name="ck_donations_type"
        ),
        CheckConstraint(
            "donation_type = 'cash' OR campaign_id IS NULL",
            name="ck_donations_goods_without_campaign",
        ),
    )

    donor_name: Mapped[str] = mapped_column(String(200), nullable=False)
    donation_type: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0"),
        server_default=text("0"),
    )
    description: Mapped[str | None] = mapped_column(Text)
    received_by: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id"),
        nullable=False,
    )
    date_received: Mapped[datetime.date] = mapped_column(Date, nullable=False, index=True)
    campaign_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("campaigns.id", ondelete="SET NULL"),
        index=True,
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
    )

    # ------ relationships ------
    receiver: Mapped[User] = relationship("User", lazy="selectin")
    campaign: Mapped[Campaign | None] = relationship("Campaign", lazy="selectin")

    def __repr__(self) -> str:
        return (
            f"<Donation {self.donor_name!r} type={self.donation_type!r} "
            f"amount={self.amount} campaign={self.campaign_id}>"
        )
