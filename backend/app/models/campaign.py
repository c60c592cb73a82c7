"""Fundraising campaign and its file attachments."""
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
    Integer,
    LargeBinary,
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
    from app.models.user import User


CAMPAIGN_STATUSES = ("active", "completed")


class Campaign(UUIDPrimaryKeyMixin, Base):
    """A fundraising campaign.

    ``current_amount`` is a denormalised counter owned by
    ``app.services.funding``; nothing else writes it.
    """
    __tablename__ = "campaigns"
    __table_args__ = (
        CheckConstraint("goal_amount >= 0", name="ck_campaigns_goal_non_negative"),
        CheckConstraint(
            "status IN ('active', 'completed')", name="ck_campaigns_status"
        ),
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    start_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    end_date: Mapped[datetime.date | None] = mapped_column(Date)
    goal_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    current_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0"),
        server_default=text("0"),
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="active",
        server_default=text("'active'"),
    )
    created_by: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id"),
        nullable=False,
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
    creator: Mapped[User] = relationship("User", lazy="selectin")
    attachments: Mapped[list[Attachment]] = relationship(
        "Attachment",
        back_populates="campaign",
        cascade="all, delete-orphan",
        order_by=lambda: [Attachment.created_at, Attachment.id],
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<Campaign {self.title!r} {self.current_amount}/{self.goal_amount} "
            f"status={self.status!r}>"
        )


class Attachment(UUIDPrimaryKeyMixin, Base):
    """A file attached to a campaign.  Content bytes are stored inline and
    only loaded when the file itself is requested."""
    __tablename__ = "attachments"

    campaign_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    content_type: Mapped[str] = mapped_column(String(100), nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[bytes] = mapped_column(LargeBinary, nullable=False, deferred=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    # ------ relationships ------
    campaign: Mapped[Campaign] = relationship("Campaign", back_populates="attachments")

    def __repr__(self) -> str:
        return f"<Attachment {self.file_name!r} {self.size}B>"
