"""
Referral model - links an issuing contractor, the referring homeowner, and
(once resolved) the new customer. Rows are never deleted.
"""
import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    String, Text, Float, Integer, Boolean, DateTime, ForeignKey, Index,
    UniqueConstraint, Enum as SAEnum,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from refertrack.database import Base
from refertrack.models.user import _enum_values


class ReferralStatus(str, enum.Enum):
    PENDING = "pending"
    WAIT_FOR_INSTALL = "wait_for_install"
    COMPLETE = "complete"


class RewardStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


REWARD_TYPES = ("gift_card", "direct_payment", "service_credit")


class Referral(Base):
    __tablename__ = "referrals"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    contractor_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    referrer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    referred_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id")
    )

    referral_code: Mapped[str] = mapped_column(String(10), unique=True, nullable=False)
    referred_customer_address: Mapped[Optional[str]] = mapped_column(String(500))

    # Lifecycle - status is derived from installation_date + verified, never set directly
    status: Mapped[ReferralStatus] = mapped_column(
        SAEnum(ReferralStatus, name="referral_status", native_enum=False, values_callable=_enum_values),
        nullable=False,
        default=ReferralStatus.PENDING,
    )
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    installation_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Reward
    reward_type: Mapped[str] = mapped_column(
        String(30), nullable=False, default="gift_card"
    )  # gift_card, direct_payment, service_credit
    reward_amount: Mapped[float] = mapped_column(Float, nullable=False, default=50.0)
    reward_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RewardStatus.PENDING.value
    )  # pending, sent, failed
    reward_transaction_id: Mapped[Optional[str]] = mapped_column(String(100))
    reward_error: Mapped[Optional[str]] = mapped_column(Text)

    # Optimistic concurrency - every write bumps it, conditional on the value read
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        UniqueConstraint(
            "contractor_id", "referred_customer_address",
            name="uq_referrals_contractor_address",
        ),
        Index("ix_referrals_contractor_id", "contractor_id"),
        Index("ix_referrals_referrer_id", "referrer_id"),
        Index("ix_referrals_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Referral {self.referral_code} ({self.status})>"
