"""
Referral metric - one derived snapshot per contractor, fully recomputed by
the metrics aggregator. Never edited by hand.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from sqlalchemy import Integer, Numeric, DateTime, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from refertrack.database import Base


class ReferralMetric(Base):
    __tablename__ = "referral_metrics"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    contractor_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), unique=True, nullable=False
    )
    total_referrals: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    converted_referrals: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    conversion_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), nullable=False, default=Decimal("0.00")
    )
    average_time_to_conversion: Mapped[Optional[int]] = mapped_column(Integer)  # days
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self) -> str:
        return f"<ReferralMetric {self.contractor_id} rate={self.conversion_rate}>"
