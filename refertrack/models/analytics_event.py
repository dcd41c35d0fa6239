"""
Analytics event - append-only audit trail for referral activity.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from refertrack.database import Base


class AnalyticsEvent(Base):
    __tablename__ = "analytics_events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    contractor_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    referral_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("referrals.id")
    )
    event_type: Mapped[str] = mapped_column(
        String(50), nullable=False
    )  # referral_created, referral_updated, referral_verified, reward_sent, reward_failed, homeowner_imported
    event_data: Mapped[Optional[dict]] = mapped_column(JSONB)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_analytics_events_contractor_id", "contractor_id"),
        Index("ix_analytics_events_event_type", "event_type"),
    )

    def __repr__(self) -> str:
        return f"<AnalyticsEvent {self.event_type}>"
