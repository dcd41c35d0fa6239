"""
User model - every participant in the referral program.
One table for all roles: contractors issue codes, existing homeowners refer,
referred homeowners are the customers a referral resolves to.
"""
import enum
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Boolean, DateTime, ForeignKey, Index, Enum as SAEnum
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from refertrack.database import Base


class UserRole(str, enum.Enum):
    CONTRACTOR = "contractor"
    EXISTING_HOMEOWNER = "existing_homeowner"
    REFERRED_HOMEOWNER = "referred_homeowner"


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    role: Mapped[UserRole] = mapped_column(
        SAEnum(UserRole, name="user_role", native_enum=False, values_callable=_enum_values),
        nullable=False,
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20))

    # Null for homeowners imported by a contractor until they register
    password_hash: Mapped[Optional[str]] = mapped_column(String(255))

    # Contractor-only
    company_name: Mapped[Optional[str]] = mapped_column(String(255))

    # Homeowner-only
    address: Mapped[Optional[str]] = mapped_column(String(500))
    referral_code: Mapped[Optional[str]] = mapped_column(String(10), unique=True)
    contractor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id")
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_users_role", "role"),
        Index("ix_users_contractor_id", "contractor_id"),
    )

    @property
    def display_name(self) -> str:
        if self.role is UserRole.CONTRACTOR and self.company_name:
            return self.company_name
        return self.name

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role.value if self.role else None})>"
