"""
Abstract referral repository - persistence contract behind the referral store.
The SQLAlchemy and in-memory backends both implement this, so the lifecycle
and metrics code runs unchanged against either.

Backends enforce the hard invariants themselves:
- referral codes unique (CodeCollisionError)
- referred address unique per contractor (DuplicateAddressError)
- conditional writes on `version` (StaleWriteError)
"""
import uuid
from abc import ABC, abstractmethod
from typing import Optional

from refertrack.models.analytics_event import AnalyticsEvent
from refertrack.models.referral import Referral, ReferralStatus
from refertrack.models.referral_metric import ReferralMetric
from refertrack.models.user import User, UserRole


class ReferralRepository(ABC):
    """Abstract base class for referral persistence backends."""

    # --- Users ---

    @abstractmethod
    async def get_user(self, user_id: uuid.UUID) -> Optional[User]:
        ...

    @abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[User]:
        ...

    @abstractmethod
    async def list_users(
        self,
        contractor_id: uuid.UUID,
        role: Optional[UserRole] = None,
    ) -> list[User]:
        """Users affiliated with a contractor, optionally filtered by role."""
        ...

    @abstractmethod
    async def add_user(self, user: User) -> User:
        ...

    # --- Referrals ---

    @abstractmethod
    async def code_exists(self, code: str) -> bool:
        """True if any referral or homeowner already holds this code."""
        ...

    @abstractmethod
    async def get_referral(self, referral_id: uuid.UUID) -> Optional[Referral]:
        ...

    @abstractmethod
    async def get_referral_by_code(self, code: str) -> Optional[Referral]:
        """Exact match on an already-normalized code."""
        ...

    @abstractmethod
    async def list_referrals(
        self,
        *,
        contractor_id: Optional[uuid.UUID] = None,
        referrer_id: Optional[uuid.UUID] = None,
        status: Optional[ReferralStatus] = None,
        reward_status: Optional[str] = None,
    ) -> list[Referral]:
        """Referrals matching every given filter, in insertion order."""
        ...

    @abstractmethod
    async def find_referral_by_address(
        self,
        contractor_id: uuid.UUID,
        address: str,
    ) -> Optional[Referral]:
        ...

    @abstractmethod
    async def insert_referral(self, referral: Referral) -> Referral:
        """
        Persist a new referral.
        Raises CodeCollisionError or DuplicateAddressError on constraint violations.
        """
        ...

    @abstractmethod
    async def update_referral_if_version(
        self,
        referral_id: uuid.UUID,
        expected_version: int,
        values: dict,
    ) -> Referral:
        """
        Apply `values` only if the stored version still equals expected_version,
        bumping the version by one. Raises StaleWriteError otherwise.
        """
        ...

    # --- Metrics & events ---

    @abstractmethod
    async def get_metric(self, contractor_id: uuid.UUID) -> Optional[ReferralMetric]:
        ...

    @abstractmethod
    async def save_metric(self, contractor_id: uuid.UUID, values: dict) -> ReferralMetric:
        """Insert or overwrite the single metric row for a contractor."""
        ...

    @abstractmethod
    async def add_event(self, event: AnalyticsEvent) -> None:
        ...

    async def commit(self) -> None:
        """Make work so far durable before an error unwinds the request."""
        return None
