"""
In-memory referral repository for tests and single-process development.

No method awaits between its check and its write, so each call is atomic on
the event loop; the version compare-and-set gives the same lost-race
behaviour as the SQL backend's conditional UPDATE.
"""
import logging
import uuid
from typing import Optional

from refertrack.errors import CodeCollisionError, DuplicateAddressError, StaleWriteError
from refertrack.models.analytics_event import AnalyticsEvent
from refertrack.models.referral import Referral, ReferralStatus
from refertrack.models.referral_metric import ReferralMetric
from refertrack.models.user import User, UserRole
from refertrack.storage.base import ReferralRepository
from refertrack.utils.timezone import utc_now

logger = logging.getLogger(__name__)


class InMemoryReferralRepository(ReferralRepository):
    """Dict-backed repository. Rows are the model instances themselves."""

    def __init__(self):
        self.users: dict[uuid.UUID, User] = {}
        self.referrals: dict[uuid.UUID, Referral] = {}
        self.metrics: dict[uuid.UUID, ReferralMetric] = {}
        self.events: list[AnalyticsEvent] = []

    # --- Users ---

    async def get_user(self, user_id: uuid.UUID) -> Optional[User]:
        return self.users.get(user_id)

    async def get_user_by_email(self, email: str) -> Optional[User]:
        email = email.strip().lower()
        for user in self.users.values():
            if user.email == email:
                return user
        return None

    async def list_users(
        self,
        contractor_id: uuid.UUID,
        role: Optional[UserRole] = None,
    ) -> list[User]:
        return [
            u for u in self.users.values()
            if u.contractor_id == contractor_id and (role is None or u.role == role)
        ]

    async def add_user(self, user: User) -> User:
        if user.id is None:
            user.id = uuid.uuid4()
        if user.is_active is None:
            user.is_active = True
        now = utc_now()
        user.created_at = user.created_at or now
        user.updated_at = user.updated_at or now
        if any(u.email == user.email for u in self.users.values()):
            raise ValueError(f"User with email {user.email} already exists")
        if user.referral_code and self._code_taken(user.referral_code):
            raise CodeCollisionError(f"Referral code {user.referral_code} already exists")
        self.users[user.id] = user
        return user

    # --- Referrals ---

    def _code_taken(self, code: str) -> bool:
        return any(r.referral_code == code for r in self.referrals.values()) or any(
            u.referral_code == code for u in self.users.values()
        )

    def _address_taken(
        self,
        contractor_id: uuid.UUID,
        address: Optional[str],
        exclude_id: Optional[uuid.UUID] = None,
    ) -> bool:
        if address is None:
            return False
        return any(
            r.contractor_id == contractor_id
            and r.referred_customer_address == address
            and r.id != exclude_id
            for r in self.referrals.values()
        )

    async def code_exists(self, code: str) -> bool:
        return self._code_taken(code)

    async def get_referral(self, referral_id: uuid.UUID) -> Optional[Referral]:
        return self.referrals.get(referral_id)

    async def get_referral_by_code(self, code: str) -> Optional[Referral]:
        for referral in self.referrals.values():
            if referral.referral_code == code:
                return referral
        return None

    async def list_referrals(
        self,
        *,
        contractor_id: Optional[uuid.UUID] = None,
        referrer_id: Optional[uuid.UUID] = None,
        status: Optional[ReferralStatus] = None,
        reward_status: Optional[str] = None,
    ) -> list[Referral]:
        return [
            r for r in self.referrals.values()
            if (contractor_id is None or r.contractor_id == contractor_id)
            and (referrer_id is None or r.referrer_id == referrer_id)
            and (status is None or r.status == status)
            and (reward_status is None or r.reward_status == reward_status)
        ]

    async def find_referral_by_address(
        self,
        contractor_id: uuid.UUID,
        address: str,
    ) -> Optional[Referral]:
        for referral in self.referrals.values():
            if referral.contractor_id == contractor_id and referral.referred_customer_address == address:
                return referral
        return None

    async def insert_referral(self, referral: Referral) -> Referral:
        if self._code_taken(referral.referral_code):
            raise CodeCollisionError(f"Referral code {referral.referral_code} already exists")
        if self._address_taken(referral.contractor_id, referral.referred_customer_address):
            raise DuplicateAddressError("This referred address is already registered")
        if referral.id is None:
            referral.id = uuid.uuid4()
        self.referrals[referral.id] = referral
        return referral

    async def update_referral_if_version(
        self,
        referral_id: uuid.UUID,
        expected_version: int,
        values: dict,
    ) -> Referral:
        referral = self.referrals.get(referral_id)
        if referral is None or referral.version != expected_version:
            raise StaleWriteError(
                f"Referral {referral_id} changed since version {expected_version} was read"
            )
        if "referred_customer_address" in values and self._address_taken(
            referral.contractor_id, values["referred_customer_address"], exclude_id=referral_id,
        ):
            raise DuplicateAddressError("This referred address is already registered")

        for field, value in values.items():
            setattr(referral, field, value)
        referral.version = expected_version + 1
        return referral

    # --- Metrics & events ---

    async def get_metric(self, contractor_id: uuid.UUID) -> Optional[ReferralMetric]:
        return self.metrics.get(contractor_id)

    async def save_metric(self, contractor_id: uuid.UUID, values: dict) -> ReferralMetric:
        metric = self.metrics.get(contractor_id)
        if metric is None:
            metric = ReferralMetric(id=uuid.uuid4(), contractor_id=contractor_id)
            self.metrics[contractor_id] = metric
        for field, value in values.items():
            setattr(metric, field, value)
        return metric

    async def add_event(self, event: AnalyticsEvent) -> None:
        if event.id is None:
            event.id = uuid.uuid4()
        event.created_at = event.created_at or utc_now()
        self.events.append(event)
