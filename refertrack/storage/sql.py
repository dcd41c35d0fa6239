"""
SQLAlchemy referral repository.

Works inside the caller's session and transaction (FastAPI get_db commits per
request, workers commit per cycle). Constraint-checked writes run inside a
SAVEPOINT so a violation only discards that write, then surfaces as a domain
conflict.
"""
import logging
import uuid
from typing import Optional

from sqlalchemy import select, update, exists, or_
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from refertrack.errors import CodeCollisionError, DuplicateAddressError, StaleWriteError
from refertrack.models.analytics_event import AnalyticsEvent
from refertrack.models.referral import Referral, ReferralStatus
from refertrack.models.referral_metric import ReferralMetric
from refertrack.models.user import User, UserRole
from refertrack.storage.base import ReferralRepository

logger = logging.getLogger(__name__)


def _is_code_violation(error: IntegrityError) -> bool:
    return "referral_code" in str(error.orig)


class SqlAlchemyReferralRepository(ReferralRepository):
    """Referral persistence on an AsyncSession."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # --- Users ---

    async def get_user(self, user_id: uuid.UUID) -> Optional[User]:
        return await self.session.get(User, user_id)

    async def get_user_by_email(self, email: str) -> Optional[User]:
        result = await self.session.execute(
            select(User).where(User.email == email.strip().lower())
        )
        return result.scalar_one_or_none()

    async def list_users(
        self,
        contractor_id: uuid.UUID,
        role: Optional[UserRole] = None,
    ) -> list[User]:
        query = select(User).where(User.contractor_id == contractor_id)
        if role is not None:
            query = query.where(User.role == role)
        result = await self.session.execute(query.order_by(User.created_at))
        return list(result.scalars().all())

    async def add_user(self, user: User) -> User:
        self.session.add(user)
        await self.session.flush()
        return user

    # --- Referrals ---

    async def code_exists(self, code: str) -> bool:
        result = await self.session.execute(
            select(
                or_(
                    exists().where(Referral.referral_code == code),
                    exists().where(User.referral_code == code),
                )
            )
        )
        return bool(result.scalar())

    async def get_referral(self, referral_id: uuid.UUID) -> Optional[Referral]:
        return await self.session.get(Referral, referral_id, populate_existing=True)

    async def get_referral_by_code(self, code: str) -> Optional[Referral]:
        result = await self.session.execute(
            select(Referral).where(Referral.referral_code == code)
        )
        return result.scalar_one_or_none()

    async def list_referrals(
        self,
        *,
        contractor_id: Optional[uuid.UUID] = None,
        referrer_id: Optional[uuid.UUID] = None,
        status: Optional[ReferralStatus] = None,
        reward_status: Optional[str] = None,
    ) -> list[Referral]:
        query = select(Referral)
        if contractor_id is not None:
            query = query.where(Referral.contractor_id == contractor_id)
        if referrer_id is not None:
            query = query.where(Referral.referrer_id == referrer_id)
        if status is not None:
            query = query.where(Referral.status == status)
        if reward_status is not None:
            query = query.where(Referral.reward_status == reward_status)
        result = await self.session.execute(query.order_by(Referral.created_at, Referral.id))
        return list(result.scalars().all())

    async def find_referral_by_address(
        self,
        contractor_id: uuid.UUID,
        address: str,
    ) -> Optional[Referral]:
        result = await self.session.execute(
            select(Referral).where(
                Referral.contractor_id == contractor_id,
                Referral.referred_customer_address == address,
            ).limit(1)
        )
        return result.scalar_one_or_none()

    async def insert_referral(self, referral: Referral) -> Referral:
        try:
            async with self.session.begin_nested():
                self.session.add(referral)
        except IntegrityError as e:
            if _is_code_violation(e):
                raise CodeCollisionError(f"Referral code {referral.referral_code} already exists") from e
            raise DuplicateAddressError("This referred address is already registered") from e
        return referral

    async def update_referral_if_version(
        self,
        referral_id: uuid.UUID,
        expected_version: int,
        values: dict,
    ) -> Referral:
        stmt = (
            update(Referral)
            .where(Referral.id == referral_id, Referral.version == expected_version)
            .values(**values, version=expected_version + 1)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self.session.begin_nested():
                result = await self.session.execute(stmt)
        except IntegrityError as e:
            raise DuplicateAddressError("This referred address is already registered") from e

        if result.rowcount == 0:
            raise StaleWriteError(
                f"Referral {referral_id} changed since version {expected_version} was read"
            )
        return await self.get_referral(referral_id)

    # --- Metrics & events ---

    async def get_metric(self, contractor_id: uuid.UUID) -> Optional[ReferralMetric]:
        result = await self.session.execute(
            select(ReferralMetric)
            .where(ReferralMetric.contractor_id == contractor_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def save_metric(self, contractor_id: uuid.UUID, values: dict) -> ReferralMetric:
        dialect = self.session.get_bind().dialect.name
        insert_fn = sqlite_insert if dialect == "sqlite" else pg_insert
        stmt = insert_fn(ReferralMetric).values(
            id=uuid.uuid4(), contractor_id=contractor_id, **values
        )
        stmt = stmt.on_conflict_do_update(index_elements=["contractor_id"], set_=values)
        await self.session.execute(stmt)
        return await self.get_metric(contractor_id)

    async def add_event(self, event: AnalyticsEvent) -> None:
        self.session.add(event)
        await self.session.flush()

    async def commit(self) -> None:
        await self.session.commit()
