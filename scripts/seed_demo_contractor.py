"""
Seed a demo contractor with homeowners and referrals in every lifecycle state.

Idempotent: removes the existing demo contractor's data first.

Usage:
    python scripts/seed_demo_contractor.py
"""
import asyncio
import logging
import uuid
from datetime import timedelta

import bcrypt
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from refertrack.config import Settings, get_settings
from refertrack.database import Base
from refertrack.models import AnalyticsEvent, Referral, ReferralMetric, User, UserRole
from refertrack.services.homeowner_import import import_homeowners
from refertrack.services.referral_store import ReferralStore
from refertrack.storage.sql import SqlAlchemyReferralRepository
from refertrack.utils.timezone import utc_now

logging.basicConfig(level=logging.INFO, format="%(levelname)s  %(message)s")
logger = logging.getLogger(__name__)

DEMO_EMAIL = "demo@refertrack.io"
DEMO_PASSWORD = "DemoPass123!"
COMPANY_NAME = "Summit Roofing & Solar"

HOMEOWNERS = [
    {"name": "Sarah Mitchell", "email": "sarah.mitchell@example.com", "address": "14 Juniper Ln, Boulder, CO", "phone": None},
    {"name": "David Chen", "email": "david.chen@example.com", "address": "902 Aspen Ct, Boulder, CO", "phone": None},
    {"name": "Maria Lopez", "email": "maria.lopez@example.com", "address": "77 Willow Way, Louisville, CO", "phone": None},
]


async def _clear_demo(session: AsyncSession) -> None:
    result = await session.execute(select(User).where(User.email == DEMO_EMAIL))
    contractor = result.scalar_one_or_none()
    if contractor is None:
        return
    await session.execute(delete(AnalyticsEvent).where(AnalyticsEvent.contractor_id == contractor.id))
    await session.execute(delete(ReferralMetric).where(ReferralMetric.contractor_id == contractor.id))
    await session.execute(delete(Referral).where(Referral.contractor_id == contractor.id))
    await session.execute(delete(User).where(User.contractor_id == contractor.id))
    await session.execute(delete(User).where(User.id == contractor.id))
    await session.flush()
    logger.info("Removed previous demo data")


async def seed() -> None:
    settings = get_settings()
    engine = create_async_engine(settings.database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    # Demo data never pays out or emails anyone
    demo_settings = Settings(**{**settings.model_dump(), "auto_reward_on_complete": False})

    async with session_factory() as session:
        await _clear_demo(session)
        repository = SqlAlchemyReferralRepository(session)

        now = utc_now()
        contractor = await repository.add_user(User(
            id=uuid.uuid4(),
            role=UserRole.CONTRACTOR,
            email=DEMO_EMAIL,
            name="Alex Rivera",
            company_name=COMPANY_NAME,
            password_hash=bcrypt.hashpw(DEMO_PASSWORD.encode(), bcrypt.gensalt()).decode(),
            is_active=True,
            created_at=now,
            updated_at=now,
        ))
        imported = await import_homeowners(repository, contractor, HOMEOWNERS, settings=demo_settings)
        homeowners = imported["created"]

        store = ReferralStore(repository, settings=demo_settings)
        pending = await store.create_referral(contractor.id, homeowners[0].id)
        waiting = await store.create_referral(contractor.id, homeowners[1].id)
        complete = await store.create_referral(contractor.id, homeowners[2].id)

        await store.verify_referral(
            waiting.referral_code, "310 Pine St, Boulder, CO", now + timedelta(days=14),
        )
        await store.verify_referral(
            complete.referral_code, "58 Cedar Ave, Boulder, CO", now - timedelta(days=1),
        )
        metric = await store.get_metrics(contractor.id, refresh=True)
        await session.commit()

    await engine.dispose()

    logger.info("=" * 60)
    logger.info("Demo contractor seeded successfully!")
    logger.info("  Login:      %s / %s", DEMO_EMAIL, DEMO_PASSWORD)
    logger.info("  Homeowners: %d", len(homeowners))
    logger.info("  Pending:    %s", pending.referral_code)
    logger.info("  Conversion: %s%%", metric.conversion_rate)
    logger.info("=" * 60)


if __name__ == "__main__":
    asyncio.run(seed())
