"""
Request-scoped wiring - repository and referral store per request.
"""
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from refertrack.config import get_settings
from refertrack.database import get_db
from refertrack.services.notifications import NotificationDispatcher
from refertrack.services.referral_store import ReferralStore
from refertrack.services.rewards import get_reward_dispatcher
from refertrack.storage.base import ReferralRepository
from refertrack.storage.memory import InMemoryReferralRepository
from refertrack.storage.sql import SqlAlchemyReferralRepository

# Process-wide when STORAGE_BACKEND=memory (development only)
_memory_repository = None


def get_memory_repository() -> InMemoryReferralRepository:
    global _memory_repository
    if _memory_repository is None:
        _memory_repository = InMemoryReferralRepository()
    return _memory_repository


async def get_repository(db: AsyncSession = Depends(get_db)) -> ReferralRepository:
    if get_settings().storage_backend == "memory":
        return get_memory_repository()
    return SqlAlchemyReferralRepository(db)


async def get_referral_store(
    repository: ReferralRepository = Depends(get_repository),
) -> ReferralStore:
    return ReferralStore(
        repository,
        notifier=NotificationDispatcher(),
        reward_dispatcher=get_reward_dispatcher(),
    )
