from refertrack.storage.base import ReferralRepository
from refertrack.storage.memory import InMemoryReferralRepository
from refertrack.storage.sql import SqlAlchemyReferralRepository

__all__ = [
    "ReferralRepository",
    "InMemoryReferralRepository",
    "SqlAlchemyReferralRepository",
]
