"""
Database models - import all models here so Alembic can discover them.
"""
from refertrack.models.user import User, UserRole
from refertrack.models.referral import Referral, ReferralStatus, RewardStatus, REWARD_TYPES
from refertrack.models.referral_metric import ReferralMetric
from refertrack.models.analytics_event import AnalyticsEvent

__all__ = [
    "User",
    "UserRole",
    "Referral",
    "ReferralStatus",
    "RewardStatus",
    "REWARD_TYPES",
    "ReferralMetric",
    "AnalyticsEvent",
]
