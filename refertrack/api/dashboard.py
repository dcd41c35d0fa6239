"""
Dashboard endpoint - one summary per role.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException

from refertrack.api.auth import get_current_user
from refertrack.api.dependencies import get_referral_store
from refertrack.api.referrals import referral_summary
from refertrack.models.referral import ReferralStatus, RewardStatus
from refertrack.models.user import User, UserRole
from refertrack.services.referral_store import ReferralStore

logger = logging.getLogger(__name__)
router = APIRouter(tags=["dashboard"])

RECENT_REFERRALS_LIMIT = 10


def _status_counts(referrals) -> dict:
    counts = {status.value: 0 for status in ReferralStatus}
    for referral in referrals:
        counts[referral.status.value] += 1
    return counts


async def _contractor_dashboard(store: ReferralStore, user: User) -> dict:
    metric = await store.get_metrics(user.id)
    referrals = await store.get_referrals_by_contractor(user.id)
    homeowners = await store.repository.list_users(user.id, role=UserRole.EXISTING_HOMEOWNER)
    recent = sorted(referrals, key=lambda r: r.created_at, reverse=True)[:RECENT_REFERRALS_LIMIT]
    return {
        "role": user.role.value,
        "company_name": user.company_name,
        "metrics": {
            "total_referrals": metric.total_referrals,
            "converted_referrals": metric.converted_referrals,
            "conversion_rate": str(metric.conversion_rate),
            "average_time_to_conversion": metric.average_time_to_conversion,
        },
        "status_counts": _status_counts(referrals),
        "homeowner_count": len(homeowners),
        "rewards_failed": sum(1 for r in referrals if r.reward_status == RewardStatus.FAILED.value),
        "recent_referrals": [referral_summary(r).model_dump(mode="json") for r in recent],
    }


async def _referrer_dashboard(store: ReferralStore, user: User) -> dict:
    referrals = await store.get_referrals_by_referrer(user.id)
    earned = sum(r.reward_amount for r in referrals if r.reward_status == RewardStatus.SENT.value)
    pending = sum(
        r.reward_amount for r in referrals
        if r.status == ReferralStatus.COMPLETE and r.reward_status != RewardStatus.SENT.value
    )
    return {
        "role": user.role.value,
        "referral_code": user.referral_code,
        "status_counts": _status_counts(referrals),
        "rewards_earned": round(earned, 2),
        "rewards_pending": round(pending, 2),
        "referrals": [referral_summary(r).model_dump(mode="json") for r in referrals],
    }


async def _referred_dashboard(store: ReferralStore, user: User) -> dict:
    contractor = await store.repository.get_user(user.contractor_id) if user.contractor_id else None
    referrals = [
        r for r in await store.get_referrals_by_contractor(user.contractor_id)
        if r.referred_id == user.id
    ] if user.contractor_id else []
    return {
        "role": user.role.value,
        "contractor_name": contractor.display_name if contractor else None,
        "referrals": [
            {
                "referral_code": r.referral_code,
                "status": r.status.value,
                "installation_date": r.installation_date.isoformat() if r.installation_date else None,
            }
            for r in referrals
        ],
    }


@router.get("/api/v1/dashboard")
async def get_dashboard(
    store: ReferralStore = Depends(get_referral_store),
    user: User = Depends(get_current_user),
):
    """Role-dispatched summary for the signed-in user."""
    if user.role == UserRole.CONTRACTOR:
        return await _contractor_dashboard(store, user)
    elif user.role == UserRole.EXISTING_HOMEOWNER:
        return await _referrer_dashboard(store, user)
    elif user.role == UserRole.REFERRED_HOMEOWNER:
        return await _referred_dashboard(store, user)
    raise HTTPException(status_code=403, detail="Unknown role")
